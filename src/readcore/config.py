"""Configuration settings for the reading core."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)


@dataclass
class DatabaseSettings:
    """Local store configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///readcore.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class ApiSettings:
    """Backend HTTP settings."""
    base_url: str = os.getenv("API_BASE_URL", "http://localhost:3001/api")
    token: str = os.getenv("API_TOKEN", "")


@dataclass
class DifficultySettings:
    """Adaptive tier and mastery thresholds."""
    advance_threshold: int = int(os.getenv("ADVANCE_THRESHOLD", "5"))
    decrease_threshold: int = int(os.getenv("DECREASE_THRESHOLD", "3"))
    min_attempts_before_advance: int = int(os.getenv("MIN_ATTEMPTS_BEFORE_ADVANCE", "8"))
    max_tier: int = int(os.getenv("MAX_TIER", "3"))
    mastery_min_attempts: int = int(os.getenv("MASTERY_MIN_ATTEMPTS", "3"))
    mastery_rate: float = float(os.getenv("MASTERY_RATE", "0.8"))


@dataclass
class MatchingSettings:
    """Answer matching settings."""
    match_threshold: float = float(os.getenv("MATCH_THRESHOLD", "0.7"))


@dataclass
class CacheSettings:
    """Content cache settings."""
    ttl_seconds: int = int(os.getenv("CACHE_TTL_SECONDS", "300"))  # 5 minutes


@dataclass
class SyncSettings:
    """Offline queue replay settings."""
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "10.0"))
    sync_interval: int = int(os.getenv("SYNC_INTERVAL", "60"))  # seconds between drains


@dataclass
class MonitoringSettings:
    """Prometheus exporter settings."""
    port: int = int(os.getenv("METRICS_PORT", "0"))  # 0 disables the exporter


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_api_settings() -> ApiSettings:
    """Get API settings."""
    return ApiSettings()


def get_difficulty_settings() -> DifficultySettings:
    """Get difficulty settings."""
    return DifficultySettings()


def get_matching_settings() -> MatchingSettings:
    """Get matching settings."""
    return MatchingSettings()


def get_cache_settings() -> CacheSettings:
    """Get cache settings."""
    return CacheSettings()


def get_sync_settings() -> SyncSettings:
    """Get sync settings."""
    return SyncSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    api: ApiSettings = field(default_factory=get_api_settings)
    difficulty: DifficultySettings = field(default_factory=get_difficulty_settings)
    matching: MatchingSettings = field(default_factory=get_matching_settings)
    cache: CacheSettings = field(default_factory=get_cache_settings)
    sync: SyncSettings = field(default_factory=get_sync_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        difficulty = self.difficulty
        if difficulty.max_tier < 1:
            raise ValueError("MAX_TIER must be at least 1")

        if difficulty.advance_threshold < 1 or difficulty.decrease_threshold < 1:
            raise ValueError("ADVANCE_THRESHOLD and DECREASE_THRESHOLD must be positive")

        if difficulty.min_attempts_before_advance < 0:
            raise ValueError("MIN_ATTEMPTS_BEFORE_ADVANCE cannot be negative")

        if difficulty.mastery_min_attempts < 1:
            raise ValueError("MASTERY_MIN_ATTEMPTS must be positive")

        if difficulty.mastery_rate < 0 or difficulty.mastery_rate > 1:
            raise ValueError("MASTERY_RATE must be between 0 and 1")

        if self.matching.match_threshold < 0 or self.matching.match_threshold > 1:
            raise ValueError("MATCH_THRESHOLD must be between 0 and 1")

        if self.cache.ttl_seconds <= 0:
            raise ValueError("CACHE_TTL_SECONDS must be positive")

        if self.sync.request_timeout <= 0:
            raise ValueError("REQUEST_TIMEOUT must be positive")

        if self.sync.sync_interval < 1:
            raise ValueError("SYNC_INTERVAL must be positive")


# Create global settings instance
settings = Settings()
settings.validate()
