"""Models for progress, difficulty and pending-mutation data structures."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from readcore.errors import ValidationError
from readcore.models.base import as_utc

logger = logging.getLogger(__name__)


class ProgressStatus(Enum):
    """Lifecycle of a learner's progress on a content unit."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: str) -> "ProgressStatus":
        """Parse a status, accepting the hyphenated spelling too."""
        try:
            return cls(value.replace("-", "_"))
        except (AttributeError, ValueError):
            raise ValidationError(f"Unknown progress status: {value!r}")


def record_key(content_id: str, learner_id: str) -> str:
    """Stable key of a progress record."""
    return f"{content_id}:{learner_id}"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (or pass a datetime through) as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValidationError(f"Invalid timestamp: {value!r}")


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).isoformat()


@dataclass
class StepResult:
    """Outcome of one step of a content unit."""
    step_id: str
    completed: bool
    score: Optional[int] = None
    attempts: int = 0
    time_spent_seconds: int = 0
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepId": self.step_id,
            "completed": self.completed,
            "score": self.score,
            "attempts": self.attempts,
            "timeSpentSeconds": self.time_spent_seconds,
            "completedAt": format_timestamp(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepResult":
        return cls(
            step_id=str(data.get("stepId") or data.get("activityId")),
            completed=bool(data.get("completed", False)),
            score=data.get("score"),
            attempts=int(data.get("attempts") or 0),
            time_spent_seconds=int(data.get("timeSpentSeconds") or 0),
            completed_at=parse_timestamp(data.get("completedAt")),
        )


@dataclass
class ProgressRecord:
    """One learner's state for one content unit.

    ``completed_at`` is set if and only if ``status`` is ``COMPLETED``.
    """
    learner_id: str
    content_id: str
    status: ProgressStatus
    started_at: datetime
    current_step_index: int = 0
    step_results: List[StepResult] = field(default_factory=list)
    overall_score: Optional[int] = None
    total_time_seconds: int = 0
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.current_step_index < 0:
            raise ValidationError("current_step_index cannot be negative")
        if self.total_time_seconds < 0:
            raise ValidationError("total_time_seconds cannot be negative")
        is_completed = self.status is ProgressStatus.COMPLETED
        if is_completed != (self.completed_at is not None):
            raise ValidationError(
                f"completed_at must be set exactly when status is completed "
                f"(status={self.status.value}, completed_at={self.completed_at})"
            )

    @property
    def id(self) -> str:
        return record_key(self.content_id, self.learner_id)

    def step(self, step_id: str) -> Optional[StepResult]:
        """Get the result recorded for a step."""
        for result in self.step_results:
            if result.step_id == step_id:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the backend's JSON shape."""
        return {
            "learnerId": self.learner_id,
            "contentId": self.content_id,
            "status": self.status.value,
            "currentStepIndex": self.current_step_index,
            "stepResults": [result.to_dict() for result in self.step_results],
            "overallScore": self.overall_score,
            "totalTimeSeconds": self.total_time_seconds,
            "startedAt": format_timestamp(self.started_at),
            "completedAt": format_timestamp(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressRecord":
        """Parse the backend's JSON shape."""
        try:
            learner_id = data["learnerId"]
            content_id = data["contentId"]
        except KeyError as e:
            raise ValidationError(f"Progress payload is missing {e.args[0]}")
        status = ProgressStatus.parse(data.get("status", ProgressStatus.NOT_STARTED.value))
        started_at = parse_timestamp(data.get("startedAt"))
        if started_at is None:
            raise ValidationError("Progress payload is missing startedAt")
        return cls(
            learner_id=str(learner_id),
            content_id=str(content_id),
            status=status,
            started_at=started_at,
            current_step_index=int(data.get("currentStepIndex") or 0),
            step_results=[StepResult.from_dict(item) for item in data.get("stepResults") or []],
            overall_score=data.get("overallScore"),
            total_time_seconds=int(data.get("totalTimeSeconds") or 0),
            completed_at=parse_timestamp(data.get("completedAt")),
        )


def _first(data: Dict[str, Any], *names: str) -> Any:
    for name in names:
        if data.get(name) is not None:
            return data[name]
    return None


@dataclass(frozen=True)
class ProgressSummary:
    """Aggregate progress of one learner across all content units."""
    total_lessons: int = 0
    completed_lessons: int = 0
    in_progress_lessons: int = 0
    average_score: Optional[float] = None  # mean of the scored records only
    total_time_seconds: int = 0
    computed_locally: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressSummary":
        """Parse a summary in either snake_case or camelCase."""
        average = _first(data, "average_score", "averageScore")
        try:
            return cls(
                total_lessons=int(_first(data, "total_lessons", "totalLessons") or 0),
                completed_lessons=int(_first(data, "completed_lessons", "completedLessons") or 0),
                in_progress_lessons=int(_first(data, "in_progress_lessons", "inProgressLessons") or 0),
                average_score=float(average) if average is not None else None,
                total_time_seconds=int(_first(data, "total_time_spent", "totalTimeSpent") or 0),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid progress summary: {e}")

    @classmethod
    def from_records(cls, records: List["ProgressRecord"]) -> "ProgressSummary":
        """Summarize locally stored records."""
        scores = [record.overall_score for record in records if record.overall_score is not None]
        return cls(
            total_lessons=len(records),
            completed_lessons=sum(1 for r in records if r.status is ProgressStatus.COMPLETED),
            in_progress_lessons=sum(1 for r in records if r.status is ProgressStatus.IN_PROGRESS),
            average_score=sum(scores) / len(scores) if scores else None,
            total_time_seconds=sum(record.total_time_seconds for record in records),
            computed_locally=True,
        )


@dataclass(frozen=True)
class DifficultyProgression:
    """Adaptive state of one session.

    At most one of ``correct_streak`` / ``incorrect_streak`` is non-zero.
    """
    current_tier: int = 1
    attempts_in_tier: int = 0
    correct_streak: int = 0
    incorrect_streak: int = 0

    def __post_init__(self):
        if self.current_tier < 1:
            raise ValidationError("current_tier must be at least 1")
        if min(self.attempts_in_tier, self.correct_streak, self.incorrect_streak) < 0:
            raise ValidationError("progression counters cannot be negative")


@dataclass
class WordMasteryRecord:
    """Attempt statistics for a single item.

    Mastery is derived from these counts, see ``DifficultyController.is_mastered``.
    """
    learner_id: str
    item_id: str
    attempts: int = 0
    successes: int = 0
    last_attempted_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.successes / self.attempts


@dataclass
class SyncReport:
    """Outcome of one drain of the sync queue."""
    replayed: int = 0
    dropped: int = 0
    remaining: int = 0
    interrupted: bool = False  # stopped early on a connectivity failure
