"""Adaptive difficulty tiers and per-item mastery."""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from readcore.config import DifficultySettings
from readcore.errors import ValidationError
from readcore.models.base import utcnow
from readcore.models.progress_models import DifficultyProgression, WordMasteryRecord

logger = logging.getLogger(__name__)


class DifficultyController:
    """Pure state machine moving a session between difficulty tiers.

    No I/O and no hidden state: ``update`` only depends on its arguments and the
    thresholds given at construction.
    """

    def __init__(self, settings: Optional[DifficultySettings] = None):
        self.settings = settings or DifficultySettings()

    def initial(self) -> DifficultyProgression:
        """Create the state of a new session."""
        return DifficultyProgression()

    def should_advance(self, progression: DifficultyProgression) -> bool:
        return (
            progression.current_tier < self.settings.max_tier
            and progression.correct_streak >= self.settings.advance_threshold
            and progression.attempts_in_tier >= self.settings.min_attempts_before_advance
        )

    def should_decrease(self, progression: DifficultyProgression) -> bool:
        return (
            progression.current_tier > 1
            and progression.incorrect_streak >= self.settings.decrease_threshold
        )

    def update(self, progression: DifficultyProgression, was_correct: bool) -> DifficultyProgression:
        """Apply one answer and return the new progression."""
        if progression.current_tier > self.settings.max_tier:
            raise ValidationError(
                f"Tier {progression.current_tier} is above max tier {self.settings.max_tier}"
            )

        updated = replace(
            progression,
            attempts_in_tier=progression.attempts_in_tier + 1,
            correct_streak=progression.correct_streak + 1 if was_correct else 0,
            incorrect_streak=0 if was_correct else progression.incorrect_streak + 1,
        )

        if self.should_advance(updated):
            logger.debug(f"Advancing from tier {updated.current_tier}")
            return DifficultyProgression(current_tier=updated.current_tier + 1)

        if self.should_decrease(updated):
            logger.debug(f"Decreasing from tier {updated.current_tier}")
            return DifficultyProgression(current_tier=updated.current_tier - 1)

        return updated

    def is_mastered(self, record: WordMasteryRecord) -> bool:
        """Check if an item is mastered based on its attempt statistics."""
        if record.attempts < self.settings.mastery_min_attempts:
            return False
        return record.successes / record.attempts >= self.settings.mastery_rate

    @staticmethod
    def record_attempt(
        record: WordMasteryRecord, was_correct: bool, at: Optional[datetime] = None
    ) -> WordMasteryRecord:
        """Return the statistics after one more attempt."""
        return replace(
            record,
            attempts=record.attempts + 1,
            successes=record.successes + (1 if was_correct else 0),
            last_attempted_at=at or utcnow(),
        )
