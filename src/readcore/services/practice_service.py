"""Game session: answer matching, difficulty tiers and item mastery together."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from readcore import monitoring
from readcore.errors import ValidationError
from readcore.models.base import utcnow
from readcore.models.progress_models import DifficultyProgression, WordMasteryRecord
from readcore.services.answer_matcher import AnswerMatcher, MatchResult
from readcore.services.difficulty_service import DifficultyController
from readcore.services.local_store import LocalStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnswerOutcome:
    """Everything a game screen needs after one answer."""
    match: MatchResult
    progression: DifficultyProgression
    tier_change: int  # -1, 0 or +1
    mastery: WordMasteryRecord
    mastered: bool

    @property
    def is_correct(self) -> bool:
        return self.match.is_match


class PracticeSession:
    """One adaptive session of a learner.

    The tier state lives only as long as the session; item statistics are
    written to the local store on every answer.
    """

    def __init__(
        self,
        learner_id: str,
        store: LocalStore,
        matcher: Optional[AnswerMatcher] = None,
        controller: Optional[DifficultyController] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not learner_id:
            raise ValidationError("learner_id is required")
        self.learner_id = learner_id
        self.store = store
        self.matcher = matcher or AnswerMatcher()
        self.controller = controller or DifficultyController()
        self.clock = clock
        self.progression = self.controller.initial()

    @property
    def tier(self) -> int:
        return self.progression.current_tier

    def answer(
        self,
        item_id: str,
        expected: str,
        actual: str,
        accepted_variations: Iterable[str] = (),
        threshold: Optional[float] = None,
        transcribed: bool = False,
    ) -> AnswerOutcome:
        """Score an answer and apply it to the tier state and the item statistics.

        Speech recognizer output (``transcribed``) also matches when it contains
        the expected word; typed answers do not.
        """
        if not item_id:
            raise ValidationError("item_id is required")

        match_with = self.matcher.match_transcription if transcribed else self.matcher.match_answer
        match = match_with(
            expected, actual, threshold=threshold, accepted_variations=accepted_variations
        )
        return self.apply(item_id, match)

    def apply(self, item_id: str, match: MatchResult) -> AnswerOutcome:
        """Apply an already matched answer."""
        previous_tier = self.progression.current_tier
        self.progression = self.controller.update(self.progression, match.is_match)
        tier_change = self.progression.current_tier - previous_tier
        if tier_change:
            direction = "up" if tier_change > 0 else "down"
            monitoring.tier_changes.labels(direction=direction).inc()
            logger.info(
                f"Learner {self.learner_id} moved {direction} to tier {self.progression.current_tier}"
            )

        now = self.clock()
        mastery = self.store.update_mastery(
            self.learner_id,
            item_id,
            lambda record: self.controller.record_attempt(record, match.is_match, at=now),
        )
        return AnswerOutcome(
            match=match,
            progression=self.progression,
            tier_change=tier_change,
            mastery=mastery,
            mastered=self.controller.is_mastered(mastery),
        )

    def mastered_items(self) -> List[str]:
        """Ids of every item the learner has mastered."""
        return [
            record.item_id
            for record in self.store.list_mastery(self.learner_id)
            if self.controller.is_mastered(record)
        ]
