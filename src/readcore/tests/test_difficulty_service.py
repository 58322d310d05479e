"""Tests for the difficulty controller."""
from datetime import datetime, UTC

import pytest
from faker import Faker

from readcore.config import DifficultySettings
from readcore.errors import ValidationError
from readcore.models.progress_models import DifficultyProgression, WordMasteryRecord
from readcore.services.difficulty_service import DifficultyController

fake = Faker()


@pytest.fixture
def controller() -> DifficultyController:
    """Create a controller with the default thresholds."""
    return DifficultyController(DifficultySettings(
        advance_threshold=5,
        decrease_threshold=3,
        min_attempts_before_advance=8,
        max_tier=3,
        mastery_min_attempts=3,
        mastery_rate=0.8,
    ))


def run(controller: DifficultyController, progression: DifficultyProgression, answers):
    for was_correct in answers:
        progression = controller.update(progression, was_correct)
    return progression


def test_initial_progression(controller: DifficultyController):
    """Test that a session starts at tier 1 with zero counters."""
    assert controller.initial() == DifficultyProgression(1, 0, 0, 0)


def test_counters_and_streaks(controller: DifficultyController):
    """Test that a correct answer zeroes the incorrect streak and vice versa."""
    progression = run(controller, controller.initial(), [True, True])
    assert progression == DifficultyProgression(1, 2, 2, 0)

    progression = controller.update(progression, False)
    assert progression == DifficultyProgression(1, 3, 0, 1)

    progression = controller.update(progression, True)
    assert progression == DifficultyProgression(1, 4, 1, 0)


def test_streak_alone_does_not_advance(controller: DifficultyController):
    """Test that the minimum attempts in tier gate advancing."""
    progression = run(controller, controller.initial(), [True] * 7)
    assert progression.current_tier == 1
    assert progression.correct_streak == 7


def test_advance_after_min_attempts(controller: DifficultyController):
    """Test advancing once streak and attempts both reach their thresholds."""
    progression = run(controller, controller.initial(), [True] * 8)
    assert progression == DifficultyProgression(2, 0, 0, 0)


def test_advance_with_earlier_mistakes(controller: DifficultyController):
    """Test that earlier wrong answers count toward attempts in tier."""
    progression = run(controller, controller.initial(), [False, False, False] + [True] * 5)
    assert progression == DifficultyProgression(2, 0, 0, 0)


def test_never_decrease_below_tier_one(controller: DifficultyController):
    """Test that tier 1 absorbs any number of wrong answers."""
    progression = run(controller, controller.initial(), [False] * 10)
    assert progression.current_tier == 1
    assert progression.incorrect_streak == 10


def test_decrease_after_incorrect_streak(controller: DifficultyController):
    """Test dropping a tier after three wrong answers in a row."""
    progression = DifficultyProgression(current_tier=2)
    progression = run(controller, progression, [False, False])
    assert progression.current_tier == 2

    progression = controller.update(progression, False)
    assert progression == DifficultyProgression(1, 0, 0, 0)


def test_never_advance_past_max_tier(controller: DifficultyController):
    """Test that the top tier keeps counting without advancing."""
    progression = run(controller, DifficultyProgression(current_tier=3), [True] * 20)
    assert progression.current_tier == 3
    assert progression.correct_streak == 20
    assert progression.attempts_in_tier == 20


def test_tier_above_max_is_rejected(controller: DifficultyController):
    """Test that an out-of-range tier is a validation error."""
    with pytest.raises(ValidationError):
        controller.update(DifficultyProgression(current_tier=4), True)


def test_invalid_progression_is_rejected():
    """Test progression invariants."""
    with pytest.raises(ValidationError):
        DifficultyProgression(current_tier=0)
    with pytest.raises(ValidationError):
        DifficultyProgression(correct_streak=-1)


def test_random_answers_keep_invariants(controller: DifficultyController):
    """Test bounds and exclusive streaks over a random answer sequence."""
    progression = controller.initial()
    for _ in range(200):
        progression = controller.update(progression, fake.pybool())
        assert 1 <= progression.current_tier <= 3
        assert progression.correct_streak == 0 or progression.incorrect_streak == 0


def test_update_is_pure(controller: DifficultyController):
    """Test that update neither mutates its input nor depends on history."""
    progression = DifficultyProgression(2, 4, 0, 2)
    first = controller.update(progression, False)
    second = controller.update(progression, False)
    assert first == second
    assert progression == DifficultyProgression(2, 4, 0, 2)


def test_custom_thresholds():
    """Test that thresholds come from settings."""
    controller = DifficultyController(DifficultySettings(
        advance_threshold=2, decrease_threshold=1, min_attempts_before_advance=2, max_tier=2
    ))
    progression = run(controller, controller.initial(), [True, True])
    assert progression.current_tier == 2
    progression = controller.update(progression, False)
    assert progression.current_tier == 1


@pytest.mark.parametrize(
    "attempts,successes,mastered",
    [
        (0, 0, False),
        (2, 2, False),
        (3, 3, True),
        (3, 2, False),
        (5, 4, True),
        (4, 3, False),
    ],
)
def test_is_mastered(controller: DifficultyController, attempts: int, successes: int, mastered: bool):
    """Test mastery from attempt count and success rate."""
    record = WordMasteryRecord(
        learner_id=fake.uuid4(), item_id=fake.word(), attempts=attempts, successes=successes
    )
    assert controller.is_mastered(record) is mastered


def test_record_attempt(controller: DifficultyController):
    """Test that an attempt updates the statistics immutably."""
    at = datetime(2024, 5, 1, tzinfo=UTC)
    record = WordMasteryRecord(learner_id="learner", item_id="cat")
    updated = controller.record_attempt(record, True, at=at)
    updated = controller.record_attempt(updated, False, at=at)

    assert (updated.attempts, updated.successes) == (2, 1)
    assert updated.last_attempted_at == at
    assert updated.success_rate == 0.5
    assert record.attempts == 0
