"""Tests for practice sessions."""
import pytest
from faker import Faker

from readcore.config import DifficultySettings, MatchingSettings
from readcore.errors import ValidationError
from readcore.services.answer_matcher import AnswerMatcher, MatchResult
from readcore.services.difficulty_service import DifficultyController
from readcore.services.local_store import LocalStore
from readcore.services.practice_service import PracticeSession

fake = Faker()


@pytest.fixture
def session(store: LocalStore, clock) -> PracticeSession:
    """Create a session with the default thresholds."""
    return PracticeSession(
        fake.uuid4(),
        store,
        AnswerMatcher(MatchingSettings(match_threshold=0.7)),
        DifficultyController(DifficultySettings(
            advance_threshold=5,
            decrease_threshold=3,
            min_attempts_before_advance=8,
            max_tier=3,
            mastery_min_attempts=3,
            mastery_rate=0.8,
        )),
        clock=clock,
    )


def test_correct_answer(session: PracticeSession, clock):
    """Test that a matching answer updates streak and statistics."""
    outcome = session.answer("cat", "cat", "Cat!")

    assert outcome.is_correct
    assert outcome.match.confidence == 1.0
    assert outcome.progression.correct_streak == 1
    assert outcome.tier_change == 0
    assert (outcome.mastery.attempts, outcome.mastery.successes) == (1, 1)
    assert outcome.mastery.last_attempted_at == clock()
    assert not outcome.mastered


def test_wrong_answer(session: PracticeSession):
    """Test that a non-matching answer counts as an incorrect attempt."""
    outcome = session.answer("cat", "cat", "dog")

    assert not outcome.is_correct
    assert outcome.progression.incorrect_streak == 1
    assert (outcome.mastery.attempts, outcome.mastery.successes) == (1, 0)


def test_transcribed_padding_counts_as_correct(session: PracticeSession):
    """Test that the looser transcription rule feeds the tier state."""
    outcome = session.answer("sun", "sun", "the sun", transcribed=True)
    assert outcome.is_correct
    assert outcome.match.matched_by == "contains"


def test_typed_superstring_is_wrong(session: PracticeSession):
    """Test that a typed answer only containing the expected word does not match."""
    outcome = session.answer("cat", "cat", "concatenate")

    assert not outcome.is_correct
    assert outcome.match.matched_by is None
    assert (outcome.mastery.attempts, outcome.mastery.successes) == (1, 0)


def test_typed_variation_counts_as_correct(session: PracticeSession):
    """Test that accepted variations still apply to typed answers."""
    outcome = session.answer("color", "color", "colour", accepted_variations=["colour"], threshold=0.9)
    assert outcome.is_correct
    assert outcome.match.matched_by == "variation"


def test_tier_advances_after_eight_correct(session: PracticeSession):
    """Test the tier change reported on the eighth correct answer."""
    outcomes = [session.answer(f"word-{i}", "bat", "bat") for i in range(8)]

    assert [outcome.tier_change for outcome in outcomes] == [0] * 7 + [1]
    assert session.tier == 2
    assert outcomes[-1].progression.attempts_in_tier == 0


def test_mastery_persists_across_sessions(session: PracticeSession, store: LocalStore):
    """Test that item statistics outlive the session while the tier does not."""
    for _ in range(3):
        outcome = session.answer("cat", "cat", "cat")
    assert outcome.mastered
    assert session.mastered_items() == ["cat"]

    next_session = PracticeSession(session.learner_id, store)
    assert next_session.tier == 1
    assert next_session.mastered_items() == ["cat"]
    assert store.get_mastery(session.learner_id, "cat").attempts == 3


def test_apply_precomputed_match(session: PracticeSession):
    """Test applying a match scored elsewhere."""
    outcome = session.apply("dog", MatchResult(False, 0.2))
    assert not outcome.is_correct
    assert outcome.mastery.attempts == 1


def test_item_id_required(session: PracticeSession, store: LocalStore):
    """Test argument validation."""
    with pytest.raises(ValidationError):
        session.answer("", "cat", "cat")
    with pytest.raises(ValidationError):
        PracticeSession("", store)
