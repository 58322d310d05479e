"""Scoring of typed or transcribed answers against an expected word."""
import logging
import string
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional

from readcore.config import MatchingSettings

logger = logging.getLogger(__name__)


def normalize(text: str) -> str:
    """Lowercase, trim surrounding whitespace and strip punctuation."""
    if not text:
        return ""
    text = text.lower().strip()
    # Unicode punctuation categories all start with "P"
    return "".join(
        char for char in text
        if char not in string.punctuation and not unicodedata.category(char).startswith("P")
    )


def edit_distance(source: str, target: str) -> int:
    """Levenshtein distance with unit cost insertion, deletion and substitution."""
    if not source:
        return len(target)
    if not target:
        return len(source)

    previous = list(range(len(target) + 1))
    for i, source_char in enumerate(source, start=1):
        current = [i]
        for j, target_char in enumerate(target, start=1):
            cost = 0 if source_char == target_char else 1
            current.append(min(
                previous[j] + 1,  # deletion
                current[j - 1] + 1,  # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching a transcription.

    ``confidence`` is the similarity score, independent of which rule accepted.
    """
    is_match: bool
    confidence: float
    matched_by: Optional[str] = None  # "similarity", "contains", "variation"


class AnswerMatcher:
    """Fuzzy matcher for spoken or typed answers."""

    def __init__(self, settings: Optional[MatchingSettings] = None):
        self.settings = settings or MatchingSettings()

    @staticmethod
    def score(expected: str, actual: str) -> float:
        """Similarity between two answers in [0, 1].

        Two empty answers score 0: no input is never a correct answer.
        """
        expected_normalized = normalize(expected)
        actual_normalized = normalize(actual)

        max_length = max(len(expected_normalized), len(actual_normalized))
        if max_length == 0:
            return 0.0

        if expected_normalized == actual_normalized:
            return 1.0

        distance = edit_distance(expected_normalized, actual_normalized)
        return max(0.0, 1.0 - distance / max_length)

    def is_match(self, expected: str, actual: str, threshold: Optional[float] = None) -> bool:
        """Check whether the similarity reaches the threshold."""
        if threshold is None:
            threshold = self.settings.match_threshold
        return self.score(expected, actual) >= threshold

    def match_answer(
        self,
        expected: str,
        actual: str,
        threshold: Optional[float] = None,
        accepted_variations: Iterable[str] = (),
    ) -> MatchResult:
        """Match a typed answer: similarity or an accepted variation, nothing looser."""
        if threshold is None:
            threshold = self.settings.match_threshold

        confidence = self.score(expected, actual)
        if confidence >= threshold:
            return MatchResult(True, confidence, "similarity")

        actual_normalized = normalize(actual)
        if actual_normalized and any(
            normalize(variation) == actual_normalized for variation in accepted_variations
        ):
            return MatchResult(True, confidence, "variation")

        return MatchResult(False, confidence)

    def match_transcription(
        self,
        expected: str,
        transcript: str,
        threshold: Optional[float] = None,
        accepted_variations: Iterable[str] = (),
    ) -> MatchResult:
        """Match recognizer output against the expected word.

        On top of the similarity rule, a transcript that contains the expected word
        (recognizer padding or echo) or equals an accepted variation also matches.
        """
        if threshold is None:
            threshold = self.settings.match_threshold

        confidence = self.score(expected, transcript)
        if confidence >= threshold:
            return MatchResult(True, confidence, "similarity")

        expected_normalized = normalize(expected)
        transcript_normalized = normalize(transcript)
        if expected_normalized and expected_normalized in transcript_normalized:
            logger.debug(f"Transcript {transcript!r} contains expected word {expected!r}")
            return MatchResult(True, confidence, "contains")

        if transcript_normalized and any(
            normalize(variation) == transcript_normalized for variation in accepted_variations
        ):
            return MatchResult(True, confidence, "variation")

        return MatchResult(False, confidence)
