"""
StreamGuard - Violation Detection
=================================

Turns one chat message into an ordered list of violation labels.

Rules are evaluated independently and every match is reported:

    1. Self-similarity against the user's previous messages
    2. Shadowban membership
    3. Banned word/phrase (case-insensitive substring)
    4. Classifier toxicity above threshold
    5. Spam pattern matches (records a hit on each pattern)
"""

from typing import Iterable, List, Optional, Sequence

from streamguard.services.classifier import ClassifierResult

from .constants import (
    SIMILARITY_WINDOW,
    VIOLATION_BANNED_WORD,
    VIOLATION_PATTERN,
    VIOLATION_SHADOWBANNED,
    VIOLATION_SIMILAR,
    VIOLATION_TOXIC,
)
from .patterns import PatternTable
from .trust import TrustRegistry


# =============================================================================
# Similarity
# =============================================================================

def _words(text: str) -> List[str]:
    return text.lower().split()


def word_overlap_ratio(a: str, b: str) -> float:
    """
    Share of words in a that also appear in b, over the longer word count.

    ratio = |common| / max(|words(a)|, |words(b)|); 0.0 when both are empty.
    """
    words_a = _words(a)
    words_b = _words(b)
    longest = max(len(words_a), len(words_b))
    if longest == 0:
        return 0.0
    vocabulary = set(words_b)
    common = sum(1 for word in words_a if word in vocabulary)
    return common / longest


def max_similarity(text: str, previous: Iterable[str]) -> float:
    """Highest overlap ratio between text and any previous message."""
    return max((word_overlap_ratio(text, other) for other in previous), default=0.0)


# =============================================================================
# Detector
# =============================================================================

class ViolationDetector:
    """
    Combines pattern, registry and classifier signals for one message.

    Attributes:
        similarity_threshold: Overlap ratio above which a message repeats.
        toxicity_threshold: Toxicity score above which a message is toxic.
    """

    def __init__(
        self,
        patterns: PatternTable,
        registry: TrustRegistry,
        similarity_threshold: float = 0.8,
        toxicity_threshold: float = 0.8,
    ) -> None:
        self.patterns = patterns
        self.registry = registry
        self.similarity_threshold = similarity_threshold
        self.toxicity_threshold = toxicity_threshold

    def detect(
        self,
        text: str,
        username: str,
        classification: Optional[ClassifierResult],
        previous_messages: Sequence[str],
        now: float,
    ) -> List[str]:
        """
        Collect every violation in text.

        Args:
            text: Message content.
            username: Normalized username.
            classification: Classifier output, or None when it failed.
            previous_messages: The user's earlier messages, oldest first.
                Only the last SIMILARITY_WINDOW are compared.
            now: Current timestamp, recorded on matching patterns.

        Returns:
            Violation labels in rule order; empty when the message is clean.
        """
        violations: List[str] = []

        window = previous_messages[-SIMILARITY_WINDOW:]
        if window and max_similarity(text, window) > self.similarity_threshold:
            violations.append(VIOLATION_SIMILAR)

        if self.registry.is_shadowbanned(username):
            violations.append(VIOLATION_SHADOWBANNED)

        if self.registry.contains_banned_word(text):
            violations.append(VIOLATION_BANNED_WORD)

        if classification is not None and classification.toxicity_score > self.toxicity_threshold:
            violations.append(VIOLATION_TOXIC)

        for pattern_id in self.patterns.match(text, now):
            violations.append(VIOLATION_PATTERN.format(pattern_id=pattern_id))

        return violations


__all__ = [
    "ViolationDetector",
    "word_overlap_ratio",
    "max_similarity",
]
