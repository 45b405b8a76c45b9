"""
StreamGuard - Spam Pattern Table
================================

Closed set of compiled spam signatures with learned severity.

DESIGN:
    Pattern identity is fixed at construction from SPAM_PATTERN_DEFINITIONS.
    Only count, severity and last_seen change, and only through two paths:

    - record_hit(): +SEVERITY_HIT_STEP, capped at SEVERITY_MAX
    - decay(): -SEVERITY_DECAY_STEP when unseen for SEVERITY_DECAY_AFTER,
      floored at SEVERITY_FLOOR

    Snapshot restore clamps loaded severities into [0, 1] and ignores ids
    that are not part of the table.
"""

from typing import Any, Dict, Iterator, List, Optional, Pattern, Tuple

from streamguard.core.logger import logger

from .constants import (
    SEVERITY_DECAY_AFTER,
    SEVERITY_DECAY_STEP,
    SEVERITY_FLOOR,
    SEVERITY_HIT_STEP,
    SEVERITY_MAX,
    SPAM_PATTERN_DEFINITIONS,
)
from .models import PatternStat


# =============================================================================
# Spam Pattern
# =============================================================================

class SpamPattern:
    """
    One spam signature.

    Attributes:
        id: Stable pattern identifier (e.g. "urls").
        matcher: Compiled regex.
        count: Lifetime hits.
        severity: Learned confidence in [0, 1].
        last_seen: Timestamp of the most recent hit.
    """

    __slots__ = ("id", "matcher", "count", "severity", "last_seen")

    def __init__(self, pattern_id: str, matcher: Pattern, severity: float) -> None:
        self.id = pattern_id
        self.matcher = matcher
        self.count = 0
        self.severity = severity
        self.last_seen: Optional[float] = None

    def matches(self, text: str) -> bool:
        return self.matcher.search(text) is not None

    def record_hit(self, now: float) -> None:
        self.count += 1
        self.last_seen = now
        self.severity = min(SEVERITY_MAX, round(self.severity + SEVERITY_HIT_STEP, 4))

    def decay(self, now: float) -> bool:
        """Apply one decay step if unseen long enough. Returns True if severity changed."""
        if self.last_seen is None or now - self.last_seen < SEVERITY_DECAY_AFTER:
            return False
        if self.severity <= SEVERITY_FLOOR:
            return False
        self.severity = max(SEVERITY_FLOOR, round(self.severity - SEVERITY_DECAY_STEP, 4))
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "severity": self.severity,
            "last_seen": self.last_seen,
        }

    def __repr__(self) -> str:
        return f"SpamPattern(id={self.id!r}, count={self.count}, severity={self.severity})"


# =============================================================================
# Pattern Table
# =============================================================================

class PatternTable:
    """Fixed table of SpamPattern entries keyed by id."""

    def __init__(self) -> None:
        self._patterns: Dict[str, SpamPattern] = {
            pattern_id: SpamPattern(pattern_id, matcher, severity)
            for pattern_id, (matcher, severity) in SPAM_PATTERN_DEFINITIONS.items()
        }

    def __iter__(self) -> Iterator[SpamPattern]:
        return iter(self._patterns.values())

    def __len__(self) -> int:
        return len(self._patterns)

    def get(self, pattern_id: str) -> Optional[SpamPattern]:
        return self._patterns.get(pattern_id)

    def match(self, text: str, now: float) -> List[str]:
        """
        Find every pattern matching text and record a hit on each.

        Returns:
            Matching pattern ids, in table order.
        """
        matched = []
        for pattern in self._patterns.values():
            if pattern.matches(text):
                pattern.record_hit(now)
                matched.append(pattern.id)
        return matched

    def decay(self, now: float) -> int:
        """Decay every stale pattern. Returns how many changed."""
        return sum(1 for pattern in self._patterns.values() if pattern.decay(now))

    def stats(self) -> List[PatternStat]:
        return [
            PatternStat(name=p.id, count=p.count, severity=p.severity, last_seen=p.last_seen)
            for p in self._patterns.values()
        ]

    # =========================================================================
    # Snapshot
    # =========================================================================

    def dump(self) -> Dict[str, Dict[str, Any]]:
        return {p.id: p.to_dict() for p in self._patterns.values()}

    def restore(self, data: Dict[str, Dict[str, Any]]) -> None:
        """Load count/severity/last_seen for known ids."""
        skipped: List[Tuple[str, str]] = []
        for pattern_id, state in data.items():
            pattern = self._patterns.get(pattern_id)
            if pattern is None:
                skipped.append(("Unknown Pattern", pattern_id))
                continue
            pattern.count = max(0, int(state.get("count", 0)))
            pattern.severity = min(1.0, max(0.0, float(state.get("severity", pattern.severity))))
            last_seen = state.get("last_seen")
            pattern.last_seen = float(last_seen) if last_seen is not None else None

        if skipped:
            logger.warning("Ignored Snapshot Patterns", skipped)


__all__ = ["SpamPattern", "PatternTable"]
