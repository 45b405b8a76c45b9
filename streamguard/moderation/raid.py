"""
StreamGuard - Raid Risk Assessment
==================================

Advises on incoming raids using the channel's rolling raid history.

DESIGN:
    Two independent signals feed one RaidAssessment:

    - Volume: viewers / max(average of the last RAID_AVERAGE_WINDOW raids, 1)
      above raid_ratio_threshold. An empty window never flags by volume.
    - Trust-aware checks: absolute viewer limit, raider account age, and
      repeated raids from the same raider within RAID_REPEAT_WINDOW.

    Trusted raiders skip both. The account-age lookup runs before the
    history lock is taken; computing the average and recording the event
    happen together under the lock so concurrent raids see a consistent
    window.

    The assessor only advises. It never punishes anyone.
"""

import asyncio
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from streamguard.core.logger import logger
from streamguard.utils.async_utils import with_timeout

from .constants import (
    RAID_AVERAGE_WINDOW,
    RAID_HISTORY_CAPACITY,
    RAID_RECOMMENDED_ACTION,
    RAID_REPEAT_WINDOW,
)
from .models import RaidAssessment, RaidEvent
from .trust import TrustRegistry, normalize_username


ACCOUNT_AGE_TIMEOUT = 5.0

REASON_HIGH_VIEWERS = "Unusually high viewer count"
REASON_NEW_ACCOUNT = "New account"
REASON_REPEATED_RAIDS = "Multiple raids in 24 hours"
REASON_VOLUME = "Viewer count far above recent raid average"


# =============================================================================
# Collaborator Protocol
# =============================================================================

@runtime_checkable
class AccountAgeProvider(Protocol):
    """Platform lookup for how old an account is."""

    async def account_age_days(self, username: str) -> int:
        """Account age in whole days; may raise."""
        ...


# =============================================================================
# Assessor
# =============================================================================

class RaidRiskAssessor:
    """
    Rolling raid history plus the rules that score a new raid.

    Attributes:
        ratio_threshold: Multiple of the average above which volume is suspicious.
        viewer_limit: Absolute viewer count that is always flagged.
        min_account_age_days: Raider accounts younger than this are flagged.
        repeat_limit: Raids from one raider in 24h above which it is flagged.
    """

    def __init__(
        self,
        registry: TrustRegistry,
        account_age: Optional[AccountAgeProvider] = None,
        ratio_threshold: float = 10.0,
        viewer_limit: int = 1000,
        min_account_age_days: int = 7,
        repeat_limit: int = 2,
    ) -> None:
        self.registry = registry
        self.account_age = account_age
        self.ratio_threshold = ratio_threshold
        self.viewer_limit = viewer_limit
        self.min_account_age_days = min_account_age_days
        self.repeat_limit = repeat_limit
        self._history: Deque[RaidEvent] = deque(maxlen=RAID_HISTORY_CAPACITY)
        self._lock = asyncio.Lock()

    # =========================================================================
    # Volume Rule
    # =========================================================================

    def average_viewers(self) -> float:
        """Mean viewers over the last RAID_AVERAGE_WINDOW raids; 0 when empty."""
        window = list(self._history)[-RAID_AVERAGE_WINDOW:]
        if not window:
            return 0.0
        return sum(event.viewers for event in window) / len(window)

    def is_volume_suspicious(self, viewers: int) -> bool:
        if not self._history:
            return False
        return viewers / max(self.average_viewers(), 1.0) > self.ratio_threshold

    # =========================================================================
    # Assessment
    # =========================================================================

    async def assess(self, raider: str, viewers: int, now: float) -> RaidAssessment:
        """
        Score a raid and record it in the history.

        Args:
            raider: Raiding channel's username.
            viewers: Number of incoming viewers.
            now: Current timestamp.

        Returns:
            RaidAssessment with the combined verdict and reasons.
        """
        name = normalize_username(raider)
        viewers = max(0, int(viewers))

        if self.registry.is_trusted_raider(name):
            async with self._lock:
                self._history.append(RaidEvent(raider=name, viewers=viewers, timestamp=now))
            logger.tree("Trusted Raid", [
                ("Raider", name),
                ("Viewers", str(viewers)),
            ], emoji="🤝")
            return RaidAssessment(
                raider=name, viewers=viewers, suspicious=False, safe=True, action="welcome",
            )

        account_age = await self._lookup_account_age(name)

        async with self._lock:
            reasons: List[str] = []
            suspicious = self.is_volume_suspicious(viewers)
            if suspicious:
                reasons.append(REASON_VOLUME)
            if viewers > self.viewer_limit:
                reasons.append(REASON_HIGH_VIEWERS)
            if account_age is not None and account_age < self.min_account_age_days:
                reasons.append(REASON_NEW_ACCOUNT)
            if self._recent_raids_by(name, now) > self.repeat_limit:
                reasons.append(REASON_REPEATED_RAIDS)

            safe = not reasons
            self._history.append(RaidEvent(
                raider=name, viewers=viewers, timestamp=now, suspicious=not safe,
            ))

        assessment = RaidAssessment(
            raider=name,
            viewers=viewers,
            suspicious=suspicious,
            safe=safe,
            action="welcome" if safe else "monitor",
            recommended_action=None if safe else RAID_RECOMMENDED_ACTION,
            reasons=reasons,
        )

        logger.tree("Raid Assessed", [
            ("Raider", name),
            ("Viewers", str(viewers)),
            ("Volume Suspicious", "Yes" if suspicious else "No"),
            ("Safe", "Yes" if safe else "No"),
            ("Reasons", ", ".join(reasons) or "None"),
        ], emoji="⚠️" if not safe else "🎉")
        return assessment

    def _recent_raids_by(self, raider: str, now: float) -> int:
        cutoff = now - RAID_REPEAT_WINDOW
        return sum(1 for e in self._history if e.raider == raider and e.timestamp > cutoff)

    async def _lookup_account_age(self, raider: str) -> Optional[int]:
        """Account age in days, or None when unknown (treated as established)."""
        if self.account_age is None:
            return None
        try:
            age = await with_timeout(
                self.account_age.account_age_days(raider),
                timeout=ACCOUNT_AGE_TIMEOUT,
                name="Account age lookup",
            )
        except Exception as e:
            logger.warning("Account Age Lookup Failed", [
                ("User", raider),
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:100]),
            ])
            return None
        return int(age) if age is not None else None

    # =========================================================================
    # History
    # =========================================================================

    def history(self, limit: Optional[int] = None) -> List[RaidEvent]:
        """Most recent raids, newest last."""
        events = list(self._history)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def suspicious_count(self) -> int:
        return sum(1 for e in self._history if e.suspicious)

    def dump(self) -> List[Dict[str, Any]]:
        return [
            {"raider": e.raider, "viewers": e.viewers, "timestamp": e.timestamp, "suspicious": e.suspicious}
            for e in self._history
        ]

    def restore(self, events: Iterable[Dict[str, Any]]) -> None:
        self._history.clear()
        for event in events:
            self._history.append(RaidEvent(
                raider=normalize_username(event["raider"]),
                viewers=int(event["viewers"]),
                timestamp=float(event["timestamp"]),
                suspicious=bool(event.get("suspicious", False)),
            ))


__all__ = [
    "AccountAgeProvider",
    "RaidRiskAssessor",
    "REASON_HIGH_VIEWERS",
    "REASON_NEW_ACCOUNT",
    "REASON_REPEATED_RAIDS",
    "REASON_VOLUME",
]
