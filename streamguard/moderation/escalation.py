"""
StreamGuard - Escalation State & Punishment Policy
==================================================

Per-user graduated penalty state machine (levels 0-5) and the store that
holds every user's moderation record.

DESIGN:
    apply_decay() is the only rule that lowers a level on its own. The
    per-message path and the periodic sweep both call it, so for the same
    state and clock they always produce the same level.

    Each username gets its own asyncio.Lock. A transition (decay, detect,
    escalate) runs entirely under that lock, so two messages from one user
    cannot both read the same level and double-increment it, while
    different users never wait on each other.
"""

import asyncio
from typing import Any, Dict, Iterator, List, Optional, Tuple

from streamguard.core.logger import logger

from .constants import ESCALATION_CONFIG, MAX_ESCALATION_LEVEL
from .models import (
    ChatStats,
    EscalationHistoryEntry,
    EscalationState,
    Punishment,
    UserModerationRecord,
    WarningRecord,
)


# =============================================================================
# Punishment Policy
# =============================================================================

def get_punishment(level: int) -> Optional[Punishment]:
    """
    Map an escalation level to its punishment.

    Returns:
        Punishment for levels 1-5, None for level 0 or any unknown level.
    """
    entry = ESCALATION_CONFIG.get(level)
    if entry is None:
        if level != 0:
            logger.warning("Unknown Escalation Level", [
                ("Level", repr(level)),
                ("Treated As", "0"),
            ])
        return None
    duration, action = entry
    return Punishment(action=action, duration=duration)


# =============================================================================
# State Transitions
# =============================================================================

def _known_level(level: Any) -> int:
    if isinstance(level, int) and 0 <= level <= MAX_ESCALATION_LEVEL:
        return level
    logger.warning("Unknown Escalation Level", [
        ("Level", repr(level)),
        ("Treated As", "0"),
    ])
    return 0


def apply_decay(state: EscalationState, now: float) -> bool:
    """
    Drop one level if the current punishment has expired.

    Returns:
        True if the state changed.
    """
    if state.expires_at is None or now <= state.expires_at:
        return False
    state.level = max(0, state.level - 1)
    state.expires_at = None
    return True


def escalate(state: EscalationState, violations: List[str], now: float) -> Optional[Punishment]:
    """
    Advance one level for a violating message and record it.

    Returns:
        The punishment for the new level.
    """
    state.level = min(MAX_ESCALATION_LEVEL, _known_level(state.level) + 1)
    punishment = get_punishment(state.level)
    if punishment is None:
        return None

    state.expires_at = now + punishment.duration if punishment.duration > 0 else None
    state.history.append(EscalationHistoryEntry(
        timestamp=now,
        violations=list(violations),
        action=punishment.action,
        duration=punishment.duration,
    ))
    return punishment


def reset(state: EscalationState) -> bool:
    """Clear the level and expiry. History is kept. Returns True if anything changed."""
    changed = state.level != 0 or state.expires_at is not None
    state.level = 0
    state.expires_at = None
    return changed


# =============================================================================
# State Store
# =============================================================================

class EscalationStateStore:
    """
    All UserModerationRecord entries, created lazily, plus their locks.

    Keys are normalized usernames; callers normalize before every call.
    """

    def __init__(self) -> None:
        self._records: Dict[str, UserModerationRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[UserModerationRecord]:
        return iter(list(self._records.values()))

    def __contains__(self, username: str) -> bool:
        return username in self._records

    def get(self, username: str) -> Optional[UserModerationRecord]:
        return self._records.get(username)

    def get_or_create(self, username: str) -> UserModerationRecord:
        record = self._records.get(username)
        if record is None:
            record = UserModerationRecord(username=username)
            self._records[username] = record
        return record

    def lock(self, username: str) -> asyncio.Lock:
        lock = self._locks.get(username)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[username] = lock
        return lock

    def active(self) -> List[Tuple[str, EscalationState]]:
        """Users with level > 0, highest level first."""
        active = [(r.username, r.escalation) for r in self._records.values() if r.escalation.level > 0]
        active.sort(key=lambda item: (-item[1].level, item[0]))
        return active

    async def sweep(self, now: float) -> int:
        """
        Eagerly decay every expired escalation.

        Each record is decayed under its own lock. Returns how many decayed.
        """
        decayed = 0
        for username in list(self._records):
            record = self._records[username]
            if record.escalation.expires_at is None:
                continue
            async with self.lock(username):
                if apply_decay(record.escalation, now):
                    decayed += 1
        return decayed

    # =========================================================================
    # Snapshot
    # =========================================================================

    def dump(self) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
        """Return (warnings, chat_stats, escalation_levels) snapshot maps."""
        warnings: Dict[str, Any] = {}
        chat_stats: Dict[str, Any] = {}
        escalation_levels: Dict[str, Any] = {}
        for username, record in self._records.items():
            if record.warnings:
                warnings[username] = [
                    {"timestamp": w.timestamp, "reason": w.reason} for w in record.warnings
                ]
            if record.stats.message_count or record.stats.recent_messages:
                chat_stats[username] = record.stats.to_dict()
            if record.escalation.level or record.escalation.history:
                escalation_levels[username] = record.escalation.to_dict()
        return warnings, chat_stats, escalation_levels

    def restore(
        self,
        warnings: Dict[str, Any],
        chat_stats: Dict[str, Any],
        escalation_levels: Dict[str, Any],
    ) -> None:
        self._records.clear()
        for username, entries in warnings.items():
            self.get_or_create(username).warnings = [WarningRecord(**w) for w in entries]
        for username, stats in chat_stats.items():
            self.get_or_create(username).stats = ChatStats.from_dict(stats)
        for username, state in escalation_levels.items():
            self.get_or_create(username).escalation = EscalationState.from_dict(state)


__all__ = [
    "get_punishment",
    "apply_decay",
    "escalate",
    "reset",
    "EscalationStateStore",
]
