"""
StreamGuard - Moderation Persistence
====================================

Whole-state snapshot and the gateways that save/restore it between runs.

DESIGN:
    Persisted data is a best-effort snapshot for restart recovery, not a
    transaction log. The engine's in-memory state is always authoritative;
    a failed save is logged and the next successful save includes the
    missed change.

    - ModerationSnapshot: pydantic document, strictly validated on load
    - PersistenceGateway: protocol the engine depends on
    - JsonFilePersistence: atomic JSON file writes, serialized by a lock
    - InMemoryPersistence: keeps the last snapshot in memory
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from streamguard.core.errors import PersistenceError
from streamguard.core.logger import logger

from .constants import DEFAULT_FOLLOW_MODE_DURATION, MAX_ESCALATION_LEVEL


# =============================================================================
# Snapshot Document
# =============================================================================

class _Entry(BaseModel):
    model_config = ConfigDict(extra="ignore")


class WarningEntry(_Entry):
    timestamp: float
    reason: str


class MessageEntry(_Entry):
    text: str
    timestamp: float
    classification: Optional[Dict[str, Any]] = None


class ChatStatsEntry(_Entry):
    messages: int = Field(default=0, ge=0)
    first_seen: Optional[float] = None
    last_active: Optional[float] = None
    recent_messages: List[MessageEntry] = Field(default_factory=list)


class HistoryEntry(_Entry):
    timestamp: float
    violations: List[str]
    action: str
    duration: int


class EscalationEntry(_Entry):
    level: int = 0
    expires_at: Optional[float] = None
    history: List[HistoryEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _normalize_level(self) -> "EscalationEntry":
        # Unknown levels load as 0; levels 0 and 5 never carry an expiry.
        if not 0 <= self.level <= MAX_ESCALATION_LEVEL:
            logger.warning("Unknown Escalation Level In Snapshot", [
                ("Level", str(self.level)),
                ("Treated As", "0"),
            ])
            self.level = 0
        if self.level in (0, MAX_ESCALATION_LEVEL):
            self.expires_at = None
        return self


class PatternEntry(_Entry):
    count: int = Field(default=0, ge=0)
    severity: float = Field(ge=0.0, le=1.0)
    last_seen: Optional[float] = None


class RaidEntry(_Entry):
    raider: str
    viewers: int = Field(ge=0)
    timestamp: float
    suspicious: bool = False


class SuspiciousFollowerEntry(_Entry):
    username: str
    reason: str
    timestamp: float


class FollowSettingsEntry(_Entry):
    enabled: bool = True
    min_account_age: int = Field(default=7, ge=0)
    follow_rate_limit: int = Field(default=10, ge=0)


class FollowModeEntry(_Entry):
    enabled: bool = False
    type: str = "followers"
    duration: int = Field(default=DEFAULT_FOLLOW_MODE_DURATION, ge=0)


class ModerationSnapshot(_Entry):
    """Everything the engine needs to resume after a restart."""

    warnings: Dict[str, List[WarningEntry]] = Field(default_factory=dict)
    trusted_users: List[str] = Field(default_factory=list)
    trusted_raiders: List[str] = Field(default_factory=list)
    shadowbanned_users: List[str] = Field(default_factory=list)
    raid_history: List[RaidEntry] = Field(default_factory=list)
    chat_stats: Dict[str, ChatStatsEntry] = Field(default_factory=dict)
    spam_patterns: Dict[str, PatternEntry] = Field(default_factory=dict)
    escalation_levels: Dict[str, EscalationEntry] = Field(default_factory=dict)
    banned_words: List[str] = Field(default_factory=list)
    suspicious_followers: List[SuspiciousFollowerEntry] = Field(default_factory=list)
    follow_settings: Optional[FollowSettingsEntry] = None
    follow_mode: Optional[FollowModeEntry] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModerationSnapshot":
        """
        Raises:
            PersistenceError: If data is not a valid snapshot.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise PersistenceError(f"Invalid snapshot: {e.error_count()} error(s)") from e

    @classmethod
    def from_json(cls, text: str) -> "ModerationSnapshot":
        """
        Raises:
            PersistenceError: If text is not a valid snapshot document.
        """
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            raise PersistenceError(f"Corrupt snapshot: {e.error_count()} error(s)") from e


# =============================================================================
# Gateway Protocol
# =============================================================================

@runtime_checkable
class PersistenceGateway(Protocol):
    """Whole-state save/restore."""

    async def save(self, snapshot: ModerationSnapshot) -> None:
        """Persist a snapshot; may raise PersistenceError."""
        ...

    async def load(self) -> ModerationSnapshot:
        """Return the last saved snapshot; may raise PersistenceError."""
        ...


# =============================================================================
# JSON File Gateway
# =============================================================================

class JsonFilePersistence:
    """
    Stores the snapshot as one JSON document.

    Writes go to a temp file in the same directory and are swapped in with
    os.replace(), so a crash mid-write never leaves a truncated file. Saves
    are serialized by a lock; the last one to run wins.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def save(self, snapshot: ModerationSnapshot) -> None:
        text = snapshot.model_dump_json(indent=2)

        def _write() -> None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent,
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

        async with self._lock:
            try:
                await asyncio.to_thread(_write)
            except OSError as e:
                raise PersistenceError(f"Failed to write {self.path}: {e}") from e

    async def load(self) -> ModerationSnapshot:
        def _read() -> Optional[str]:
            if not self.path.exists():
                return None
            return self.path.read_text(encoding="utf-8")

        async with self._lock:
            try:
                text = await asyncio.to_thread(_read)
            except OSError as e:
                raise PersistenceError(f"Failed to read {self.path}: {e}") from e

        if text is None:
            logger.info("No Moderation Snapshot Found", [
                ("Path", str(self.path)),
            ])
            return ModerationSnapshot()
        return ModerationSnapshot.from_json(text)


# =============================================================================
# In-Memory Gateway
# =============================================================================

class InMemoryPersistence:
    """Keeps the most recent snapshot in memory. Useful for tests and dry runs."""

    def __init__(self, snapshot: Optional[ModerationSnapshot] = None) -> None:
        self.snapshot = snapshot
        self.saves = 0
        self._lock = asyncio.Lock()

    async def save(self, snapshot: ModerationSnapshot) -> None:
        async with self._lock:
            self.snapshot = snapshot.model_copy(deep=True)
            self.saves += 1

    async def load(self) -> ModerationSnapshot:
        if self.snapshot is None:
            return ModerationSnapshot()
        return self.snapshot.model_copy(deep=True)


__all__ = [
    "ModerationSnapshot",
    "PersistenceGateway",
    "JsonFilePersistence",
    "InMemoryPersistence",
]
