"""
StreamGuard - Moderation Data Models
====================================

Dataclasses for per-user moderation records, escalation state, raid events,
follow protection and the values returned to the dispatch layer.

All timestamps are float epoch seconds.
"""

from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, List, Optional

from streamguard.services.classifier import ClassifierResult

from .constants import DEFAULT_FOLLOW_MODE_DURATION, RECENT_MESSAGE_CAPACITY


# =============================================================================
# Per-User Records
# =============================================================================

@dataclass
class MessageRecord:
    """One observed chat message."""
    text: str
    timestamp: float
    classification: Optional[ClassifierResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "timestamp": self.timestamp,
            "classification": (
                self.classification.model_dump(exclude_none=True)
                if self.classification else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageRecord":
        raw = data.get("classification")
        return cls(
            text=str(data["text"]),
            timestamp=float(data["timestamp"]),
            classification=ClassifierResult.model_validate(raw) if raw else None,
        )


@dataclass
class WarningRecord:
    """A manual or automatic warning."""
    timestamp: float
    reason: str


@dataclass
class EscalationHistoryEntry:
    """One escalation step."""
    timestamp: float
    violations: List[str]
    action: str
    duration: int


@dataclass
class EscalationState:
    """
    Graduated penalty state.

    level 0 is clean. expires_at is only set right after a step whose
    punishment has a finite duration; level 0 never carries an expiry.
    """
    level: int = 0
    expires_at: Optional[float] = None
    history: List[EscalationHistoryEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscalationState":
        expires_at = data.get("expires_at")
        return cls(
            level=int(data.get("level", 0)),
            expires_at=float(expires_at) if expires_at is not None else None,
            history=[EscalationHistoryEntry(**h) for h in data.get("history", [])],
        )


@dataclass
class ChatStats:
    """Activity counters and the bounded recent-message window."""
    message_count: int = 0
    first_seen: Optional[float] = None
    last_active: Optional[float] = None
    recent_messages: Deque[MessageRecord] = field(
        default_factory=lambda: deque(maxlen=RECENT_MESSAGE_CAPACITY)
    )

    def record(self, message: MessageRecord) -> None:
        self.message_count += 1
        if self.first_seen is None:
            self.first_seen = message.timestamp
        self.last_active = message.timestamp
        self.recent_messages.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messages": self.message_count,
            "first_seen": self.first_seen,
            "last_active": self.last_active,
            "recent_messages": [m.to_dict() for m in self.recent_messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatStats":
        stats = cls(
            message_count=int(data.get("messages", 0)),
            first_seen=data.get("first_seen"),
            last_active=data.get("last_active"),
        )
        stats.recent_messages.extend(
            MessageRecord.from_dict(m) for m in data.get("recent_messages", [])
        )
        return stats

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChatStats):
            return NotImplemented
        return (
            self.message_count == other.message_count
            and self.first_seen == other.first_seen
            and self.last_active == other.last_active
            and list(self.recent_messages) == list(other.recent_messages)
        )


@dataclass
class UserModerationRecord:
    """Everything the engine knows about one username."""
    username: str
    stats: ChatStats = field(default_factory=ChatStats)
    warnings: List[WarningRecord] = field(default_factory=list)
    escalation: EscalationState = field(default_factory=EscalationState)


# =============================================================================
# Raids
# =============================================================================

@dataclass
class RaidEvent:
    """A recorded incoming raid."""
    raider: str
    viewers: int
    timestamp: float
    suspicious: bool = False


@dataclass
class RaidAssessment:
    """Advice returned for one raid; the engine never acts on it itself."""
    raider: str
    viewers: int
    suspicious: bool
    safe: bool
    action: str
    recommended_action: Optional[str] = None
    reasons: List[str] = field(default_factory=list)


# =============================================================================
# Follow Protection
# =============================================================================

@dataclass
class SuspiciousFollower:
    """A follower flagged by follow protection."""
    username: str
    reason: str
    timestamp: float


@dataclass
class FollowSettings:
    """Follow protection thresholds."""
    enabled: bool = True
    min_account_age: int = 7  # days
    follow_rate_limit: int = 10  # follows per hour


@dataclass
class FollowMode:
    """Requested follower-only chat mode."""
    enabled: bool = False
    type: str = "followers"
    duration: int = DEFAULT_FOLLOW_MODE_DURATION


@dataclass
class FollowAssessment:
    """Result of checking one new follower."""
    username: str
    suspicious: bool
    reason: Optional[str] = None


# =============================================================================
# Results Returned to the Dispatch Layer
# =============================================================================

@dataclass(frozen=True)
class Punishment:
    """An escalation-table entry."""
    action: str
    duration: int


@dataclass(frozen=True)
class Verdict:
    """What to do about one message. Execution is the caller's job."""
    username: str
    action: str
    duration: int
    reason: str
    level: int


@dataclass(frozen=True)
class Result:
    """Outcome of an operator command."""
    success: bool
    message: str


@dataclass
class PatternStat:
    """Reporting view of one spam pattern."""
    name: str
    count: int
    severity: float
    last_seen: Optional[float]


@dataclass
class ModerationStats:
    """Read-only moderation summary."""
    warnings_total: int
    trusted_count: int
    active_escalations: int
    pattern_stats: List[PatternStat]
    shadowbanned_count: int
    banned_word_count: int
    suspicious_raids: int


@dataclass
class UserHistory:
    """Read-only view of one user's record."""
    username: str
    message_count: int
    warnings: List[WarningRecord]
    first_seen: Optional[float]
    last_active: Optional[float]
    trusted: bool
    escalation_level: int


@dataclass
class ActiveEscalation:
    """A user currently above level 0."""
    username: str
    level: int
    expires_at: Optional[float]


@dataclass
class ChatAnalysis:
    """Aggregate chat activity."""
    active_users: int
    total_messages: int
    moderation_actions: int


__all__ = [
    "MessageRecord",
    "WarningRecord",
    "EscalationHistoryEntry",
    "EscalationState",
    "ChatStats",
    "UserModerationRecord",
    "RaidEvent",
    "RaidAssessment",
    "SuspiciousFollower",
    "FollowSettings",
    "FollowMode",
    "FollowAssessment",
    "Punishment",
    "Verdict",
    "Result",
    "PatternStat",
    "ModerationStats",
    "UserHistory",
    "ActiveEscalation",
    "ChatAnalysis",
]
