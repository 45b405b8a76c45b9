"""
StreamGuard - Moderation Package
================================

The moderation core: spam patterns, trust registry, violation detection,
graduated escalation, raid assessment, follow protection and persistence,
tied together by ModerationEngine.

Structure:
    constants.py   - Escalation table, spam signatures, labels
    models.py      - Dataclasses for records and results
    patterns.py    - Spam pattern table with learned severity
    trust.py       - Username normalization and exemption registry
    detectors.py   - Violation detection for one message
    escalation.py  - Escalation state machine and per-user store
    raid.py        - Raid risk assessment
    follows.py     - Follow protection
    persistence.py - Snapshot document and gateways
    engine.py      - ModerationEngine orchestrator
"""

from .engine import ModerationEngine
from .escalation import apply_decay, escalate, get_punishment
from .models import (
    ActiveEscalation,
    ChatAnalysis,
    FollowAssessment,
    ModerationStats,
    Punishment,
    RaidAssessment,
    RaidEvent,
    Result,
    UserHistory,
    Verdict,
)
from .persistence import (
    InMemoryPersistence,
    JsonFilePersistence,
    ModerationSnapshot,
    PersistenceGateway,
)
from .raid import AccountAgeProvider
from .trust import normalize_username


__all__ = [
    "ModerationEngine",
    "get_punishment",
    "apply_decay",
    "escalate",
    "normalize_username",
    "AccountAgeProvider",
    "PersistenceGateway",
    "ModerationSnapshot",
    "JsonFilePersistence",
    "InMemoryPersistence",
    "Verdict",
    "Punishment",
    "RaidAssessment",
    "RaidEvent",
    "FollowAssessment",
    "Result",
    "ModerationStats",
    "UserHistory",
    "ActiveEscalation",
    "ChatAnalysis",
]
