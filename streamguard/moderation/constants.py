"""
StreamGuard - Moderation Constants
==================================

Escalation table, spam signatures, capacities and labels.

Tunable thresholds (similarity, toxicity, raid ratio, account age) live in
streamguard.core.config; the values here are structural.
"""

import re
from typing import Dict, FrozenSet, Pattern, Tuple


# =============================================================================
# Escalation
# =============================================================================

MAX_ESCALATION_LEVEL = 5

PERMANENT = -1
"""Duration marker for punishments that never expire."""

# level -> (duration seconds, action)
ESCALATION_CONFIG: Dict[int, Tuple[int, str]] = {
    1: (5 * 60, "warning"),
    2: (15 * 60, "timeout"),
    3: (60 * 60, "timeout"),
    4: (24 * 60 * 60, "timeout"),
    5: (PERMANENT, "ban"),
}


# =============================================================================
# Spam Patterns
# =============================================================================

# id -> (compiled matcher, baseline severity)
SPAM_PATTERN_DEFINITIONS: Dict[str, Tuple[Pattern, float]] = {
    "repetition": (re.compile(r"(.)\1{9,}"), 0.5),
    "urls": (re.compile(r"https?://[^\s]+"), 0.7),
    "capitals": (re.compile(r"[A-Z]{10,}"), 0.6),
    "emoteSpam": (re.compile(r"(\b\w+\b)(\s+\1){4,}", re.IGNORECASE), 0.5),
}

SEVERITY_HIT_STEP = 0.1
SEVERITY_MAX = 1.0
SEVERITY_DECAY_STEP = 0.2
SEVERITY_FLOOR = 0.5
SEVERITY_DECAY_AFTER = 3600  # seconds unseen before decay applies


# =============================================================================
# Chat History
# =============================================================================

RECENT_MESSAGE_CAPACITY = 100
SIMILARITY_WINDOW = 5  # previous messages compared for self-similarity


# =============================================================================
# Raids
# =============================================================================

RAID_HISTORY_CAPACITY = 100
RAID_AVERAGE_WINDOW = 10
RAID_REPEAT_WINDOW = 24 * 60 * 60  # seconds
RAID_RECOMMENDED_ACTION = "Enable follower-only mode temporarily"


# =============================================================================
# Follow Protection
# =============================================================================

SUSPICIOUS_FOLLOWER_RETENTION = 30 * 24 * 60 * 60  # seconds
DEFAULT_FOLLOW_MODE_DURATION = 300  # seconds


# =============================================================================
# Roles
# =============================================================================

ROLE_EVERYONE = "everyone"
ROLE_MOD = "mod"
ROLE_VIP = "vip"
ROLE_BROADCASTER = "broadcaster"

VALID_ROLES: FrozenSet[str] = frozenset({ROLE_EVERYONE, ROLE_MOD, ROLE_VIP, ROLE_BROADCASTER})
EXEMPT_ROLES: FrozenSet[str] = frozenset({ROLE_MOD, ROLE_VIP, ROLE_BROADCASTER})


# =============================================================================
# Violation Labels
# =============================================================================

VIOLATION_SIMILAR = "message spam (too similar)"
VIOLATION_SHADOWBANNED = "user is shadowbanned"
VIOLATION_BANNED_WORD = "contains banned word/phrase"
VIOLATION_TOXIC = "excessive toxicity"
VIOLATION_PATTERN = "detected {pattern_id} spam"

DEFAULT_WARNING_REASON = "No reason provided"
