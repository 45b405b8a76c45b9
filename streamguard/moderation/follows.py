"""
StreamGuard - Follow Protection
===============================

Flags suspicious new followers (young accounts, follow-bot rates, repeat
offenders) and holds the requested follower-only chat mode.

Flagged followers are kept for SUSPICIOUS_FOLLOWER_RETENTION and pruned by
the maintenance sweep.
"""

from dataclasses import asdict, fields, replace
from typing import Any, Dict, Iterable, List, Optional

from streamguard.core.errors import InvalidInputError
from streamguard.core.logger import logger

from .constants import SUSPICIOUS_FOLLOWER_RETENTION
from .models import FollowAssessment, FollowMode, FollowSettings, SuspiciousFollower
from .trust import normalize_username


_SETTINGS_FIELDS = {f.name for f in fields(FollowSettings)}
_MODE_FIELDS = {f.name for f in fields(FollowMode)}


def _check_keys(changes: Dict[str, Any], allowed: Iterable[str], what: str) -> None:
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        raise InvalidInputError(f"unknown {what} field(s): {', '.join(unknown)}")


class FollowProtection:
    """
    Follower checks plus follower-only mode state.

    Attributes:
        settings: Current thresholds.
        mode: Requested follower-only mode.
        total_follows: Followers checked since start.
        suspicious_total: Followers flagged since start.
    """

    def __init__(self, settings: Optional[FollowSettings] = None) -> None:
        self.settings = settings or FollowSettings()
        self.mode = FollowMode()
        self._suspicious: List[SuspiciousFollower] = []
        self.total_follows = 0
        self.suspicious_total = 0

    def check_follower(
        self,
        username: str,
        account_age_days: int,
        follow_count: int,
        now: float,
    ) -> FollowAssessment:
        """
        Check one new follower.

        Args:
            username: Follower's username.
            account_age_days: Age of the follower's account.
            follow_count: Follows by this account in the last hour.
            now: Current timestamp.
        """
        name = normalize_username(username)
        if not self.settings.enabled:
            return FollowAssessment(username=name, suspicious=False)

        self.total_follows += 1
        reasons = []

        if account_age_days < self.settings.min_account_age:
            reasons.append(
                f"Account age ({account_age_days}d) below minimum ({self.settings.min_account_age}d)"
            )
        if follow_count > self.settings.follow_rate_limit:
            reasons.append(
                f"Follow rate ({follow_count}/h) exceeds limit ({self.settings.follow_rate_limit}/h)"
            )
        previous = next((f for f in self._suspicious if f.username == name), None)
        if previous is not None:
            reasons.append(f"Previously marked as suspicious: {previous.reason}")

        if not reasons:
            return FollowAssessment(username=name, suspicious=False)

        reason = ", ".join(reasons)
        self.suspicious_total += 1
        self._suspicious.append(SuspiciousFollower(username=name, reason=reason, timestamp=now))

        logger.tree("Suspicious Follower", [
            ("User", name),
            ("Account Age", f"{account_age_days}d"),
            ("Follow Rate", f"{follow_count}/h"),
            ("Reason", reason),
        ], emoji="🕵️")
        return FollowAssessment(username=name, suspicious=True, reason=reason)

    # =========================================================================
    # Suspicious List
    # =========================================================================

    def suspicious_followers(self) -> List[SuspiciousFollower]:
        return list(self._suspicious)

    def clear(self) -> int:
        count = len(self._suspicious)
        self._suspicious = []
        return count

    def prune(self, now: float) -> int:
        """Drop entries older than the retention window. Returns how many were dropped."""
        cutoff = now - SUSPICIOUS_FOLLOWER_RETENTION
        kept = [f for f in self._suspicious if f.timestamp > cutoff]
        dropped = len(self._suspicious) - len(kept)
        self._suspicious = kept
        return dropped

    # =========================================================================
    # Settings & Mode
    # =========================================================================

    def update_settings(self, **changes: Any) -> FollowSettings:
        """
        Raises:
            InvalidInputError: On an unknown setting name.
        """
        _check_keys(changes, _SETTINGS_FIELDS, "follow setting")
        self.settings = replace(self.settings, **changes)
        return self.settings

    def set_mode(self, **changes: Any) -> FollowMode:
        """
        Raises:
            InvalidInputError: On an unknown mode field.
        """
        _check_keys(changes, _MODE_FIELDS, "follow mode")
        self.mode = replace(self.mode, **changes)
        return self.mode

    # =========================================================================
    # Snapshot
    # =========================================================================

    def dump(self) -> Dict[str, Any]:
        return {
            "suspicious_followers": [asdict(f) for f in self._suspicious],
            "follow_settings": asdict(self.settings),
            "follow_mode": asdict(self.mode),
        }

    def restore(
        self,
        suspicious_followers: Iterable[Dict[str, Any]],
        follow_settings: Dict[str, Any],
        follow_mode: Dict[str, Any],
    ) -> None:
        self._suspicious = [SuspiciousFollower(**f) for f in suspicious_followers]
        if follow_settings:
            self.update_settings(**follow_settings)
        if follow_mode:
            self.set_mode(**follow_mode)


__all__ = ["FollowProtection"]
