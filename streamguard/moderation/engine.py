"""
StreamGuard - Moderation Engine
===============================

Orchestrates message moderation, raid assessment, follow protection and
the maintenance sweep over one channel's moderation state.

DESIGN:
    One ModerationEngine instance per channel, built with its collaborators
    injected (classifier, persistence, account-age lookup, clock, config).
    Nothing is module-level state, so several engines can run side by side
    and tests can drive a fake clock.

    Per-message flow:
    1. Validate and normalize input
    2. Exempt (trusted, mod/vip/broadcaster, command) -> stats only, None
    3. Classify with no lock held (fail-open, bounded by a timeout)
    4. Under the user's lock: lazy decay, detect, record, escalate
    5. Schedule a background save, return the Verdict

    Saves are coalesced: at most one is waiting at a time and it takes its
    snapshot when it runs, so it always includes every change made before.
"""

import asyncio
import time
from typing import Any, Callable, List, Optional, Set

from streamguard.core.config import Config, get_config
from streamguard.core.errors import InvalidInputError, PersistenceError
from streamguard.core.logger import logger
from streamguard.services.classifier import Classifier, GuardedClassifier
from streamguard.utils.async_utils import create_safe_task

from .constants import DEFAULT_WARNING_REASON
from .detectors import ViolationDetector
from .escalation import EscalationStateStore, apply_decay, escalate, reset
from .follows import FollowProtection
from .models import (
    ActiveEscalation,
    ChatAnalysis,
    FollowAssessment,
    FollowMode,
    FollowSettings,
    MessageRecord,
    ModerationStats,
    RaidAssessment,
    RaidEvent,
    Result,
    SuspiciousFollower,
    UserHistory,
    Verdict,
    WarningRecord,
)
from .patterns import PatternTable
from .persistence import ModerationSnapshot, PersistenceGateway
from .raid import AccountAgeProvider, RaidRiskAssessor
from .trust import TrustRegistry, normalize_role, normalize_username


# =============================================================================
# Moderation Engine
# =============================================================================

class ModerationEngine:
    """
    Unified moderation engine for one channel.

    Attributes:
        config: Thresholds and intervals in effect.
        registry: Trusted users, raiders, shadowbans and banned words.
        patterns: Spam pattern table.
        store: Per-user moderation records and locks.
        raids: Raid risk assessor and history.
        follows: Follow protection state.
    """

    def __init__(
        self,
        classifier: Optional[Classifier] = None,
        persistence: Optional[PersistenceGateway] = None,
        account_age: Optional[AccountAgeProvider] = None,
        clock: Callable[[], float] = time.time,
        config: Optional[Config] = None,
    ) -> None:
        self.config = config or get_config()
        self.clock = clock
        self.persistence = persistence

        if isinstance(classifier, GuardedClassifier) or classifier is None:
            self.classifier = classifier or GuardedClassifier(None)
        else:
            self.classifier = GuardedClassifier(classifier, timeout=self.config.classifier_timeout)

        self.registry = TrustRegistry(command_prefix=self.config.command_prefix)
        self.patterns = PatternTable()
        self.store = EscalationStateStore()
        self.detector = ViolationDetector(
            self.patterns,
            self.registry,
            similarity_threshold=self.config.similarity_threshold,
            toxicity_threshold=self.config.toxicity_threshold,
        )
        self.raids = RaidRiskAssessor(
            self.registry,
            account_age=account_age,
            ratio_threshold=self.config.raid_ratio_threshold,
            viewer_limit=self.config.raid_viewer_limit,
            min_account_age_days=self.config.min_account_age_days,
            repeat_limit=self.config.raid_repeat_limit,
        )
        self.follows = FollowProtection(FollowSettings(
            min_account_age=self.config.min_account_age_days,
            follow_rate_limit=self.config.follow_rate_limit,
        ))

        self._save_pending = False
        self._save_tasks: Set[asyncio.Task] = set()
        self._sweep_task: Optional[asyncio.Task] = None
        self._running = False

    # =========================================================================
    # Messages
    # =========================================================================

    async def moderate_message(
        self,
        message: str,
        username: str,
        user_role: Optional[str] = "everyone",
    ) -> Optional[Verdict]:
        """
        Moderate one chat message.

        Args:
            message: Message text.
            username: Sender (any case, optional leading '@').
            user_role: One of everyone, mod, vip, broadcaster.

        Returns:
            Verdict when the message escalates the user, otherwise None.

        Raises:
            InvalidInputError: On an empty username, non-string message or
                unknown role.
        """
        if not isinstance(message, str):
            raise InvalidInputError(f"message must be a string, got {type(message).__name__}")
        name = normalize_username(username)
        role = normalize_role(user_role)
        now = self.clock()

        if self.registry.is_exempt(name, role, message):
            self.store.get_or_create(name).stats.record(MessageRecord(text=message, timestamp=now))
            return None

        classification = await self.classifier.classify(message, name)

        async with self.store.lock(name):
            record = self.store.get_or_create(name)
            # Trust may have changed while the classifier was running.
            if self.registry.is_exempt(name, role, message):
                record.stats.record(MessageRecord(text=message, timestamp=now))
                return None
            decayed = apply_decay(record.escalation, now)
            previous = [m.text for m in record.stats.recent_messages]
            violations = self.detector.detect(message, name, classification, previous, now)
            record.stats.record(MessageRecord(text=message, timestamp=now, classification=classification))

            if not violations:
                if decayed:
                    self._schedule_save()
                return None

            punishment = escalate(record.escalation, violations, now)
            if punishment is None:
                return None
            verdict = Verdict(
                username=name,
                action=punishment.action,
                duration=punishment.duration,
                reason=", ".join(violations),
                level=record.escalation.level,
            )

        logger.tree("Moderation Verdict", [
            ("User", name),
            ("Action", verdict.action),
            ("Duration", "permanent" if verdict.duration < 0 else f"{verdict.duration}s"),
            ("Level", str(verdict.level)),
            ("Reason", verdict.reason[:100]),
            ("Classifier", "OK" if classification is not None else "No result"),
        ], emoji="🔨")

        self._schedule_save()
        return verdict

    # =========================================================================
    # Raids & Follows
    # =========================================================================

    async def handle_raid(self, raider: str, viewers: int) -> RaidAssessment:
        """
        Assess an incoming raid.

        Raises:
            InvalidInputError: On an empty raider name or a negative or
                non-integer viewer count.
        """
        if isinstance(viewers, bool) or not isinstance(viewers, int) or viewers < 0:
            raise InvalidInputError(f"viewers must be a non-negative integer, got {viewers!r}")
        assessment = await self.raids.assess(raider, viewers, self.clock())
        self._schedule_save()
        return assessment

    def get_raid_history(self, limit: int = 10) -> List[RaidEvent]:
        return self.raids.history(limit)

    async def check_follower(
        self,
        username: str,
        account_age_days: int,
        follow_count: int = 0,
    ) -> FollowAssessment:
        """
        Check one new follower against follow protection settings.

        Raises:
            InvalidInputError: On an empty username or a negative or
                non-integer account age or follow count.
        """
        for label, value in (("account_age_days", account_age_days), ("follow_count", follow_count)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidInputError(f"{label} must be a non-negative integer, got {value!r}")
        assessment = self.follows.check_follower(username, account_age_days, follow_count, self.clock())
        if assessment.suspicious:
            self._schedule_save()
        return assessment

    async def update_follow_settings(self, **changes: Any) -> FollowSettings:
        settings = self.follows.update_settings(**changes)
        self._schedule_save()
        return settings

    async def set_follow_mode(self, **changes: Any) -> FollowMode:
        mode = self.follows.set_mode(**changes)
        self._schedule_save()
        return mode

    def get_suspicious_followers(self) -> List[SuspiciousFollower]:
        return self.follows.suspicious_followers()

    async def clear_suspicious_followers(self) -> int:
        count = self.follows.clear()
        if count:
            self._schedule_save()
        return count

    # =========================================================================
    # Operator Commands
    # =========================================================================

    async def trust(self, username: str) -> Result:
        """Trust a user. Also clears any escalation they carry."""
        result = self.registry.trust(username)
        if result.success:
            name = normalize_username(username)
            record = self.store.get(name)
            if record is not None:
                async with self.store.lock(name):
                    reset(record.escalation)
            logger.tree("User Trusted", [("User", name)], emoji="✅")
            self._schedule_save()
        return result

    async def untrust(self, username: str) -> Result:
        result = self.registry.untrust(username)
        if result.success:
            self._schedule_save()
        return result

    async def forgive(self, username: str) -> Result:
        """Reset a user's escalation level to 0, including a permanent ban."""
        name = normalize_username(username)
        record = self.store.get(name)
        if record is None:
            return Result(False, f"{name} has no active escalation")

        async with self.store.lock(name):
            previous_level = record.escalation.level
            changed = reset(record.escalation)

        if not changed:
            return Result(False, f"{name} has no active escalation")

        logger.tree("Escalation Forgiven", [
            ("User", name),
            ("Previous Level", str(previous_level)),
        ], emoji="🕊️")
        self._schedule_save()
        return Result(True, f"{name}'s escalation has been reset")

    async def warn(self, username: str, reason: Optional[str] = None) -> int:
        """
        Record a manual warning.

        Returns:
            The user's total warning count.
        """
        name = normalize_username(username)
        reason = (reason or "").strip() or DEFAULT_WARNING_REASON
        record = self.store.get_or_create(name)
        record.warnings.append(WarningRecord(timestamp=self.clock(), reason=reason))

        logger.tree("User Warned", [
            ("User", name),
            ("Reason", reason[:100]),
            ("Total Warnings", str(len(record.warnings))),
        ], emoji="⚠️")
        self._schedule_save()
        return len(record.warnings)

    async def shadowban(self, username: str) -> Result:
        return self._saved(self.registry.shadowban(username))

    async def unshadowban(self, username: str) -> Result:
        return self._saved(self.registry.unshadowban(username))

    async def trust_raider(self, username: str) -> Result:
        return self._saved(self.registry.trust_raider(username))

    async def untrust_raider(self, username: str) -> Result:
        return self._saved(self.registry.untrust_raider(username))

    async def add_banned_word(self, phrase: str) -> Result:
        return self._saved(self.registry.add_banned_word(phrase))

    async def remove_banned_word(self, phrase: str) -> Result:
        return self._saved(self.registry.remove_banned_word(phrase))

    def _saved(self, result: Result) -> Result:
        if result.success:
            self._schedule_save()
        return result

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_moderation_stats(self) -> ModerationStats:
        """Read-only summary of the engine's state."""
        records = list(self.store)
        return ModerationStats(
            warnings_total=sum(len(r.warnings) for r in records),
            trusted_count=len(self.registry.trusted_users),
            active_escalations=sum(1 for r in records if r.escalation.level > 0),
            pattern_stats=self.patterns.stats(),
            shadowbanned_count=len(self.registry.shadowbanned_users),
            banned_word_count=len(self.registry.banned_words),
            suspicious_raids=self.raids.suspicious_count(),
        )

    def get_user_history(self, username: str) -> UserHistory:
        name = normalize_username(username)
        record = self.store.get(name)
        if record is None:
            return UserHistory(
                username=name,
                message_count=0,
                warnings=[],
                first_seen=None,
                last_active=None,
                trusted=self.registry.is_trusted(name),
                escalation_level=0,
            )
        return UserHistory(
            username=name,
            message_count=record.stats.message_count,
            warnings=list(record.warnings),
            first_seen=record.stats.first_seen,
            last_active=record.stats.last_active,
            trusted=self.registry.is_trusted(name),
            escalation_level=record.escalation.level,
        )

    def list_active_escalations(self) -> List[ActiveEscalation]:
        return [
            ActiveEscalation(username=name, level=state.level, expires_at=state.expires_at)
            for name, state in self.store.active()
        ]

    def analyze_chat(self) -> ChatAnalysis:
        records = list(self.store)
        return ChatAnalysis(
            active_users=sum(1 for r in records if r.stats.message_count > 0),
            total_messages=sum(r.stats.message_count for r in records),
            moderation_actions=sum(len(r.escalation.history) for r in records),
        )

    # =========================================================================
    # Maintenance Sweep
    # =========================================================================

    async def sweep(self) -> None:
        """Decay stale patterns and expired escalations, prune old followers."""
        now = self.clock()
        patterns_decayed = self.patterns.decay(now)
        escalations_decayed = await self.store.sweep(now)
        followers_pruned = self.follows.prune(now)
        cache_expired = self.classifier.cleanup()

        logger.tree("Moderation Sweep", [
            ("Patterns Decayed", str(patterns_decayed)),
            ("Escalations Decayed", str(escalations_decayed)),
            ("Followers Pruned", str(followers_pruned)),
            ("Cached Results Expired", str(cache_expired)),
            ("Active Escalations", str(len(self.store.active()))),
        ], emoji="🧹")

        if patterns_decayed or escalations_decayed or followers_pruned:
            self._schedule_save()

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self._running:
            return
        self._running = True
        self._sweep_task = create_safe_task(self._sweep_loop(), "Moderation Sweep")
        logger.tree("Moderation Engine Started", [
            ("Sweep Interval", f"{self.config.sweep_interval}s"),
            ("Classifier", "Enabled" if self.classifier.enabled else "Disabled"),
            ("Persistence", type(self.persistence).__name__ if self.persistence else "None"),
        ], emoji="🛡️")

    async def stop(self) -> None:
        """Cancel the sweep and wait for pending saves."""
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.flush()

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Moderation Sweep Error", [
                    ("Error Type", type(e).__name__),
                    ("Error", str(e)[:200]),
                ])

    # =========================================================================
    # Persistence
    # =========================================================================

    def snapshot(self) -> ModerationSnapshot:
        """Build a snapshot of the current in-memory state."""
        warnings, chat_stats, escalation_levels = self.store.dump()
        follows = self.follows.dump()
        return ModerationSnapshot.from_dict({
            "warnings": warnings,
            "trusted_users": self.registry.trusted_users,
            "trusted_raiders": self.registry.trusted_raiders,
            "shadowbanned_users": self.registry.shadowbanned_users,
            "raid_history": self.raids.dump(),
            "chat_stats": chat_stats,
            "spam_patterns": self.patterns.dump(),
            "escalation_levels": escalation_levels,
            "banned_words": self.registry.banned_words,
            "suspicious_followers": follows["suspicious_followers"],
            "follow_settings": follows["follow_settings"],
            "follow_mode": follows["follow_mode"],
        })

    def restore(self, snapshot: ModerationSnapshot) -> None:
        """Replace in-memory state with a snapshot."""
        data = snapshot.to_dict()
        self.registry.restore(
            trusted_users=data["trusted_users"],
            trusted_raiders=data["trusted_raiders"],
            shadowbanned_users=data["shadowbanned_users"],
            banned_words=data["banned_words"],
        )
        self.patterns.restore(data["spam_patterns"])
        self.store.restore(data["warnings"], data["chat_stats"], data["escalation_levels"])
        self.raids.restore(data["raid_history"])
        self.follows.restore(
            data["suspicious_followers"], data["follow_settings"], data["follow_mode"],
        )

    async def load(self) -> None:
        """
        Restore state from the persistence gateway.

        A failed or corrupt load starts from empty state instead of failing.
        """
        if self.persistence is None:
            return

        try:
            snapshot = await self.persistence.load()
            self.restore(snapshot)
        except (PersistenceError, ValueError, TypeError, KeyError) as e:
            logger.warning("Moderation Snapshot Load Failed", [
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:200]),
                ("Action", "Starting with empty state"),
            ])
            self.restore(ModerationSnapshot())
            return

        logger.tree("Moderation State Loaded", [
            ("Users", str(len(self.store))),
            ("Trusted", str(len(self.registry.trusted_users))),
            ("Active Escalations", str(len(self.store.active()))),
            ("Raids", str(len(self.raids.history()))),
        ], emoji="📂")

    async def flush(self) -> None:
        """Wait for every scheduled save to finish."""
        while self._save_tasks:
            await asyncio.gather(*list(self._save_tasks))

    def _schedule_save(self) -> None:
        if self.persistence is None or self._save_pending:
            return
        self._save_pending = True
        task = create_safe_task(self._save(), "Moderation Save")
        self._save_tasks.add(task)
        task.add_done_callback(self._save_tasks.discard)

    async def _save(self) -> None:
        self._save_pending = False
        try:
            await self.persistence.save(self.snapshot())
        except PersistenceError as e:
            logger.error("Moderation Save Failed", [
                ("Error", str(e)[:200]),
                ("Action", "In-memory state kept"),
            ])


__all__ = ["ModerationEngine"]
