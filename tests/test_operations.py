"""
StreamGuard - Operator Command & Reporting Tests
================================================

Tests for trust/forgive/warn commands, follow protection, reporting and
the maintenance sweep.
"""

import asyncio

import pytest

from streamguard.core.errors import InvalidInputError
from streamguard.moderation.constants import SUSPICIOUS_FOLLOWER_RETENTION
from streamguard.moderation.follows import FollowProtection


SPAM = "check out https://spam.example/deal"
NOW = 1_700_000_000.0


# =============================================================================
# Trust & Forgive
# =============================================================================

class TestTrustCommands:
    """Tests for trust, untrust and forgive."""

    @pytest.mark.asyncio
    async def test_trust_twice(self, engine):
        first = await engine.trust("@NewFriend")
        second = await engine.trust("newfriend")
        assert first.success is True
        assert second.success is False
        assert engine.get_moderation_stats().trusted_count == 1

    @pytest.mark.asyncio
    async def test_trust_resets_escalation(self, engine):
        for _ in range(5):
            await engine.moderate_message(SPAM, "reformed")
        await engine.trust("reformed")
        assert engine.get_user_history("reformed").escalation_level == 0

    @pytest.mark.asyncio
    async def test_untrusted_user_is_moderated_again(self, engine):
        await engine.trust("friend")
        assert await engine.moderate_message(SPAM, "friend") is None
        assert (await engine.untrust("friend")).success is True
        assert await engine.moderate_message(SPAM, "friend") is not None

    @pytest.mark.asyncio
    async def test_forgive_lifts_ban(self, engine):
        for _ in range(5):
            await engine.moderate_message(SPAM, "sorry")
        result = await engine.forgive("Sorry")
        assert result.success is True
        verdict = await engine.moderate_message("https://other.example", "sorry")
        assert verdict.level == 1

    @pytest.mark.asyncio
    async def test_forgive_clean_user(self, engine):
        assert (await engine.forgive("nobody")).success is False
        await engine.moderate_message("hello", "viewer")
        assert (await engine.forgive("viewer")).success is False


# =============================================================================
# Warnings & Reporting
# =============================================================================

class TestReporting:
    """Tests for warn, stats, history and chat analysis."""

    @pytest.mark.asyncio
    async def test_warn_counts(self, engine, clock):
        assert await engine.warn("viewer", "caps") == 1
        assert await engine.warn("@Viewer", "") == 2
        history = engine.get_user_history("viewer")
        assert [w.reason for w in history.warnings] == ["caps", "No reason provided"]
        assert history.warnings[0].timestamp == clock.now

    @pytest.mark.asyncio
    async def test_unknown_user_history(self, engine):
        history = engine.get_user_history("ghost")
        assert history.message_count == 0
        assert history.warnings == []
        assert history.first_seen is None
        assert history.trusted is False
        assert history.escalation_level == 0

    @pytest.mark.asyncio
    async def test_history_tracks_first_seen(self, engine, clock):
        start = clock.now
        await engine.moderate_message("hi", "viewer")
        clock.advance(60)
        await engine.moderate_message("still here", "viewer")
        history = engine.get_user_history("viewer")
        assert history.message_count == 2
        assert history.first_seen == start
        assert "viewer" in engine.store
        assert history.last_active == start + 60

    @pytest.mark.asyncio
    async def test_moderation_stats(self, engine):
        await engine.warn("a")
        await engine.warn("b")
        await engine.trust("friend")
        await engine.shadowban("lurker")
        await engine.add_banned_word("scam")
        await engine.moderate_message(SPAM, "spammer")

        stats = engine.get_moderation_stats()
        assert stats.warnings_total == 2
        assert stats.trusted_count == 1
        assert stats.active_escalations == 1
        assert stats.shadowbanned_count == 1
        assert stats.banned_word_count == 1
        urls = next(p for p in stats.pattern_stats if p.name == "urls")
        assert urls.count == 1

    @pytest.mark.asyncio
    async def test_stats_do_not_mutate(self, engine, memory_store):
        await engine.moderate_message(SPAM, "spammer")
        await engine.flush()
        before = engine.snapshot()
        engine.get_moderation_stats()
        engine.get_user_history("spammer")
        engine.list_active_escalations()
        engine.analyze_chat()
        await engine.flush()
        assert engine.snapshot() == before
        assert memory_store.saves == 1

    @pytest.mark.asyncio
    async def test_analyze_chat(self, engine):
        await engine.moderate_message("hello", "a")
        await engine.moderate_message("hi there", "b")
        await engine.moderate_message(SPAM, "b")
        await engine.warn("c")

        analysis = engine.analyze_chat()
        assert analysis.active_users == 2
        assert analysis.total_messages == 3
        assert analysis.moderation_actions == 1

    @pytest.mark.asyncio
    async def test_shadowban_round_trip(self, engine):
        assert (await engine.shadowban("lurker")).success is True
        assert (await engine.shadowban("LURKER")).success is False
        assert (await engine.unshadowban("lurker")).success is True
        assert await engine.moderate_message("hello", "lurker") is None


# =============================================================================
# Follow Protection
# =============================================================================

class TestFollowProtection:
    """Tests for follower checks."""

    def test_established_follower(self):
        protection = FollowProtection()
        result = protection.check_follower("fan", 400, 1, NOW)
        assert result.suspicious is False
        assert result.reason is None

    def test_young_account(self):
        result = FollowProtection().check_follower("fresh", 2, 1, NOW)
        assert result.suspicious is True
        assert result.reason == "Account age (2d) below minimum (7d)"

    def test_follow_rate(self):
        result = FollowProtection().check_follower("bot", 400, 25, NOW)
        assert result.reason == "Follow rate (25/h) exceeds limit (10/h)"

    def test_previously_suspicious(self):
        protection = FollowProtection()
        protection.check_follower("bot", 400, 25, NOW)
        result = protection.check_follower("BOT", 400, 1, NOW + 10)
        assert result.suspicious is True
        assert result.reason.startswith("Previously marked as suspicious")
        assert protection.suspicious_total == 2

    def test_disabled(self):
        protection = FollowProtection()
        protection.update_settings(enabled=False)
        assert protection.check_follower("fresh", 0, 100, NOW).suspicious is False

    def test_unknown_setting_rejected(self):
        with pytest.raises(InvalidInputError):
            FollowProtection().update_settings(max_follows=3)

    def test_follow_mode(self):
        protection = FollowProtection()
        mode = protection.set_mode(enabled=True, duration=600)
        assert mode.enabled is True
        assert mode.duration == 600
        assert mode.type == "followers"

    def test_prune(self):
        protection = FollowProtection()
        protection.check_follower("old", 1, 1, NOW)
        protection.check_follower("new", 1, 1, NOW + SUSPICIOUS_FOLLOWER_RETENTION)
        assert protection.prune(NOW + SUSPICIOUS_FOLLOWER_RETENTION + 1) == 1
        assert [f.username for f in protection.suspicious_followers()] == ["new"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("age, count", [(None, 0), (-1, 0), (3.5, 0), (True, 0), (10, "5"), (10, -2)])
    async def test_invalid_follower_input(self, engine, age, count):
        with pytest.raises(InvalidInputError):
            await engine.check_follower("someone", age, count)

    @pytest.mark.asyncio
    async def test_settings_persisted(self, engine, memory_store):
        await engine.update_follow_settings(min_account_age=14)
        await engine.set_follow_mode(enabled=True)
        await engine.flush()

        assert memory_store.snapshot.follow_settings.min_account_age == 14
        assert memory_store.snapshot.follow_mode.enabled is True
        result = await engine.check_follower("newish", account_age_days=10)
        assert result.suspicious is True

    @pytest.mark.asyncio
    async def test_engine_uses_config_thresholds(self, make_engine):
        from streamguard.core.config import Config

        engine = make_engine(config=Config(min_account_age_days=30, follow_rate_limit=3))
        result = await engine.check_follower("someone", account_age_days=10, follow_count=4)
        assert "below minimum (30d)" in result.reason
        assert "exceeds limit (3/h)" in result.reason
        assert (await engine.clear_suspicious_followers()) == 1
        await engine.stop()


# =============================================================================
# Maintenance Sweep
# =============================================================================

class TestSweep:
    """Tests for the periodic maintenance task."""

    @pytest.mark.asyncio
    async def test_sweep_decays_patterns(self, engine, clock):
        for i in range(5):
            await engine.moderate_message(f"https://spam.example/{i}", f"user{i}")
        assert engine.patterns.get("urls").severity == 1.0

        for _ in range(5):
            clock.advance(3600)
            await engine.sweep()
        assert engine.patterns.get("urls").severity == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_sweep_prunes_followers(self, engine, clock):
        await engine.check_follower("fresh", account_age_days=1)
        clock.advance(SUSPICIOUS_FOLLOWER_RETENTION + 1)
        await engine.sweep()
        assert engine.get_suspicious_followers() == []

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_engine):
        from streamguard.core.config import Config

        engine = make_engine(config=Config(sweep_interval=0))
        calls = []

        async def counting_sweep():
            calls.append(1)

        engine.sweep = counting_sweep
        await engine.start()
        await engine.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await engine.stop()

        assert calls
        assert engine._sweep_task is None
