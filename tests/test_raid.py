"""
StreamGuard - Raid Assessment Tests
===================================

Tests for RaidRiskAssessor and ModerationEngine.handle_raid.
"""

import pytest

from conftest import FakeAccountAge

from streamguard.core.errors import InvalidInputError
from streamguard.moderation.constants import RAID_RECOMMENDED_ACTION
from streamguard.moderation.raid import (
    REASON_HIGH_VIEWERS,
    REASON_NEW_ACCOUNT,
    REASON_REPEATED_RAIDS,
    RaidRiskAssessor,
)
from streamguard.moderation.trust import TrustRegistry


NOW = 1_700_000_000.0


def seeded_assessor(viewers=50, count=10, **kwargs):
    """Assessor whose history holds `count` raids of `viewers` from distinct raiders."""
    assessor = RaidRiskAssessor(TrustRegistry(), **kwargs)
    assessor.restore([
        {"raider": f"raider{i}", "viewers": viewers, "timestamp": NOW - 86400 * 2 - i}
        for i in range(count)
    ])
    return assessor


# =============================================================================
# Volume Threshold
# =============================================================================

class TestVolumeThreshold:
    """Tests for the rolling-average volume rule."""

    @pytest.mark.asyncio
    async def test_twelve_times_average_is_suspicious(self):
        """600 viewers against an average of 50 is flagged."""
        assessment = await seeded_assessor().assess("bigraider", 600, NOW)
        assert assessment.suspicious is True
        assert assessment.safe is False
        assert assessment.action == "monitor"
        assert assessment.recommended_action == RAID_RECOMMENDED_ACTION

    @pytest.mark.asyncio
    async def test_eight_times_average_is_not_suspicious(self):
        """400 viewers against an average of 50 is not flagged."""
        assessment = await seeded_assessor().assess("bigraider", 400, NOW)
        assert assessment.suspicious is False
        assert assessment.safe is True
        assert assessment.action == "welcome"
        assert assessment.recommended_action is None
        assert assessment.reasons == []

    @pytest.mark.asyncio
    async def test_empty_history_never_flags_volume(self):
        """The very first raid cannot be N times an empty average."""
        assessor = RaidRiskAssessor(TrustRegistry())
        assessment = await assessor.assess("firstraider", 900, NOW)
        assert assessment.suspicious is False

    @pytest.mark.asyncio
    async def test_average_uses_last_ten_raids(self):
        """Only the most recent ten raids feed the average."""
        assessor = seeded_assessor(viewers=1, count=20)
        assessor.restore([
            {"raider": f"old{i}", "viewers": 1, "timestamp": NOW - 10_000 - i} for i in range(10)
        ] + [
            {"raider": f"new{i}", "viewers": 100, "timestamp": NOW - 5_000 - i} for i in range(10)
        ])
        assert assessor.average_viewers() == 100
        assessment = await assessor.assess("raider", 900, NOW)
        assert assessment.suspicious is False

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        """Raid history keeps the last 100 events."""
        assessor = seeded_assessor(count=100)
        await assessor.assess("latest", 10, NOW)
        history = assessor.history()
        assert len(history) == 100
        assert history[-1].raider == "latest"


# =============================================================================
# Trust-Aware Checks
# =============================================================================

class TestTrustAwareChecks:
    """Tests for viewer limit, account age, repeats and trusted raiders."""

    @pytest.mark.asyncio
    async def test_viewer_limit(self):
        """More than 1000 viewers is always flagged."""
        assessor = seeded_assessor(viewers=500)
        assessment = await assessor.assess("huge", 1500, NOW)
        assert assessment.suspicious is False
        assert assessment.safe is False
        assert assessment.reasons == [REASON_HIGH_VIEWERS]

    @pytest.mark.asyncio
    async def test_new_account(self):
        """A raider account under seven days old is flagged."""
        assessor = seeded_assessor(account_age=FakeAccountAge({"fresh": 2}))
        assessment = await assessor.assess("fresh", 40, NOW)
        assert assessment.reasons == [REASON_NEW_ACCOUNT]

    @pytest.mark.asyncio
    async def test_account_age_error_treated_as_established(self):
        """A failing lookup never flags the raider."""
        assessor = seeded_assessor(account_age=FakeAccountAge(error=RuntimeError("api down")))
        assessment = await assessor.assess("someone", 40, NOW)
        assert assessment.safe is True

    @pytest.mark.asyncio
    async def test_repeated_raids_in_a_day(self):
        """A fourth raid in 24 hours from the same raider is flagged."""
        assessor = RaidRiskAssessor(TrustRegistry())
        for i in range(3):
            assessment = await assessor.assess("frequent", 10, NOW + i)
            assert REASON_REPEATED_RAIDS not in assessment.reasons

        assessment = await assessor.assess("frequent", 10, NOW + 3)
        assert REASON_REPEATED_RAIDS in assessment.reasons

    @pytest.mark.asyncio
    async def test_old_raids_do_not_count_as_repeats(self):
        """Raids older than 24 hours are ignored for the repeat rule."""
        assessor = RaidRiskAssessor(TrustRegistry())
        for i in range(3):
            await assessor.assess("frequent", 10, NOW + i)
        assessment = await assessor.assess("frequent", 10, NOW + 86400 + 10)
        assert REASON_REPEATED_RAIDS not in assessment.reasons

    @pytest.mark.asyncio
    async def test_trusted_raider_bypasses_checks(self):
        """Trusted raiders are always safe."""
        registry = TrustRegistry()
        registry.trust_raider("@FriendlyStreamer")
        assessor = RaidRiskAssessor(registry, account_age=FakeAccountAge(default=0))
        assessor.restore([{"raider": "x", "viewers": 1, "timestamp": NOW}])

        assessment = await assessor.assess("friendlystreamer", 5000, NOW)
        assert assessment.safe is True
        assert assessment.suspicious is False
        assert assessment.reasons == []


# =============================================================================
# Engine Integration
# =============================================================================

class TestHandleRaid:
    """Tests for raids through the engine."""

    @pytest.mark.asyncio
    async def test_raid_recorded_in_history(self, engine):
        await engine.handle_raid("Raider", 25)
        history = engine.get_raid_history()
        assert len(history) == 1
        assert history[0].raider == "raider"
        assert history[0].viewers == 25

    @pytest.mark.asyncio
    async def test_suspicious_raids_counted_in_stats(self, engine):
        for i in range(10):
            await engine.handle_raid(f"r{i}", 50)
        await engine.handle_raid("big", 600)
        assert engine.get_moderation_stats().suspicious_raids == 1

    @pytest.mark.asyncio
    async def test_raid_history_limit(self, engine):
        for i in range(15):
            await engine.handle_raid(f"r{i}", 5)
        history = engine.get_raid_history(limit=3)
        assert [e.raider for e in history] == ["r12", "r13", "r14"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("viewers", [-1, 1.5, "10", True])
    async def test_invalid_viewer_count(self, engine, viewers):
        with pytest.raises(InvalidInputError):
            await engine.handle_raid("raider", viewers)

    @pytest.mark.asyncio
    async def test_trust_raider_through_engine(self, engine):
        result = await engine.trust_raider("ally")
        assert result.success
        assessment = await engine.handle_raid("ally", 5000)
        assert assessment.safe is True
        assert (await engine.trust_raider("ALLY")).success is False
