"""
StreamGuard - Detection Tests
=============================

Tests for the spam pattern table, trust registry and violation detector.
"""

import pytest

from streamguard.core.errors import InvalidInputError
from streamguard.moderation.constants import (
    VIOLATION_BANNED_WORD,
    VIOLATION_SHADOWBANNED,
    VIOLATION_SIMILAR,
    VIOLATION_TOXIC,
)
from streamguard.moderation.detectors import ViolationDetector, max_similarity, word_overlap_ratio
from streamguard.moderation.patterns import PatternTable
from streamguard.moderation.trust import TrustRegistry, normalize_role, normalize_username
from streamguard.services.classifier import ClassifierResult


NOW = 1_700_000_000.0
HOUR = 3600


# =============================================================================
# Pattern Table
# =============================================================================

class TestPatternTable:
    """Tests for spam pattern matching and severity bounds."""

    def test_closed_set_of_patterns(self):
        table = PatternTable()
        assert {p.id for p in table} == {"repetition", "urls", "capitals", "emoteSpam"}

    @pytest.mark.parametrize("text,expected", [
        ("aaaaaaaaaaaa", ["repetition"]),
        ("visit http://example.com now", ["urls"]),
        ("WHYISNOBODYTALKING", ["capitals"]),
        ("pog pog pog pog pog", ["emoteSpam"]),
        ("just a normal message", []),
    ])
    def test_match(self, text, expected):
        assert PatternTable().match(text, NOW) == expected

    def test_hit_updates_count_and_last_seen(self):
        table = PatternTable()
        table.match("http://a.example", NOW)
        urls = table.get("urls")
        assert urls.count == 1
        assert urls.last_seen == NOW
        assert urls.severity == pytest.approx(0.8)

    def test_severity_never_exceeds_one(self):
        table = PatternTable()
        for _ in range(50):
            table.match("http://a.example", NOW)
        assert table.get("urls").severity == 1.0
        assert table.get("urls").count == 50

    def test_decay_requires_an_hour_unseen(self):
        table = PatternTable()
        table.match("http://a.example", NOW)
        assert table.decay(NOW + HOUR - 1) == 0
        assert table.get("urls").severity == pytest.approx(0.8)
        assert table.decay(NOW + HOUR) == 1
        assert table.get("urls").severity == pytest.approx(0.6)

    def test_decay_never_below_floor(self):
        table = PatternTable()
        for _ in range(10):
            table.match("http://a.example", NOW)
        for i in range(1, 10):
            table.decay(NOW + HOUR * i)
            assert table.get("urls").severity >= 0.5
        assert table.get("urls").severity == pytest.approx(0.5)

    def test_unseen_pattern_never_decays(self):
        table = PatternTable()
        assert table.decay(NOW + HOUR * 100) == 0
        assert table.get("urls").severity == pytest.approx(0.7)

    def test_restore_clamps_and_ignores_unknown(self):
        table = PatternTable()
        table.restore({
            "urls": {"count": 4, "severity": 3.0, "last_seen": NOW},
            "made_up": {"count": 1, "severity": 0.9},
        })
        assert table.get("urls").severity == 1.0
        assert table.get("urls").count == 4
        assert table.get("made_up") is None
        assert len(table) == 4


# =============================================================================
# Trust Registry
# =============================================================================

class TestNormalization:
    """Tests for username and role normalization."""

    @pytest.mark.parametrize("raw", ["@Foo ", "foo", "FOO", "  @foo"])
    def test_same_identity(self, raw):
        assert normalize_username(raw) == "foo"

    @pytest.mark.parametrize("raw", ["", "  ", "@", None, 42])
    def test_invalid_username(self, raw):
        with pytest.raises(InvalidInputError):
            normalize_username(raw)

    def test_role_defaults_to_everyone(self):
        assert normalize_role(None) == "everyone"
        assert normalize_role(" VIP ") == "vip"

    def test_unknown_role(self):
        with pytest.raises(InvalidInputError):
            normalize_role("owner")


class TestTrustRegistry:
    """Tests for trust, shadowban and banned-word sets."""

    def test_trust_is_idempotent(self):
        registry = TrustRegistry()
        assert registry.trust("@Foo").success is True
        second = registry.trust("foo")
        assert second.success is False
        assert registry.trusted_users == ["foo"]

    def test_untrust(self):
        registry = TrustRegistry()
        registry.trust("foo")
        assert registry.untrust("FOO").success is True
        assert registry.untrust("foo").success is False
        assert registry.is_trusted("foo") is False

    def test_banned_words_deduplicated(self):
        registry = TrustRegistry()
        assert registry.add_banned_word("Spam Bot").success is True
        assert registry.add_banned_word("spam bot ").success is False
        assert registry.banned_words == ["spam bot"]
        assert registry.contains_banned_word("I am a SPAM BOT")
        assert registry.remove_banned_word("SPAM BOT").success is True
        assert not registry.contains_banned_word("I am a SPAM BOT")

    def test_empty_banned_word_rejected(self):
        with pytest.raises(InvalidInputError):
            TrustRegistry().add_banned_word("   ")

    def test_exemptions(self):
        registry = TrustRegistry(command_prefix="!")
        registry.trust("friend")
        assert registry.is_exempt("friend", "everyone", "anything")
        assert registry.is_exempt("stranger", "mod", "anything")
        assert registry.is_exempt("stranger", "broadcaster", "anything")
        assert registry.is_exempt("stranger", "everyone", "!uptime")
        assert not registry.is_exempt("stranger", "everyone", "hello !uptime")


# =============================================================================
# Violation Detector
# =============================================================================

class TestSimilarity:
    """Tests for the word-overlap ratio."""

    def test_identical(self):
        assert word_overlap_ratio("hello there friend", "Hello There Friend") == 1.0

    def test_partial(self):
        assert word_overlap_ratio("a b c d", "a b x y z") == pytest.approx(2 / 5)

    def test_empty(self):
        assert word_overlap_ratio("", "") == 0.0
        assert max_similarity("hello", []) == 0.0

    def test_max_over_previous(self):
        assert max_similarity("a b c", ["x y z", "a b c"]) == 1.0


@pytest.fixture
def detector():
    registry = TrustRegistry()
    return ViolationDetector(PatternTable(), registry)


class TestViolationDetector:
    """Tests for rule evaluation and ordering."""

    def test_clean_message(self, detector):
        assert detector.detect("good game everyone", "viewer", None, [], NOW) == []

    def test_similarity_only_against_last_five(self, detector):
        previous = ["same old message here"] + [f"filler {i}" for i in range(5)]
        assert detector.detect("same old message here", "viewer", None, previous, NOW) == []
        assert detector.detect("same old message here", "viewer", None, previous[:5], NOW) == [
            VIOLATION_SIMILAR,
        ]

    def test_all_rules_reported_in_order(self, detector):
        detector.registry.shadowban("viewer")
        detector.registry.add_banned_word("scam")
        text = "scam https://x.example"
        violations = detector.detect(
            text, "viewer", ClassifierResult(toxicity=0.99), [text], NOW,
        )
        assert violations == [
            VIOLATION_SIMILAR,
            VIOLATION_SHADOWBANNED,
            VIOLATION_BANNED_WORD,
            VIOLATION_TOXIC,
            "detected urls spam",
        ]

    def test_no_classification_skips_toxicity(self, detector):
        assert detector.detect("you are awful", "viewer", None, [], NOW) == []

    def test_thresholds_are_configurable(self):
        detector = ViolationDetector(
            PatternTable(), TrustRegistry(), similarity_threshold=0.3, toxicity_threshold=0.5,
        )
        assert detector.detect("a b c d", "v", None, ["a b x y"], NOW) == [VIOLATION_SIMILAR]
        assert detector.detect("hmm", "v", ClassifierResult(toxicity=0.6), [], NOW) == [
            VIOLATION_TOXIC,
        ]
