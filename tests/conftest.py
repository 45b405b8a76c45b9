"""
StreamGuard - Test Fixtures
===========================

Shared fixtures for all tests.
"""

import asyncio
import os
import tempfile
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

# Keep test logs out of the working directory
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="streamguard-logs-"))

from streamguard.core.config import Config
from streamguard.core.errors import ClassifierError, PersistenceError
from streamguard.moderation import InMemoryPersistence, ModerationEngine, ModerationSnapshot
from streamguard.services.classifier import ClassifierResult


# =============================================================================
# Fakes
# =============================================================================

class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClassifier:
    """Returns a fixed result, optionally after a delay."""

    def __init__(self, result: Optional[ClassifierResult] = None, delay: float = 0.0):
        self.result = result or ClassifierResult(toxicity=0.0)
        self.delay = delay
        self.calls: List[Tuple[str, str]] = []

    async def classify(self, message: str, username: str) -> ClassifierResult:
        self.calls.append((message, username))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


class FailingClassifier:
    """Always raises."""

    def __init__(self, error: Exception = None):
        self.error = error or ClassifierError("service unavailable")
        self.calls = 0

    async def classify(self, message: str, username: str) -> ClassifierResult:
        self.calls += 1
        raise self.error


class FakeAccountAge:
    """Account ages by username; unknown users get the default."""

    def __init__(self, ages: Optional[Dict[str, int]] = None, default: int = 365, error: Exception = None):
        self.ages = ages or {}
        self.default = default
        self.error = error

    async def account_age_days(self, username: str) -> int:
        if self.error is not None:
            raise self.error
        return self.ages.get(username, self.default)


class BrokenPersistence:
    """Every save fails; load returns an empty snapshot."""

    def __init__(self):
        self.attempts = 0

    async def save(self, snapshot: ModerationSnapshot) -> None:
        self.attempts += 1
        raise PersistenceError("disk full")

    async def load(self) -> ModerationSnapshot:
        return ModerationSnapshot()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    """A fake clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def config():
    """Default configuration, independent of the environment."""
    return Config()


@pytest.fixture
def memory_store():
    """In-memory persistence gateway."""
    return InMemoryPersistence()


@pytest_asyncio.fixture
async def engine(clock, config, memory_store):
    """Engine with no classifier, in-memory persistence and a fake clock."""
    engine = ModerationEngine(persistence=memory_store, clock=clock, config=config)
    yield engine
    await engine.stop()


@pytest.fixture
def make_engine(clock, config, memory_store):
    """Factory for engines with custom collaborators."""
    def _make(**kwargs) -> ModerationEngine:
        kwargs.setdefault("persistence", memory_store)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("config", config)
        return ModerationEngine(**kwargs)
    return _make
