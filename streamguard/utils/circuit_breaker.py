"""
StreamGuard - Circuit Breaker
=============================

Stops calling a failing external service for a cool-down period.

States:
    CLOSED     calls pass through, failures are counted
    OPEN       calls are rejected until reset_timeout has elapsed
    HALF_OPEN  one trial call; success closes the breaker, failure reopens it
"""

import time
from typing import Any, Awaitable, Callable, TypeVar

from streamguard.core.logger import logger

T = TypeVar("T")

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    """Raised instead of calling the service while the breaker is open."""

    pass


class CircuitBreaker:
    """
    Async circuit breaker.

    Attributes:
        name: Service name used in log lines.
        failure_threshold: Consecutive failures that open the breaker.
        reset_timeout: Seconds to stay open before allowing a trial call.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.failures = 0
        self.state = CLOSED
        self._opened_at = 0.0

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Call func through the breaker.

        Raises:
            CircuitOpenError: While open and the reset timeout has not passed.
            Exception: Whatever func raised (after being counted).
        """
        if self.state == OPEN:
            if self._clock() - self._opened_at >= self.reset_timeout:
                self.state = HALF_OPEN
            else:
                raise CircuitOpenError(f"Circuit breaker for {self.name} is OPEN")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise

        if self.state == HALF_OPEN:
            logger.info(f"Circuit breaker for {self.name} closed")
        self.state = CLOSED
        self.failures = 0
        return result

    def _record_failure(self) -> None:
        self.failures += 1
        if self.state == HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != OPEN:
                logger.warning(f"Circuit breaker for {self.name} is now OPEN", [
                    ("Failures", str(self.failures)),
                    ("Reset After", f"{self.reset_timeout:g}s"),
                ])
            self.state = OPEN
            self._opened_at = self._clock()


__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CLOSED",
    "OPEN",
    "HALF_OPEN",
]
