"""
StreamGuard - Utils Package
===========================

Stateless helpers used across the engine: background tasks, timeouts,
caching and the circuit breaker.
"""

from .async_utils import create_safe_task, with_timeout
from .cache import TTLCache
from .circuit_breaker import CircuitBreaker, CircuitOpenError


__all__ = [
    "create_safe_task",
    "with_timeout",
    "TTLCache",
    "CircuitBreaker",
    "CircuitOpenError",
]
