"""
StreamGuard - Source Package
============================

Chat moderation and escalation engine for live streams.

Package Structure:
- core/: Configuration, logging and error types
- moderation/: Pattern table, trust registry, detector, escalation,
  raid assessment, follow protection, persistence and the engine
- services/: External classifier adapters
- utils/: Async helpers, caching and the circuit breaker

Version: v1.0.0
"""

__version__ = "1.0.0"
