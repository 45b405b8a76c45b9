"""
StreamGuard - Error Types
=========================

Exception hierarchy shared by the moderation engine and its collaborators.
"""


class ModerationError(Exception):
    """Base class for all StreamGuard errors."""

    pass


class InvalidInputError(ModerationError, ValueError):
    """
    Raised when a caller passes malformed input (empty username, bad role).

    Raised synchronously to the caller; never coerced into a verdict.
    """

    pass


class ClassifierError(ModerationError):
    """Raised by classifier adapters when a result cannot be produced."""

    pass


class PersistenceError(ModerationError):
    """Raised by persistence gateways on save/load failure."""

    pass


__all__ = [
    "ModerationError",
    "InvalidInputError",
    "ClassifierError",
    "PersistenceError",
]
