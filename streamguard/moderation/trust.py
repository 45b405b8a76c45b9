"""
StreamGuard - Trust & Exemption Registry
========================================

Username normalization, trusted users, trusted raiders, shadowbans, banned
words, and the exemption check that runs before any message is scored.

Every username passes through normalize_username() before it is compared
or stored, so "@Foo ", "foo" and "FOO" are one identity.
"""

from typing import Iterable, List, Optional, Set

from streamguard.core.errors import InvalidInputError

from .constants import EXEMPT_ROLES, ROLE_EVERYONE, VALID_ROLES
from .models import Result


# =============================================================================
# Normalization
# =============================================================================

def normalize_username(username: str) -> str:
    """
    Strip whitespace and leading '@', lowercase.

    Raises:
        InvalidInputError: If username is not a string or is empty after
            normalization.
    """
    if not isinstance(username, str):
        raise InvalidInputError(f"username must be a string, got {type(username).__name__}")
    normalized = username.strip().lstrip("@").strip().lower()
    if not normalized:
        raise InvalidInputError("username cannot be empty")
    return normalized


def normalize_role(role: Optional[str]) -> str:
    """
    Lowercase a chat role, defaulting to "everyone".

    Raises:
        InvalidInputError: If the role is not one of VALID_ROLES.
    """
    if role is None:
        return ROLE_EVERYONE
    if not isinstance(role, str):
        raise InvalidInputError(f"role must be a string, got {type(role).__name__}")
    normalized = role.strip().lower()
    if normalized not in VALID_ROLES:
        raise InvalidInputError(f"unknown role '{role}'")
    return normalized


def _normalize_phrase(phrase: str) -> str:
    if not isinstance(phrase, str) or not phrase.strip():
        raise InvalidInputError("banned word cannot be empty")
    return phrase.strip().lower()


# =============================================================================
# Registry
# =============================================================================

class TrustRegistry:
    """
    Sets of usernames and phrases that change how messages are scored.

    Attributes:
        command_prefix: Messages starting with this are never moderated.
    """

    def __init__(self, command_prefix: str = "!") -> None:
        self.command_prefix = command_prefix
        self._trusted: Set[str] = set()
        self._trusted_raiders: Set[str] = set()
        self._shadowbanned: Set[str] = set()
        self._banned_words: List[str] = []

    # =========================================================================
    # Trusted Users
    # =========================================================================

    def trust(self, username: str) -> Result:
        name = normalize_username(username)
        if name in self._trusted:
            return Result(False, f"{name} is already trusted")
        self._trusted.add(name)
        return Result(True, f"{name} is now trusted")

    def untrust(self, username: str) -> Result:
        name = normalize_username(username)
        if name not in self._trusted:
            return Result(False, f"{name} is not trusted")
        self._trusted.discard(name)
        return Result(True, f"{name} is no longer trusted")

    def is_trusted(self, username: str) -> bool:
        return normalize_username(username) in self._trusted

    @property
    def trusted_users(self) -> List[str]:
        return sorted(self._trusted)

    # =========================================================================
    # Trusted Raiders
    # =========================================================================

    def trust_raider(self, username: str) -> Result:
        name = normalize_username(username)
        if name in self._trusted_raiders:
            return Result(False, f"{name} is already a trusted raider")
        self._trusted_raiders.add(name)
        return Result(True, f"{name} added to trusted raiders")

    def untrust_raider(self, username: str) -> Result:
        name = normalize_username(username)
        if name not in self._trusted_raiders:
            return Result(False, f"{name} is not a trusted raider")
        self._trusted_raiders.discard(name)
        return Result(True, f"{name} removed from trusted raiders")

    def is_trusted_raider(self, username: str) -> bool:
        return normalize_username(username) in self._trusted_raiders

    @property
    def trusted_raiders(self) -> List[str]:
        return sorted(self._trusted_raiders)

    # =========================================================================
    # Shadowbans
    # =========================================================================

    def shadowban(self, username: str) -> Result:
        name = normalize_username(username)
        if name in self._shadowbanned:
            return Result(False, f"{name} is already shadowbanned")
        self._shadowbanned.add(name)
        return Result(True, f"{name} has been shadowbanned")

    def unshadowban(self, username: str) -> Result:
        name = normalize_username(username)
        if name not in self._shadowbanned:
            return Result(False, f"{name} is not shadowbanned")
        self._shadowbanned.discard(name)
        return Result(True, f"{name} is no longer shadowbanned")

    def is_shadowbanned(self, username: str) -> bool:
        return normalize_username(username) in self._shadowbanned

    @property
    def shadowbanned_users(self) -> List[str]:
        return sorted(self._shadowbanned)

    # =========================================================================
    # Banned Words
    # =========================================================================

    def add_banned_word(self, phrase: str) -> Result:
        word = _normalize_phrase(phrase)
        if word in self._banned_words:
            return Result(False, f"'{word}' is already banned")
        self._banned_words.append(word)
        return Result(True, f"Added '{word}' to banned words")

    def remove_banned_word(self, phrase: str) -> Result:
        word = _normalize_phrase(phrase)
        if word not in self._banned_words:
            return Result(False, f"'{word}' is not in banned words")
        self._banned_words.remove(word)
        return Result(True, f"Removed '{word}' from banned words")

    def contains_banned_word(self, text: str) -> bool:
        lowered = text.lower()
        return any(word in lowered for word in self._banned_words)

    @property
    def banned_words(self) -> List[str]:
        return list(self._banned_words)

    # =========================================================================
    # Exemption
    # =========================================================================

    def is_exempt(self, username: str, role: str, text: str) -> bool:
        """
        Whether a message skips moderation entirely.

        Expects an already-normalized username and role.
        """
        if username in self._trusted:
            return True
        if role in EXEMPT_ROLES:
            return True
        return text.startswith(self.command_prefix)

    # =========================================================================
    # Snapshot
    # =========================================================================

    def restore(
        self,
        trusted_users: Iterable[str] = (),
        trusted_raiders: Iterable[str] = (),
        shadowbanned_users: Iterable[str] = (),
        banned_words: Iterable[str] = (),
    ) -> None:
        self._trusted = {normalize_username(u) for u in trusted_users}
        self._trusted_raiders = {normalize_username(u) for u in trusted_raiders}
        self._shadowbanned = {normalize_username(u) for u in shadowbanned_users}
        self._banned_words = []
        for phrase in banned_words:
            word = _normalize_phrase(phrase)
            if word not in self._banned_words:
                self._banned_words.append(word)


__all__ = [
    "TrustRegistry",
    "normalize_username",
    "normalize_role",
]
