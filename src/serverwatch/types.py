"""Type definitions and enums for the serverwatch application.

This module provides centralized enums for server status, gamemode tags,
probe outcomes and store backends, replacing magic strings throughout the
codebase with type-safe constants.

Usage:
    from serverwatch.types import ServerStatus, Gamemode

    # StrEnum members compare equal to their string values
    if record.status == ServerStatus.OFFLINE:
        ...

    Gamemode.is_valid("surf")  # True
"""

from __future__ import annotations

from enum import StrEnum


class _ValuesMixin:
    """Shared helpers for the string enums in this module."""

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if a string value is a member value of this enum.

        Args:
            value: The string value to validate.

        Returns:
            True if the value matches a member.
        """
        return value in cls._value2member_map_  # type: ignore[attr-defined]

    @classmethod
    def values(cls) -> frozenset[str]:
        """Return all member values as a frozenset."""
        return frozenset(member.value for member in cls)  # type: ignore[attr-defined]


class ServerStatus(_ValuesMixin, StrEnum):
    """Persisted status of a server record.

    A server without a record is "unknown"; that state is never stored.

    Values:
        ONLINE: The last probes succeeded, or misses are below the threshold.
        OFFLINE: The server missed ``offline_threshold`` consecutive probes.
    """

    ONLINE = "online"
    OFFLINE = "offline"


class OutcomeKind(_ValuesMixin, StrEnum):
    """Result of probing one address in one cycle."""

    HIT = "hit"
    MISS = "miss"


class Gamemode(_ValuesMixin, StrEnum):
    """Gamemode tags produced by the classifier."""

    SURF = "surf"
    BHOP = "bhop"
    ZOMBIE_ESCAPE = "ze"
    KZ = "kz"
    DEATHMATCH = "dm"
    RETAKE = "retake"
    AWP = "awp"
    AIM = "aim"
    JAILBREAK = "jb"
    GUNGAME = "gungame"
    COMBAT_SURF = "csurf"
    MINIGAME = "mg"
    HIDE_AND_SEEK = "hns"
    PUBLIC = "public"


class StoreBackend(_ValuesMixin, StrEnum):
    """Registry store implementations selectable from configuration."""

    SQLITE = "sqlite"
    MEMORY = "memory"


__all__ = [
    "Gamemode",
    "OutcomeKind",
    "ServerStatus",
    "StoreBackend",
]
