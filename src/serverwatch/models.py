"""Data model for the server registry pipeline.

The types here flow through the pipeline in this order::

    address --(ProbeTask)--> probe client --(ServerMetadata)-->
    worker pool --(ProbeOutcome carrying a ServerSnapshot)-->
    reconciler --(ServerRecord)--> registry store

``ServerRecord`` is the only persisted type; everything else is ephemeral.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from serverwatch.types import OutcomeKind, ServerStatus

_task_ids = itertools.count(1)


def split_address(address: str) -> tuple[str, int]:
    """Split an ``ip:port`` address into host and port.

    Args:
        address: Address string such as ``"203.0.113.7:27015"``.

    Returns:
        Tuple of (host, port).

    Raises:
        ValueError: If the address has no host or a port outside 1-65535.
    """
    host, sep, port_str = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Address {address!r} is not in ip:port form")
    port = int(port_str)
    if port < 1 or port > 65535:
        raise ValueError(f"Address {address!r} has an invalid port")
    return host, port


@dataclass(frozen=True)
class ServerMetadata:
    """Liveness data returned by one successful probe.

    ``raw_tags`` is passed through as the server sent it (a list or a
    comma-delimited string); the worker pool normalizes it before
    classification.
    """

    name: str
    map: str
    player_count: int = 0
    bot_count: int = 0
    max_players: int = 0
    ping_ms: int = 0
    password: bool = False
    secure: bool = False
    version: str | None = None
    connect_address: str | None = None
    query_port: int | None = None
    steam_id: str | None = None
    raw_tags: list[str] | str | None = None
    raw_rules: dict[str, str] = field(default_factory=dict)
    player_names: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ServerSnapshot:
    """Candidate record fields built from a successful probe.

    These are the mutable fields a Hit refreshes; counters, status and
    timestamps are owned by the reconciler.
    """

    ip: str
    port: int
    query_port: int
    name: str
    map: str
    gamemode: str
    players: int = 0
    max_players: int = 0
    bots: int = 0
    ping_ms: int = 0
    password: bool = False
    vac: bool = False
    steam_id: str | None = None
    version: str | None = None


@dataclass(frozen=True)
class ServerRecord:
    """Persisted state of one server, keyed by ``address`` (``ip:port``).

    Invariants maintained by the reconciler:
    - ``seen_count > 0`` implies ``missed_count == 0`` and vice versa.
    - ``status == OFFLINE`` if and only if ``offline_since`` is set.
    - ``first_seen`` never changes once the record exists.
    """

    address: str
    ip: str
    port: int
    query_port: int
    name: str
    map: str
    gamemode: str
    first_seen: datetime
    updated_at: datetime
    status: ServerStatus = ServerStatus.ONLINE
    players: int = 0
    max_players: int = 0
    bots: int = 0
    ping_ms: int = 0
    password: bool = False
    vac: bool = False
    steam_id: str | None = None
    version: str | None = None
    seen_count: int = 0
    missed_count: int = 0
    offline_since: datetime | None = None

    @classmethod
    def from_snapshot(
        cls,
        address: str,
        snapshot: ServerSnapshot,
        now: datetime,
    ) -> ServerRecord:
        """Create a brand new online record from a probe snapshot."""
        return cls(
            address=address,
            first_seen=now,
            updated_at=now,
            status=ServerStatus.ONLINE,
            seen_count=1,
            missed_count=0,
            offline_since=None,
            **snapshot_fields(snapshot),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the record to a JSON-friendly dictionary."""
        return {
            "address": self.address,
            "ip": self.ip,
            "port": self.port,
            "query_port": self.query_port,
            "steam_id": self.steam_id,
            "name": self.name,
            "map": self.map,
            "gamemode": self.gamemode,
            "password": self.password,
            "vac": self.vac,
            "version": self.version,
            "players": self.players,
            "max_players": self.max_players,
            "bots": self.bots,
            "ping_ms": self.ping_ms,
            "status": str(self.status),
            "seen_count": self.seen_count,
            "missed_count": self.missed_count,
            "first_seen": self.first_seen.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "offline_since": self.offline_since.isoformat() if self.offline_since else None,
        }


def snapshot_fields(snapshot: ServerSnapshot) -> dict[str, Any]:
    """Return the snapshot's fields as keyword arguments for ``ServerRecord``."""
    return {
        "ip": snapshot.ip,
        "port": snapshot.port,
        "query_port": snapshot.query_port,
        "name": snapshot.name,
        "map": snapshot.map,
        "gamemode": snapshot.gamemode,
        "players": snapshot.players,
        "max_players": snapshot.max_players,
        "bots": snapshot.bots,
        "ping_ms": snapshot.ping_ms,
        "password": snapshot.password,
        "vac": snapshot.vac,
        "steam_id": snapshot.steam_id,
        "version": snapshot.version,
    }


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one.
        initial_delay: Delay in seconds before the second attempt; doubles after that.
    """

    max_attempts: int = 2
    initial_delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Return the backoff before retrying after ``attempt`` failed (1-based)."""
        return self.initial_delay * (2 ** (attempt - 1))

    def has_attempts_left(self, attempt: int) -> bool:
        return attempt < self.max_attempts


@dataclass(frozen=True)
class ProbeTask:
    """One address waiting to be probed.

    Attributes:
        address: The ``ip:port`` to probe.
        cycle: Discovery cycle number the task belongs to.
        attempt: 1-based attempt number.
        not_before: Monotonic time before which the task must not be delivered.
        retry_policy: Retry policy attached at enqueue time.
        task_id: Queue-unique identifier used for ack/nack bookkeeping.
    """

    address: str
    cycle: int = 0
    attempt: int = 1
    not_before: float = field(default_factory=time.monotonic)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    task_id: int = field(default_factory=lambda: next(_task_ids), compare=False)


@dataclass(frozen=True)
class ProbeOutcome:
    """Terminal result of probing one address in one cycle."""

    address: str
    kind: OutcomeKind
    snapshot: ServerSnapshot | None = None
    error: str | None = None

    @classmethod
    def hit(cls, address: str, snapshot: ServerSnapshot) -> ProbeOutcome:
        return cls(address=address, kind=OutcomeKind.HIT, snapshot=snapshot)

    @classmethod
    def miss(cls, address: str, error: str | None = None) -> ProbeOutcome:
        return cls(address=address, kind=OutcomeKind.MISS, error=error)

    @property
    def is_hit(self) -> bool:
        return self.kind == OutcomeKind.HIT


# Sort fields accepted by ServerQuery, mapped to record attributes
SORT_FIELDS: dict[str, str] = {
    "name": "name",
    "players": "players",
    "map": "map",
    "ping": "ping_ms",
    "last_seen": "updated_at",
}

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class ServerQuery:
    """Filter, sort and pagination options for listing online servers.

    Unknown sort fields fall back to ``players``; ``limit`` is clamped to
    1-100 and ``page`` to at least 1.
    """

    gamemode: str | None = None
    map: str | None = None
    search: str | None = None
    hide_empty: bool = False
    hide_full: bool = False
    min_players: int = 0
    max_players: int | None = None
    sort_by: str = "players"
    descending: bool = True
    page: int = 1
    limit: int = 50

    def __post_init__(self) -> None:
        if self.sort_by not in SORT_FIELDS:
            object.__setattr__(self, "sort_by", "players")
        object.__setattr__(self, "page", max(self.page, 1))
        object.__setattr__(self, "limit", min(max(self.limit, 1), MAX_PAGE_SIZE))
        if self.gamemode == "all":
            object.__setattr__(self, "gamemode", None)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def sort_attribute(self) -> str:
        return SORT_FIELDS[self.sort_by]

    def matches(self, record: ServerRecord) -> bool:
        """Check whether an online record passes every filter."""
        if record.status != ServerStatus.ONLINE:
            return False
        if self.gamemode and record.gamemode != self.gamemode:
            return False
        if self.map and self.map.lower() not in record.map.lower():
            return False
        if self.search and self.search.lower() not in record.name.lower():
            return False
        if self.hide_empty and record.players <= 0:
            return False
        if self.hide_full and record.players >= record.max_players:
            return False
        if self.min_players > 0 and record.players < self.min_players:
            return False
        if self.max_players is not None and record.players > self.max_players:
            return False
        return True


@dataclass(frozen=True)
class RegistrySummary:
    """Aggregate view of the registry."""

    total_servers: int
    online_servers: int
    players_online: int
    gamemodes: dict[str, int] = field(default_factory=dict)


__all__ = [
    "MAX_PAGE_SIZE",
    "ProbeOutcome",
    "ProbeTask",
    "RegistrySummary",
    "RetryPolicy",
    "SORT_FIELDS",
    "ServerMetadata",
    "ServerQuery",
    "ServerRecord",
    "ServerSnapshot",
    "snapshot_fields",
    "split_address",
]
