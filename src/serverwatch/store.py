"""Registry store: durable keyed storage for server records.

The store is the only component that persists state. The pipeline needs a
single atomic read-modify-write per address (``modify``); the read side
needs ``get``, ``query_online`` and ``summary``. ``upsert``,
``increment_seen`` and ``update_fields`` complete the storage contract for
callers that do not need a full transition.

Two implementations are provided:

- ``SqliteRegistryStore`` for deployments, using WAL mode, per-thread
  connections and ``BEGIN IMMEDIATE`` write transactions so concurrent
  writers serialize at the database instead of losing updates.
- ``MemoryRegistryStore`` for tests and throwaway runs.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from serverwatch.exceptions import StoreError
from serverwatch.logging import get_logger
from serverwatch.models import RegistrySummary, ServerQuery, ServerRecord
from serverwatch.types import ServerStatus

logger = get_logger(__name__)

# Transition function applied by modify(): receives the current record (None
# when the address is unknown) and returns the record to write, or None to
# leave the store untouched.
RecordTransform = Callable[[ServerRecord | None], ServerRecord | None]

RECORD_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(ServerRecord))

# Fields update_fields() may touch; the key and first_seen never change
MUTABLE_FIELDS: frozenset[str] = frozenset(RECORD_FIELDS) - {"address", "first_seen"}


def _check_fields(partial: Mapping[str, Any]) -> None:
    unknown = set(partial) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")


def _sorted_page(records: list[ServerRecord], query: ServerQuery) -> list[ServerRecord]:
    """Sort records for a query (ties broken by address) and cut one page."""
    ordered = sorted(records, key=lambda r: r.address)
    ordered.sort(key=lambda r: getattr(r, query.sort_attribute), reverse=query.descending)
    return ordered[query.offset : query.offset + query.limit]


class RegistryStore(ABC):
    """Abstract interface for server record storage."""

    def verify(self) -> None:
        """Check that the store is reachable.

        Raises:
            StoreError: If the store cannot be used.
        """
        return None

    def close(self) -> None:
        """Release any held resources."""
        return None

    @abstractmethod
    def get(self, address: str) -> ServerRecord | None:
        """Return the record for an address, or None if it is unknown."""
        pass

    @abstractmethod
    def upsert(self, record: ServerRecord) -> None:
        """Insert a record or replace every mutable field of an existing one.

        ``first_seen`` of an existing record is preserved.
        """
        pass

    @abstractmethod
    def increment_seen(self, address: str) -> int | None:
        """Atomically increment ``seen_count``.

        Returns:
            The new count, or None if the address is unknown.
        """
        pass

    @abstractmethod
    def update_fields(self, address: str, partial: Mapping[str, Any]) -> bool:
        """Update a subset of fields of an existing record.

        Returns:
            True if a record was updated, False if the address is unknown.

        Raises:
            ValueError: If ``partial`` names an unknown or immutable field.
        """
        pass

    @abstractmethod
    def modify(self, address: str, transform: RecordTransform) -> ServerRecord | None:
        """Apply ``transform`` to one address as a single atomic transaction.

        No other write to the same address can interleave between the read
        and the write.

        Returns:
            The record written, or None if ``transform`` returned None.
        """
        pass

    @abstractmethod
    def delete_where(self, status: ServerStatus, offline_since_before: datetime) -> int:
        """Delete every record with ``status`` whose ``offline_since`` is at or before the cutoff.

        The deletion is all-or-nothing.

        Returns:
            Number of records deleted.
        """
        pass

    @abstractmethod
    def query_online(self, query: ServerQuery) -> tuple[list[ServerRecord], int]:
        """List online records matching a query.

        Returns:
            Tuple of (records on the requested page, total matching records).
        """
        pass

    @abstractmethod
    def summary(self) -> RegistrySummary:
        """Return aggregate counts over the registry."""
        pass


class MemoryRegistryStore(RegistryStore):
    """In-memory store guarded by a single lock.

    Every operation holds the lock for its whole duration, so reconciliation
    and retention sweeps are trivially atomic with respect to each other.
    """

    def __init__(self) -> None:
        self._records: dict[str, ServerRecord] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def all(self) -> list[ServerRecord]:
        """Return every stored record."""
        with self._lock:
            return list(self._records.values())

    def get(self, address: str) -> ServerRecord | None:
        with self._lock:
            return self._records.get(address)

    def upsert(self, record: ServerRecord) -> None:
        with self._lock:
            existing = self._records.get(record.address)
            if existing is not None:
                record = replace(record, first_seen=existing.first_seen)
            self._records[record.address] = record

    def increment_seen(self, address: str) -> int | None:
        with self._lock:
            existing = self._records.get(address)
            if existing is None:
                return None
            updated = replace(existing, seen_count=existing.seen_count + 1)
            self._records[address] = updated
            return updated.seen_count

    def update_fields(self, address: str, partial: Mapping[str, Any]) -> bool:
        _check_fields(partial)
        with self._lock:
            existing = self._records.get(address)
            if existing is None:
                return False
            self._records[address] = replace(existing, **partial)
            return True

    def modify(self, address: str, transform: RecordTransform) -> ServerRecord | None:
        with self._lock:
            updated = transform(self._records.get(address))
            if updated is not None:
                self._records[address] = updated
            return updated

    def delete_where(self, status: ServerStatus, offline_since_before: datetime) -> int:
        with self._lock:
            doomed = [
                address
                for address, record in self._records.items()
                if record.status == status
                and record.offline_since is not None
                and record.offline_since <= offline_since_before
            ]
            for address in doomed:
                del self._records[address]
            return len(doomed)

    def query_online(self, query: ServerQuery) -> tuple[list[ServerRecord], int]:
        with self._lock:
            matching = [r for r in self._records.values() if query.matches(r)]
        return _sorted_page(matching, query), len(matching)

    def summary(self) -> RegistrySummary:
        with self._lock:
            records = list(self._records.values())
        online = [r for r in records if r.status == ServerStatus.ONLINE]
        gamemodes: dict[str, int] = {}
        for record in online:
            gamemodes[record.gamemode] = gamemodes.get(record.gamemode, 0) + 1
        return RegistrySummary(
            total_servers=len(records),
            online_servers=len(online),
            players_online=sum(r.players for r in online),
            gamemodes=gamemodes,
        )


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS servers (
    address        TEXT PRIMARY KEY,
    ip             TEXT NOT NULL,
    port           INTEGER NOT NULL,
    query_port     INTEGER NOT NULL,
    name           TEXT NOT NULL,
    map            TEXT NOT NULL,
    gamemode       TEXT NOT NULL,
    first_seen     TEXT NOT NULL,
    updated_at     TEXT NOT NULL,
    status         TEXT NOT NULL CHECK (status IN ('online', 'offline')),
    players        INTEGER NOT NULL DEFAULT 0 CHECK (players >= 0),
    max_players    INTEGER NOT NULL DEFAULT 0 CHECK (max_players >= 0),
    bots           INTEGER NOT NULL DEFAULT 0 CHECK (bots >= 0),
    ping_ms        INTEGER NOT NULL DEFAULT 0,
    password       INTEGER NOT NULL DEFAULT 0,
    vac            INTEGER NOT NULL DEFAULT 0,
    steam_id       TEXT,
    version        TEXT,
    seen_count     INTEGER NOT NULL DEFAULT 0,
    missed_count   INTEGER NOT NULL DEFAULT 0,
    offline_since  TEXT
);
CREATE INDEX IF NOT EXISTS idx_servers_status   ON servers(status);
CREATE INDEX IF NOT EXISTS idx_servers_offline  ON servers(status, offline_since);
CREATE INDEX IF NOT EXISTS idx_servers_gamemode ON servers(gamemode);
"""

_DATETIME_FIELDS = frozenset({"first_seen", "updated_at", "offline_since"})
_BOOL_FIELDS = frozenset({"password", "vac"})

_COLUMNS = ", ".join(RECORD_FIELDS)
_PLACEHOLDERS = ", ".join(f":{name}" for name in RECORD_FIELDS)
_UPSERT_SQL = (
    f"INSERT INTO servers ({_COLUMNS}) VALUES ({_PLACEHOLDERS}) "
    "ON CONFLICT(address) DO UPDATE SET "
    + ", ".join(f"{name} = excluded.{name}" for name in RECORD_FIELDS if name in MUTABLE_FIELDS)
)


def _to_db_time(value: datetime | None) -> str | None:
    """Serialize a timestamp as fixed-width UTC ISO text so it sorts lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _to_db_value(name: str, value: Any) -> Any:
    if name in _DATETIME_FIELDS:
        return _to_db_time(value)
    if name in _BOOL_FIELDS:
        return int(bool(value))
    if name == "status":
        return str(value)
    return value


def _record_params(record: ServerRecord) -> dict[str, Any]:
    return {name: _to_db_value(name, getattr(record, name)) for name in RECORD_FIELDS}


def _row_to_record(row: sqlite3.Row) -> ServerRecord:
    values: dict[str, Any] = {}
    for name in RECORD_FIELDS:
        value = row[name]
        if name in _DATETIME_FIELDS:
            value = datetime.fromisoformat(value) if value is not None else None
        elif name in _BOOL_FIELDS:
            value = bool(value)
        elif name == "status":
            value = ServerStatus(value)
        values[name] = value
    return ServerRecord(**values)


class SqliteRegistryStore(RegistryStore):
    """SQLite-backed store.

    Each thread gets its own connection (SQLite connections must not be
    shared across threads mid-transaction). Writes run inside
    ``BEGIN IMMEDIATE`` so the write lock is taken before the read half of
    a read-modify-write, which serializes concurrent reconciliations of the
    same address.
    """

    def __init__(self, db_path: Path | str, busy_timeout: float = 30.0) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._closed = False
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: transactions are managed explicitly below
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self._closed:
            raise StoreError("Registry store is closed")
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        if not self._schema_ready:
            with self._schema_lock:
                if not self._schema_ready:
                    conn.executescript(_SCHEMA_SQL)
                    self._schema_ready = True
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    @contextmanager
    def _errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            raise StoreError(f"SQLite {operation} failed: {e}") from e
        except OSError as e:
            raise StoreError(f"Cannot open database at {self.db_path}: {e}") from e

    def verify(self) -> None:
        with self._errors("verify"):
            self._connection().execute("SELECT COUNT(*) FROM servers").fetchone()
        logger.debug("Registry store ready at %s", self.db_path)

    def close(self) -> None:
        with self._connections_lock:
            self._closed = True
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning("Failed to close SQLite connection: %s", e)

    def get(self, address: str) -> ServerRecord | None:
        with self._errors("get"):
            row = self._connection().execute(
                "SELECT * FROM servers WHERE address = ?", (address,)
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def upsert(self, record: ServerRecord) -> None:
        with self._errors("upsert"), self._transaction() as conn:
            conn.execute(_UPSERT_SQL, _record_params(record))

    def increment_seen(self, address: str) -> int | None:
        with self._errors("increment"), self._transaction() as conn:
            row = conn.execute(
                "UPDATE servers SET seen_count = seen_count + 1 WHERE address = ? "
                "RETURNING seen_count",
                (address,),
            ).fetchone()
        return row["seen_count"] if row is not None else None

    def update_fields(self, address: str, partial: Mapping[str, Any]) -> bool:
        _check_fields(partial)
        if not partial:
            return self.get(address) is not None
        assignments = ", ".join(f"{name} = :{name}" for name in partial)
        params = {name: _to_db_value(name, value) for name, value in partial.items()}
        params["address"] = address
        with self._errors("update"), self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE servers SET {assignments} WHERE address = :address", params
            )
        return cursor.rowcount > 0

    def modify(self, address: str, transform: RecordTransform) -> ServerRecord | None:
        with self._errors("modify"), self._transaction() as conn:
            row = conn.execute("SELECT * FROM servers WHERE address = ?", (address,)).fetchone()
            current = _row_to_record(row) if row is not None else None
            updated = transform(current)
            if updated is not None:
                conn.execute(_UPSERT_SQL, _record_params(updated))
        return updated

    def delete_where(self, status: ServerStatus, offline_since_before: datetime) -> int:
        with self._errors("delete"), self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM servers WHERE status = ? "
                "AND offline_since IS NOT NULL AND offline_since <= ?",
                (str(status), _to_db_time(offline_since_before)),
            )
        return cursor.rowcount

    def query_online(self, query: ServerQuery) -> tuple[list[ServerRecord], int]:
        clauses = ["status = ?"]
        params: list[Any] = [str(ServerStatus.ONLINE)]
        if query.gamemode:
            clauses.append("gamemode = ?")
            params.append(query.gamemode)
        if query.map:
            clauses.append("instr(lower(map), lower(?)) > 0")
            params.append(query.map)
        if query.search:
            clauses.append("instr(lower(name), lower(?)) > 0")
            params.append(query.search)
        if query.hide_empty:
            clauses.append("players > 0")
        if query.hide_full:
            clauses.append("players < max_players")
        if query.min_players > 0:
            clauses.append("players >= ?")
            params.append(query.min_players)
        if query.max_players is not None:
            clauses.append("players <= ?")
            params.append(query.max_players)
        where = " AND ".join(clauses)
        # sort_attribute comes from a fixed whitelist
        direction = "DESC" if query.descending else "ASC"
        order = f"{query.sort_attribute} {direction}, address ASC"

        with self._errors("query"):
            conn = self._connection()
            total = conn.execute(f"SELECT COUNT(*) FROM servers WHERE {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM servers WHERE {where} ORDER BY {order} LIMIT ? OFFSET ?",
                [*params, query.limit, query.offset],
            ).fetchall()
        return [_row_to_record(row) for row in rows], total

    def summary(self) -> RegistrySummary:
        online = str(ServerStatus.ONLINE)
        with self._errors("summary"):
            conn = self._connection()
            total, online_count, players = conn.execute(
                "SELECT COUNT(*), "
                "COALESCE(SUM(status = ?), 0), "
                "COALESCE(SUM(CASE WHEN status = ? THEN players ELSE 0 END), 0) "
                "FROM servers",
                (online, online),
            ).fetchone()
            rows = conn.execute(
                "SELECT gamemode, COUNT(*) AS n FROM servers WHERE status = ? "
                "GROUP BY gamemode",
                (online,),
            ).fetchall()
        return RegistrySummary(
            total_servers=total,
            online_servers=online_count,
            players_online=players,
            gamemodes={row["gamemode"]: row["n"] for row in rows},
        )


__all__ = [
    "MUTABLE_FIELDS",
    "MemoryRegistryStore",
    "RecordTransform",
    "RegistryStore",
    "SqliteRegistryStore",
]
