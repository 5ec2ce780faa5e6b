"""Test helper functions for Serverwatch tests.

Usage
=====

Import and use helpers directly in tests::

    from tests.helpers import make_config, make_metadata, make_record

    def test_example():
        config = make_config(offline_threshold=2)
        record = make_record(address="203.0.113.7:27015", status=ServerStatus.OFFLINE)
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from serverwatch.config import (
    Config,
    ExecutionConfig,
    LifecycleConfig,
    LoggingConfig,
    PollingConfig,
    ProbeConfig,
    StoreConfig,
)
from serverwatch.models import ServerMetadata, ServerRecord, ServerSnapshot, split_address
from serverwatch.types import ServerStatus

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def make_config(
    # Polling settings
    interval_seconds: int = 300,
    batch_size: int = 100,
    directory_filter: str = "\\appid\\730",
    # Probe settings
    timeout_ms: int = 200,
    concurrency: int = 4,
    max_attempts: int = 2,
    backoff_seconds: float = 0.0,
    queue_capacity: int = 0,
    # Lifecycle settings
    offline_threshold: int = 3,
    retention_days: int = 7,
    reap_interval_seconds: int = 86400,
    # Store settings
    backend: str = "memory",
    db_path: Path | None = None,
    # Execution settings
    shutdown_timeout_seconds: float = 5.0,
    run_on_start: bool = False,
    # Logging settings
    log_level: str = "INFO",
    log_json: bool = False,
) -> Config:
    """Create a Config for tests.

    Defaults differ from production where tests need speed: short probe
    timeout, no retry backoff, a small pool, the memory store and no run at
    startup.
    """
    return Config(
        polling=PollingConfig(
            interval_seconds=interval_seconds,
            batch_size=batch_size,
            directory_filter=directory_filter,
        ),
        probe=ProbeConfig(
            timeout_ms=timeout_ms,
            concurrency=concurrency,
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
            queue_capacity=queue_capacity,
        ),
        lifecycle=LifecycleConfig(
            offline_threshold=offline_threshold,
            retention_days=retention_days,
            reap_interval_seconds=reap_interval_seconds,
        ),
        store=StoreConfig(
            backend=backend,
            db_path=db_path or Path("./data/test-serverwatch.db"),
        ),
        execution=ExecutionConfig(
            shutdown_timeout_seconds=shutdown_timeout_seconds,
            run_on_start=run_on_start,
        ),
        logging_config=LoggingConfig(level=log_level, json=log_json),
    )


def make_metadata(
    name: str = "Test Server",
    map: str = "de_dust2",
    player_count: int = 10,
    max_players: int = 20,
    bot_count: int = 0,
    **kwargs: Any,
) -> ServerMetadata:
    """Create ServerMetadata as a probe client would return it."""
    return ServerMetadata(
        name=name,
        map=map,
        player_count=player_count,
        max_players=max_players,
        bot_count=bot_count,
        **kwargs,
    )


def make_snapshot(address: str = "203.0.113.7:27015", **kwargs: Any) -> ServerSnapshot:
    """Create a ServerSnapshot for an address."""
    host, port = split_address(address)
    values: dict[str, Any] = {
        "ip": host,
        "port": port,
        "query_port": port,
        "name": "Test Server",
        "map": "de_dust2",
        "gamemode": "public",
        "players": 10,
        "max_players": 20,
    }
    values.update(kwargs)
    return ServerSnapshot(**values)


def make_record(
    address: str = "203.0.113.7:27015",
    status: ServerStatus = ServerStatus.ONLINE,
    seen_count: int | None = None,
    missed_count: int = 0,
    offline_since: datetime | None = None,
    first_seen: datetime = T0,
    updated_at: datetime = T0,
    **kwargs: Any,
) -> ServerRecord:
    """Create a ServerRecord that satisfies the record invariants by default.

    An offline record gets ``offline_since = updated_at`` unless given.
    """
    snapshot = make_snapshot(address, **kwargs)
    if status == ServerStatus.OFFLINE:
        offline_since = offline_since or updated_at
        missed_count = missed_count or 3
    if seen_count is None:
        seen_count = 0 if missed_count or status == ServerStatus.OFFLINE else 1
    record = ServerRecord.from_snapshot(address, snapshot, first_seen)
    return replace(
        record,
        status=status,
        seen_count=seen_count,
        missed_count=missed_count,
        offline_since=offline_since,
        updated_at=updated_at,
    )


def make_addresses(count: int, start: int = 1) -> list[str]:
    """Create ``count`` distinct addresses in the TEST-NET-3 range."""
    return [f"203.0.{(i // 250) % 250}.{i % 250 + 1}:27015" for i in range(start, start + count)]


class FakeClock:
    """Manually advanced clock returning timezone-aware UTC datetimes."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, **delta: float) -> datetime:
        with self._lock:
            self.now = self.now + timedelta(**delta)
            return self.now
