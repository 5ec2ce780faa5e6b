"""Contract tests run against every registry store backend."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

import pytest

from serverwatch.exceptions import StoreError
from serverwatch.models import ServerQuery
from serverwatch.store import RegistryStore, SqliteRegistryStore
from serverwatch.types import ServerStatus
from tests.helpers import T0, make_record

ADDRESS = "203.0.113.7:27015"


class TestRecordWrites:
    def test_get_unknown(self, store: RegistryStore) -> None:
        assert store.get(ADDRESS) is None

    def test_upsert_round_trip(self, store: RegistryStore) -> None:
        record = make_record(ADDRESS, steam_id="90123456789012345", password=True, vac=True)
        store.upsert(record)
        assert store.get(ADDRESS) == record

    def test_upsert_preserves_first_seen(self, store: RegistryStore) -> None:
        store.upsert(make_record(ADDRESS))
        later = T0 + timedelta(days=2)
        store.upsert(make_record(ADDRESS, first_seen=later, updated_at=later, name="Renamed"))

        record = store.get(ADDRESS)
        assert record is not None
        assert record.first_seen == T0
        assert record.updated_at == later
        assert record.name == "Renamed"

    def test_increment_seen(self, store: RegistryStore) -> None:
        store.upsert(make_record(ADDRESS, seen_count=4))
        assert store.increment_seen(ADDRESS) == 5
        assert store.increment_seen("198.51.100.1:27015") is None

    def test_update_fields(self, store: RegistryStore) -> None:
        store.upsert(make_record(ADDRESS))
        offline_at = T0 + timedelta(hours=1)

        assert store.update_fields(
            ADDRESS,
            {"status": ServerStatus.OFFLINE, "offline_since": offline_at, "seen_count": 0},
        )

        record = store.get(ADDRESS)
        assert record is not None
        assert record.status == ServerStatus.OFFLINE
        assert record.offline_since == offline_at
        assert store.update_fields("198.51.100.1:27015", {"players": 3}) is False

    @pytest.mark.parametrize("field", ["address", "first_seen", "nonexistent"])
    def test_update_fields_rejects_protected(self, store: RegistryStore, field: str) -> None:
        store.upsert(make_record(ADDRESS))
        with pytest.raises(ValueError):
            store.update_fields(ADDRESS, {field: "x"})

    def test_modify_none_writes_nothing(self, store: RegistryStore) -> None:
        assert store.modify(ADDRESS, lambda current: None) is None
        assert store.get(ADDRESS) is None

    def test_modify_sees_current_record(self, store: RegistryStore) -> None:
        store.upsert(make_record(ADDRESS, players=3))
        seen = []

        def transform(current):  # type: ignore[no-untyped-def]
            seen.append(current)
            return replace(current, players=current.players + 1)

        updated = store.modify(ADDRESS, transform)

        assert seen[0].players == 3
        assert updated is not None and updated.players == 4
        assert store.get(ADDRESS) == updated

    def test_failed_transform_leaves_record(self, store: RegistryStore) -> None:
        store.upsert(make_record(ADDRESS, players=3))

        def transform(current):  # type: ignore[no-untyped-def]
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.modify(ADDRESS, transform)
        record = store.get(ADDRESS)
        assert record is not None and record.players == 3

    def test_concurrent_modify_is_atomic(self, store: RegistryStore) -> None:
        store.upsert(make_record(ADDRESS, players=0))
        barrier = threading.Barrier(6)

        def worker() -> None:
            barrier.wait()
            for _ in range(15):
                store.modify(ADDRESS, lambda r: replace(r, players=r.players + 1))

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        record = store.get(ADDRESS)
        assert record is not None and record.players == 90


class TestDeleteWhere:
    def test_deletes_only_old_offline(self, store: RegistryStore) -> None:
        cutoff = T0 + timedelta(days=7)
        store.upsert(make_record("203.0.113.1:27015", status=ServerStatus.OFFLINE))
        store.upsert(
            make_record(
                "203.0.113.2:27015",
                status=ServerStatus.OFFLINE,
                offline_since=cutoff + timedelta(seconds=1),
            )
        )
        store.upsert(make_record("203.0.113.3:27015"))

        assert store.delete_where(ServerStatus.OFFLINE, cutoff) == 1
        assert store.get("203.0.113.1:27015") is None
        assert store.get("203.0.113.2:27015") is not None
        assert store.get("203.0.113.3:27015") is not None

    def test_cutoff_is_inclusive(self, store: RegistryStore) -> None:
        store.upsert(make_record(ADDRESS, status=ServerStatus.OFFLINE, offline_since=T0))
        assert store.delete_where(ServerStatus.OFFLINE, T0) == 1

    def test_nothing_to_delete(self, store: RegistryStore) -> None:
        store.upsert(make_record(ADDRESS))
        assert store.delete_where(ServerStatus.OFFLINE, T0 + timedelta(days=30)) == 0


def seed_online(store: RegistryStore) -> None:
    store.upsert(make_record("203.0.113.1:27015", name="Surf Heaven", map="surf_mesa",
                             gamemode="surf", players=12, max_players=24, ping_ms=40))
    store.upsert(make_record("203.0.113.2:27015", name="Bhop Land", map="bhop_arcane",
                             gamemode="bhop", players=0, max_players=16, ping_ms=20))
    store.upsert(make_record("203.0.113.3:27015", name="Surf Full", map="surf_kitsune",
                             gamemode="surf", players=24, max_players=24, ping_ms=80))
    store.upsert(make_record("203.0.113.4:27015", name="Dead Surf", map="surf_mesa",
                             gamemode="surf", status=ServerStatus.OFFLINE, players=5))


class TestQueryOnline:
    """Tests for filtering, sorting and paging online records."""

    def test_offline_excluded(self, store: RegistryStore) -> None:
        seed_online(store)
        records, total = store.query_online(ServerQuery())
        assert total == 3
        assert "203.0.113.4:27015" not in {r.address for r in records}

    def test_default_sort_players_descending(self, store: RegistryStore) -> None:
        seed_online(store)
        records, _ = store.query_online(ServerQuery())
        assert [r.players for r in records] == [24, 12, 0]

    def test_filters(self, store: RegistryStore) -> None:
        seed_online(store)

        def addresses(**kwargs: object) -> list[str]:
            records, _ = store.query_online(ServerQuery(**kwargs))  # type: ignore[arg-type]
            return sorted(r.address for r in records)

        assert addresses(gamemode="surf") == ["203.0.113.1:27015", "203.0.113.3:27015"]
        assert addresses(gamemode="all") == addresses()
        assert addresses(map="MESA") == ["203.0.113.1:27015"]
        assert addresses(search="bhop") == ["203.0.113.2:27015"]
        assert addresses(hide_empty=True, hide_full=True) == ["203.0.113.1:27015"]
        assert addresses(min_players=10, max_players=20) == ["203.0.113.1:27015"]

    def test_sort_by_name_ascending(self, store: RegistryStore) -> None:
        seed_online(store)
        records, _ = store.query_online(ServerQuery(sort_by="name", descending=False))
        assert [r.name for r in records] == ["Bhop Land", "Surf Full", "Surf Heaven"]

    def test_sort_by_ping(self, store: RegistryStore) -> None:
        seed_online(store)
        records, _ = store.query_online(ServerQuery(sort_by="ping", descending=False))
        assert [r.ping_ms for r in records] == [20, 40, 80]

    def test_ties_broken_by_address(self, store: RegistryStore) -> None:
        for i in (3, 1, 2):
            store.upsert(make_record(f"203.0.113.{i}:27015", players=5))
        records, _ = store.query_online(ServerQuery())
        assert [r.address for r in records] == [
            "203.0.113.1:27015",
            "203.0.113.2:27015",
            "203.0.113.3:27015",
        ]

    def test_paging(self, store: RegistryStore) -> None:
        for i in range(1, 8):
            store.upsert(make_record(f"203.0.113.{i}:27015", players=i))

        page1, total = store.query_online(ServerQuery(limit=3))
        page3, _ = store.query_online(ServerQuery(limit=3, page=3))
        beyond, _ = store.query_online(ServerQuery(limit=3, page=4))

        assert total == 7
        assert [r.players for r in page1] == [7, 6, 5]
        assert [r.players for r in page3] == [1]
        assert beyond == []


class TestSummary:
    def test_summary_counts_online_only(self, store: RegistryStore) -> None:
        seed_online(store)
        summary = store.summary()
        assert summary.total_servers == 4
        assert summary.online_servers == 3
        assert summary.players_online == 36
        assert summary.gamemodes == {"surf": 2, "bhop": 1}

    def test_empty_summary(self, store: RegistryStore) -> None:
        summary = store.summary()
        assert (summary.total_servers, summary.online_servers, summary.players_online) == (0, 0, 0)
        assert summary.gamemodes == {}


class TestSqliteRegistryStore:
    """SQLite-specific behavior."""

    def test_data_survives_reopen(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "registry.db"
        first = SqliteRegistryStore(path)
        first.upsert(make_record(ADDRESS))
        first.close()

        second = SqliteRegistryStore(path)
        try:
            assert second.get(ADDRESS) == make_record(ADDRESS)
        finally:
            second.close()

    def test_closed_store_raises(self, sqlite_store: SqliteRegistryStore) -> None:
        sqlite_store.close()
        with pytest.raises(StoreError):
            sqlite_store.get(ADDRESS)

    def test_verify_unreachable_path(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store = SqliteRegistryStore(blocker / "registry.db")
        with pytest.raises(StoreError):
            store.verify()

    def test_timestamps_keep_timezone(self, sqlite_store: SqliteRegistryStore) -> None:
        sqlite_store.upsert(make_record(ADDRESS, status=ServerStatus.OFFLINE))
        record = sqlite_store.get(ADDRESS)
        assert record is not None
        assert record.offline_since is not None
        assert record.offline_since.utcoffset() == timedelta(0)
