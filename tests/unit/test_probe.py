"""Tests for the A2S probe client.

The python-a2s request coroutines are replaced with fakes, so no packets are
sent.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from types import SimpleNamespace
from typing import Any

import a2s
import pytest

from serverwatch.exceptions import ProbeMalformed, ProbeRefused, ProbeTimeout
from serverwatch.logging import PROBE_TAG, DiagnosticFilter
from serverwatch.probe import A2SProbeClient


def make_info(**overrides: Any) -> SimpleNamespace:
    values: dict[str, Any] = {
        "server_name": "Surf Heaven",
        "map_name": "surf_mesa",
        "player_count": 14,
        "bot_count": 2,
        "max_players": 24,
        "ping": 0.035,
        "password_protected": False,
        "vac_enabled": True,
        "version": "1.40.0.0",
        "port": 27016,
        "steam_id": 90123456789012345,
        "keywords": "surf,secure",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeA2S:
    """Records requests and answers with preset results or exceptions.

    ``reads`` maps a request name to a list of per-read delays, mimicking a
    request that waits on several datagrams before answering.
    """

    REQUESTS = {"info": "ainfo", "players": "aplayers", "rules": "arules"}

    def __init__(
        self,
        info: Any,
        players: Any = (),
        rules: Any = None,
        reads: dict[str, list[float]] | None = None,
    ) -> None:
        self.results = {"info": info, "players": players, "rules": rules or {}}
        self.reads = reads or {}
        self.requests: list[tuple[str, tuple[str, int], float]] = []

    def install(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name, attr in self.REQUESTS.items():
            monkeypatch.setattr(a2s, attr, self._handler(name))

    def _handler(self, name: str) -> Any:
        async def request(address: tuple[str, int], timeout: float, encoding: str) -> Any:
            self.requests.append((name, address, timeout))
            for delay in self.reads.get(name, []):
                await asyncio.sleep(min(delay, timeout))
            result = self.results[name]
            if isinstance(result, BaseException):
                raise result
            return result

        request.__name__ = name
        return request


class TestA2SProbeClient:
    def test_metadata_from_info(self, monkeypatch: pytest.MonkeyPatch) -> None:
        fake = FakeA2S(make_info())
        fake.install(monkeypatch)

        metadata = A2SProbeClient().query("203.0.113.7", 27015, timeout=2.0)

        assert metadata.name == "Surf Heaven"
        assert metadata.player_count == 12
        assert metadata.bot_count == 2
        assert metadata.ping_ms == 35
        assert metadata.secure is True
        assert metadata.connect_address == "203.0.113.7:27016"
        assert metadata.query_port == 27015
        assert metadata.steam_id == "90123456789012345"
        assert metadata.raw_tags == "surf,secure"
        assert fake.requests[0] == ("info", ("203.0.113.7", 27015), 2.0)

    def test_player_list_not_requested_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        fake = FakeA2S(make_info())
        fake.install(monkeypatch)

        metadata = A2SProbeClient().query("203.0.113.7", 27015, timeout=2.0)

        assert [name for name, _, _ in fake.requests] == ["info", "rules"]
        assert metadata.player_names == []

    def test_player_names_when_enabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        players = [SimpleNamespace(name="alice"), SimpleNamespace(name="")]
        FakeA2S(make_info(), players=players).install(monkeypatch)

        metadata = A2SProbeClient(request_players=True).query("203.0.113.7", 27015, timeout=2.0)

        assert metadata.player_names == ["alice"]

    def test_rules_collected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        FakeA2S(make_info(), rules={"sv_tags": "surf", "mp_timelimit": 30}).install(monkeypatch)

        metadata = A2SProbeClient().query("203.0.113.7", 27015, timeout=2.0)

        assert metadata.raw_rules == {"sv_tags": "surf", "mp_timelimit": "30"}

    def test_optional_requests_can_be_disabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        fake = FakeA2S(make_info())
        fake.install(monkeypatch)

        A2SProbeClient(request_players=False, request_rules=False).query(
            "203.0.113.7", 27015, timeout=2.0
        )

        assert [name for name, _, _ in fake.requests] == ["info"]

    def test_optional_failures_do_not_fail_probe(self, monkeypatch: pytest.MonkeyPatch) -> None:
        FakeA2S(
            make_info(), players=TimeoutError(), rules=a2s.BrokenMessageError("bad rules")
        ).install(monkeypatch)

        metadata = A2SProbeClient(request_players=True).query("203.0.113.7", 27015, timeout=2.0)

        assert metadata.player_names == []
        assert metadata.raw_rules == {}

    def test_optional_failure_logged_under_probe_tag(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        FakeA2S(make_info(), rules=a2s.BrokenMessageError("bad rules")).install(monkeypatch)

        with caplog.at_level(logging.DEBUG, logger="serverwatch.probe"):
            A2SProbeClient().query("203.0.113.7", 27015, timeout=2.0)

        record = next(
            r for r in caplog.records if "Optional rules request failed" in r.getMessage()
        )
        assert record.diagnostic_tag == PROBE_TAG  # type: ignore[attr-defined]
        assert DiagnosticFilter.from_config_string("queue").filter(record) is False
        assert DiagnosticFilter.from_config_string("probe").filter(record) is True

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (TimeoutError(), ProbeTimeout),
            (socket.timeout(), ProbeTimeout),
            (ConnectionRefusedError(), ProbeRefused),
            (OSError("Network is unreachable"), ProbeRefused),
            (a2s.BrokenMessageError("bad header"), ProbeMalformed),
            (a2s.BufferExhaustedError(), ProbeMalformed),
        ],
    )
    def test_info_errors_mapped(
        self,
        monkeypatch: pytest.MonkeyPatch,
        error: Exception,
        expected: type[Exception],
    ) -> None:
        FakeA2S(error).install(monkeypatch)

        with pytest.raises(expected) as exc_info:
            A2SProbeClient().query("203.0.113.7", 27015, timeout=2.0)

        assert exc_info.value.address == "203.0.113.7:27015"  # type: ignore[attr-defined]

    def test_expired_deadline_times_out(self, monkeypatch: pytest.MonkeyPatch) -> None:
        fake = FakeA2S(make_info())
        fake.install(monkeypatch)

        with pytest.raises(ProbeTimeout):
            A2SProbeClient(attempt_grace=-5.0).query("203.0.113.7", 27015, timeout=1.0)
        assert fake.requests == []


class TestAttemptDeadline:
    def test_multi_read_info_fails_at_deadline(self, monkeypatch: pytest.MonkeyPatch) -> None:
        # Each read stays under the socket timeout; together they exceed the attempt.
        FakeA2S(make_info(), reads={"info": [0.45, 0.45]}).install(monkeypatch)
        client = A2SProbeClient(attempt_grace=0.2)

        started = time.monotonic()
        with pytest.raises(ProbeTimeout):
            client.query("203.0.113.7", 27015, timeout=0.5)
        elapsed = time.monotonic() - started

        assert elapsed < 0.85

    def test_slow_optional_requests_cut_off(self, monkeypatch: pytest.MonkeyPatch) -> None:
        FakeA2S(
            make_info(),
            rules={"sv_tags": "surf"},
            reads={"info": [0.45], "players": [0.45, 0.45], "rules": [0.45, 0.45]},
        ).install(monkeypatch)
        client = A2SProbeClient(request_players=True, attempt_grace=0.2)

        started = time.monotonic()
        metadata = client.query("203.0.113.7", 27015, timeout=0.5)
        elapsed = time.monotonic() - started

        assert metadata.name == "Surf Heaven"
        assert metadata.player_names == []
        assert metadata.raw_rules == {}
        assert elapsed < 0.85
