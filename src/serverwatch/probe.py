"""Per-server probe clients.

A probe performs one query exchange with a game server and returns its
liveness data as ``ServerMetadata`` or raises one of ``ProbeTimeout``,
``ProbeRefused`` or ``ProbeMalformed``. The wire protocol itself is handled
by the ``python-a2s`` library.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import a2s

from serverwatch.exceptions import ProbeMalformed, ProbeRefused, ProbeTimeout
from serverwatch.logging import PROBE_TAG, get_logger
from serverwatch.models import ServerMetadata

logger = get_logger(__name__)

# Extra time an attempt may take on top of the socket timeout
ATTEMPT_GRACE_SECONDS = 1.0


class ProbeClient(ABC):
    """Abstract interface for per-server queries.

    This allows the worker pool to work with different implementations:
    - A2S client (python-a2s, Source engine query protocol)
    - Mock client (testing)
    """

    @abstractmethod
    def query(self, host: str, port: int, timeout: float) -> ServerMetadata:
        """Query one server.

        Args:
            host: Server IP or hostname.
            port: Query port.
            timeout: Socket timeout in seconds.

        Returns:
            Metadata reported by the server.

        Raises:
            ProbeTimeout: If the server does not answer in time.
            ProbeRefused: If the connection is refused or unreachable.
            ProbeMalformed: If the answer cannot be decoded.
        """
        pass


class A2SProbeClient(ProbeClient):
    """Probe client speaking the Source engine query protocol via python-a2s.

    ``A2S_INFO`` decides liveness. ``A2S_RULES`` (and ``A2S_PLAYER`` when
    enabled) are fetched afterwards while the attempt deadline allows;
    servers commonly disable them, so their failures never fail the probe.

    One python-a2s request can perform several socket reads (challenge,
    split packets), so each request runs under ``asyncio.wait_for`` with
    whatever is left of the attempt deadline. An attempt never outlives
    ``timeout + attempt_grace``.
    """

    def __init__(
        self,
        request_players: bool = False,
        request_rules: bool = True,
        attempt_grace: float = ATTEMPT_GRACE_SECONDS,
        encoding: str = "utf-8",
    ) -> None:
        """Initialize the client.

        Args:
            request_players: Fetch the player list after A2S_INFO. Off by
                default; player counts already come from A2S_INFO.
            request_rules: Fetch server rules (cvars) after A2S_INFO.
            attempt_grace: Seconds added to the socket timeout to form the
                overall deadline of one attempt.
            encoding: Text encoding of server strings.
        """
        self.request_players = request_players
        self.request_rules = request_rules
        self.attempt_grace = attempt_grace
        self.encoding = encoding

    def query(self, host: str, port: int, timeout: float) -> ServerMetadata:
        return asyncio.run(self._query(host, port, timeout))

    async def _query(self, host: str, port: int, timeout: float) -> ServerMetadata:
        address = f"{host}:{port}"
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout + self.attempt_grace

        info = await self._call(a2s.ainfo, address, host, port, timeout, deadline)

        player_names: list[str] = []
        if self.request_players:
            players = await self._optional_call(
                a2s.aplayers, address, host, port, timeout, deadline
            )
            if players:
                player_names = [p.name for p in players if getattr(p, "name", "")]

        rules: dict[str, str] = {}
        if self.request_rules:
            raw_rules = await self._optional_call(
                a2s.arules, address, host, port, timeout, deadline
            )
            if raw_rules:
                rules = {str(k): str(v) for k, v in raw_rules.items()}

        return self._build_metadata(info, host, port, player_names, rules)

    async def _call(
        self,
        request: Any,
        address: str,
        host: str,
        port: int,
        timeout: float,
        deadline: float,
    ) -> Any:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise ProbeTimeout(address, f"Attempt deadline exceeded for {address}")
        try:
            return await asyncio.wait_for(
                request((host, port), timeout=min(timeout, remaining), encoding=self.encoding),
                timeout=remaining,
            )
        except TimeoutError as e:
            raise ProbeTimeout(address, f"Timed out querying {address}") from e
        except (a2s.BrokenMessageError, a2s.BufferExhaustedError, UnicodeDecodeError) as e:
            raise ProbeMalformed(address, f"Malformed response from {address}: {e}") from e
        except OSError as e:
            # ConnectionRefusedError, unreachable networks, DNS failures
            raise ProbeRefused(address, f"Could not reach {address}: {e}") from e

    async def _optional_call(
        self,
        request: Any,
        address: str,
        host: str,
        port: int,
        timeout: float,
        deadline: float,
    ) -> Any:
        try:
            return await self._call(request, address, host, port, timeout, deadline)
        except (ProbeTimeout, ProbeRefused, ProbeMalformed) as e:
            logger.debug(
                "Optional %s request failed for %s: %s",
                getattr(request, "__name__", "a2s"),
                address,
                e,
                extra={"diagnostic_tag": PROBE_TAG, "address": address},
            )
            return None

    def _build_metadata(
        self,
        info: Any,
        host: str,
        port: int,
        player_names: list[str],
        rules: dict[str, str],
    ) -> ServerMetadata:
        bot_count = int(getattr(info, "bot_count", 0) or 0)
        total_players = int(getattr(info, "player_count", 0) or 0)
        game_port = getattr(info, "port", None) or port
        steam_id = getattr(info, "steam_id", None)
        ping = getattr(info, "ping", 0.0) or 0.0

        return ServerMetadata(
            name=str(getattr(info, "server_name", "") or ""),
            map=str(getattr(info, "map_name", "") or ""),
            player_count=max(total_players - bot_count, 0),
            bot_count=bot_count,
            max_players=int(getattr(info, "max_players", 0) or 0),
            ping_ms=int(round(ping * 1000)),
            password=bool(getattr(info, "password_protected", False)),
            secure=bool(getattr(info, "vac_enabled", False)),
            version=getattr(info, "version", None) or None,
            connect_address=f"{host}:{game_port}",
            query_port=port,
            steam_id=str(steam_id) if steam_id else None,
            raw_tags=getattr(info, "keywords", None),
            raw_rules=rules,
            player_names=player_names,
        )


__all__ = [
    "ATTEMPT_GRACE_SECONDS",
    "A2SProbeClient",
    "ProbeClient",
]
