"""Master directory clients used by discovery.

A master directory lists the addresses of every registered server of one
game. Implementations return a deduplicated ``set`` of ``ip:port`` strings
and raise ``DirectoryUnavailable`` on any network, timeout or parse error.
Listing has no side effects and is safe to repeat.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, Self

import httpx

from serverwatch.config import DEFAULT_DIRECTORY_FILTER, DEFAULT_DIRECTORY_URL
from serverwatch.exceptions import DirectoryUnavailable
from serverwatch.logging import get_logger
from serverwatch.models import split_address

logger = get_logger(__name__)

# Default timeout for directory requests (connect, read, write, pool)
DEFAULT_TIMEOUT = httpx.Timeout(10.0, read=30.0)


class MasterDirectory(ABC):
    """Abstract interface for master directory lookups."""

    @abstractmethod
    def list(self, filter: str) -> set[str]:
        """List addresses of servers matching a directory filter.

        Args:
            filter: Directory filter expression (e.g. ``\\appid\\730``).

        Returns:
            Set of unique ``ip:port`` addresses.

        Raises:
            DirectoryUnavailable: If the directory cannot be queried.
        """
        pass

    def close(self) -> None:
        """Release any held resources."""
        return None


def _valid_addresses(candidates: Iterable[Any]) -> set[str]:
    """Keep well-formed ``ip:port`` strings, dropping anything else."""
    addresses: set[str] = set()
    dropped = 0
    for candidate in candidates:
        if not isinstance(candidate, str):
            dropped += 1
            continue
        try:
            split_address(candidate)
        except ValueError:
            dropped += 1
            continue
        addresses.add(candidate)
    if dropped:
        logger.warning("Dropped %s malformed addresses from directory response", dropped)
    return addresses


class StaticDirectory(MasterDirectory):
    """Directory backed by a fixed address list.

    Useful for tracking a hand-picked set of servers and for tests.
    """

    def __init__(self, addresses: Iterable[str]) -> None:
        self._addresses = _valid_addresses(addresses)

    def list(self, filter: str) -> set[str]:
        return set(self._addresses)


class SteamWebDirectory(MasterDirectory):
    """Directory client for the Steam Web API server list.

    Uses ``IGameServersService/GetServerList`` (JSON over HTTPS) with a
    reusable ``httpx.Client`` for connection pooling.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_DIRECTORY_URL,
        limit: int = 20000,
        timeout: httpx.Timeout | float | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the Steam directory client.

        Args:
            api_key: Steam Web API key.
            base_url: Endpoint URL of GetServerList.
            limit: Maximum number of servers requested per listing.
            timeout: Optional custom timeout configuration.
            http_client: Optional pre-built client (tests inject a client with
                a mock transport). Closed by ``close()`` either way.
        """
        self.api_key = api_key
        self.base_url = base_url
        self.limit = limit
        self.timeout = timeout if timeout is not None else DEFAULT_TIMEOUT
        self._client = http_client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def list(self, filter: str = DEFAULT_DIRECTORY_FILTER) -> set[str]:
        params = {"key": self.api_key, "filter": filter, "limit": self.limit}
        try:
            response = self._get_client().get(self.base_url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise DirectoryUnavailable(f"Directory request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise DirectoryUnavailable(
                f"Directory returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DirectoryUnavailable(f"Directory request failed: {e}") from e
        except ValueError as e:
            raise DirectoryUnavailable(f"Directory returned invalid JSON: {e}") from e

        servers = self._extract_servers(payload)
        addresses = _valid_addresses(server.get("addr") for server in servers)
        logger.debug(
            "Directory listed %s entries, %s unique addresses", len(servers), len(addresses)
        )
        return addresses

    @staticmethod
    def _extract_servers(payload: Any) -> list[dict[str, Any]]:
        if not isinstance(payload, dict):
            raise DirectoryUnavailable("Directory response is not a JSON object")
        body = payload.get("response")
        if not isinstance(body, dict):
            raise DirectoryUnavailable("Directory response has no 'response' object")
        # An empty listing omits the "servers" key entirely
        servers = body.get("servers", [])
        if not isinstance(servers, list):
            raise DirectoryUnavailable("Directory 'servers' field is not a list")
        return [server for server in servers if isinstance(server, dict)]

    def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


__all__ = [
    "DEFAULT_TIMEOUT",
    "MasterDirectory",
    "StaticDirectory",
    "SteamWebDirectory",
]
