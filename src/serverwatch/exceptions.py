"""Exception hierarchy for Serverwatch.

Errors are grouped by the pipeline stage that raises them so callers can
catch exactly the failures they are responsible for:

- Discovery: ``DirectoryUnavailable`` aborts a discovery cycle.
- Probing: ``ProbeTimeout``, ``ProbeRefused`` and ``ProbeMalformed`` are
  normalized to a Miss outcome by the worker pool and never escape it.
- Storage: ``ReconcileStoreError`` and ``ReaperStoreError`` wrap failures of
  the registry store for the stage that hit them.
- Startup: ``StartupDependencyError`` is fatal; the process exits non-zero.
"""

from __future__ import annotations


class ServerwatchError(Exception):
    """Base class for all Serverwatch errors."""

    pass


class DirectoryUnavailable(ServerwatchError):
    """Raised when the master directory cannot be queried.

    Covers network failures, timeouts and malformed responses. The discovery
    cycle is aborted without any state change and retried on the next tick.
    """

    pass


class ProbeError(ServerwatchError):
    """Base class for failures of a single server probe."""

    def __init__(self, address: str, message: str | None = None) -> None:
        self.address = address
        super().__init__(message or f"Probe of {address} failed")


class ProbeTimeout(ProbeError):
    """Raised when a server does not answer within the probe timeout."""

    pass


class ProbeRefused(ProbeError):
    """Raised when the connection is refused or the network is unreachable."""

    pass


class ProbeMalformed(ProbeError):
    """Raised when a server answers with a payload that cannot be decoded."""

    pass


class StoreError(ServerwatchError):
    """Raised when a registry store operation fails."""

    pass


class ReconcileStoreError(StoreError):
    """Raised when a probe outcome could not be applied to the store.

    The address keeps its previous state for this cycle and is naturally
    retried on the next discovery cycle.
    """

    def __init__(self, address: str, message: str | None = None) -> None:
        self.address = address
        super().__init__(message or f"Failed to reconcile {address}")


class ReaperStoreError(StoreError):
    """Raised when a retention sweep fails; the whole sweep is rolled back."""

    pass


class StartupDependencyError(ServerwatchError):
    """Raised when a required dependency (store or queue) is unusable at boot."""

    def __init__(self, dependency: str, message: str | None = None) -> None:
        self.dependency = dependency
        super().__init__(message or f"Required dependency '{dependency}' is unavailable")


class QueueClosedError(ServerwatchError):
    """Raised when enqueueing into a task queue that has been closed."""

    pass


__all__ = [
    "DirectoryUnavailable",
    "ProbeError",
    "ProbeMalformed",
    "ProbeRefused",
    "ProbeTimeout",
    "QueueClosedError",
    "ReaperStoreError",
    "ReconcileStoreError",
    "ServerwatchError",
    "StartupDependencyError",
    "StoreError",
]
