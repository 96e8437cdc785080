"""Types shared by every supervisor backend.

- SupervisorAdapter: Protocol for starting, stopping and describing a
  named worker process
- SupervisorResult: Outcome of a start/stop call
- ProcessDescription: Read-only metrics of a running worker
- SupervisorHealth: Reachability of the backend

.. code-block:: text

    SupervisorAdapter Protocol
    ┌────────────────────────────────────────────────────────────┐
    │  start(handle, env) → SupervisorResult   idempotent        │
    │  stop(handle)       → SupervisorResult   idempotent        │
    │  describe(handle)   → ProcessDescription | None            │
    │  logs(handle, tail) → list[str]                            │
    │  health()           → SupervisorHealth                     │
    └────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class SupervisorResult:
    """Outcome of a start or stop call.

    ``already`` is set when the call was a no-op because the handle was
    already in the requested state.
    """

    handle: str
    ok: bool = True
    already: bool = False
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"handle": self.handle, "ok": self.ok, "already": self.already}
        if self.message:
            d["message"] = self.message
        return d


@dataclass(frozen=True)
class ProcessDescription:
    """Metrics of one supervised process. Never used for control decisions."""

    status: str
    restarts: int = 0
    uptime_seconds: float | None = None
    cpu_percent: float | None = None
    memory_bytes: int | None = None
    pid: int | None = None

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "restarts": self.restarts,
            "uptime_seconds": self.uptime_seconds,
            "cpu_percent": self.cpu_percent,
            "memory_bytes": self.memory_bytes,
            "pid": self.pid,
        }


@dataclass
class SupervisorHealth:
    """Result of a backend health check.

    Example:
        >>> health = SupervisorHealth(healthy=True, backend="docker", version="24.0.7")
    """

    healthy: bool
    backend: str
    version: str | None = None
    message: str | None = None
    latency_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"healthy": self.healthy, "backend": self.backend}
        if self.version:
            d["version"] = self.version
        if self.message:
            d["message"] = self.message
        if self.latency_ms is not None:
            d["latency_ms"] = self.latency_ms
        return d


@runtime_checkable
class SupervisorAdapter(Protocol):
    """Protocol for process supervisor backends.

    Both variants guarantee that ``start`` on a running handle and ``stop``
    on a stopped or unknown handle succeed without side effects, and that
    every call returns or fails within a bounded time.
    """

    @property
    def backend_name(self) -> str:
        """Name of the backend (``docker``, ``process``, ``stub``)."""
        ...

    async def start(self, handle: str, env: dict[str, str]) -> SupervisorResult:
        """Start *handle* with *env*; success if already running."""
        ...

    async def stop(self, handle: str) -> SupervisorResult:
        """Stop and remove *handle*; success if not running."""
        ...

    async def describe(self, handle: str) -> ProcessDescription | None:
        """Metrics for *handle*, ``None`` when the backend has no record."""
        ...

    async def logs(self, handle: str, tail: int = 100) -> list[str]:
        """Last *tail* output lines of *handle*."""
        ...

    async def health(self) -> SupervisorHealth:
        """Check the backend is reachable."""
        ...


__all__ = [
    "ProcessDescription",
    "SupervisorAdapter",
    "SupervisorHealth",
    "SupervisorResult",
]
