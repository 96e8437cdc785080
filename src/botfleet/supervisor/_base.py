"""Base supervisor adapter with shared call handling.

Provides ``BaseSupervisorAdapter`` with the common wrapping every backend
needs (logging, a bounded timeout, error conversion) and
``StubSupervisor`` for unit tests.

Architecture:

    .. code-block:: text

        SupervisorAdapter (Protocol)
              │
              ▼
        BaseSupervisorAdapter
        ├── start()    → logging + timeout + StartFailedError → _do_start()
        ├── stop()     → logging + timeout + SupervisorError  → _do_stop()
        ├── describe() → timeout, None on failure              → _do_describe()
        ├── logs()     → timeout + SupervisorError             → _do_logs()
        └── health()   → latency timing                        → _do_health()
              │
        ┌─────┼──────────────────────┬───────────────────┐
        ▼     ▼                      ▼                   ▼
    DockerSupervisor          ProcessSupervisor     StubSupervisor
    (container runtime)       (local processes)     (in-memory for tests)

Usage:
    # In tests:
    supervisor = StubSupervisor()
    await supervisor.start("bot_u1_1700000000000", {"BOT_TOKEN": "t"})
    assert supervisor.start_count == 1

Tags:
    supervisor, adapter, base, stub, botfleet
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import TypeVar

from botfleet.core.errors import (
    AdapterTimeoutError,
    FleetError,
    StartFailedError,
    SupervisorError,
)
from botfleet.core.timeout import TimeoutExpired, run_with_timeout_async
from botfleet.supervisor._types import (
    ProcessDescription,
    SupervisorHealth,
    SupervisorResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 20.0


# ---------------------------------------------------------------------------
# Base adapter
# ---------------------------------------------------------------------------


class BaseSupervisorAdapter:
    """Base class for supervisor backends.

    Subclasses MUST implement:
        _do_start, _do_stop, _do_describe, _do_logs, _do_health

    Every public call is bounded by ``timeout`` seconds. A call that runs
    out of time is cancelled and raises ``AdapterTimeoutError``.

    .. code-block:: text

        start(handle, env)
          ├── log: "Starting bot_u1_... on docker"
          ├── _do_start(handle, env)  ← subclass implements
          ├── on timeout: AdapterTimeoutError
          └── on any other error: StartFailedError(cause=exc)

        stop(handle)
          ├── _do_stop(handle)        ← subclass implements
          ├── on timeout: AdapterTimeoutError
          └── on error: SupervisorError(cause=exc)
    """

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.timeout = timeout

    @property
    def backend_name(self) -> str:
        """Unique name for this backend."""
        raise NotImplementedError

    async def _bounded(self, aw: Awaitable[T], operation: str, handle: str | None) -> T:
        try:
            return await run_with_timeout_async(
                aw, self.timeout, operation=f"{self.backend_name}.{operation}"
            )
        except TimeoutExpired as exc:
            logger.error(
                "%s of %s on %s timed out after %ss",
                operation, handle, self.backend_name, self.timeout,
            )
            raise AdapterTimeoutError(
                operation, self.timeout, handle=handle, cause=exc
            ).with_context(backend=self.backend_name) from exc

    async def start(self, handle: str, env: dict[str, str]) -> SupervisorResult:
        """Start with logging, timeout and error wrapping."""
        logger.info("Starting %s on %s", handle, self.backend_name)
        try:
            result = await self._bounded(self._do_start(handle, env), "start", handle)
        except (AdapterTimeoutError, StartFailedError):
            raise
        except Exception as exc:
            logger.error("Start failed for %s on %s: %s", handle, self.backend_name, exc)
            raise StartFailedError(f"Start failed: {exc}", cause=exc).with_context(
                handle=handle, backend=self.backend_name, operation="start"
            ) from exc
        logger.info(
            "Started %s on %s (already=%s)", handle, self.backend_name, result.already
        )
        return result

    async def stop(self, handle: str) -> SupervisorResult:
        """Stop with logging, timeout and error wrapping. Idempotent."""
        logger.info("Stopping %s on %s", handle, self.backend_name)
        try:
            result = await self._bounded(self._do_stop(handle), "stop", handle)
        except FleetError:
            raise
        except Exception as exc:
            logger.error("Stop failed for %s on %s: %s", handle, self.backend_name, exc)
            raise SupervisorError(f"Stop failed: {exc}", cause=exc).with_context(
                handle=handle, backend=self.backend_name, operation="stop"
            ) from exc
        logger.info(
            "Stopped %s on %s (already=%s)", handle, self.backend_name, result.already
        )
        return result

    async def describe(self, handle: str) -> ProcessDescription | None:
        """Metrics for *handle*; ``None`` when unknown or when the lookup fails."""
        try:
            return await self._bounded(self._do_describe(handle), "describe", handle)
        except Exception as exc:
            logger.warning("Describe failed for %s: %s", handle, exc)
            return None

    async def logs(self, handle: str, tail: int = 100) -> list[str]:
        """Last *tail* output lines of *handle*."""
        if tail <= 0:
            raise ValueError(f"tail must be positive, got {tail}")
        try:
            return await self._bounded(self._do_logs(handle, tail), "logs", handle)
        except FleetError:
            raise
        except Exception as exc:
            raise SupervisorError(f"Reading logs failed: {exc}", cause=exc).with_context(
                handle=handle, backend=self.backend_name, operation="logs"
            ) from exc

    async def health(self) -> SupervisorHealth:
        """Health check with latency timing."""
        start = time.monotonic()
        try:
            result = await self._bounded(self._do_health(), "health", None)
            return SupervisorHealth(
                healthy=result.healthy,
                backend=self.backend_name,
                version=result.version,
                message=result.message,
                latency_ms=(time.monotonic() - start) * 1000,
            )
        except Exception as exc:
            return SupervisorHealth(
                healthy=False,
                backend=self.backend_name,
                message=f"Health check failed: {exc}",
                latency_ms=(time.monotonic() - start) * 1000,
            )

    # --- Abstract methods for subclasses ---

    async def _do_start(self, handle: str, env: dict[str, str]) -> SupervisorResult:
        """Implement in subclass. Must succeed on an already running handle."""
        raise NotImplementedError

    async def _do_stop(self, handle: str) -> SupervisorResult:
        """Implement in subclass. Must succeed on an unknown handle."""
        raise NotImplementedError

    async def _do_describe(self, handle: str) -> ProcessDescription | None:
        """Implement in subclass."""
        raise NotImplementedError

    async def _do_logs(self, handle: str, tail: int) -> list[str]:
        """Implement in subclass."""
        raise NotImplementedError

    async def _do_health(self) -> SupervisorHealth:
        """Implement in subclass."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Stub adapter for testing
# ---------------------------------------------------------------------------


@dataclass
class _StubProcess:
    """Internal state for a stubbed worker process."""

    handle: str
    env: dict[str, str]
    started_at: float = field(default_factory=time.monotonic)
    restarts: int = 0
    logs: list[str] = field(default_factory=list)


class StubSupervisor(BaseSupervisorAdapter):
    """In-memory supervisor for unit tests.

    No processes are spawned; ``running`` maps handles to their state.

    .. code-block:: text

        Inject failures:
          supervisor.fail_start = True    → start() raises StartFailedError
          supervisor.fail_stop = True     → stop() raises SupervisorError
          supervisor.fail_health = True   → health() reports unhealthy
          supervisor.start_delay = 0.05   → start() sleeps before acting

        Track usage:
          supervisor.start_count   → number of start calls reaching the backend
          supervisor.stop_count    → number of stop calls reaching the backend
          supervisor.started       → handles in start order
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        start_delay: float = 0.0,
    ) -> None:
        super().__init__(timeout=timeout)
        self.start_delay = start_delay

        self.running: dict[str, _StubProcess] = {}
        self.started: list[str] = []
        self.start_count: int = 0
        self.stop_count: int = 0

        # Inject failures
        self.fail_start: bool = False
        self.fail_stop: bool = False
        self.fail_health: bool = False

    @property
    def backend_name(self) -> str:
        return "stub"

    def is_running(self, handle: str) -> bool:
        return handle in self.running

    async def _do_start(self, handle: str, env: dict[str, str]) -> SupervisorResult:
        self.start_count += 1
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.fail_start:
            raise RuntimeError(f"[stub] injected start failure for {handle}")
        if handle in self.running:
            return SupervisorResult(handle=handle, already=True, message="already running")
        self.running[handle] = _StubProcess(
            handle=handle,
            env=dict(env),
            logs=[f"[stub] {handle} started"],
        )
        self.started.append(handle)
        return SupervisorResult(handle=handle, message="started")

    async def _do_stop(self, handle: str) -> SupervisorResult:
        self.stop_count += 1
        if self.fail_stop:
            raise RuntimeError(f"[stub] injected stop failure for {handle}")
        if self.running.pop(handle, None) is None:
            return SupervisorResult(handle=handle, already=True, message="not running")
        return SupervisorResult(handle=handle, message="stopped")

    async def _do_describe(self, handle: str) -> ProcessDescription | None:
        proc = self.running.get(handle)
        if proc is None:
            return None
        return ProcessDescription(
            status="running",
            restarts=proc.restarts,
            uptime_seconds=time.monotonic() - proc.started_at,
            cpu_percent=0.0,
            memory_bytes=0,
        )

    async def _do_logs(self, handle: str, tail: int) -> list[str]:
        proc = self.running.get(handle)
        return proc.logs[-tail:] if proc is not None else []

    async def _do_health(self) -> SupervisorHealth:
        if self.fail_health:
            return SupervisorHealth(healthy=False, backend="stub", message="Injected failure")
        return SupervisorHealth(healthy=True, backend="stub", version="stub-1.0")


__all__ = ["DEFAULT_TIMEOUT", "BaseSupervisorAdapter", "StubSupervisor"]
