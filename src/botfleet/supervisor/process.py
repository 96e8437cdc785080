"""Local process supervisor: named child processes with auto-restart.

A long-lived manager living inside the orchestrator process. Each worker
handle maps to one child process launched with ``asyncio`` subprocesses;
a watcher task restarts it when it exits on its own, up to a bounded
number of restarts, after which the handle is marked ``errored``.

Architecture:

    .. code-block:: text

        ProcessSupervisor: container-free workers
        ┌──────────────────────────────────────────────────────────────┐
        │                                                              │
        │  handle ──► _ManagedProcess                                  │
        │               process   asyncio.subprocess.Process           │
        │               status    online | stopping | stopped | errored│
        │               restarts  crash restarts so far                │
        │               watcher   task awaiting process exit           │
        │                                                              │
        │  stdout → <log_dir>/<handle>.out.log   (append)              │
        │  stderr → <log_dir>/<handle>.err.log   (append)              │
        │                                                              │
        │  exit without stop()  → sleep(restart_delay) → respawn       │
        │  restarts > max       → status = errored, no respawn         │
        │  stop()               → SIGTERM → grace period → SIGKILL     │
        └──────────────────────────────────────────────────────────────┘

Example:
    >>> supervisor = ProcessSupervisor(command=["python", "-m", "botfleet.runner"])
    >>> await supervisor.start("bot_u1_1700000000000", {"BOT_TOKEN": "t"})
    >>> await supervisor.describe("bot_u1_1700000000000")
    ProcessDescription(status='running', restarts=0, ...)
    >>> await supervisor.shutdown()

Tags:
    supervisor, process, subprocess, restart, botfleet
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from botfleet.core.errors import StartFailedError
from botfleet.supervisor._base import DEFAULT_TIMEOUT, BaseSupervisorAdapter
from botfleet.supervisor._types import (
    ProcessDescription,
    SupervisorHealth,
    SupervisorResult,
)

logger = logging.getLogger(__name__)

_PAGE_SIZE = os.sysconf("SC_PAGE_SIZE") if hasattr(os, "sysconf") else 4096
_CLOCK_TICKS = os.sysconf("SC_CLK_TCK") if hasattr(os, "sysconf") else 100


@dataclass
class _ManagedProcess:
    """Internal state for one supervised handle."""

    handle: str
    env: dict[str, str]
    process: asyncio.subprocess.Process | None = None
    status: str = "launching"
    restarts: int = 0
    started_at: float = 0.0
    watcher: asyncio.Task[None] | None = None
    stdout: IO[bytes] | None = None
    stderr: IO[bytes] | None = None

    @property
    def alive(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def close_logs(self) -> None:
        for fh in (self.stdout, self.stderr):
            if fh is not None and not fh.closed:
                fh.close()
        self.stdout = self.stderr = None


class ProcessSupervisor(BaseSupervisorAdapter):
    """Supervisor running workers as local child processes.

    Parameters:
        command: Worker argv.
        log_dir: Directory for the per-handle ``.out.log`` / ``.err.log``.
        cwd: Working directory of the workers.
        max_restarts: Crash restarts allowed before the handle is ``errored``.
        restart_delay: Seconds to wait before each restart.
        stop_grace_period: Seconds between SIGTERM and SIGKILL on stop.
        inherit_env: Overlay the worker env on the orchestrator's own.
        timeout: Upper bound in seconds for each supervisor call.
    """

    def __init__(
        self,
        *,
        command: list[str],
        log_dir: str | Path = "data/logs",
        cwd: str | Path | None = None,
        max_restarts: int = 10,
        restart_delay: float = 1.0,
        stop_grace_period: float = 5.0,
        inherit_env: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        if not command:
            raise ValueError("Worker command must not be empty")
        self._command = list(command)
        self._log_dir = Path(log_dir)
        self._cwd = Path(cwd) if cwd else None
        self._max_restarts = max_restarts
        self._restart_delay = restart_delay
        self._grace = stop_grace_period
        self._inherit_env = inherit_env
        self._procs: dict[str, _ManagedProcess] = {}

    @property
    def backend_name(self) -> str:
        return "process"

    def log_paths(self, handle: str) -> tuple[Path, Path]:
        return (
            self._log_dir / f"{handle}.out.log",
            self._log_dir / f"{handle}.err.log",
        )

    # ------------------------------------------------------------------
    # Core lifecycle
    # ------------------------------------------------------------------

    async def _do_start(self, handle: str, env: dict[str, str]) -> SupervisorResult:
        record = self._procs.get(handle)
        if record is not None and record.status == "online" and record.alive:
            return SupervisorResult(handle=handle, already=True, message="already running")
        if record is not None:
            await self._terminate(record)

        record = _ManagedProcess(handle=handle, env=dict(env))
        self._procs[handle] = record
        try:
            await self._spawn(record)
        except OSError as exc:
            record.status = "errored"
            record.close_logs()
            raise StartFailedError(
                f"Failed to launch {self._command[0]}: {exc}", cause=exc
            ).with_context(handle=handle, backend="process", operation="start") from exc

        record.watcher = asyncio.create_task(self._watch(record), name=f"watch:{handle}")
        pid = record.process.pid if record.process else None
        return SupervisorResult(handle=handle, message=f"pid {pid}")

    async def _do_stop(self, handle: str) -> SupervisorResult:
        record = self._procs.pop(handle, None)
        if record is None:
            return SupervisorResult(handle=handle, already=True, message="not running")
        was_alive = record.alive
        await self._terminate(record)
        if not was_alive:
            return SupervisorResult(handle=handle, already=True, message="not running")
        return SupervisorResult(handle=handle, message="stopped")

    async def _do_describe(self, handle: str) -> ProcessDescription | None:
        record = self._procs.get(handle)
        if record is None:
            return None
        running = record.status == "online" and record.alive
        pid = record.process.pid if record.process is not None and running else None
        uptime = time.monotonic() - record.started_at if running else None
        cpu, memory = _proc_metrics(pid, uptime) if pid is not None else (None, None)
        return ProcessDescription(
            status="running" if running else record.status,
            restarts=record.restarts,
            uptime_seconds=uptime,
            cpu_percent=cpu,
            memory_bytes=memory,
            pid=pid,
        )

    async def _do_logs(self, handle: str, tail: int) -> list[str]:
        out_path, err_path = self.log_paths(handle)
        out_lines, err_lines = await asyncio.gather(
            asyncio.to_thread(_tail, out_path, tail),
            asyncio.to_thread(_tail, err_path, tail),
        )
        lines = out_lines + [f"[stderr] {line}" for line in err_lines]
        return lines[-tail:]

    async def _do_health(self) -> SupervisorHealth:
        online = sum(1 for r in self._procs.values() if r.status == "online")
        return SupervisorHealth(
            healthy=True,
            backend="process",
            version="1.0.0",
            message=f"{online} worker process(es) online",
        )

    async def shutdown(self) -> None:
        """Stop every managed process."""
        handles = list(self._procs)
        for handle in handles:
            record = self._procs.pop(handle, None)
            if record is not None:
                await self._terminate(record)
        logger.info("Process supervisor shut down (%d handles)", len(handles))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_env(self, env: dict[str, str]) -> dict[str, str]:
        merged = dict(os.environ) if self._inherit_env else {}
        merged.update(env)
        return merged

    async def _spawn(self, record: _ManagedProcess) -> None:
        self._log_dir.mkdir(parents=True, exist_ok=True)
        out_path, err_path = self.log_paths(record.handle)
        record.close_logs()
        record.stdout = out_path.open("ab")
        record.stderr = err_path.open("ab")
        try:
            record.process = await asyncio.create_subprocess_exec(
                *self._command,
                stdout=record.stdout,
                stderr=record.stderr,
                env=self._build_env(record.env),
                cwd=str(self._cwd) if self._cwd else None,
            )
        except OSError:
            record.close_logs()
            raise
        record.status = "online"
        record.started_at = time.monotonic()
        logger.info("Spawned %s (pid=%s)", record.handle, record.process.pid)

    async def _watch(self, record: _ManagedProcess) -> None:
        """Respawn the process when it exits without being stopped."""
        while record.process is not None:
            returncode = await record.process.wait()
            if record.status != "online":
                return
            if record.restarts >= self._max_restarts:
                record.status = "errored"
                record.close_logs()
                logger.error(
                    "%s exited with %s after %d restarts; giving up",
                    record.handle, returncode, record.restarts,
                )
                return
            record.restarts += 1
            logger.warning(
                "%s exited with %s, restarting (%d/%d)",
                record.handle, returncode, record.restarts, self._max_restarts,
            )
            await asyncio.sleep(self._restart_delay)
            if record.status != "online":
                return
            try:
                await self._spawn(record)
            except OSError as exc:
                record.status = "errored"
                logger.error("Respawn of %s failed: %s", record.handle, exc)
                return

    async def _terminate(self, record: _ManagedProcess) -> None:
        record.status = "stopping"
        watcher = record.watcher
        if watcher is not None and watcher is not asyncio.current_task():
            watcher.cancel()
        process = record.process
        if process is not None and process.returncode is None:
            try:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self._grace)
                except TimeoutError:
                    logger.warning("%s ignored SIGTERM, killing", record.handle)
                    process.kill()
                    await process.wait()
            except ProcessLookupError:
                pass
        if watcher is not None and watcher is not asyncio.current_task():
            await asyncio.gather(watcher, return_exceptions=True)
        record.status = "stopped"
        record.close_logs()


def _tail(path: Path, count: int) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="replace") as fh:
        return [line.rstrip("\n") for line in deque(fh, maxlen=count)]


def _proc_metrics(pid: int, uptime: float | None) -> tuple[float | None, int | None]:
    """CPU percent (average since start) and RSS bytes from ``/proc``, if available."""
    memory = cpu = None
    try:
        with open(f"/proc/{pid}/statm", encoding="ascii") as fh:
            memory = int(fh.read().split()[1]) * _PAGE_SIZE
        with open(f"/proc/{pid}/stat", encoding="ascii") as fh:
            fields = fh.read().rsplit(")", 1)[1].split()
        cpu_seconds = (int(fields[11]) + int(fields[12])) / _CLOCK_TICKS
        if uptime:
            cpu = round(100.0 * cpu_seconds / uptime, 2)
    except (OSError, IndexError, ValueError):
        pass
    return cpu, memory


__all__ = ["ProcessSupervisor"]
