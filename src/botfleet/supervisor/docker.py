"""Docker supervisor: one long-lived container per worker.

Manages worker containers through the ``docker`` CLI, run as asyncio
subprocesses so a slow daemon never blocks the event loop.

Manifesto:
    Container lifecycle management via the CLI is portable across Docker,
    Podman (with the docker alias) and remote daemons (``DOCKER_HOST``).

    - **subprocess, not docker-py:** no daemon socket client to pin
    - **Named containers:** the worker handle is the container name, so a
      second ``run`` for the same worker is impossible by construction
    - **Restart policy:** ``unless-stopped`` keeps workers alive across
      crashes and daemon restarts; the controller never restarts them

Architecture:

    .. code-block:: text

        start(handle, env)
          ├── docker inspect <handle>
          │     running → success (already=True), no second run
          │     exited  → docker rm -f <handle>
          └── docker run -d --restart unless-stopped --name <handle>
                         -e KEY=VALUE ... -v <commands_dir>:<workdir>
                         <image> sh -c <worker command>

        stop(handle)
          └── docker rm -f <handle>     "No such container" → success

        describe(handle)
          ├── docker inspect <handle>   absent → None
          └── docker stats --no-stream  cpu / memory, running only

Tags:
    supervisor, docker, container, subprocess, botfleet
"""

from __future__ import annotations

import asyncio
import datetime
import json
import logging
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from botfleet.core.errors import SupervisorError
from botfleet.supervisor._base import DEFAULT_TIMEOUT, BaseSupervisorAdapter
from botfleet.supervisor._types import (
    ProcessDescription,
    SupervisorHealth,
    SupervisorResult,
)

logger = logging.getLogger(__name__)

_NO_SUCH = ("no such container", "no such object")

_MEMORY_UNITS = {
    "b": 1,
    "kb": 1000,
    "kib": 1024,
    "mb": 1000**2,
    "mib": 1024**2,
    "gb": 1000**3,
    "gib": 1024**3,
    "tb": 1000**4,
    "tib": 1024**4,
}


@dataclass(frozen=True)
class DockerOutput:
    """Result of one docker CLI invocation."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def not_found(self) -> bool:
        text = self.stderr.lower()
        return any(marker in text for marker in _NO_SUCH)


def parse_memory(value: str) -> int | None:
    """Parse a docker size such as ``12.5MiB`` into bytes."""
    match = re.fullmatch(r"\s*([0-9.]+)\s*([a-zA-Z]+)\s*", value)
    if not match:
        return None
    factor = _MEMORY_UNITS.get(match.group(2).lower())
    if factor is None:
        return None
    return int(float(match.group(1)) * factor)


def parse_docker_time(value: str | None) -> datetime.datetime | None:
    """Parse docker's RFC 3339 timestamps (nanosecond precision, ``Z`` suffix)."""
    if not value or value.startswith("0001-01-01"):
        return None
    match = re.fullmatch(r"(.+?T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})", value)
    if not match:
        return None
    base, fraction, zone = match.groups()
    text = base
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    text += "+00:00" if zone == "Z" else zone
    return datetime.datetime.fromisoformat(text)


class DockerSupervisor(BaseSupervisorAdapter):
    """Supervisor backed by the docker CLI.

    Parameters:
        image: Image every worker container runs.
        command: Worker argv, executed with ``sh -c`` inside the container.
        docker_binary: Name or path of the docker executable.
        workdir: Working directory inside the container.
        mount_dir: Host directory mounted at *workdir*, if any.
        timeout: Upper bound in seconds for each supervisor call.
    """

    def __init__(
        self,
        *,
        image: str,
        command: list[str],
        docker_binary: str = "docker",
        workdir: str = "/workspace",
        mount_dir: str | Path | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        if not command:
            raise ValueError("Worker command must not be empty")
        self._image = image
        self._command = list(command)
        self._docker = docker_binary
        self._workdir = workdir
        self._mount_dir = Path(mount_dir).resolve() if mount_dir else None

    @property
    def backend_name(self) -> str:
        return "docker"

    # ------------------------------------------------------------------
    # Core lifecycle
    # ------------------------------------------------------------------

    async def _do_start(self, handle: str, env: dict[str, str]) -> SupervisorResult:
        info = await self._inspect(handle)
        if info is not None:
            if info.get("State", {}).get("Running"):
                logger.info("Container %s already running", handle)
                return SupervisorResult(handle=handle, already=True, message="already running")
            logger.info("Removing stale container %s", handle)
            await self._run_docker("rm", "-f", handle, check=False)

        result = await self._run_docker(*self._run_args(handle, env))
        container_id = result.stdout.strip()[:12]
        return SupervisorResult(handle=handle, message=f"container {container_id}")

    async def _do_stop(self, handle: str) -> SupervisorResult:
        result = await self._run_docker("rm", "-f", handle, check=False)
        if result.ok:
            return SupervisorResult(handle=handle, message="removed")
        if result.not_found:
            return SupervisorResult(handle=handle, already=True, message="no such container")
        raise SupervisorError(
            f"docker rm failed (exit {result.returncode}): {result.stderr.strip()}"
        ).with_context(handle=handle, backend="docker", operation="stop")

    async def _do_describe(self, handle: str) -> ProcessDescription | None:
        info = await self._inspect(handle)
        if info is None:
            return None
        state = info.get("State", {})
        status = state.get("Status") or ("running" if state.get("Running") else "exited")

        uptime = None
        started = parse_docker_time(state.get("StartedAt"))
        if started is not None and state.get("Running"):
            uptime = (datetime.datetime.now(datetime.UTC) - started).total_seconds()

        cpu = memory = None
        if state.get("Running"):
            cpu, memory = await self._stats(handle)

        return ProcessDescription(
            status=status,
            restarts=int(info.get("RestartCount") or 0),
            uptime_seconds=uptime,
            cpu_percent=cpu,
            memory_bytes=memory,
            pid=state.get("Pid") or None,
        )

    async def _do_logs(self, handle: str, tail: int) -> list[str]:
        result = await self._run_docker("logs", "--tail", str(tail), handle, check=False)
        if not result.ok:
            if result.not_found:
                return []
            raise SupervisorError(
                f"docker logs failed (exit {result.returncode}): {result.stderr.strip()}"
            ).with_context(handle=handle, backend="docker", operation="logs")
        # docker logs replays the container's stderr on our stderr
        lines = result.stdout.splitlines() + result.stderr.splitlines()
        return lines[-tail:]

    async def _do_health(self) -> SupervisorHealth:
        result = await self._run_docker(
            "version", "--format", "{{.Server.Version}}", check=False
        )
        if not result.ok:
            return SupervisorHealth(
                healthy=False,
                backend="docker",
                message=result.stderr.strip() or "docker daemon unreachable",
            )
        return SupervisorHealth(healthy=True, backend="docker", version=result.stdout.strip())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run_args(self, handle: str, env: dict[str, str]) -> list[str]:
        args = ["run", "-d", "--restart", "unless-stopped", "--name", handle]
        for key, value in sorted(env.items()):
            args += ["-e", f"{key}={value}"]
        if self._mount_dir is not None:
            args += ["-v", f"{self._mount_dir}:{self._workdir}"]
        args += ["-w", self._workdir, self._image, "sh", "-c", shlex.join(self._command)]
        return args

    async def _inspect(self, handle: str) -> dict[str, Any] | None:
        result = await self._run_docker("inspect", "--type", "container", handle, check=False)
        if not result.ok:
            if result.not_found:
                return None
            raise SupervisorError(
                f"docker inspect failed (exit {result.returncode}): {result.stderr.strip()}"
            ).with_context(handle=handle, backend="docker", operation="inspect")
        data = json.loads(result.stdout or "[]")
        return data[0] if data else None

    async def _stats(self, handle: str) -> tuple[float | None, int | None]:
        result = await self._run_docker(
            "stats", "--no-stream", "--format", "{{json .}}", handle, check=False
        )
        if not result.ok or not result.stdout.strip():
            return None, None
        stats = json.loads(result.stdout.strip().splitlines()[0])
        cpu = None
        cpu_text = str(stats.get("CPUPerc", "")).rstrip("%")
        if cpu_text:
            try:
                cpu = float(cpu_text)
            except ValueError:
                cpu = None
        memory = parse_memory(str(stats.get("MemUsage", "")).split("/")[0])
        return cpu, memory

    async def _run_docker(self, *args: str, check: bool = True) -> DockerOutput:
        """Run a docker CLI command, killing it if the caller is cancelled."""
        cmd = [self._docker, *args]
        logger.debug("docker.exec %s", " ".join(cmd[:4]))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise SupervisorError(
                f"docker CLI not found: {self._docker}", retryable=False, cause=exc
            ).with_context(backend="docker") from exc

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        result = DockerOutput(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if check and not result.ok:
            raise SupervisorError(
                f"Docker command failed (exit {result.returncode}): "
                f"{args[0]}\n{result.stderr.strip()}"
            ).with_context(backend="docker", operation=args[0])
        return result


__all__ = ["DockerOutput", "DockerSupervisor", "parse_docker_time", "parse_memory"]
