"""Tests for ProcessSupervisor: workers as local child processes."""

from __future__ import annotations

import asyncio
import sys

import pytest

from botfleet.core.errors import StartFailedError
from botfleet.registry.store import make_handle
from botfleet.supervisor.process import ProcessSupervisor

HANDLE = "bot_u1_1700000000000"

pytestmark = pytest.mark.integration


# ── Helpers ──────────────────────────────────────────────────────────────


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


SLEEPER = _python(
    "import os, sys, time\n"
    "print('token=' + os.environ.get('BOT_TOKEN', ''), flush=True)\n"
    "print('warming up', file=sys.stderr, flush=True)\n"
    "time.sleep(30)\n"
)
CRASHER = _python("import sys; sys.exit(3)")


def _supervisor(tmp_path, command=SLEEPER, **kwargs) -> ProcessSupervisor:
    kwargs.setdefault("restart_delay", 0.01)
    kwargs.setdefault("stop_grace_period", 2.0)
    kwargs.setdefault("timeout", 10.0)
    return ProcessSupervisor(command=command, log_dir=tmp_path / "logs", **kwargs)


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.05)


# ── Start / stop ─────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_describe_stop(self, tmp_path):
        supervisor = _supervisor(tmp_path)
        try:
            result = await supervisor.start(HANDLE, {"BOT_TOKEN": "t0k"})
            assert result.already is False

            description = await supervisor.describe(HANDLE)
            assert description.status == "running"
            assert description.pid is not None
            assert description.restarts == 0

            stopped = await supervisor.stop(HANDLE)
            assert stopped.already is False
            assert await supervisor.describe(HANDLE) is None
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_handle_from_odd_tenant_logs_inside_log_dir(self, tmp_path):
        handle = make_handle("../org/team", 1700000000000)
        supervisor = _supervisor(tmp_path)
        try:
            await supervisor.start(handle, {"BOT_TOKEN": "t"})
            out_log, err_log = supervisor.log_paths(handle)
            assert out_log.parent == tmp_path / "logs"
            assert err_log.parent == tmp_path / "logs"
            assert out_log.exists()
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, tmp_path):
        supervisor = _supervisor(tmp_path)
        try:
            await supervisor.start(HANDLE, {"BOT_TOKEN": "t"})
            pid = (await supervisor.describe(HANDLE)).pid
            again = await supervisor.start(HANDLE, {"BOT_TOKEN": "t"})
            assert again.already is True
            assert (await supervisor.describe(HANDLE)).pid == pid
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_stop_unknown_is_success(self, tmp_path):
        supervisor = _supervisor(tmp_path)
        assert (await supervisor.stop(HANDLE)).already is True

    @pytest.mark.asyncio
    async def test_launch_failure(self, tmp_path):
        supervisor = _supervisor(tmp_path, command=[str(tmp_path / "no-such-binary")])
        with pytest.raises(StartFailedError) as exc_info:
            await supervisor.start(HANDLE, {})
        assert exc_info.value.context.backend == "process"
        assert (await supervisor.describe(HANDLE)).status == "errored"

    def test_command_required(self, tmp_path):
        with pytest.raises(ValueError):
            ProcessSupervisor(command=[], log_dir=tmp_path)

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(self, tmp_path):
        supervisor = _supervisor(tmp_path)
        await supervisor.start("bot_u1_1", {})
        await supervisor.start("bot_u2_1", {})
        await supervisor.shutdown()
        assert await supervisor.describe("bot_u1_1") is None
        assert await supervisor.describe("bot_u2_1") is None


# ── Output ───────────────────────────────────────────────────────────────


class TestLogs:
    @pytest.mark.asyncio
    async def test_env_and_streams_reach_log_files(self, tmp_path):
        supervisor = _supervisor(tmp_path)
        try:
            await supervisor.start(HANDLE, {"BOT_TOKEN": "t0k"})

            async def both_streams_written() -> bool:
                return len(await supervisor.logs(HANDLE, tail=10)) >= 2

            await _wait_for(both_streams_written)
            lines = await supervisor.logs(HANDLE, tail=10)
            assert "token=t0k" in lines
            assert "[stderr] warming up" in lines

            out_path, err_path = supervisor.log_paths(HANDLE)
            assert out_path.name == f"{HANDLE}.out.log"
            assert err_path.exists()
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_logs_of_unknown_handle(self, tmp_path):
        assert await _supervisor(tmp_path).logs("bot_nobody_1") == []


# ── Restart policy ───────────────────────────────────────────────────────


class TestRestarts:
    @pytest.mark.asyncio
    async def test_crash_loop_ends_errored(self, tmp_path):
        supervisor = _supervisor(tmp_path, command=CRASHER, max_restarts=2)
        try:
            await supervisor.start(HANDLE, {})

            async def errored() -> bool:
                description = await supervisor.describe(HANDLE)
                return description is not None and description.status == "errored"

            await _wait_for(errored)
            description = await supervisor.describe(HANDLE)
            assert description.restarts == 2
            assert description.pid is None
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_errored_handle_can_be_started_again(self, tmp_path):
        supervisor = _supervisor(tmp_path, command=CRASHER, max_restarts=0)
        try:
            await supervisor.start(HANDLE, {})

            async def errored() -> bool:
                return (await supervisor.describe(HANDLE)).status == "errored"

            await _wait_for(errored)
            assert (await supervisor.start(HANDLE, {})).already is False
            assert (await supervisor.stop(HANDLE)).handle == HANDLE
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_health_counts_online(self, tmp_path):
        supervisor = _supervisor(tmp_path)
        try:
            await supervisor.start(HANDLE, {})
            health = await supervisor.health()
            assert health.healthy
            assert health.message == "1 worker process(es) online"
        finally:
            await supervisor.shutdown()
