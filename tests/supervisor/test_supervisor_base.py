"""Tests for BaseSupervisorAdapter call handling, StubSupervisor and the backend factory."""

from __future__ import annotations

import pytest

from botfleet.core.errors import (
    AdapterTimeoutError,
    FleetError,
    StartFailedError,
    SupervisorError,
)
from botfleet.supervisor import (
    BaseSupervisorAdapter,
    DockerSupervisor,
    ProcessSupervisor,
    StubSupervisor,
    SupervisorAdapter,
    SupervisorHealth,
    SupervisorResult,
    create_supervisor,
)

HANDLE = "bot_u1_1700000000000"


# ── Helpers ──────────────────────────────────────────────────────────────


class BrokenSupervisor(BaseSupervisorAdapter):
    """Every backend call raises a plain exception."""

    @property
    def backend_name(self) -> str:
        return "broken"

    async def _do_start(self, handle, env):
        raise OSError("daemon socket refused")

    async def _do_stop(self, handle):
        raise OSError("daemon socket refused")

    async def _do_describe(self, handle):
        raise OSError("daemon socket refused")

    async def _do_logs(self, handle, tail):
        raise OSError("daemon socket refused")

    async def _do_health(self):
        raise OSError("daemon socket refused")


# ── Protocol ─────────────────────────────────────────────────────────────


class TestProtocol:
    def test_backends_satisfy_protocol(self, tmp_path):
        assert isinstance(StubSupervisor(), SupervisorAdapter)
        assert isinstance(
            DockerSupervisor(image="python:3.12-slim", command=["python"]), SupervisorAdapter
        )
        assert isinstance(
            ProcessSupervisor(command=["python"], log_dir=tmp_path), SupervisorAdapter
        )

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            StubSupervisor(timeout=0)


# ── Stub lifecycle ───────────────────────────────────────────────────────


class TestStubLifecycle:
    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        stub = StubSupervisor()
        first = await stub.start(HANDLE, {"BOT_TOKEN": "t"})
        second = await stub.start(HANDLE, {"BOT_TOKEN": "t"})

        assert isinstance(first, SupervisorResult)
        assert first.already is False
        assert second.already is True
        assert stub.started == [HANDLE]
        assert stub.start_count == 2
        assert stub.running[HANDLE].env == {"BOT_TOKEN": "t"}

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        stub = StubSupervisor()
        await stub.start(HANDLE, {})
        assert (await stub.stop(HANDLE)).already is False
        assert (await stub.stop(HANDLE)).already is True
        assert (await stub.stop("bot_unknown_1")).already is True
        assert not stub.is_running(HANDLE)

    @pytest.mark.asyncio
    async def test_describe_and_logs(self):
        stub = StubSupervisor()
        assert await stub.describe(HANDLE) is None
        await stub.start(HANDLE, {})

        description = await stub.describe(HANDLE)
        assert description.is_running
        assert description.restarts == 0
        assert await stub.logs(HANDLE, tail=10) == [f"[stub] {HANDLE} started"]

    @pytest.mark.asyncio
    async def test_logs_tail_must_be_positive(self):
        with pytest.raises(ValueError):
            await StubSupervisor().logs(HANDLE, tail=0)

    @pytest.mark.asyncio
    async def test_health(self):
        stub = StubSupervisor()
        health = await stub.health()
        assert isinstance(health, SupervisorHealth)
        assert health.healthy
        assert health.backend == "stub"
        assert health.latency_ms is not None

        stub.fail_health = True
        assert not (await stub.health()).healthy


# ── Error conversion ─────────────────────────────────────────────────────


class TestErrorConversion:
    @pytest.mark.asyncio
    async def test_start_failure_becomes_start_failed(self):
        stub = StubSupervisor()
        stub.fail_start = True
        with pytest.raises(StartFailedError) as exc_info:
            await stub.start(HANDLE, {})
        err = exc_info.value
        assert isinstance(err.cause, RuntimeError)
        assert err.context.handle == HANDLE
        assert err.context.backend == "stub"
        assert not stub.is_running(HANDLE)

    @pytest.mark.asyncio
    async def test_stop_failure_becomes_supervisor_error(self):
        stub = StubSupervisor()
        stub.fail_stop = True
        with pytest.raises(SupervisorError) as exc_info:
            await stub.stop(HANDLE)
        assert not isinstance(exc_info.value, StartFailedError)
        assert exc_info.value.context.operation == "stop"

    @pytest.mark.asyncio
    async def test_start_timeout(self):
        stub = StubSupervisor(timeout=0.05, start_delay=1.0)
        with pytest.raises(AdapterTimeoutError) as exc_info:
            await stub.start(HANDLE, {})
        err = exc_info.value
        assert err.context.handle == HANDLE
        assert err.context.operation == "start"
        assert err.timeout == 0.05
        assert not stub.is_running(HANDLE)

    @pytest.mark.asyncio
    async def test_plain_exceptions_wrapped(self):
        broken = BrokenSupervisor(timeout=1.0)
        with pytest.raises(StartFailedError):
            await broken.start(HANDLE, {})
        with pytest.raises(SupervisorError):
            await broken.stop(HANDLE)
        with pytest.raises(SupervisorError):
            await broken.logs(HANDLE)

    @pytest.mark.asyncio
    async def test_describe_and_health_never_raise(self):
        broken = BrokenSupervisor(timeout=1.0)
        assert await broken.describe(HANDLE) is None
        health = await broken.health()
        assert not health.healthy
        assert "daemon socket refused" in health.message

    @pytest.mark.asyncio
    async def test_all_errors_are_fleet_errors(self):
        broken = BrokenSupervisor(timeout=1.0)
        for call in (broken.start(HANDLE, {}), broken.stop(HANDLE)):
            with pytest.raises(FleetError):
                await call


# ── Factory ──────────────────────────────────────────────────────────────


class TestFactory:
    def test_process_backend(self, settings):
        supervisor = create_supervisor(settings)
        assert isinstance(supervisor, ProcessSupervisor)
        assert supervisor.timeout == settings.supervisor_timeout

    def test_docker_backend(self, settings):
        supervisor = create_supervisor(settings.model_copy(update={"supervisor_backend": "docker"}))
        assert isinstance(supervisor, DockerSupervisor)
        assert supervisor.backend_name == "docker"

    def test_unknown_backend(self, settings):
        with pytest.raises(ValueError, match="Unknown supervisor backend"):
            create_supervisor(settings.model_copy(update={"supervisor_backend": "k8s"}))
