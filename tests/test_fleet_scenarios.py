"""End-to-end fleet scenarios over the wired components (SQLite + StubSupervisor)."""

from __future__ import annotations

import asyncio

import pytest

from botfleet.core.errors import CredentialMissingError, QuotaExceededError
from botfleet.core.models import WorkerState
from botfleet.fleet import build_fleet
from botfleet.supervisor import ProcessSupervisor, StubSupervisor


class TestPlanLifecycle:
    @pytest.mark.asyncio
    async def test_upgrade_unlocks_second_worker(self, fleet):
        fleet.create_worker("u1", "A")
        with pytest.raises(QuotaExceededError) as exc_info:
            fleet.create_worker("u1", "B")
        assert (exc_info.value.current, exc_info.value.max) == (1, 1)

        await fleet.events.handle("u1", "evt_1", "checkout.session.completed", {})

        assert fleet.create_worker("u1", "B").name == "B"
        assert len(fleet.list_workers("u1")) == 2

    @pytest.mark.asyncio
    async def test_worker_count_never_exceeds_quota(self, fleet):
        for _ in range(3):
            try:
                fleet.create_worker("u1")
            except QuotaExceededError:
                pass
            assert len(fleet.list_workers("u1")) <= fleet.entitlements.quota("u1")

    @pytest.mark.asyncio
    async def test_downgrade_then_restart_hits_free_quota(self, fleet, ready_worker):
        await fleet.events.handle("u1", "evt_1", "checkout.session.completed", {})
        a = ready_worker()
        b = ready_worker()
        await fleet.request_start(a.id)
        await fleet.request_start(b.id)

        await fleet.events.handle("u1", "evt_2", "invoice.payment_failed", {})
        assert all(w.observed_state is WorkerState.STOPPED for w in fleet.list_workers("u1"))

        await fleet.request_start(a.id)
        with pytest.raises(QuotaExceededError):
            await fleet.request_start(b.id)

    @pytest.mark.asyncio
    async def test_concurrent_start_runs_once(self, fleet, stub, ready_worker):
        worker = ready_worker()
        stub.start_delay = 0.05

        await asyncio.gather(fleet.request_start(worker.id), fleet.request_start(worker.id))

        assert fleet.get_worker(worker.id).observed_state is WorkerState.RUNNING
        assert stub.start_count == 1

    @pytest.mark.asyncio
    async def test_stop_always_ends_stopped(self, fleet, stub, ready_worker):
        worker = ready_worker()
        await fleet.request_start(worker.id)
        stub.fail_stop = True
        assert (await fleet.request_stop(worker.id)).observed_state is WorkerState.STOPPED

    @pytest.mark.asyncio
    async def test_no_credential_no_supervisor_call(self, fleet, stub):
        worker = fleet.create_worker("u1")
        with pytest.raises(CredentialMissingError):
            await fleet.request_start(worker.id)
        assert stub.start_count == 0


class TestBuildFleet:
    @pytest.mark.asyncio
    async def test_state_survives_restart(self, settings):
        first = build_fleet(settings, supervisor=StubSupervisor())
        worker = first.create_worker("u1")
        first.set_credential(worker.id, "tok")
        await first.request_start(worker.id)
        await first.close()

        stub = StubSupervisor()
        second = build_fleet(settings, supervisor=stub)
        try:
            report = await second.controller.reconcile()
            assert report.started == [worker.id]
            assert stub.is_running(worker.handle)
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_default_backend_from_settings(self, settings):
        fleet = build_fleet(settings)
        try:
            assert isinstance(fleet.supervisor, ProcessSupervisor)
        finally:
            await fleet.close()
