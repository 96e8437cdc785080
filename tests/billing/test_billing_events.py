"""Tests for the Entitlement Event Handler and billing event mapping."""

from __future__ import annotations

import pytest

from botfleet.billing.events import (
    event_object,
    external_refs_for_event,
    extract_tenant_id,
    status_for_event,
)
from botfleet.core.errors import StoreError
from botfleet.core.models import PlanStatus, WorkerState


# ── Helpers ──────────────────────────────────────────────────────────────


def _event(event_type: str, obj: dict, event_id: str = "evt_1") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def _subscription(status: str, **extra) -> dict:
    return {"id": "sub_1", "customer": "cus_1", "status": status, **extra}


# ── Mapping ──────────────────────────────────────────────────────────────


class TestStatusMapping:
    @pytest.mark.parametrize(
        "event_type,expected",
        [
            ("checkout.session.completed", PlanStatus.ACTIVE),
            ("invoice.payment_failed", PlanStatus.PAST_DUE),
            ("customer.subscription.deleted", PlanStatus.CANCELLED),
            ("invoice.paid", None),
            ("customer.created", None),
        ],
    )
    def test_fixed_events(self, event_type, expected):
        assert status_for_event(event_type, {}) is expected

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("active", PlanStatus.ACTIVE),
            ("trialing", PlanStatus.ACTIVE),
            ("past_due", PlanStatus.PAST_DUE),
            ("unpaid", PlanStatus.PAST_DUE),
            ("canceled", PlanStatus.CANCELLED),
            ("incomplete_expired", PlanStatus.CANCELLED),
            ("ACTIVE", PlanStatus.ACTIVE),
            ("something_new", None),
            ("", None),
        ],
    )
    def test_subscription_status(self, status, expected):
        payload = _event("customer.subscription.updated", _subscription(status))
        assert status_for_event("customer.subscription.updated", payload) is expected

    def test_bare_object_payload(self):
        payload = _subscription("active")
        assert event_object(payload) is payload
        assert status_for_event("customer.subscription.created", payload) is PlanStatus.ACTIVE


class TestPayloadFields:
    def test_tenant_from_metadata(self):
        assert extract_tenant_id(_event("x", {"metadata": {"tenant_id": "u1"}})) == "u1"
        assert extract_tenant_id(_event("x", {"metadata": {"discordId": 123}})) == "123"
        assert extract_tenant_id(_event("x", {})) is None

    def test_checkout_refs(self):
        payload = _event(
            "checkout.session.completed",
            {"id": "cs_1", "customer": "cus_1", "subscription": "sub_1"},
        )
        assert external_refs_for_event("checkout.session.completed", payload) == {
            "customer_ref": "cus_1",
            "subscription_ref": "sub_1",
        }

    def test_subscription_refs(self):
        payload = _event(
            "customer.subscription.updated",
            _subscription("active", current_period_end=1700000000),
        )
        assert external_refs_for_event("customer.subscription.updated", payload) == {
            "customer_ref": "cus_1",
            "subscription_ref": "sub_1",
            "current_period_end": 1700000000,
        }


# ── Handler ──────────────────────────────────────────────────────────────


class TestHandle:
    @pytest.mark.asyncio
    async def test_checkout_activates_and_starts(self, fleet, stub, ready_worker):
        worker = ready_worker()
        payload = _event("checkout.session.completed", {"customer": "cus_1", "subscription": "sub_1"})

        outcome = await fleet.events.handle("u1", "evt_1", "checkout.session.completed", payload)

        assert outcome.status is PlanStatus.ACTIVE
        assert outcome.previous_status is PlanStatus.NONE
        assert outcome.changed
        assert outcome.report.started == [worker.id]
        assert stub.is_running(worker.handle)

        entitlement = fleet.get_entitlement("u1")
        assert entitlement.quota == 5
        assert entitlement.customer_ref == "cus_1"
        assert entitlement.subscription_ref == "sub_1"

    @pytest.mark.asyncio
    async def test_duplicate_event_applied_once(self, fleet, stub, ready_worker):
        ready_worker()
        payload = _event("checkout.session.completed", {})
        await fleet.events.handle("u1", "evt_1", "checkout.session.completed", payload)
        calls = stub.start_count

        outcome = await fleet.events.handle("u1", "evt_1", "checkout.session.completed", payload)

        assert outcome.duplicate
        assert not outcome.ignored
        assert outcome.report is None
        assert stub.start_count == calls
        assert len(fleet.entitlements.history("u1")) == 1

    @pytest.mark.asyncio
    async def test_irrelevant_event_recorded_but_ignored(self, fleet):
        outcome = await fleet.events.handle("u1", "evt_9", "invoice.paid", _event("invoice.paid", {}))
        assert outcome.ignored
        assert fleet.get_entitlement("u1") is None
        assert fleet.entitlements.seen_event_count() == 1

    @pytest.mark.asyncio
    async def test_unchanged_status_triggers_no_transition(self, fleet, stub, ready_worker):
        ready_worker()
        await fleet.events.handle("u1", "evt_1", "checkout.session.completed", {})
        calls = stub.start_count

        outcome = await fleet.events.handle(
            "u1",
            "evt_2",
            "customer.subscription.updated",
            _event("customer.subscription.updated", _subscription("active"), "evt_2"),
        )

        assert not outcome.changed
        assert outcome.report is None
        assert stub.start_count == calls
        assert fleet.get_entitlement("u1").subscription_ref == "sub_1"

    @pytest.mark.asyncio
    async def test_payment_failure_stops_workers(self, fleet, stub, ready_worker):
        worker = ready_worker()
        await fleet.events.handle("u1", "evt_1", "checkout.session.completed", {})

        outcome = await fleet.events.handle(
            "u1", "evt_2", "invoice.payment_failed", _event("invoice.payment_failed", {}, "evt_2")
        )

        assert outcome.status is PlanStatus.PAST_DUE
        assert outcome.report.stopped == [worker.id]
        assert fleet.get_worker(worker.id).observed_state is WorkerState.STOPPED
        assert not stub.is_running(worker.handle)

    @pytest.mark.asyncio
    async def test_store_failure_releases_event_id(self, fleet, monkeypatch):
        def broken(*args, **kwargs):
            raise StoreError("database is locked")

        monkeypatch.setattr(fleet.entitlements, "upsert_entitlement", broken)
        with pytest.raises(StoreError):
            await fleet.events.handle("u1", "evt_1", "checkout.session.completed", {})
        assert fleet.entitlements.seen_event_count() == 0

        monkeypatch.undo()
        outcome = await fleet.events.handle("u1", "evt_1", "checkout.session.completed", {})
        assert outcome.status is PlanStatus.ACTIVE
        assert not outcome.duplicate

    @pytest.mark.asyncio
    async def test_outcome_to_dict(self, fleet):
        outcome = await fleet.events.handle("u1", "evt_1", "customer.subscription.deleted", {})
        d = outcome.to_dict()
        assert d["status"] == "cancelled"
        assert d["previous_status"] == "none"
        assert d["changed"] is True
        assert d["report"]["action"] == "stop"
