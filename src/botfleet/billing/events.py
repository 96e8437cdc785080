"""Entitlement Event Handler: billing events in, plan changes out.

The webhook layer verifies and parses deliveries, then hands each event to
:meth:`EntitlementEventHandler.handle` together with the tenant it belongs
to. The handler deduplicates by event id, maps the event to a plan status,
updates the Entitlement Store and, when the status actually changed, asks
the Lifecycle Controller to start or stop the tenant's workers.

Event mapping::

    checkout.session.completed                  → active
    customer.subscription.created / .updated    → payload ``status``
    invoice.payment_failed                      → past_due
    customer.subscription.deleted               → cancelled
    anything else                               → ignored (still recorded)

Tags:
    billing, webhook, entitlement, events, botfleet
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from botfleet.core.errors import StoreError
from botfleet.core.logging import LogContext, get_logger
from botfleet.core.models import PlanStatus
from botfleet.entitlements.store import EntitlementStore
from botfleet.lifecycle.controller import LifecycleController, TransitionReport

logger = get_logger(__name__)

FIXED_STATUS: dict[str, PlanStatus] = {
    "checkout.session.completed": PlanStatus.ACTIVE,
    "invoice.payment_failed": PlanStatus.PAST_DUE,
    "customer.subscription.deleted": PlanStatus.CANCELLED,
}

SUBSCRIPTION_EVENTS = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
})

SUBSCRIPTION_STATUS: dict[str, PlanStatus] = {
    "active": PlanStatus.ACTIVE,
    "trialing": PlanStatus.ACTIVE,
    "past_due": PlanStatus.PAST_DUE,
    "unpaid": PlanStatus.PAST_DUE,
    "incomplete": PlanStatus.PAST_DUE,
    "paused": PlanStatus.PAST_DUE,
    "canceled": PlanStatus.CANCELLED,
    "cancelled": PlanStatus.CANCELLED,
    "incomplete_expired": PlanStatus.CANCELLED,
}

TENANT_METADATA_KEYS = ("tenant_id", "tenantId", "discordId")


def event_object(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    """The event's subject: ``data.object`` of a full event, else the payload itself."""
    data = payload.get("data")
    if isinstance(data, Mapping) and isinstance(data.get("object"), Mapping):
        return data["object"]
    return payload


def status_for_event(event_type: str, payload: Mapping[str, Any]) -> PlanStatus | None:
    """Plan status an event implies, ``None`` when the event is not relevant."""
    if event_type in FIXED_STATUS:
        return FIXED_STATUS[event_type]
    if event_type in SUBSCRIPTION_EVENTS:
        raw_status = str(event_object(payload).get("status") or "").lower()
        return SUBSCRIPTION_STATUS.get(raw_status)
    return None


def external_refs_for_event(event_type: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Customer, subscription and period refs carried by the event, if any."""
    obj = event_object(payload)
    refs: dict[str, Any] = {}
    if isinstance(obj.get("customer"), str):
        refs["customer_ref"] = obj["customer"]
    if event_type in SUBSCRIPTION_EVENTS or event_type == "customer.subscription.deleted":
        subscription = obj.get("id")
    else:
        subscription = obj.get("subscription")
    if isinstance(subscription, str):
        refs["subscription_ref"] = subscription
    period_end = obj.get("current_period_end")
    if isinstance(period_end, int):
        refs["current_period_end"] = period_end
    return refs


def extract_tenant_id(payload: Mapping[str, Any]) -> str | None:
    """Tenant id from the event's ``metadata``, as set at checkout time."""
    metadata = event_object(payload).get("metadata") or {}
    for key in TENANT_METADATA_KEYS:
        value = metadata.get(key)
        if value:
            return str(value)
    return None


@dataclass(frozen=True)
class EventOutcome:
    """What handling one billing event did."""

    event_id: str
    event_type: str
    tenant_id: str
    duplicate: bool = False
    status: PlanStatus | None = None
    previous_status: PlanStatus | None = None
    report: TransitionReport | None = None

    @property
    def ignored(self) -> bool:
        return not self.duplicate and self.status is None

    @property
    def changed(self) -> bool:
        return self.status is not None and self.status != self.previous_status

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "tenant_id": self.tenant_id,
            "duplicate": self.duplicate,
            "ignored": self.ignored,
            "status": self.status.value if self.status else None,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "changed": self.changed,
            "report": self.report.to_dict() if self.report else None,
        }


class EntitlementEventHandler:
    """Applies billing events to entitlements and worker state."""

    def __init__(
        self,
        entitlements: EntitlementStore,
        controller: LifecycleController,
    ) -> None:
        self._entitlements = entitlements
        self._controller = controller

    async def handle(
        self,
        tenant_id: str,
        event_id: str,
        event_type: str,
        raw_payload: Mapping[str, Any] | None = None,
    ) -> EventOutcome:
        """Apply one billing event exactly once per event id.

        Raises:
            StoreError: If the entitlement could not be written. The event
                id is released again so a redelivery can apply it.
        """
        payload = raw_payload or {}
        with LogContext(tenant_id=tenant_id, event_id=event_id, event_type=event_type):
            if not self._entitlements.record_event(event_id, event_type, payload):
                return EventOutcome(
                    event_id=event_id,
                    event_type=event_type,
                    tenant_id=tenant_id,
                    duplicate=True,
                )

            status = status_for_event(event_type, payload)
            if status is None:
                logger.info("billing_event.ignored")
                return EventOutcome(event_id=event_id, event_type=event_type, tenant_id=tenant_id)

            previous = self._entitlements.get_entitlement(tenant_id)
            previous_status = previous.status if previous is not None else PlanStatus.NONE
            try:
                self._entitlements.upsert_entitlement(
                    tenant_id,
                    status,
                    external_refs=external_refs_for_event(event_type, payload),
                )
            except StoreError:
                self._entitlements.forget_event(event_id)
                raise

            report = None
            if status != previous_status:
                report = await self._controller.on_entitlement_changed(tenant_id, status)
            logger.info(
                "billing_event.applied",
                status=status.value,
                previous_status=previous_status.value,
            )
            return EventOutcome(
                event_id=event_id,
                event_type=event_type,
                tenant_id=tenant_id,
                status=status,
                previous_status=previous_status,
                report=report,
            )


__all__ = [
    "EntitlementEventHandler",
    "EventOutcome",
    "event_object",
    "external_refs_for_event",
    "extract_tenant_id",
    "status_for_event",
]
