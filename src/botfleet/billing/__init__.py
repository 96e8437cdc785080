"""Entitlement Event Handler: deduplicated billing events to plan changes."""

from botfleet.billing.events import (
    EntitlementEventHandler,
    EventOutcome,
    extract_tenant_id,
    status_for_event,
)

__all__ = [
    "EntitlementEventHandler",
    "EventOutcome",
    "extract_tenant_id",
    "status_for_event",
]
