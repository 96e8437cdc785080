"""Entitlement Store: tenant plan status, quota and the seen billing events."""

from botfleet.entitlements.store import EXTERNAL_REF_KEYS, EntitlementStore

__all__ = ["EXTERNAL_REF_KEYS", "EntitlementStore"]
