"""Domain records shared by the stores, the controller and the CLI.

These are read models: plain dataclasses built from ORM rows, safe to pass
around after the session that loaded them is closed.

Tags:
    models, worker, entitlement, settings, botfleet
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class WorkerState(str, Enum):
    """Persisted worker state (desired and observed).

    ``UNKNOWN`` is only ever observed, for rows whose stored value is not
    recognised; the controller persists STOPPED and RUNNING only.
    """

    STOPPED = "stopped"
    RUNNING = "running"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> WorkerState:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class LifecyclePhase(str, Enum):
    """Transient controller phase of a worker.

    STARTING collapses to RUNNING and STOPPING to STOPPED once the supervisor
    confirms. FAILED is reported to the caller and never persisted.
    """

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


class PlanStatus(str, Enum):
    """Billing status of a tenant."""

    NONE = "none"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"

    @property
    def is_paid(self) -> bool:
        return self is PlanStatus.ACTIVE

    @property
    def plan_tier(self) -> str:
        return "paid" if self.is_paid else "free"


@dataclass(frozen=True)
class Worker:
    """One managed bot process slot owned by a tenant."""

    id: int
    tenant_id: str
    name: str
    handle: str
    desired_state: WorkerState
    observed_state: WorkerState
    credential_ref: str | None = None
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None

    @property
    def has_credential(self) -> bool:
        return bool(self.credential_ref)

    @property
    def is_running(self) -> bool:
        return self.observed_state is WorkerState.RUNNING

    def to_dict(self) -> dict[str, Any]:
        """Presentation view. The credential itself is never included."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "handle": self.handle,
            "desired_state": self.desired_state.value,
            "observed_state": self.observed_state.value,
            "has_credential": self.has_credential,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class Entitlement:
    """One row of a tenant's entitlement history."""

    tenant_id: str
    status: PlanStatus
    quota: int
    plan_tier: str = "free"
    quota_override: int | None = None
    customer_ref: str | None = None
    subscription_ref: str | None = None
    current_period_end: int | None = None
    created_at: datetime.datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.status.is_paid

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "plan_tier": self.plan_tier,
            "quota": self.quota,
            "quota_override": self.quota_override,
            "customer_ref": self.customer_ref,
            "subscription_ref": self.subscription_ref,
            "current_period_end": self.current_period_end,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class WorkerSettings:
    """Per-worker configuration handed to the worker process."""

    worker_id: int
    prefix: str | None = None
    features: dict[str, bool] = field(default_factory=dict)
    updated_at: datetime.datetime | None = None

    def effective_prefix(self, default: str) -> str:
        return self.prefix or default

    def enabled_features(self) -> list[str]:
        return sorted(name for name, on in self.features.items() if on)

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "prefix": self.prefix,
            "features": dict(self.features),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


__all__ = [
    "Entitlement",
    "LifecyclePhase",
    "PlanStatus",
    "Worker",
    "WorkerSettings",
    "WorkerState",
]
