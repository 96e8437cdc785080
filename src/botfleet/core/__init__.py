"""Core primitives: errors, settings, logging, timeouts, models and the ORM."""

from botfleet.core.errors import (
    AdapterTimeoutError,
    CredentialMissingError,
    ErrorCategory,
    ErrorContext,
    FleetError,
    NotFoundError,
    QuotaExceededError,
    StartFailedError,
    StoreError,
    SupervisorError,
)
from botfleet.core.models import (
    Entitlement,
    LifecyclePhase,
    PlanStatus,
    Worker,
    WorkerSettings,
    WorkerState,
)

__all__ = [
    "AdapterTimeoutError",
    "CredentialMissingError",
    "Entitlement",
    "ErrorCategory",
    "ErrorContext",
    "FleetError",
    "LifecyclePhase",
    "NotFoundError",
    "PlanStatus",
    "QuotaExceededError",
    "StartFailedError",
    "StoreError",
    "SupervisorError",
    "Worker",
    "WorkerSettings",
    "WorkerState",
]
