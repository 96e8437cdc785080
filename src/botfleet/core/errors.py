"""
Structured error types for botfleet.

Every error raised by the orchestrator core extends ``FleetError`` so the
request layer can tell caller mistakes from environment failures without
string matching, and so operators get the full cause in the logs.

Manifesto:
    - **Typed hierarchy:** One class per failure the caller must react to
    - **Explicit retry semantics:** Each error knows if retrying can help
    - **Rich context:** Errors carry worker/tenant/handle metadata
    - **Error chaining:** The supervisor or database exception is preserved

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         FleetError                               │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  Caller errors (never retried, shown to the user verbatim)       │
        │  ──────────────────────────────────────────────────────          │
        │  NotFoundError   CredentialMissingError   QuotaExceededError     │
        │                                                                  │
        │  Environment errors (logged with cause, shown as generic)        │
        │  ────────────────────────────────────────────────────            │
        │  SupervisorError ── StartFailedError                             │
        │                  └─ AdapterTimeoutError                          │
        │                                                                  │
        │  StoreError (persistence failure, fails the single request)      │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = QuotaExceededError(current=1, max=1)
    >>> err.to_dict()["quota"]
    {'current': 1, 'max': 1}
    >>> err.retryable
    False

Tags:
    errors, exceptions, quota, supervisor, botfleet

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories used for routing and rendering.

    Caller categories (NOT_FOUND, CREDENTIAL, QUOTA) map to 4xx-style
    responses; SUPERVISOR and STORAGE map to 5xx-style ones.
    """

    NOT_FOUND = "NOT_FOUND"
    CREDENTIAL = "CREDENTIAL"
    QUOTA = "QUOTA"

    SUPERVISOR = "SUPERVISOR"
    TIMEOUT = "TIMEOUT"
    STORAGE = "STORAGE"

    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging.

    Attributes:
        worker_id: Registry id of the worker involved
        tenant_id: Owning tenant
        handle: Supervisor handle of the worker
        backend: Supervisor backend name (``docker``, ``process``, ...)
        operation: Operation that failed (``start``, ``stop``, ...)
        metadata: Free-form extra fields
    """

    worker_id: int | None = None
    tenant_id: str | None = None
    handle: str | None = None
    backend: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["worker_id", "tenant_id", "handle", "backend", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FleetError(Exception):
    """Base exception for all botfleet errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override both per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FleetError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StoreError("insert failed").with_context(
                tenant_id="u1", operation="create_worker"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    @property
    def is_caller_error(self) -> bool:
        """True for errors caused by the request itself rather than the environment."""
        return self.category in (
            ErrorCategory.NOT_FOUND,
            ErrorCategory.CREDENTIAL,
            ErrorCategory.QUOTA,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CALLER ERRORS
# =============================================================================


class NotFoundError(FleetError):
    """Referenced worker does not exist."""

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, worker_id: int, message: str | None = None):
        self.worker_id = worker_id
        super().__init__(message or f"Worker not found: {worker_id}")
        self.context.worker_id = worker_id


class CredentialMissingError(FleetError):
    """Worker has no credential, so it can never run."""

    default_category = ErrorCategory.CREDENTIAL

    def __init__(self, worker_id: int, message: str | None = None):
        self.worker_id = worker_id
        super().__init__(message or f"Worker {worker_id} has no credential set")
        self.context.worker_id = worker_id


class QuotaExceededError(FleetError):
    """Tenant is at or over its plan limit.

    ``current`` is the count the limit was compared against (all workers at
    creation time, other running workers at start time).
    """

    default_category = ErrorCategory.QUOTA

    def __init__(
        self,
        current: int,
        max: int,  # noqa: A002
        *,
        tenant_id: str | None = None,
        message: str | None = None,
    ):
        self.current = current
        self.max = max
        super().__init__(message or f"Plan limit reached ({current}/{max})")
        self.context.tenant_id = tenant_id

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["quota"] = {"current": self.current, "max": self.max}
        return result


# =============================================================================
# ENVIRONMENT ERRORS
# =============================================================================


class SupervisorError(FleetError):
    """The process supervisor backend failed an operation."""

    default_category = ErrorCategory.SUPERVISOR
    default_retryable = True


class StartFailedError(SupervisorError):
    """Supervisor could not start the worker process."""

    def __init__(
        self,
        message: str = "Worker failed to start",
        *,
        cause: Exception | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, cause=cause, **kwargs)


class AdapterTimeoutError(SupervisorError):
    """Supervisor call did not complete within the configured bound."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(
        self,
        operation: str,
        timeout: float,
        *,
        handle: str | None = None,
        **kwargs: Any,
    ):
        self.timeout = timeout
        super().__init__(
            f"Supervisor {operation} timed out after {timeout}s",
            **kwargs,
        )
        self.context.operation = operation
        self.context.handle = handle


class StoreError(FleetError):
    """Persistence failure. Fails the current operation only."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FleetError",
    "NotFoundError",
    "CredentialMissingError",
    "QuotaExceededError",
    "SupervisorError",
    "StartFailedError",
    "AdapterTimeoutError",
    "StoreError",
]
