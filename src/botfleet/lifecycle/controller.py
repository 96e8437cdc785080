"""Lifecycle Controller: the orchestration core.

Drives every worker through its per-worker state machine, enforces the
running-worker quota at start time and keeps the registry consistent with
what the supervisor confirmed.

State machine::

    STOPPED ──request_start──► STARTING ──supervisor ok──► RUNNING
       ▲                          │                           │
       │                          └─ supervisor error ─► FAILED (reported, not persisted)
       │                                                      │
       └──────────── STOPPING ◄──────── request_stop ─────────┘
                    (always ends STOPPED in the registry)

Concurrency:
    - One ``asyncio.Lock`` per worker id, held for the whole operation; the
      supervisor call is the only I/O await inside it.
    - Concurrent ``request_start`` calls for one worker share a single
      in-flight operation, so the supervisor sees exactly one ``start``
      and every caller gets the same outcome.
    - Starts of one tenant take a per-tenant lock around the running-worker
      count and the supervisor start, so concurrent starts of different
      workers cannot overshoot the quota. Stops take no tenant lock.
    - Nothing locks across tenants.

Tags:
    lifecycle, controller, quota, state-machine, botfleet
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from botfleet.core.errors import (
    AdapterTimeoutError,
    CredentialMissingError,
    FleetError,
    QuotaExceededError,
    StartFailedError,
    SupervisorError,
)
from botfleet.core.locks import KeyedLock
from botfleet.core.logging import LogContext, get_logger
from botfleet.core.models import LifecyclePhase, PlanStatus, Worker, WorkerState
from botfleet.core.settings import FleetSettings
from botfleet.entitlements.store import EntitlementStore
from botfleet.registry.store import WorkerRegistry
from botfleet.supervisor._types import ProcessDescription, SupervisorAdapter

logger = get_logger(__name__)


@dataclass
class TransitionReport:
    """Outcome of a bulk transition over a tenant's workers.

    ``skipped`` holds caller-side refusals (no credential, quota reached);
    ``failed`` holds supervisor or storage failures.
    """

    tenant_id: str | None
    action: str
    started: list[int] = field(default_factory=list)
    stopped: list[int] = field(default_factory=list)
    skipped: dict[int, str] = field(default_factory=dict)
    failed: dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "action": self.action,
            "started": list(self.started),
            "stopped": list(self.stopped),
            "skipped": dict(self.skipped),
            "failed": dict(self.failed),
        }


class LifecycleController:
    """Coordinator over the two stores and the live supervisor.

    Holds no persistent state of its own.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        entitlements: EntitlementStore,
        supervisor: SupervisorAdapter,
        settings: FleetSettings | None = None,
    ) -> None:
        self._registry = registry
        self._entitlements = entitlements
        self._supervisor = supervisor
        self._settings = settings or FleetSettings()
        self._locks = KeyedLock()
        self._tenant_locks = KeyedLock()
        self._inflight: dict[int, asyncio.Task[Worker]] = {}
        self._phases: dict[int, LifecyclePhase] = {}

    @property
    def supervisor(self) -> SupervisorAdapter:
        return self._supervisor

    def phase(self, worker_id: int) -> LifecyclePhase:
        """Transient phase of the worker, derived from the registry when idle."""
        phase = self._phases.get(worker_id)
        if phase is not None:
            return phase
        worker = self._registry.require_worker(worker_id)
        return LifecyclePhase.RUNNING if worker.is_running else LifecyclePhase.STOPPED

    # ── Start ────────────────────────────────────────────────────

    async def request_start(self, worker_id: int) -> Worker:
        """Start the worker, or join the start already in flight for it.

        Raises:
            NotFoundError: No such worker.
            CredentialMissingError: The worker has no credential; the
                supervisor is never called.
            QuotaExceededError: The tenant already runs ``quota`` other workers.
            StartFailedError: The supervisor refused or failed; the registry
                is left as it was.
            AdapterTimeoutError: The supervisor did not answer in time.
        """
        task = self._inflight.get(worker_id)
        if task is None:
            task = asyncio.create_task(self._start(worker_id), name=f"start:{worker_id}")
            self._inflight[worker_id] = task
            task.add_done_callback(lambda t: self._forget(worker_id, t))
        else:
            logger.debug("worker.start_joined", worker_id=worker_id)
        return await asyncio.shield(task)

    def _forget(self, worker_id: int, task: asyncio.Task[Worker]) -> None:
        if self._inflight.get(worker_id) is task:
            del self._inflight[worker_id]
        # Consumed here so a start nobody awaits any more does not warn
        if not task.cancelled():
            task.exception()

    async def _start(self, worker_id: int) -> Worker:
        async with self._locks.hold(worker_id):
            worker = self._registry.require_worker(worker_id)
            with LogContext(worker_id=worker_id, tenant_id=worker.tenant_id):
                if not worker.has_credential:
                    logger.info("worker.start_refused", reason="credential_missing")
                    raise CredentialMissingError(worker_id)

                async with self._tenant_locks.hold(worker.tenant_id):
                    return await self._start_within_quota(worker)

    async def _start_within_quota(self, worker: Worker) -> Worker:
        worker_id = worker.id
        running = self._registry.count_workers(
            worker.tenant_id,
            observed_state=WorkerState.RUNNING,
            exclude_id=worker_id,
        )
        limit = self._entitlements.quota(worker.tenant_id)
        if running >= limit:
            logger.info("worker.start_refused", reason="quota", current=running, max=limit)
            raise QuotaExceededError(running, limit, tenant_id=worker.tenant_id)

        env = self._worker_env(worker)
        self._phases[worker_id] = LifecyclePhase.STARTING
        try:
            await self._supervisor.start(worker.handle, env)
        except (StartFailedError, AdapterTimeoutError) as exc:
            self._phases[worker_id] = LifecyclePhase.FAILED
            logger.error("worker.start_failed", handle=worker.handle, error=exc.to_dict())
            raise exc.with_context(worker_id=worker_id, tenant_id=worker.tenant_id)
        except Exception as exc:
            self._phases[worker_id] = LifecyclePhase.FAILED
            logger.error("worker.start_failed", handle=worker.handle, error=str(exc))
            raise StartFailedError(cause=exc).with_context(
                worker_id=worker_id, tenant_id=worker.tenant_id, handle=worker.handle
            ) from exc

        self._phases.pop(worker_id, None)
        worker = self._registry.record_transition(worker_id, WorkerState.RUNNING)
        logger.info("worker.started", handle=worker.handle)
        return worker

    def _worker_env(self, worker: Worker) -> dict[str, str]:
        """Environment handed to the worker process."""
        settings = self._registry.get_settings(worker.id)
        return {
            "BOT_TOKEN": worker.credential_ref or "",
            "BOT_TENANT_ID": worker.tenant_id,
            "BOT_WORKER_ID": str(worker.id),
            "BOT_HANDLE": worker.handle,
            "BOT_PREFIX": settings.effective_prefix(self._settings.default_prefix),
            "BOT_FEATURES": ",".join(settings.enabled_features()),
        }

    # ── Stop ─────────────────────────────────────────────────────

    async def request_stop(self, worker_id: int) -> Worker:
        """Stop the worker. The registry always ends up ``stopped``.

        Supervisor failures are logged, never raised.

        Raises:
            NotFoundError: No such worker.
        """
        async with self._locks.hold(worker_id):
            worker = self._registry.require_worker(worker_id)
            return await self._stop_locked(worker)

    async def _stop_locked(self, worker: Worker) -> Worker:
        with LogContext(worker_id=worker.id, tenant_id=worker.tenant_id):
            self._phases[worker.id] = LifecyclePhase.STOPPING
            try:
                await self._supervisor.stop(worker.handle)
            except SupervisorError as exc:
                logger.warning("worker.stop_failed", handle=worker.handle, error=exc.to_dict())
            except Exception as exc:
                logger.warning("worker.stop_failed", handle=worker.handle, error=str(exc))
            finally:
                self._phases.pop(worker.id, None)
            worker = self._registry.record_transition(worker.id, WorkerState.STOPPED)
            logger.info("worker.stopped", handle=worker.handle)
            return worker

    async def delete_worker(self, worker_id: int) -> None:
        """Stop the worker, then remove it and its settings."""
        async with self._locks.hold(worker_id):
            worker = self._registry.require_worker(worker_id)
            await self._stop_locked(worker)
            self._registry.delete_worker(worker_id)
            self._phases.pop(worker_id, None)

    # ── Bulk transitions ─────────────────────────────────────────

    async def on_entitlement_changed(
        self,
        tenant_id: str,
        new_status: PlanStatus | str,
    ) -> TransitionReport:
        """Start or stop the tenant's workers after a plan change.

        ``active``: start every stopped worker, oldest first, best effort;
        the start-time quota check bounds how many come up. Any other
        status: stop every running worker.
        """
        status = PlanStatus(new_status)
        with LogContext(tenant_id=tenant_id):
            workers = sorted(self._registry.list_workers(tenant_id), key=lambda w: w.id)
            if status.is_paid:
                report = TransitionReport(tenant_id=tenant_id, action="start")
                for worker in workers:
                    if worker.observed_state is not WorkerState.RUNNING:
                        await self._try_start(worker.id, report)
            else:
                report = TransitionReport(tenant_id=tenant_id, action="stop")
                for worker in workers:
                    if worker.observed_state is WorkerState.RUNNING:
                        await self._try_stop(worker.id, report)
            logger.info("entitlement.transition", status=status.value, **report.to_dict())
        return report

    async def reconcile(self, tenant_id: str | None = None) -> TransitionReport:
        """Replay desired state against the supervisor, e.g. after a host restart.

        Desired ``running`` is started again (idempotent on the supervisor);
        observed ``running`` with desired ``stopped`` is stopped. Decisions
        use registry state only.
        """
        report = TransitionReport(tenant_id=tenant_id, action="reconcile")
        workers = sorted(self._registry.list_workers(tenant_id), key=lambda w: w.id)
        for worker in workers:
            if worker.desired_state is WorkerState.RUNNING:
                await self._try_start(worker.id, report)
            elif worker.observed_state is not WorkerState.STOPPED:
                await self._try_stop(worker.id, report)
        logger.info("fleet.reconciled", **report.to_dict())
        return report

    async def _try_start(self, worker_id: int, report: TransitionReport) -> None:
        try:
            await self.request_start(worker_id)
        except FleetError as exc:
            if exc.is_caller_error:
                report.skipped[worker_id] = exc.message
            else:
                report.failed[worker_id] = exc.message
        else:
            report.started.append(worker_id)

    async def _try_stop(self, worker_id: int, report: TransitionReport) -> None:
        try:
            await self.request_stop(worker_id)
        except FleetError as exc:
            report.failed[worker_id] = exc.message
        else:
            report.stopped.append(worker_id)

    # ── Read-only pass-through ───────────────────────────────────

    async def describe(self, worker_id: int) -> ProcessDescription | None:
        """Live metrics for the worker. Never used for control decisions."""
        worker = self._registry.require_worker(worker_id)
        return await self._supervisor.describe(worker.handle)

    async def logs(self, worker_id: int, tail: int = 100) -> list[str]:
        worker = self._registry.require_worker(worker_id)
        return await self._supervisor.logs(worker.handle, tail)


__all__ = ["LifecycleController", "TransitionReport"]
