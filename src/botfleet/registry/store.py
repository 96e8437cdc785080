"""Worker Registry: the persisted catalog of workers and their settings.

The registry is the source of truth for what should exist. It enforces the
worker-count quota at creation time, assigns each worker a supervisor
handle that never changes, and stores the desired and observed state the
lifecycle controller drives. Settings rows are created with the worker and
deleted with it.

Handle assignment::

    bot_<tenant>_<epoch-ms>     unique constraint on fleet_workers.handle
                                conflict → fresh timestamp, bounded attempts

Tags:
    registry, worker, quota, settings, store, botfleet
"""

from __future__ import annotations

import re
import threading
import time
from collections.abc import Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from botfleet.core.errors import NotFoundError, QuotaExceededError, StoreError
from botfleet.core.locks import KeyedThreadLock
from botfleet.core.logging import get_logger
from botfleet.core.models import Worker, WorkerSettings, WorkerState
from botfleet.core.orm.tables import WorkerSettingsTable, WorkerTable
from botfleet.core.repository import BaseRepository
from botfleet.core.settings import FleetSettings
from botfleet.entitlements.store import EntitlementStore

logger = get_logger(__name__)

HANDLE_ATTEMPTS = 5
TENANT_IN_HANDLE_MAX = 32

_HANDLE_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")

# Guards only the handle-uniqueness retry loop.
_HANDLE_LOCK = threading.Lock()


def make_handle(tenant_id: str, epoch_ms: int) -> str:
    """Supervisor handle; also a docker container name and a log file stem."""
    tenant = _HANDLE_UNSAFE.sub("-", tenant_id)[:TENANT_IN_HANDLE_MAX] or "-"
    return f"bot_{tenant}_{epoch_ms}"


def _to_worker(row: WorkerTable) -> Worker:
    return Worker(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        handle=row.handle,
        desired_state=WorkerState.parse(row.desired_state),
        observed_state=WorkerState.parse(row.observed_state),
        credential_ref=row.credential_ref,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class WorkerRegistry(BaseRepository):
    """Persisted workers and per-worker settings.

    Parameters:
        session_factory: ``sessionmaker`` bound to the fleet engine.
        entitlements: Supplies the tenant quota checked at creation.
        settings: Default worker name, prefix and features.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        entitlements: EntitlementStore,
        settings: FleetSettings | None = None,
    ) -> None:
        super().__init__(session_factory)
        self._entitlements = entitlements
        self._settings = settings or FleetSettings()
        self._tenant_locks = KeyedThreadLock()

    # ── Creation ─────────────────────────────────────────────────

    def create_worker(self, tenant_id: str, name: str | None = None) -> Worker:
        """Create a stopped worker for *tenant_id* with default settings.

        All of the tenant's workers count against the quota, running or not.

        Raises:
            QuotaExceededError: If the tenant already owns ``quota`` workers.
            StoreError: On persistence failure or when no unique handle
                could be assigned.
        """
        name = (name or "").strip() or self._settings.default_worker_name

        with self._tenant_locks.hold(tenant_id):
            current = self.count_workers(tenant_id)
            limit = self._entitlements.quota(tenant_id)
            if current >= limit:
                logger.info(
                    "worker.quota_exceeded",
                    tenant_id=tenant_id,
                    current=current,
                    max=limit,
                )
                raise QuotaExceededError(current, limit, tenant_id=tenant_id)

            with _HANDLE_LOCK:
                stamp = 0
                for attempt in range(1, HANDLE_ATTEMPTS + 1):
                    stamp = max(int(time.time() * 1000), stamp + 1)
                    handle = make_handle(tenant_id, stamp)
                    try:
                        worker = self._insert_worker(tenant_id, name, handle)
                    except StoreError as exc:
                        if not isinstance(exc.cause, IntegrityError):
                            raise
                        logger.warning(
                            "worker.handle_conflict",
                            tenant_id=tenant_id,
                            handle=handle,
                            attempt=attempt,
                        )
                        continue
                    logger.info(
                        "worker.created",
                        worker_id=worker.id,
                        tenant_id=tenant_id,
                        handle=handle,
                    )
                    return worker

        raise StoreError(
            f"Could not assign a unique handle after {HANDLE_ATTEMPTS} attempts"
        ).with_context(tenant_id=tenant_id, operation="create_worker")

    def _insert_worker(self, tenant_id: str, name: str, handle: str) -> Worker:
        with self.transaction("create_worker") as session:
            row = WorkerTable(
                tenant_id=tenant_id,
                name=name,
                handle=handle,
                desired_state=WorkerState.STOPPED.value,
                observed_state=WorkerState.STOPPED.value,
            )
            row.settings = WorkerSettingsTable(
                prefix=None,
                features=dict(self._settings.default_features),
            )
            session.add(row)
            session.flush()
            return _to_worker(row)

    # ── Lookup ───────────────────────────────────────────────────

    def get_worker(self, worker_id: int) -> Worker | None:
        with self.read("get_worker") as session:
            row = session.get(WorkerTable, worker_id)
            return _to_worker(row) if row is not None else None

    def require_worker(self, worker_id: int) -> Worker:
        """Like :meth:`get_worker` but raises ``NotFoundError`` when absent."""
        worker = self.get_worker(worker_id)
        if worker is None:
            raise NotFoundError(worker_id)
        return worker

    def list_workers(self, tenant_id: str | None = None) -> list[Worker]:
        """Workers, newest first; all tenants when *tenant_id* is ``None``."""
        with self.read("list_workers") as session:
            stmt = select(WorkerTable).order_by(WorkerTable.id.desc())
            if tenant_id is not None:
                stmt = stmt.where(WorkerTable.tenant_id == tenant_id)
            return [_to_worker(row) for row in session.scalars(stmt)]

    def count_workers(
        self,
        tenant_id: str,
        observed_state: WorkerState | None = None,
        exclude_id: int | None = None,
    ) -> int:
        with self.read("count_workers") as session:
            stmt = (
                select(func.count())
                .select_from(WorkerTable)
                .where(WorkerTable.tenant_id == tenant_id)
            )
            if observed_state is not None:
                stmt = stmt.where(WorkerTable.observed_state == observed_state.value)
            if exclude_id is not None:
                stmt = stmt.where(WorkerTable.id != exclude_id)
            return session.scalar(stmt) or 0

    # ── Mutation ─────────────────────────────────────────────────

    def set_credential(self, worker_id: int, token: str) -> Worker:
        """Overwrite the worker's credential. The token is not validated."""
        if not token or not token.strip():
            raise ValueError("Credential must not be empty")
        with self.transaction("set_credential") as session:
            row = self._require_row(session, worker_id)
            row.credential_ref = token.strip()
            session.flush()
            worker = _to_worker(row)
        logger.info("worker.credential_set", worker_id=worker_id)
        return worker

    def update_observed_state(self, worker_id: int, state: WorkerState) -> Worker:
        """Record the supervisor-confirmed state. Lifecycle controller only."""
        return self._set_state(worker_id, observed=state)

    def set_desired_state(self, worker_id: int, state: WorkerState) -> Worker:
        return self._set_state(worker_id, desired=state)

    def record_transition(self, worker_id: int, state: WorkerState) -> Worker:
        """Set desired and observed state together in one transaction."""
        return self._set_state(worker_id, desired=state, observed=state)

    def _set_state(
        self,
        worker_id: int,
        *,
        desired: WorkerState | None = None,
        observed: WorkerState | None = None,
    ) -> Worker:
        with self.transaction("update_state") as session:
            row = self._require_row(session, worker_id)
            if desired is not None:
                row.desired_state = desired.value
            if observed is not None:
                row.observed_state = observed.value
            session.flush()
            return _to_worker(row)

    def delete_worker(self, worker_id: int) -> None:
        """Remove the worker and its settings."""
        with self.transaction("delete_worker") as session:
            row = self._require_row(session, worker_id)
            session.delete(row)
        logger.info("worker.deleted", worker_id=worker_id)

    # ── Settings ─────────────────────────────────────────────────

    def get_settings(self, worker_id: int) -> WorkerSettings:
        """Settings of the worker, with defaults filled in for absent values."""
        with self.read("get_settings") as session:
            row = self._require_row(session, worker_id)
            return self._to_settings(worker_id, row.settings)

    def upsert_settings(
        self,
        worker_id: int,
        prefix: str | None = None,
        features: Mapping[str, bool] | None = None,
    ) -> WorkerSettings:
        """Partial update: ``None`` leaves the stored value as it is.

        *features* is merged key by key into the stored mapping.
        """
        with self.transaction("upsert_settings") as session:
            row = self._require_row(session, worker_id)
            current = row.settings
            if current is None:
                current = row.settings = WorkerSettingsTable(
                    prefix=None,
                    features=dict(self._settings.default_features),
                )
            if prefix is not None:
                current.prefix = prefix.strip() or None
            if features is not None:
                merged = dict(current.features or {})
                merged.update({key: bool(value) for key, value in features.items()})
                current.features = merged
            session.flush()
            result = self._to_settings(worker_id, current)
        logger.info("worker.settings_updated", worker_id=worker_id)
        return result

    def _to_settings(self, worker_id: int, row: WorkerSettingsTable | None) -> WorkerSettings:
        features = dict(self._settings.default_features)
        if row is None:
            return WorkerSettings(worker_id=worker_id, features=features)
        features.update(row.features or {})
        return WorkerSettings(
            worker_id=worker_id,
            prefix=row.prefix,
            features=features,
            updated_at=row.updated_at,
        )

    # ── Helpers ──────────────────────────────────────────────────

    def _require_row(self, session: Session, worker_id: int) -> WorkerTable:
        row = session.get(WorkerTable, worker_id)
        if row is None:
            raise NotFoundError(worker_id)
        return row


__all__ = ["HANDLE_ATTEMPTS", "WorkerRegistry", "make_handle"]
