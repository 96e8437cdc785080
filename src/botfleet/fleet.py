"""Object graph of one orchestrator process.

``build_fleet`` wires the stores, the supervisor chosen by configuration,
the lifecycle controller and the billing event handler exactly once. The
resulting :class:`Fleet` is also the surface the request layer talks to;
it exposes nothing beyond what that layer needs.

Example::

    fleet = build_fleet(FleetSettings(database_url="sqlite:///fleet.db"))
    worker = fleet.create_worker("u1", "support-bot")
    fleet.set_credential(worker.id, "token")
    await fleet.request_start(worker.id)
    await fleet.close()
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from botfleet.billing.events import EntitlementEventHandler
from botfleet.core.logging import get_logger
from botfleet.core.models import Entitlement, Worker, WorkerSettings
from botfleet.core.orm.session import create_fleet_engine, fleet_session_factory, init_schema
from botfleet.core.settings import FleetSettings, get_settings
from botfleet.entitlements.store import EntitlementStore
from botfleet.lifecycle.controller import LifecycleController
from botfleet.registry.store import WorkerRegistry
from botfleet.supervisor._types import ProcessDescription, SupervisorAdapter
from botfleet.supervisor.factory import create_supervisor
from botfleet.supervisor.process import ProcessSupervisor

logger = get_logger(__name__)


@dataclass
class Fleet:
    """Wired components plus the request-layer operations."""

    settings: FleetSettings
    engine: Engine
    entitlements: EntitlementStore
    registry: WorkerRegistry
    supervisor: SupervisorAdapter
    controller: LifecycleController
    events: EntitlementEventHandler

    # ── Request-layer surface ────────────────────────────────────

    def create_worker(self, tenant_id: str, name: str | None = None) -> Worker:
        return self.registry.create_worker(tenant_id, name)

    def set_credential(self, worker_id: int, token: str) -> Worker:
        return self.registry.set_credential(worker_id, token)

    def upsert_settings(
        self,
        worker_id: int,
        prefix: str | None = None,
        features: Mapping[str, bool] | None = None,
    ) -> WorkerSettings:
        return self.registry.upsert_settings(worker_id, prefix=prefix, features=features)

    async def request_start(self, worker_id: int) -> Worker:
        return await self.controller.request_start(worker_id)

    async def request_stop(self, worker_id: int) -> Worker:
        return await self.controller.request_stop(worker_id)

    def list_workers(self, tenant_id: str | None = None) -> list[Worker]:
        return self.registry.list_workers(tenant_id)

    def get_worker(self, worker_id: int) -> Worker | None:
        return self.registry.get_worker(worker_id)

    def get_entitlement(self, tenant_id: str) -> Entitlement | None:
        return self.entitlements.get_entitlement(tenant_id)

    async def describe(self, worker_id: int) -> ProcessDescription | None:
        return await self.controller.describe(worker_id)

    async def logs(self, worker_id: int, tail: int = 100) -> list[str]:
        return await self.controller.logs(worker_id, tail)

    # ── Teardown ─────────────────────────────────────────────────

    async def close(self) -> None:
        """Stop locally supervised processes and release the database."""
        if isinstance(self.supervisor, ProcessSupervisor):
            await self.supervisor.shutdown()
        self.engine.dispose()


def build_fleet(
    settings: FleetSettings | None = None,
    *,
    supervisor: SupervisorAdapter | None = None,
    create_schema: bool = True,
) -> Fleet:
    """Wire one :class:`Fleet` from *settings*.

    Parameters:
        settings: Defaults to the cached environment settings.
        supervisor: Overrides the backend chosen by configuration (tests).
        create_schema: Create missing tables on the way up.
    """
    settings = settings or get_settings()
    engine = create_fleet_engine(settings.database_url)
    if create_schema:
        init_schema(engine)
    session_factory = fleet_session_factory(engine)

    entitlements = EntitlementStore(session_factory, settings)
    registry = WorkerRegistry(session_factory, entitlements, settings)
    supervisor = supervisor or create_supervisor(settings)
    controller = LifecycleController(registry, entitlements, supervisor, settings)
    events = EntitlementEventHandler(entitlements, controller)

    logger.debug("fleet.built", backend=supervisor.backend_name, database=engine.url.database)
    return Fleet(
        settings=settings,
        engine=engine,
        entitlements=entitlements,
        registry=registry,
        supervisor=supervisor,
        controller=controller,
        events=events,
    )


__all__ = ["Fleet", "build_fleet"]
