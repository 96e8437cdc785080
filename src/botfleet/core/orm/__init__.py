"""SQLAlchemy 2.0 ORM layer for botfleet.

Modules
-------
base        FleetBase (declarative base) + TimestampMixin
session     Engine factory, FleetSession, init_schema
tables      Entitlement, seen-event, worker and worker-settings tables
"""

from __future__ import annotations

from botfleet.core.orm.base import FleetBase, TimestampMixin, utcnow
from botfleet.core.orm.session import (
    FleetSession,
    create_fleet_engine,
    fleet_session_factory,
    init_schema,
)
from botfleet.core.orm.tables import (
    EntitlementTable,
    SeenEventTable,
    WorkerSettingsTable,
    WorkerTable,
)

__all__ = [
    "EntitlementTable",
    "FleetBase",
    "FleetSession",
    "SeenEventTable",
    "TimestampMixin",
    "WorkerSettingsTable",
    "WorkerTable",
    "create_fleet_engine",
    "fleet_session_factory",
    "init_schema",
    "utcnow",
]
