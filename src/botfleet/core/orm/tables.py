"""SQLAlchemy 2.0 ORM table definitions for botfleet.

Four tables, each owned by exactly one store:

* ``fleet_entitlements``     -- EntitlementStore (append-only history)
* ``fleet_seen_events``      -- EntitlementStore (billing event dedup set)
* ``fleet_workers``          -- WorkerRegistry
* ``fleet_worker_settings``  -- WorkerRegistry (cascades with the worker)

Usage::

    from botfleet.core.orm import FleetBase, create_fleet_engine

    engine = create_fleet_engine("sqlite:///botfleet.db")
    FleetBase.metadata.create_all(engine)
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from botfleet.core.orm.base import FleetBase, TimestampMixin, utcnow


class EntitlementTable(FleetBase):
    __tablename__ = "fleet_entitlements"
    __table_args__ = (Index("ix_fleet_entitlements_tenant", "tenant_id", "id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="none")
    plan_tier: Mapped[str] = mapped_column(Text, nullable=False, default="free")
    quota: Mapped[int] = mapped_column(Integer, nullable=False)
    quota_override: Mapped[int | None] = mapped_column(Integer)
    customer_ref: Mapped[str | None] = mapped_column(Text)
    subscription_ref: Mapped[str | None] = mapped_column(Text)
    current_period_end: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class SeenEventTable(FleetBase):
    __tablename__ = "fleet_seen_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    raw: Mapped[dict | None] = mapped_column(JSON, default=None)
    received_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class WorkerTable(TimestampMixin, FleetBase):
    __tablename__ = "fleet_workers"
    __table_args__ = (Index("ix_fleet_workers_tenant", "tenant_id", "observed_state"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    credential_ref: Mapped[str | None] = mapped_column(Text)
    desired_state: Mapped[str] = mapped_column(Text, nullable=False, default="stopped")
    observed_state: Mapped[str] = mapped_column(Text, nullable=False, default="stopped")
    handle: Mapped[str] = mapped_column(Text, unique=True, nullable=False)

    settings: Mapped[WorkerSettingsTable | None] = relationship(
        back_populates="worker",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )


class WorkerSettingsTable(FleetBase):
    __tablename__ = "fleet_worker_settings"

    worker_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("fleet_workers.id", ondelete="CASCADE"),
        primary_key=True,
    )
    prefix: Mapped[str | None] = mapped_column(Text)
    features: Mapped[dict | None] = mapped_column(JSON, default=None)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    worker: Mapped[WorkerTable] = relationship(back_populates="settings")


__all__ = [
    "EntitlementTable",
    "SeenEventTable",
    "WorkerSettingsTable",
    "WorkerTable",
]
