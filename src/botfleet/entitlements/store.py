"""Entitlement Store: append-only plan history per tenant.

Each update appends a row to ``fleet_entitlements``; the latest row per
tenant is the one enforcement reads. The store also owns the seen-event
set used to deduplicate billing events before they are applied.

Quota rule: ``active`` gets the paid quota (or an explicit override),
every other status gets the free quota.

Tags:
    entitlement, billing, quota, store, botfleet
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from botfleet.core.errors import StoreError
from botfleet.core.logging import get_logger
from botfleet.core.models import Entitlement, PlanStatus
from botfleet.core.orm.tables import EntitlementTable, SeenEventTable
from botfleet.core.repository import BaseRepository
from botfleet.core.settings import FleetSettings

logger = get_logger(__name__)

EXTERNAL_REF_KEYS = ("customer_ref", "subscription_ref", "current_period_end")


def _to_entitlement(row: EntitlementTable) -> Entitlement:
    return Entitlement(
        tenant_id=row.tenant_id,
        status=PlanStatus(row.status),
        quota=row.quota,
        plan_tier=row.plan_tier,
        quota_override=row.quota_override,
        customer_ref=row.customer_ref,
        subscription_ref=row.subscription_ref,
        current_period_end=row.current_period_end,
        created_at=row.created_at,
    )


class EntitlementStore(BaseRepository):
    """Persisted tenant → plan status and quota.

    Parameters:
        session_factory: ``sessionmaker`` bound to the fleet engine.
        settings: Source of the free and paid quotas.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: FleetSettings | None = None,
    ) -> None:
        super().__init__(session_factory)
        self._settings = settings or FleetSettings()

    # ── Queries ──────────────────────────────────────────────────

    def _latest_row(self, session: Session, tenant_id: str) -> EntitlementTable | None:
        stmt = (
            select(EntitlementTable)
            .where(EntitlementTable.tenant_id == tenant_id)
            .order_by(EntitlementTable.id.desc())
            .limit(1)
        )
        return session.scalars(stmt).first()

    def get_entitlement(self, tenant_id: str) -> Entitlement | None:
        """Latest entitlement for *tenant_id*, or ``None`` if never recorded."""
        with self.read("get_entitlement") as session:
            row = self._latest_row(session, tenant_id)
            return _to_entitlement(row) if row is not None else None

    def history(self, tenant_id: str) -> list[Entitlement]:
        """Every recorded entitlement for *tenant_id*, oldest first."""
        with self.read("entitlement_history") as session:
            stmt = (
                select(EntitlementTable)
                .where(EntitlementTable.tenant_id == tenant_id)
                .order_by(EntitlementTable.id.asc())
            )
            return [_to_entitlement(row) for row in session.scalars(stmt)]

    def is_paid(self, tenant_id: str) -> bool:
        entitlement = self.get_entitlement(tenant_id)
        return entitlement is not None and entitlement.is_paid

    def quota(self, tenant_id: str) -> int:
        """Worker quota of *tenant_id*; the free quota when nothing is recorded."""
        entitlement = self.get_entitlement(tenant_id)
        if entitlement is None:
            return self._settings.quota_for(paid=False)
        return entitlement.quota

    def compute_quota(self, status: PlanStatus, quota_override: int | None = None) -> int:
        if status.is_paid:
            if quota_override is not None:
                return quota_override
            return self._settings.quota_for(paid=True)
        return self._settings.quota_for(paid=False)

    # ── Writes ───────────────────────────────────────────────────

    def upsert_entitlement(
        self,
        tenant_id: str,
        status: PlanStatus | str,
        quota_override: int | None = None,
        external_refs: Mapping[str, Any] | None = None,
    ) -> Entitlement:
        """Merge *status* and *external_refs* into the tenant's latest entitlement.

        Absent refs and override carry over from the latest row. A new
        history row is appended only when the merged record differs from
        the latest one, so replaying the same update is a no-op.

        Raises:
            ValueError: If *external_refs* holds an unknown key or the
                override is negative.
            StoreError: On persistence failure.
        """
        status = PlanStatus(status)
        refs = dict(external_refs or {})
        unknown = set(refs) - set(EXTERNAL_REF_KEYS)
        if unknown:
            raise ValueError(f"Unknown external refs: {sorted(unknown)}")
        if quota_override is not None and quota_override < 0:
            raise ValueError(f"quota_override must be non-negative, got {quota_override}")

        with self.transaction("upsert_entitlement") as session:
            latest = self._latest_row(session, tenant_id)

            merged: dict[str, Any] = {
                "status": status.value,
                "plan_tier": status.plan_tier,
                "quota_override": quota_override,
            }
            for key in EXTERNAL_REF_KEYS:
                value = refs.get(key)
                if value is None and latest is not None:
                    value = getattr(latest, key)
                merged[key] = value
            if quota_override is None and latest is not None:
                merged["quota_override"] = latest.quota_override
            merged["quota"] = self.compute_quota(status, merged["quota_override"])

            if latest is not None and all(
                getattr(latest, key) == value for key, value in merged.items()
            ):
                logger.debug("entitlement.unchanged", tenant_id=tenant_id, status=status.value)
                return _to_entitlement(latest)

            row = EntitlementTable(tenant_id=tenant_id, **merged)
            session.add(row)
            session.flush()
            result = _to_entitlement(row)

        logger.info(
            "entitlement.updated",
            tenant_id=tenant_id,
            status=status.value,
            quota=result.quota,
        )
        return result

    def record_event(
        self,
        event_id: str,
        event_type: str,
        raw: Mapping[str, Any] | None = None,
    ) -> bool:
        """Add *event_id* to the seen-event set.

        Returns ``False`` when the id was already recorded; the unique
        constraint decides, so two concurrent deliveries cannot both win.
        """
        if not event_id:
            raise ValueError("event_id must not be empty")
        session = self._session_factory()
        try:
            session.add(
                SeenEventTable(
                    event_id=event_id,
                    event_type=event_type,
                    raw=dict(raw) if raw is not None else None,
                )
            )
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.info("billing_event.duplicate", event_id=event_id, event_type=event_type)
            return False
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("store.failed", operation="record_event", error=str(exc))
            raise StoreError(f"record_event failed: {exc}", cause=exc).with_context(
                operation="record_event"
            ) from exc
        finally:
            session.close()
        return True

    def forget_event(self, event_id: str) -> bool:
        """Drop *event_id* from the seen set so a redelivery is applied again."""
        with self.transaction("forget_event") as session:
            row = session.scalars(
                select(SeenEventTable).where(SeenEventTable.event_id == event_id)
            ).first()
            if row is None:
                return False
            session.delete(row)
        logger.warning("billing_event.forgotten", event_id=event_id)
        return True

    def seen_event_count(self) -> int:
        with self.read("seen_event_count") as session:
            return session.scalar(select(func.count()).select_from(SeenEventTable)) or 0

    def recent_events(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recently received billing events, newest first."""
        with self.read("recent_events") as session:
            stmt = select(SeenEventTable).order_by(SeenEventTable.id.desc()).limit(limit)
            return [
                {
                    "event_id": row.event_id,
                    "event_type": row.event_type,
                    "received_at": row.received_at.isoformat() if row.received_at else None,
                }
                for row in session.scalars(stmt)
            ]


__all__ = ["EXTERNAL_REF_KEYS", "EntitlementStore"]
