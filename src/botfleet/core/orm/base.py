"""Declarative base and mixins for all botfleet ORM models.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map``
that maps Python built-in types to portable SA column types.

Mixins
------
* **TimestampMixin**: ``created_at`` / ``updated_at`` filled from Python so
  the values are identical across SQLite and PostgreSQL.
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, DateTime, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime.datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.UTC)


class FleetBase(DeclarativeBase):
    """Shared declarative base for every botfleet table.

    * ``str``   → ``Text``
    * ``int``   → ``Integer``
    * ``datetime.datetime`` → ``DateTime(timezone=True)``
    * ``dict``  → ``JSON``    (stored as TEXT in SQLite, native JSON elsewhere)
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        datetime.datetime: DateTime(timezone=True),
        dict: JSON,
    }


class TimestampMixin:
    """Adds ``created_at`` and ``updated_at``."""

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=utcnow,
        onupdate=utcnow,
    )
