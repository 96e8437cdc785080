"""SQLAlchemy engine factory and session helpers.

This module provides:

* ``create_fleet_engine``   -- Create a SA engine from a URL.
* ``FleetSession``          -- Session with ``expire_on_commit=False``.
* ``fleet_session_factory`` -- ``sessionmaker`` producing ``FleetSession``.
* ``init_schema``           -- Create all botfleet tables.

SQLite is the default single-node store: WAL journaling keeps writes
durable across crashes, and foreign keys are switched on so settings rows
cascade with their worker.

Tags:
    botfleet, orm, sqlalchemy, session, engine
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from botfleet.core.orm.base import FleetBase


def create_fleet_engine(
    url: str = "sqlite:///data/botfleet.db",
    *,
    echo: bool = False,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, etc.)
    echo:
        If ``True``, log all SQL to stdout.
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    if not url.startswith("sqlite"):
        return _sa_create_engine(url, echo=echo, **kwargs)

    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = _sa_create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


class FleetSession(Session):
    """Pre-configured session with ``expire_on_commit=False``.

    Prevents lazy-load surprises after commit.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def fleet_session_factory(engine: Engine) -> sessionmaker[FleetSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``FleetSession`` instances."""
    return sessionmaker(bind=engine, class_=FleetSession)


def init_schema(engine: Engine) -> None:
    """Create every botfleet table that does not exist yet."""
    # Imported for its side effect of registering the mapped tables
    from botfleet.core.orm import tables  # noqa: F401

    FleetBase.metadata.create_all(engine)
