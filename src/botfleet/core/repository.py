"""Base repository over a SQLAlchemy session factory.

Provides :class:`BaseRepository`, which both stores extend. Each public
store operation runs in exactly one transaction opened by
:meth:`BaseRepository.transaction`; any ``SQLAlchemyError`` rolls the
whole transaction back and surfaces as :class:`StoreError`, so a failed
request never leaves a partial write behind.

Architecture::

    ┌────────────────────────────────────────────────────────────────┐
    │                      BaseRepository                            │
    │                                                                │
    │   session_factory: sessionmaker                                │
    │                                                                │
    │   with self.transaction("create_worker") as session:           │
    │       ...                 ← commit on exit                     │
    │                           ← rollback + StoreError on failure   │
    │   with self.read("list_workers") as session:                   │
    │       ...                 ← no commit                          │
    └────────────────────────────────────────────────────────────────┘

Tags:
    repository, database, transaction, botfleet
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from botfleet.core.errors import StoreError
from botfleet.core.logging import get_logger

logger = get_logger(__name__)


class BaseRepository:
    """Session-scoped base class for the persistent stores.

    Parameters:
        session_factory: A ``sessionmaker`` bound to the fleet engine.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def transaction(self, operation: str) -> Iterator[Session]:
        """Open a session, commit on success, roll back and raise ``StoreError`` on failure."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("store.failed", operation=operation, error=str(exc))
            raise StoreError(f"{operation} failed: {exc}", cause=exc).with_context(
                operation=operation
            ) from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def read(self, operation: str) -> Iterator[Session]:
        """Open a read-only session; database errors surface as ``StoreError``."""
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as exc:
            logger.error("store.failed", operation=operation, error=str(exc))
            raise StoreError(f"{operation} failed: {exc}", cause=exc).with_context(
                operation=operation
            ) from exc
        finally:
            session.close()


__all__ = ["BaseRepository"]
