"""Database connection, initialization and transaction helpers."""

import logging
import random
import threading
import time
from typing import Callable, Optional, TypeVar

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import SQLModel, Session, create_engine

from lumen.config import settings
from lumen.errors import StorageUnavailable, is_contention_error

# Import all models so SQLModel registers them
import lumen.models  # noqa: F401

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionConflict(Exception):
    """A compare-and-set lost against a concurrent writer; the transaction is retried."""


class Database:
    """Explicitly constructed handle around one SQLModel engine.

    The engine is created on first use; concurrent first users share one.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = create_engine(
                        self.url,
                        echo=self.echo,
                        connect_args={"check_same_thread": False, "timeout": 30},
                    )
        return self._engine

    def init(self) -> None:
        """Create all tables and enable WAL mode."""
        SQLModel.metadata.create_all(self.engine)

        with self.engine.connect() as conn:
            if not self.url.endswith(":memory:"):
                # Enable WAL mode for better concurrent read performance
                conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
            conn.commit()

    def session(self) -> Session:
        return Session(self.engine)

    def dispose(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None


_default_database: Optional[Database] = None
_default_lock = threading.Lock()


def get_default_database() -> Database:
    """Get-or-create the process database built from settings."""
    global _default_database
    if _default_database is None:
        with _default_lock:
            if _default_database is None:
                _default_database = Database(settings.database_url, echo=settings.debug)
    return _default_database


def get_database(request: Request) -> Database:
    """FastAPI dependency: the database the running app was built with."""
    return request.app.state.database


def get_session(request: Request):
    """FastAPI dependency: yields a database session."""
    with get_database(request).session() as session:
        yield session


def _backoff(attempt: int) -> None:
    time.sleep(0.02 * attempt + random.uniform(0, 0.02))


def run_transaction(
    session: Session,
    work: Callable[[Session], T],
    attempts: Optional[int] = None,
) -> T:
    """Run ``work`` and commit, retrying when a concurrent writer won.

    Unique-key violations, journey version conflicts and busy-store errors
    roll back and rerun ``work`` from scratch after a short jittered pause, so
    ``work`` must re-read everything it decides on. When every attempt lost,
    ``StorageUnavailable`` is raised. Any other exception rolls back and
    propagates.
    """
    attempts = attempts or settings.transaction_attempts
    for attempt in range(1, attempts + 1):
        session.expire_all()
        try:
            result = work(session)
            session.commit()
            return result
        except (IntegrityError, TransactionConflict) as e:
            session.rollback()
            if attempt == attempts:
                logger.warning("Transaction still conflicting after %d attempts: %s", attempts, e)
                raise StorageUnavailable(str(e)) from e
            logger.debug("Transaction conflict (attempt %d/%d): %s", attempt, attempts, e)
            _backoff(attempt)
        except OperationalError as e:
            session.rollback()
            if not is_contention_error(e):
                raise
            if attempt == attempts:
                logger.warning("Store still busy after %d attempts", attempts)
                raise StorageUnavailable(str(e)) from e
            logger.debug("Store busy (attempt %d/%d), retrying", attempt, attempts)
            _backoff(attempt)
        except Exception:
            session.rollback()
            raise
