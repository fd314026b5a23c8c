"""
Database Engine and Sessions

One SQLAlchemy engine per process, with a session scope that commits on
success and rolls back on any error. The URL comes from DATABASE_URL.
"""

import logging
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///rebates.db"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


class Database:
    """Engine, session factory and connection state."""

    def __init__(self, url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        self.url = url

        # SQLite doesn't support pool settings; an in-memory database must
        # share its single connection or every session sees an empty schema
        if url.startswith("sqlite"):
            options = {"connect_args": {"check_same_thread": False}}
            if _is_memory_sqlite(url):
                options["poolclass"] = StaticPool
        else:
            options = {"pool_pre_ping": True, "pool_recycle": 300}

        self.engine = create_engine(url, echo=echo, future=True, **options)
        self.session_factory = sessionmaker(
            self.engine,
            expire_on_commit=False,
            autoflush=False,
        )
        self._connected = True

    @classmethod
    def from_env(cls) -> "Database":
        url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
        echo = os.environ.get("DB_ECHO", "false").lower() == "true"
        return cls(url, echo=echo)

    def create_all(self) -> None:
        """Create missing tables. Existing tables are left alone."""
        from . import tables  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.info(f"Database ready with {len(Base.metadata.tables)} tables")

    @property
    def connected(self) -> bool:
        return self._connected

    def close(self) -> None:
        self._connected = False
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Transactional scope around a series of operations."""
        if not self._connected:
            raise StoreUnavailableError("Database is not connected")

        session = self.session_factory()
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            logger.error(f"Database operation failed: {e}")
            raise StoreUnavailableError(f"Database unavailable: {e.orig}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
