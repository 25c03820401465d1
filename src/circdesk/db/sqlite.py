"""SQLite database operations.

Handles database connection and session management.

Every transaction is opened with ``BEGIN IMMEDIATE``: the write lock is
taken up front, so two requests racing for the last copy of a title
queue on the lock (up to the busy timeout) instead of both reading
``available = 1``. Copy counters are additionally only ever changed by
conditional UPDATE statements.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


def _install_sqlite_hooks(engine: Engine) -> None:
    """Take over transaction control from the sqlite3 driver.

    pysqlite's own BEGIN handling defers the write lock and does not
    support SAVEPOINT properly; we disable it and emit BEGIN IMMEDIATE
    ourselves.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Database connection and session manager."""

    def __init__(self, db_path: Optional[str] = None, busy_timeout: float = 30.0):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses
                     CIRCDESK_DB_PATH env var or default location.
            busy_timeout: Seconds a writer waits for the lock
        """
        if db_path is None:
            db_path = os.environ.get(
                "CIRCDESK_DB_PATH",
                str(Path.home() / ".circdesk" / "library.db"),
            )

        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"

        if not self._is_memory:
            self._ensure_directory()

        connect_args = {"check_same_thread": False, "timeout": busy_timeout}

        # For in-memory databases, use StaticPool to reuse the same connection
        # This ensures all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args=connect_args,
            )
        _install_sqlite_hooks(self.engine)
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        # Import models to register them with Base
        from ..members.models import Member  # noqa: F401
        from ..inventory.models import Title  # noqa: F401
        from ..circulation.models import Loan  # noqa: F401
        from ..reservations.models import Reservation  # noqa: F401
        from ..fines.models import Fine  # noqa: F401
        from ..payments.models import Payment  # noqa: F401
        from ..notifications.models import Notification  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def session_scope(self, session: Optional[Session] = None) -> Generator[Session, None, None]:
        """Join the caller's session, or open (and commit) a new one."""
        if session is not None:
            yield session
        else:
            with self.get_session() as s:
                yield s


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        from ..config import get_config

        config = get_config()
        _db = Database(db_path or str(config.db_path), busy_timeout=config.busy_timeout)
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    if _db is not None:
        _db.dispose()
    _db = None
