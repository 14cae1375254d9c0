"""Database handle and session management.

The process composition root (API lifespan, CLI command, worker task) owns a
single ``Database`` instance, opens it at startup and closes it at shutdown.
Nothing in the ledger reaches for a global engine.
"""

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from chainequity_api.db.base import Base

logger = logging.getLogger(__name__)


def _enable_wal(engine: Engine):
    @event.listens_for(engine, "connect")
    def set_journal_mode(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


def _begin_on_first_statement(engine: Engine):
    """Make pysqlite emit BEGIN for reads too, so a session holds one snapshot."""

    @event.listens_for(engine, "connect")
    def disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """Explicitly owned storage handle (engine plus session factories)."""

    def __init__(self, url: str):
        """Initialize handle; no connection is made until ``open``."""
        self.url = url
        self.engine: Optional[Engine] = None
        self._read_engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._read_session_factory: Optional[sessionmaker] = None

    @property
    def is_sqlite(self) -> bool:
        """Check if backed by SQLite."""
        return self.url.startswith("sqlite")

    @property
    def is_open(self) -> bool:
        """Check if the engine has been created."""
        return self.engine is not None

    def open(self) -> "Database":
        """Create engine and session factories."""
        if self.engine is not None:
            return self

        if self.is_sqlite:
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.url:
                # one shared connection: reads see every commit, no snapshot
                kwargs["poolclass"] = StaticPool
                self.engine = create_engine(self.url, **kwargs)
                read_engine = self.engine
            else:
                # WAL lets a reader hold its snapshot while the writer commits
                self.engine = create_engine(self.url, **kwargs)
                _enable_wal(self.engine)
                self._read_engine = create_engine(self.url, **kwargs)
                _enable_wal(self._read_engine)
                _begin_on_first_statement(self._read_engine)
                read_engine = self._read_engine
        else:
            self.engine = create_engine(
                self.url,
                pool_pre_ping=True,
                pool_size=10,
                max_overflow=20,
            )
            # Analytics read several tables; a repeatable-read snapshot keeps
            # them on one side of a committed block range.
            read_engine = self.engine.execution_options(isolation_level="REPEATABLE READ")

        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self._read_session_factory = sessionmaker(autocommit=False, autoflush=False, bind=read_engine)
        logger.info(f"Database opened: {self.engine.url.render_as_string(hide_password=True)}")
        return self

    def create_all(self):
        """Create all tables (development and tests; production uses Alembic)."""
        self._require_open()
        Base.metadata.create_all(self.engine)

    def drop_all(self):
        """Drop all tables."""
        self._require_open()
        Base.metadata.drop_all(self.engine)

    def session(self) -> Session:
        """Get a read-write session."""
        self._require_open()
        return self._session_factory()

    def read_session(self) -> Session:
        """Get a session with a consistent read snapshot."""
        self._require_open()
        return self._read_session_factory()

    def ping(self) -> bool:
        """Check database connectivity."""
        try:
            with self.session() as db:
                db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database check failed: {e}")
            return False

    def close(self):
        """Dispose the engine and its connection pool."""
        if self._read_engine is not None:
            self._read_engine.dispose()
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database closed")
        self.engine = None
        self._read_engine = None
        self._session_factory = None
        self._read_session_factory = None

    def _require_open(self):
        if self.engine is None:
            raise RuntimeError("Database is not open; call open() first")

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, *exc_info):
        self.close()


def get_db(request: Request):
    """Get a read-snapshot session from the application's database handle."""
    db = request.app.state.database.read_session()
    try:
        yield db
    finally:
        db.close()
