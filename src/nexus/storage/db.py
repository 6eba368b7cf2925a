"""Database connection and session management."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from nexus.logging_config import get_logger
from nexus.settings import settings
from nexus.storage.models import Base

logger = get_logger(__name__)


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None, timeout_seconds: float | None = None):
        """Initialize database connection.

        Args:
            database_url: Database URL (defaults to settings)
            timeout_seconds: Max wait for a connection or write lock (defaults to settings)
        """
        self.database_url = database_url or settings.database_url
        self.timeout_seconds = timeout_seconds or settings.db_timeout_seconds
        self.is_sqlite = self.database_url.startswith("sqlite")

        engine_kwargs = {
            "echo": False,
            "pool_pre_ping": True,
        }
        if self.is_sqlite:
            engine_kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": self.timeout_seconds,
            }
        else:
            engine_kwargs["pool_timeout"] = self.timeout_seconds

        self.engine = create_engine(self.database_url, **engine_kwargs)
        if self.is_sqlite:
            self._serialize_sqlite_writers()

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))

    def _serialize_sqlite_writers(self) -> None:
        """Start every SQLite transaction with BEGIN IMMEDIATE.

        pysqlite defers BEGIN until the first write, so two sessions can both
        read and then race to upgrade their locks. Taking the write lock up
        front makes concurrent writers queue on the busy timeout instead.
        """

        @event.listens_for(self.engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(self.engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    def create_tables(self) -> None:
        """Create all tables in the database."""
        # Register every mapped table on Base.metadata
        import nexus.accounts.models  # noqa: F401
        import nexus.ledger.models  # noqa: F401
        import nexus.referral.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped")

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        Yields:
            Database session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
db = Database()
