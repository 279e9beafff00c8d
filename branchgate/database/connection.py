"""
Database connection management.

Wraps a SQLAlchemy engine and hands out transactional sessions. Any
SQLAlchemy failure inside a session is rolled back and re-raised as
``StoreError`` so callers never see driver-specific exceptions.
"""
import os
import logging
from typing import Optional
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from .schema import metadata
from ..auth.errors import StoreError
from ..utils.secrets import get_postgres_password

logger = logging.getLogger(__name__)


def build_connection_string() -> str:
    """
    Build the database URL from the environment.

    ``DATABASE_URL`` wins; otherwise PostgreSQL settings are assembled from
    the individual POSTGRES_* variables.
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "branchgate")
    user = os.getenv("POSTGRES_USER", "branchgate_user")
    password = get_postgres_password()
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


class Database:
    """
    Connection manager for the auth tables.

    Example usage:
        db = Database("sqlite:///branchgate.db")
        db.init_schema()

        with db.get_session() as session:
            session.execute(text("SELECT 1"))
    """

    def __init__(self, connection_string: Optional[str] = None, engine: Optional[Engine] = None):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy URL. Uses environment variables if not provided.
            engine: Pre-built engine (takes precedence over connection_string).
        """
        if engine is None:
            connection_string = connection_string or build_connection_string()
            if connection_string.startswith("sqlite"):
                engine = create_engine(
                    connection_string,
                    connect_args={"check_same_thread": False, "timeout": 30},
                )
            else:
                engine = create_engine(
                    connection_string,
                    poolclass=QueuePool,
                    pool_size=10,
                    max_overflow=20,
                    pool_timeout=30,
                    pool_pre_ping=True,  # Test connections before use (detect stale)
                    pool_recycle=300,    # Recycle connections every 5 minutes
                )

        self.engine = engine
        self.Session = sessionmaker(bind=self.engine)

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic commit/rollback.

        Usage:
            with db.get_session() as session:
                result = session.execute(query)

        Raises:
            StoreError: On any persistence failure.
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database operation failed: {e}")
            raise StoreError(detail=str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """
        Create tables if they do not exist.

        Call this once during application setup.
        """
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(detail=str(e)) from e
        logger.info("Database schema initialized")

    def ping(self) -> None:
        """Round-trip a trivial query (health checks)."""
        with self.get_session() as session:
            session.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self.engine.dispose()


# Singleton instance
_database_instance: Optional[Database] = None


def get_database() -> Database:
    """
    Get singleton Database instance.

    Returns:
        Database instance.
    """
    global _database_instance
    if _database_instance is None:
        _database_instance = Database()
    return _database_instance
