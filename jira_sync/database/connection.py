"""
Database Connection Module
Handles the analytical store connection and transaction scopes using SQLAlchemy.
"""

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from jira_sync.config_manager import DatabaseSettings
from jira_sync.database.models import SyncTables, build_tables
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnection:
    """Owns the engine and the table definitions for one run."""

    def __init__(self, settings: DatabaseSettings, engine: Engine = None):
        """
        Args:
            settings: Database settings (URL, table names, pool sizing)
            engine: Pre-built engine, used instead of creating one from the URL
        """
        self.settings = settings
        self._engine = engine or self._create_engine(settings)
        self.tables: SyncTables = build_tables(settings)

    def _create_engine(self, settings: DatabaseSettings) -> Engine:
        """Create SQLAlchemy engine with connection pooling."""
        echo = os.getenv('SQL_ECHO', 'false').lower() == 'true'

        if settings.url.startswith('sqlite'):
            # One shared connection so in-memory databases survive across scopes
            return create_engine(
                settings.url,
                poolclass=StaticPool,
                connect_args={'check_same_thread': False},
                echo=echo
            )

        engine = create_engine(
            settings.url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            pool_pre_ping=True,  # Enable connection health checks
            echo=echo
        )
        logger.info("Database engine initialized successfully")
        return engine

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        return self._engine

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def transaction(self) -> Generator[Connection, None, None]:
        """
        Provide a transactional scope; commits on success, rolls back on error.

        Usage:
            with db.transaction() as conn:
                conn.execute(...)
        """
        with self._engine.begin() as conn:
            yield conn

    def create_tables(self) -> None:
        """Create the target and stage tables if missing."""
        self.tables.metadata.create_all(self._engine)

    def check_connection(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            bool: True if connection is healthy, False otherwise.
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.debug("Database connection health check passed")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection health check failed: {type(e).__name__}")
            return False

    def dispose(self) -> None:
        """Dispose of the connection pool."""
        self._engine.dispose()
        logger.info("Database connection pool disposed")
