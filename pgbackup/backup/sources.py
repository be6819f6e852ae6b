"""
Source database handlers for hot backups.

PostgresSource keeps a single SQLAlchemy connection open for the whole
backup session; non-exclusive backups must start and stop on the same
connection.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError


logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when the source database cannot be reached or queried."""
    pass


def build_engine(dsn: str) -> Engine:
    """
    Create an engine from a SQLAlchemy URL or a libpq keyword string.

    Args:
        dsn: 'postgresql+psycopg2://...' URL, or 'host=... user=...' string

    Returns:
        SQLAlchemy engine in AUTOCOMMIT mode
    """
    if '://' in dsn:
        url = dsn
        connect_args = {}
    else:
        url = 'postgresql+psycopg2://'
        connect_args = {'dsn': dsn}

    # Autocommit keeps a rejected candidate call from aborting the
    # transaction the next candidate would run in.
    return create_engine(url, connect_args=connect_args, isolation_level='AUTOCOMMIT')


class PostgresSource:
    """
    Capability interface to the source cluster used by BackupSession.

    Offers query_scalar() and close(); the connection is opened lazily on
    the first query and held until close().
    """

    def __init__(self, dsn: str, engine: Optional[Engine] = None):
        """
        Initialize source handler.

        Args:
            dsn: Connection string
            engine: Pre-built engine (mainly for tests)
        """
        self.dsn = dsn
        self.engine = engine
        self.connection: Optional[Connection] = None

    def _connect(self) -> Connection:
        if self.connection is None:
            try:
                if self.engine is None:
                    self.engine = build_engine(self.dsn)
                self.connection = self.engine.connect()
            except SQLAlchemyError as e:
                raise SourceError(f"Cannot connect to PostgreSQL: {e}")
        return self.connection

    def query_scalar(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run a statement and return the first column of the first row.

        Raises:
            SourceError: If connecting or executing fails
        """
        connection = self._connect()
        try:
            return connection.execute(text(sql), params or {}).scalar()
        except SQLAlchemyError as e:
            raise SourceError(str(e).strip())

    def close(self):
        """Close the connection and dispose the engine."""
        if self.connection is not None:
            try:
                self.connection.close()
            except SQLAlchemyError as e:
                logger.warning(f"Failed to close database connection: {e}")
            self.connection = None

        if self.engine is not None:
            self.engine.dispose()
            self.engine = None


def create_source(dsn: str) -> PostgresSource:
    """Factory for the source handler used by the executor."""
    return PostgresSource(dsn)
