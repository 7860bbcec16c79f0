"""Database connection management with connection pooling."""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from psycopg import Connection
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages a PostgreSQL connection pool for one database URL."""

    def __init__(self, conninfo: str, *, min_size: int = 1, max_size: int = 4):
        self._conninfo = conninfo
        self._min_size = min_size
        self._max_size = max_size
        self._pool: Optional[ConnectionPool] = None

    def initialize(self):
        """Initialize connection pool."""
        if self._pool is not None:
            logger.warning("Connection pool already initialized")
            return

        logger.info(
            "Initializing database connection pool (min=%s, max=%s)",
            self._min_size,
            self._max_size,
        )

        self._pool = ConnectionPool(
            conninfo=self._conninfo,
            min_size=self._min_size,
            max_size=self._max_size,
            timeout=30,
            kwargs={
                "row_factory": dict_row,  # Return rows as dictionaries
                "autocommit": False,
            },
            open=True,
        )

        logger.info("Database connection pool initialized successfully")

    def close(self):
        """Close connection pool."""
        if self._pool:
            logger.info("Closing database connection pool")
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self) -> Generator[Connection, None, None]:
        """Get a connection from the pool (context manager)."""
        if self._pool is None:
            self.initialize()

        with self._pool.connection() as conn:
            yield conn
