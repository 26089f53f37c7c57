"""PostgreSQL connection pool with an explicit open/close lifecycle.

One Database instance is created by the entry point and handed to every
store; nothing else opens connections.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from psycopg2.pool import SimpleConnectionPool

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class Database:
    """Bounded psycopg2 connection pool."""

    def __init__(self, dsn: str, min_connections: int = 1, max_connections: int = 5):
        self.dsn = dsn
        self.min_connections = min_connections
        self.max_connections = max(min_connections, max_connections)
        self._pool: Optional[SimpleConnectionPool] = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self) -> "Database":
        if self._pool is None:
            self._pool = SimpleConnectionPool(
                self.min_connections, self.max_connections, self.dsn
            )
            logger.debug(
                f"Opened connection pool ({self.min_connections}-{self.max_connections})"
            )
        return self

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.debug("Closed connection pool")

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def connection(self) -> Generator:
        """Borrow a pooled connection; commit on success, roll back on error."""
        if self._pool is None:
            raise RuntimeError("Database is not open")
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def init_db(self) -> None:
        """Create tables and indexes if they do not exist."""
        with open(SCHEMA_PATH) as f:
            schema_sql = f.read()

        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(schema_sql)
        logger.info("Database schema initialized")
