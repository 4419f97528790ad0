"""
PostgreSQL connection management shared by the pgvector index and the
record store.

Uses a psycopg2 ThreadedConnectionPool; every operation runs through
``execute_with_retry`` which reconnects once on a stale connection.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass
from contextlib import contextmanager

import psycopg2
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Configuration for the PostgreSQL connection pool."""
    connection_string: Optional[str] = None
    pool_min_connections: int = 2
    pool_max_connections: int = 20


class PostgresDatabase:
    """
    Pooled PostgreSQL access.

    Usage:
        db = PostgresDatabase()
        db.connect()
        rows = db.execute_with_retry(lambda conn: ..., "label")
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self._pool = None
        self._connection_string = (
            self.config.connection_string or
            os.getenv("POSTGRES_URL") or
            os.getenv("DATABASE_URL") or
            "postgresql://localhost:5432/legal_lens"
        )

    def connect(self) -> None:
        """Create the connection pool and make sure pgvector is installed."""
        try:
            if self._pool:
                self._pool.closeall()
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self.config.pool_min_connections,
                maxconn=self.config.pool_max_connections,
                dsn=self._connection_string,
                cursor_factory=psycopg2.extras.RealDictCursor,
            )
            conn = self._pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("CREATE EXTENSION IF NOT EXISTS vector")
                conn.commit()
            finally:
                self._pool.putconn(conn)

            logger.info(
                f"Connection pool initialized (min={self.config.pool_min_connections}, "
                f"max={self.config.pool_max_connections})"
            )
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise

    def _get_connection(self):
        if not self._pool:
            self.connect()
        try:
            return self._pool.getconn()
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            logger.warning("Connection from pool is dead, attempting to re-establish...")
            self.connect()
            return self._pool.getconn()

    def _release_connection(self, conn) -> None:
        if self._pool and conn:
            self._pool.putconn(conn)

    @contextmanager
    def get_connection(self):
        """
        Context manager for a pooled connection.

        Usage:
            with db.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
        """
        conn = self._get_connection()
        try:
            yield conn
        finally:
            self._release_connection(conn)

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def execute_with_retry(self, operation, label: str = "db_operation"):
        """Execute a DB operation with one retry on stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.
        """
        for attempt in range(2):
            conn = self._get_connection()
            try:
                result = operation(conn)
                self._release_connection(conn)
                return result
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                self._pool.putconn(conn, close=True)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, reconnecting: {e}")
                    self.connect()
                    continue
                raise
            except Exception:
                self._safe_rollback(conn)
                self._release_connection(conn)
                raise

    def execute_script(self, sql: str, label: str = "schema") -> None:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql)
            conn.commit()
        self.execute_with_retry(_op, label)
        logger.info(f"{label} initialized successfully")

    def close(self) -> None:
        """Close all pooled connections."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")
