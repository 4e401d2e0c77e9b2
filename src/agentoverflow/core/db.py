# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Database connection management for agentoverflow.

Config via AGENTOVERFLOW_DB_* environment variables. Every connection
acquisition is bounded by ``db_pool_timeout`` and every statement by the
server-side ``statement_timeout``; both failures surface as
``StorageUnavailableError``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2 import pool as psycopg2_pool
from psycopg2.extras import RealDictCursor
from psycopg2.pool import PoolError

from .exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)

psycopg2.extras.register_uuid()

# Driver errors that mean the database, not the query, is the problem
_UNAVAILABLE_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)


class BoundedConnectionPool(psycopg2_pool.ThreadedConnectionPool):
    """ThreadedConnectionPool whose checkout waits for a free connection.

    psycopg2 raises ``PoolError`` as soon as ``maxconn`` connections are
    checked out. A semaphore sized to ``maxconn`` makes callers queue for up
    to ``timeout`` seconds instead. Every ``getconn_within`` must be paired
    with one ``putconn``.
    """

    def __init__(self, minconn: int, maxconn: int, *args: Any, **kwargs: Any):
        super().__init__(minconn, maxconn, *args, **kwargs)
        self._slots = threading.BoundedSemaphore(maxconn)

    def getconn_within(self, timeout: float) -> Any:
        """Check out a connection, waiting at most ``timeout`` seconds.

        Raises:
            PoolError: If no connection frees up in time
        """
        if not self._slots.acquire(timeout=timeout):
            raise PoolError(f"Connection pool timeout after {timeout} seconds")
        try:
            return self.getconn()
        except BaseException:
            self._slots.release()
            raise

    def putconn(self, conn: Any, key: Any = None, close: bool = False) -> None:
        try:
            super().putconn(conn, key=key, close=close)
        finally:
            self._slots.release()


# Connection pool (lazy init, thread-safe)
_pool: BoundedConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> BoundedConnectionPool:
    """Get or create the connection pool."""
    from .config import get_config

    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                config = get_config()
                try:
                    _pool = BoundedConnectionPool(
                        minconn=config.db_pool_min,
                        maxconn=config.db_pool_max,
                        connect_timeout=config.db_pool_timeout,
                        options=f"-c statement_timeout={config.db_statement_timeout_ms}",
                        **config.connection_params,
                    )
                except psycopg2.OperationalError as e:
                    logger.error(f"Database unreachable: {e}")
                    raise StorageUnavailableError("Database unreachable", {"error": str(e)}) from e
    return _pool


def _validate_connection(conn: Any) -> bool:
    if conn.closed:
        return False

    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        conn.rollback()
        return True
    except psycopg2.Error:
        return False


def _get_healthy_connection(pool: BoundedConnectionPool, timeout: int) -> Any:
    """Get a healthy connection from pool, discarding stale ones.

    Raises:
        StorageUnavailableError: If unable to get a healthy connection in time
    """
    max_attempts = 3
    for _ in range(max_attempts):
        try:
            conn = pool.getconn_within(timeout)
        except (PoolError, *_UNAVAILABLE_ERRORS) as e:
            logger.error(f"Could not acquire database connection: {e}")
            raise StorageUnavailableError("Could not acquire database connection", {"error": str(e)}) from e

        if _validate_connection(conn):
            return conn

        # Stale connection, drop it and retry
        pool.putconn(conn, close=True)

    raise StorageUnavailableError("Failed to get healthy connection after multiple attempts")


def _rollback_quietly(conn: Any) -> None:
    """Roll back without letting a dead connection mask the original error."""
    try:
        conn.rollback()
    except psycopg2.Error as e:
        logger.warning(f"Rollback failed on broken connection: {e}")


@contextmanager
def get_cursor() -> Generator[Any, None, None]:
    """Get a database cursor with commit on success, rollback on error.

    The whole block runs in one transaction, so ``SELECT ... FOR UPDATE``
    locks taken inside it are held until the block exits. Connections that
    fail at the driver level are closed rather than returned to the pool.

    Usage:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM issues WHERE fingerprint = %s", (fp,))
            row = cur.fetchone()
    """
    from .config import get_config

    pool = _get_pool()
    config = get_config()
    conn = _get_healthy_connection(pool, config.db_pool_timeout)
    broken = False
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            yield cur
        conn.commit()
    except psycopg2.errors.QueryCanceled as e:
        _rollback_quietly(conn)
        raise StorageUnavailableError("Statement timed out", {"error": str(e)}) from e
    except _UNAVAILABLE_ERRORS as e:
        broken = True
        _rollback_quietly(conn)
        raise StorageUnavailableError("Database operation failed", {"error": str(e)}) from e
    except Exception:
        _rollback_quietly(conn)
        raise
    finally:
        if broken:
            pool.putconn(conn, close=True)
        else:
            pool.putconn(conn)


@contextmanager
def get_connection() -> Generator[Any, None, None]:
    """Get a raw database connection from the pool (for schema setup)."""
    from .config import get_config

    pool = _get_pool()
    config = get_config()
    conn = _get_healthy_connection(pool, config.db_pool_timeout)
    try:
        yield conn
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    """Close the connection pool."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None


def init_schema(schema_path: str | None = None) -> None:
    """Create tables from schema.sql (idempotent)."""
    path = Path(schema_path) if schema_path else Path(__file__).parent.parent / "schema.sql"
    if not path.exists():
        raise FileNotFoundError(f"schema.sql not found: {path}")

    schema_sql = path.read_text()

    with get_connection() as conn:
        conn.autocommit = True
        try:
            with conn.cursor() as cur:
                cur.execute(schema_sql)
        finally:
            conn.autocommit = False


def check_connection() -> bool:
    """Check if database connection is working."""
    try:
        with get_cursor() as cur:
            cur.execute("SELECT 1")
        return True
    except StorageUnavailableError:
        return False
