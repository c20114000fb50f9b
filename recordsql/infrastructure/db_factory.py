"""
PostgreSQL connection factory and transaction boundary for recordsql.

The engine never opens connections itself. Applications (and the integration
tests) use this module to obtain a connection or pool, and `transaction()` to
run engine operations on a `PsycopgHandle` with commit/rollback handled.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import atexit
import threading
from contextlib import contextmanager
from typing import Generator, Optional

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from recordsql.config import Settings, get_settings
from recordsql.infrastructure.handles import PsycopgHandle
from recordsql.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def apply_statement_timeout(conn: Connection, timeout_ms: Optional[int] = None) -> None:
    """
    Limit statement run time for the current transaction.

    A timeout of 0 (the default setting) leaves the server default in place.
    """
    ms = timeout_ms if timeout_ms is not None else get_settings().db_statement_timeout_ms
    if ms <= 0:
        return
    conn.execute(f"SET LOCAL statement_timeout = {int(ms)}")


class PoolManager:
    """
    Thread-safe singleton owning the process-wide connection pool.

    The pool is closed automatically on exit via an atexit hook.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._pool: Optional[ConnectionPool] = None
                atexit.register(cls._instance.close)
            return cls._instance

    def get_pool(self, min_size: Optional[int] = None, max_size: Optional[int] = None) -> ConnectionPool:
        """
        Get or create the connection pool.

        Parameters
        ----------
        min_size : int, optional
            Minimum number of idle connections. Defaults to DB_POOL_MIN_SIZE.
        max_size : int, optional
            Maximum total connections. Defaults to DB_POOL_MAX_SIZE.
        """
        with self._lock:
            if self._pool is None:
                settings = get_settings()
                self._pool = ConnectionPool(
                    conninfo=build_dsn(settings),
                    min_size=min_size if min_size is not None else settings.db_pool_min_size,
                    max_size=max_size if max_size is not None else settings.db_pool_max_size,
                    open=True,
                )
                log.info(
                    f"[POOL] opened for {settings.db_host}:{settings.db_port}/{settings.db_name}",
                    extra={"min_size": self._pool.min_size, "max_size": self._pool.max_size},
                )
            return self._pool

    def close(self) -> None:
        with self._lock:
            if self._pool is None:
                return
            pool, self._pool = self._pool, None
        try:
            pool.close()
        except psycopg.Error as exc:
            log.warning(f"[POOL] close failed: {exc}")


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection() -> Connection:
    """
    Acquire a dedicated connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection
    errors. Prefer `transaction()` for engine operations.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(build_dsn())


def get_sync_pool(min_size: Optional[int] = None, max_size: Optional[int] = None) -> ConnectionPool:
    """Get or create the process-wide pool via PoolManager."""
    return PoolManager().get_pool(min_size=min_size, max_size=max_size)


@contextmanager
def transaction(
    readonly: bool = False,
    pool: Optional[ConnectionPool] = None,
) -> Generator[PsycopgHandle, None, None]:
    """
    Run a unit of work on a pooled connection.

    Commits when the block exits normally and rolls back when it raises; the
    exception is propagated.

    Example
    -------
        with transaction() as handle:
            synthesizer.insert(handle, row)
    """
    pool = pool or get_sync_pool()
    with pool.connection() as conn:
        try:
            with conn.transaction():
                apply_statement_timeout(conn)
                yield PsycopgHandle(conn, readonly=readonly)
        except Exception:
            log.warning("[TX] rolled back", extra={"readonly": readonly})
            raise
        log.debug("[TX] committed", extra={"readonly": readonly})


__all__ = [
    "PoolManager",
    "apply_statement_timeout",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
    "transaction",
]
