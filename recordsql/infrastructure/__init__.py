"""
Infrastructure package for recordsql.

Holds the transaction-handle contracts the engine executes SQL through, and
the psycopg-based connection factory. Keep this layer focused on I/O and
resource management, decoupled from SQL synthesis.
"""

from recordsql.infrastructure.db_factory import (
    PoolManager,
    apply_statement_timeout,
    build_dsn,
    get_sync_connection,
    get_sync_pool,
    transaction,
)
from recordsql.infrastructure.handles import (
    PsycopgHandle,
    ReadonlyHandle,
    ReadWriteHandle,
    to_pyformat,
)

__all__ = [
    "PoolManager",
    "PsycopgHandle",
    "ReadWriteHandle",
    "ReadonlyHandle",
    "apply_statement_timeout",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
    "to_pyformat",
    "transaction",
]
