"""
PostgreSQL client with connection pooling and request-scoped transactions.

Uses psycopg2 with ThreadedConnectionPool. Single statements run on their own
pooled connection and commit immediately. Multi-step mutations wrap their
statements in ``transaction()``: the connection is pinned in a contextvar so
every execute inside the block joins it, and the whole block commits or rolls
back together.

Tenant isolation is enforced by the services (explicit organization checks),
not by RLS, so that cross-organization access can be reported as forbidden.
"""

import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)

# Global JSONB registration flag
_jsonb_registered = False

# (database_url, connection) of the transaction open in the current context
_active_transaction: ContextVar[Tuple[str, Any] | None] = ContextVar("active_transaction", default=None)


class PersistenceError(Exception):
    """Database operation failed. Carries the driver's diagnostic message."""


class PostgresClient:
    """
    PostgreSQL client with pooled connections and opt-in transactions.

    Usage:
        db = PostgresClient(database_url)

        # Single statement, autocommitted
        rows = db.execute("SELECT * FROM invoices WHERE organization_id = %s", (org_id,))

        # Several statements, one atomic unit
        with db.transaction():
            db.execute("DELETE FROM invoice_items WHERE invoice_id = %s", (invoice_id,))
            db.execute("UPDATE invoices SET subtotal_cents = %s WHERE id = %s", (0, invoice_id))
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str):
        self._database_url = database_url
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=2,
                    maxconn=20,
                    dsn=self._database_url,
                    connect_timeout=30,
                )

                global _jsonb_registered
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    _jsonb_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Borrow a connection from the pool."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise PersistenceError("Could not get connection from pool")
            yield conn
        finally:
            if conn:
                pool.putconn(conn)

    def _active_connection(self):
        active = _active_transaction.get()
        if active is not None and active[0] == self._database_url:
            return active[1]
        return None

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        Run the enclosed statements as one atomic unit.

        Commits when the block exits normally, rolls back on any exception.
        A nested transaction() joins the outer one.
        """
        existing = self._active_connection()
        if existing is not None:
            yield existing
            return

        with self.get_connection() as conn:
            token = _active_transaction.set((self._database_url, conn))
            try:
                yield conn
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                logger.error(f"Transaction failed: {e}")
                raise PersistenceError(f"Database error: {e}") from e
            except BaseException:
                conn.rollback()
                raise
            finally:
                _active_transaction.reset(token)

    @contextmanager
    def _cursor(self, dict_rows: bool = True):
        """Cursor on the active transaction's connection, or on a fresh autocommitted one."""
        cursor_kwargs = {"cursor_factory": psycopg2.extras.RealDictCursor} if dict_rows else {}
        active = self._active_connection()

        if active is not None:
            try:
                with active.cursor(**cursor_kwargs) as cur:
                    yield cur
            except psycopg2.Error as e:
                raise PersistenceError(f"Database error: {e}") from e
            return

        with self.get_connection() as conn:
            try:
                with conn.cursor(**cursor_kwargs) as cur:
                    yield cur
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                logger.error(f"Query failed: {e}")
                raise PersistenceError(f"Database error: {e}") from e

    def _convert_params(self, params: Tuple | Dict | None) -> Tuple | Dict | None:
        """Convert UUID objects to strings."""
        if params is None:
            return None

        def convert(value: Any) -> Any:
            if isinstance(value, UUID):
                return str(value)
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(params)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        params = self._convert_params(params)
        with self._cursor() as cur:
            cur.execute(query, params)
            if cur.description:
                return [dict(row) for row in cur.fetchall()]
            return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        params = self._convert_params(params)
        with self._cursor(dict_rows=False) as cur:
            cur.execute(query, params)
            result = cur.fetchone()
            return result[0] if result else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE/DELETE with RETURNING, return results."""
        params = self._convert_params(params)
        with self._cursor() as cur:
            cur.execute(query, params)
            return [dict(row) for row in cur.fetchall()]

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
