from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.sql.elements import TextClause

from .metrics import observe_sql
from .models import Row

logger = logging.getLogger(__name__)


class DbTx(Protocol):
    """What a unit of work may do with the handle transaction() passes it."""

    closed: bool

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def execute(self, sql: str | TextClause, params: Mapping[str, Any] | None = None) -> int: ...

    def execute_scalar(self, sql: str | TextClause, params: Mapping[str, Any] | None = None) -> Any: ...

    def fetch_one(self, sql: str | TextClause, params: Mapping[str, Any] | None = None) -> Row | None: ...

    def fetch_all(self, sql: str | TextClause, params: Mapping[str, Any] | None = None) -> list[Row]: ...


class DbTransaction:
    """
    Transaction on a connection owned by someone else.

    The transaction begins on construction and ends with an explicit
    commit() or rollback(). Unlike the connection it runs on, the handle is
    single use: once ended it cannot execute, commit or roll back again.
    Ending the transaction does not close the connection.

    Usage:
        tx = DbTransaction(conn)
        try:
            tx.execute("INSERT INTO ...", {...})
            tx.commit()
        except Exception:
            tx.rollback()
            raise
    """

    def __init__(self, conn: Connection) -> None:
        """
        Begin a new transaction.

        Args:
            conn: SQLAlchemy Connection with no transaction in progress
        """
        self._conn: Connection | None = conn
        self._tx = conn.begin()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _connection(self) -> Connection:
        """Get the active connection, raising if closed."""
        if self._closed or self._conn is None:
            raise RuntimeError("Transaction is closed")
        return self._conn

    def commit(self) -> None:
        """
        Commit the transaction.

        Raises:
            RuntimeError: If transaction is already closed
        """
        if self._closed:
            raise RuntimeError("Transaction is already closed")

        conn = self._conn
        try:
            self._tx.commit()
        except Exception:
            # Best-effort rollback on commit failure; the commit error is what propagates
            try:
                if conn is not None:
                    conn.rollback()
            except Exception:
                logger.warning("Rollback after failed commit also failed", exc_info=True)
            raise
        finally:
            self._close()

    def rollback(self) -> None:
        """
        Rollback the transaction.

        Raises:
            RuntimeError: If transaction is already closed
        """
        if self._closed:
            raise RuntimeError("Transaction is already closed")

        try:
            self._tx.rollback()
        finally:
            self._close()

    def _close(self) -> None:
        self._closed = True
        self._conn = None

    def _run(self, sql: str | TextClause, params: Mapping[str, Any] | None):
        conn = self._connection()
        stmt = text(sql) if isinstance(sql, str) else sql
        start_time = time.monotonic()
        try:
            result = conn.execute(stmt, params or {})
        except Exception:
            observe_sql(stmt, "error", time.monotonic() - start_time)
            raise
        observe_sql(stmt, "success", time.monotonic() - start_time)
        return result

    def execute(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Execute a non-SELECT statement and return affected row count.

        Raises:
            RuntimeError: If transaction is closed or rowcount is None
        """
        result = self._run(sql, params)
        try:
            if result.rowcount is None:
                raise RuntimeError(
                    "execute() received None rowcount for statement. "
                    "This may indicate a DDL statement or unsupported operation type."
                )
            return int(result.rowcount)
        finally:
            result.close()

    def execute_scalar(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Execute a statement expected to return a single scalar value."""
        result = self._run(sql, params)
        try:
            return result.scalar_one_or_none()
        finally:
            result.close()

    def fetch_one(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> Row | None:
        """
        Execute a SELECT expected to return 0 or 1 row.

        Raises:
            RuntimeError: If transaction is closed
            MultipleResultsFound: If more than one row is returned
        """
        result = self._run(sql, params)
        try:
            row = result.mappings().one_or_none()
            if row is None:
                return None
            return dict(row)
        finally:
            result.close()

    def fetch_all(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> list[Row]:
        """Execute a SELECT returning multiple rows."""
        result = self._run(sql, params)
        try:
            return [dict(row) for row in result.mappings()]
        finally:
            result.close()
