from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence, TypeVar, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..config import DbConfig
from ..errors import DbConnectionError, ExecutionFault, ProcedureFault, TransactionFault
from .dialects import make_dialect
from .helpers import (
    WHERE_PREFIX,
    _validate_qualified_identifier,
    bind_params,
    build_delete_sql,
    build_insert_sql,
    build_select_sql,
    build_update_sql,
    escape_quoted_colons,
    is_select_query,
    sanitize_columns,
)
from .metrics import observe_sql
from .models import ColumnMapping, ConditionMapping, Join, Row
from .tx import DbTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _rows(result) -> list[Row]:
    # Built from tuples: a name repeated across joined tables keeps its last value
    keys = list(result.keys())
    return [dict(zip(keys, row)) for row in result]


class RelationalTableGateway:
    """
    Parameterized CRUD, ad-hoc queries, stored procedures and single-level
    transactions over one database connection.

    The gateway opens its connection on construction and keeps it until
    close(). It is not thread-safe; use one gateway per thread or request.

    Two failure policies apply:

    - create, read, update, delete, execute_custom_query, custom_select and
      last_insert_id log database faults and return a sentinel (False, [] or
      None). The fault is kept in ``last_error`` until the next call, and
      ``DbConfig.raise_on_error`` turns the sentinel into a raised
      ExecutionFault.
    - construction, stored procedures and transactions log and raise
      (DbConnectionError, ProcedureFault, TransactionFault).

    Only column values are bound as parameters. Table names, column names,
    operators, joins and ORDER BY terms are validated and then interpolated;
    invalid ones raise ValueError before anything is executed.

    Usage:
        with RelationalTableGateway(DbConfig(database="app", user="app")) as db:
            db.create("users", {"name": "Ada", "age": 36})
            adults = db.read("users", {"age": (">=", 18)}, order_by="name")
    """

    def __init__(self, config: DbConfig, engine: Optional[Engine] = None) -> None:
        """
        Connect to the configured database.

        Args:
            config: Connection target and behaviour switches
            engine: Existing Engine to take the connection from; when omitted
                    one is created from ``config`` and disposed on close()

        Raises:
            DbConnectionError: If the connection cannot be established
        """
        self.config = config
        self.dialect = make_dialect(config.dialect)
        self.last_error: Optional[ExecutionFault] = None
        self._owns_engine = engine is None
        self._tx: Optional[DbTransaction] = None

        try:
            self.engine = engine if engine is not None else create_engine(config.url(), pool_pre_ping=True)
            self._conn: Optional[Connection] = self.engine.connect()
        except SQLAlchemyError as exc:
            logger.error("Connection error: %s", exc)
            if self._owns_engine and hasattr(self, "engine"):
                self.engine.dispose()
            raise DbConnectionError("Database connection error") from exc

    def __enter__(self) -> "RelationalTableGateway":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._conn is None

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None
            if self._owns_engine:
                self.engine.dispose()

    def _connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("Gateway is closed")
        return self._conn

    @contextmanager
    def _statement_scope(self) -> Iterator[Connection]:
        """
        Yield the connection inside a transaction.

        Inside transaction() the unit of work's transaction is joined;
        otherwise each call commits (or rolls back) on its own.
        """
        conn = self._connection()
        if self._tx is not None and not self._tx.closed:
            yield conn
            return

        with conn.begin():
            yield conn

    def _run(self, sql: str, params: Mapping[str, Any] | None = None, fetch: bool = False) -> Any:
        """Execute one statement; return its rows when ``fetch`` else its rowcount."""
        logger.debug("Executing %s", sql)
        stmt = text(sql)
        status = "error"
        start_time = time.monotonic()
        try:
            with self._statement_scope() as conn:
                result = conn.execute(stmt, params or {})
                try:
                    if fetch:
                        out = _rows(result)
                    else:
                        out = int(result.rowcount) if result.rowcount is not None else 0
                finally:
                    result.close()
            status = "success"
            return out
        finally:
            observe_sql(stmt, status, time.monotonic() - start_time)

    def _fault(self, operation: str, exc: Exception, sentinel: T) -> T:
        logger.error("%s: %s", operation, exc)
        fault = ExecutionFault(operation, str(exc))
        self.last_error = fault
        if self.config.raise_on_error:
            raise fault from exc
        return sentinel

    def _payload(self, columns: ColumnMapping) -> dict[str, Any]:
        if self.config.sanitize_html:
            return sanitize_columns(columns)
        return dict(columns)

    def create(self, table: str, columns: ColumnMapping) -> bool:
        """
        Insert one row.

        Uses INSERT IGNORE (or the dialect's equivalent) when
        ``config.insert_ignore`` is set, so duplicate keys are skipped
        rather than reported.

        Returns:
            True on success, False on a database fault
        """
        self.last_error = None
        payload = self._payload(columns)
        sql = build_insert_sql(self.dialect.insert_verb(self.config.insert_ignore), table, payload.keys())

        try:
            self._run(sql, payload)
        except SQLAlchemyError as exc:
            return self._fault("Insert error", exc, False)
        return True

    def read(
        self,
        table: str,
        conditions: ConditionMapping | None = None,
        order_by: str = "",
    ) -> list[Row]:
        """
        SELECT * from one table. No conditions means every row.

        Returns:
            Matching rows as dicts; [] when nothing matches or on a fault
        """
        self.last_error = None
        sql = build_select_sql(table, conditions, order_by=order_by)

        try:
            return self._run(sql, bind_params(conditions), fetch=True)
        except SQLAlchemyError as exc:
            return self._fault("Read error", exc, [])

    def update(self, table: str, columns: ColumnMapping, conditions: ConditionMapping | None) -> bool:
        """
        Update matching rows.

        WHERE parameters are bound with a ``where_`` prefix so a column may
        appear both in ``columns`` and ``conditions``. Empty conditions update
        every row in the table.
        """
        self.last_error = None
        payload = self._payload(columns)
        sql = build_update_sql(table, payload.keys(), conditions)
        params = {**payload, **bind_params(conditions, WHERE_PREFIX)}

        try:
            self._run(sql, params)
        except SQLAlchemyError as exc:
            return self._fault("Update error", exc, False)
        return True

    def delete(self, table: str, conditions: ConditionMapping | None) -> bool:
        """Delete matching rows. Empty conditions delete every row in the table."""
        self.last_error = None
        sql = build_delete_sql(table, conditions)

        try:
            self._run(sql, bind_params(conditions))
        except SQLAlchemyError as exc:
            return self._fault("Delete error", exc, False)
        return True

    def execute_custom_query(
        self,
        query: str,
        params: Mapping[str, Any] | None = None,
    ) -> Union[list[Row], int, None]:
        """
        Run an arbitrary statement with named parameters (``:name``).

        The return type follows the query text: rows when it starts with
        SELECT at position 0 (case-insensitive), otherwise the affected row
        count. Leading whitespace or a comment before SELECT therefore yields
        a row count.

        Returns:
            Rows, a row count, or None on a database fault
        """
        self.last_error = None

        try:
            rows_or_count = self._run(
                escape_quoted_colons(query), bind_params(params), fetch=is_select_query(query)
            )
        except SQLAlchemyError as exc:
            return self._fault("Custom query error", exc, None)
        return rows_or_count

    def custom_select(
        self,
        tables: Sequence[str],
        conditions: ConditionMapping | None = None,
        joins: Sequence[Union[Join, str]] | None = None,
        order_by: str = "",
    ) -> list[Row]:
        """
        SELECT * over a comma-separated table list with optional joins.

        ``tables`` entries may carry an alias (``"users u"``). ``joins`` take
        Join objects or strings such as
        ``"LEFT JOIN orders o ON o.user_id = u.id"``. Qualified condition
        columns (``u.status``) are supported.
        """
        self.last_error = None
        sql = build_select_sql(tables, conditions, joins, order_by)

        try:
            return self._run(sql, bind_params(conditions), fetch=True)
        except SQLAlchemyError as exc:
            return self._fault("Custom select error", exc, [])

    def execute_stored_procedure(self, name: str, params: Sequence[Any] = ()) -> None:
        """
        CALL a procedure for its side effects.

        Raises:
            ProcedureFault: If the call fails or the dialect has no procedures
        """
        self._call(name, params, fetch=False)

    def execute_stored_procedure_with_results(self, name: str, params: Sequence[Any] = ()) -> list[Row]:
        """
        CALL a procedure and return the rows of its first result set.

        Raises:
            ProcedureFault: If the call fails or the dialect has no procedures
        """
        return self._call(name, params, fetch=True)

    def _call(self, name: str, params: Sequence[Any], fetch: bool) -> Any:
        self.last_error = None
        name = _validate_qualified_identifier(name, "procedure")
        values = tuple(params)
        label = f"CALL {name}"
        status = "error"
        start_time = time.monotonic()

        try:
            with self._statement_scope() as conn:
                placeholder = "?" if conn.dialect.paramstyle in ("qmark", "numeric") else "%s"
                sql = self.dialect.call_statement(name, ", ".join([placeholder] * len(values)))
                logger.debug("Executing %s", sql)
                result = conn.exec_driver_sql(sql, values or None)
                try:
                    rows = _rows(result) if fetch else None
                finally:
                    result.close()
            status = "success"
        except (SQLAlchemyError, NotImplementedError) as exc:
            logger.error("Stored procedure execution error: %s", exc)
            raise ProcedureFault("Stored procedure execution error") from exc
        finally:
            observe_sql(label, status, time.monotonic() - start_time)

        return rows

    def last_insert_id(self) -> Optional[int]:
        """
        The auto-increment id most recently generated on this connection.

        Returns:
            The id, or None on a database fault
        """
        self.last_error = None

        try:
            with self._statement_scope() as conn:
                value = conn.execute(text(self.dialect.last_insert_id_sql())).scalar_one_or_none()
        except SQLAlchemyError as exc:
            return self._fault("Last insert ID retrieval error", exc, None)
        return int(value) if value is not None else None

    def transaction(self, unit_of_work: Callable[[DbTransaction], T]) -> T:
        """
        Run ``unit_of_work`` inside one transaction.

        The unit of work receives a DbTransaction for raw statements; gateway
        methods called while it runs join the same transaction. The
        transaction commits when the unit of work returns and rolls back when
        it raises.

        Calling transaction() again from inside the unit of work is not
        supported: there are no nested transactions or savepoints.

        Returns:
            Whatever ``unit_of_work`` returns

        Raises:
            TransactionFault: On nesting, or when the database fails; the
                              driver error is chained as ``__cause__``
            Exception: Any other exception from ``unit_of_work``, unchanged,
                       after rollback
        """
        if self._tx is not None:
            raise TransactionFault("Nested transactions are not supported")

        self.last_error = None
        conn = self._connection()

        try:
            tx = DbTransaction(conn)
        except SQLAlchemyError as exc:
            logger.error("Transaction error: %s", exc)
            raise TransactionFault("Transaction error") from exc

        self._tx = tx
        try:
            result = unit_of_work(tx)
            if not tx.closed:
                tx.commit()
        except BaseException as exc:
            if not tx.closed:
                try:
                    tx.rollback()
                except SQLAlchemyError:
                    logger.warning("Rollback failed", exc_info=True)
            logger.error("Transaction error: %s", exc)
            if isinstance(exc, SQLAlchemyError):
                raise TransactionFault("Transaction error") from exc
            raise
        finally:
            self._tx = None

        return result
