from __future__ import annotations

import logging

from sqlalchemy.sql.elements import TextClause

from ..metrics.registry import DB_STATEMENT_LATENCY_SECONDS, DB_STATEMENT_TOTAL
from .helpers import _parse_sql_operation

logger = logging.getLogger(__name__)


def observe_db_statement(table: str, op_type: str, status: str, latency_s: float) -> None:
    """Record one executed statement."""
    DB_STATEMENT_TOTAL.labels(table=table, op_type=op_type, status=status).inc()
    DB_STATEMENT_LATENCY_SECONDS.labels(table=table, op_type=op_type).observe(latency_s)


def observe_sql(sql: str | TextClause, status: str, latency_s: float) -> None:
    """
    Record a statement by its SQL text.

    Metric errors are logged and dropped so they never mask the statement's
    own outcome.
    """
    try:
        table, op_type = _parse_sql_operation(sql)
        observe_db_statement(table, op_type, status, latency_s)
    except Exception:
        logger.debug("Failed to record statement metrics", exc_info=True)
