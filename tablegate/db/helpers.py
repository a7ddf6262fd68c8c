from __future__ import annotations

import html
import re
from typing import Any, Iterable, Mapping, Sequence, Tuple, Union

from sqlalchemy.sql.elements import TextClause

from .models import ColumnMapping, ConditionMapping, Join, JoinType, Operator

WHERE_PREFIX = "where_"

_IDENTIFIER = r"[A-Za-z_][A-Za-z0-9_]*"
_QUALIFIED = rf"{_IDENTIFIER}(?:\.{_IDENTIFIER}){{0,2}}"

_IDENTIFIER_RE = re.compile(rf"^{_IDENTIFIER}$")
_TABLE_REF_RE = re.compile(
    rf"^(?P<table>{_QUALIFIED})(?:\s+(?:AS\s+)?(?P<alias>(?!ON\b){_IDENTIFIER}))?$",
    re.IGNORECASE,
)
_ORDER_TERM_RE = re.compile(
    rf"^(?P<column>{_QUALIFIED})(?:\s+(?P<direction>ASC|DESC))?$",
    re.IGNORECASE,
)
_JOIN_RE = re.compile(
    r"^(?:(?:(?P<kind>INNER|CROSS)|(?P<outer>LEFT|RIGHT)(?:\s+OUTER)?)\s+)?JOIN\s+"
    rf"(?P<table>{_QUALIFIED})"
    rf"(?:\s+(?:AS\s+)?(?P<alias>(?!ON\b){_IDENTIFIER}))?"
    r"(?:\s+ON\s+(?P<on>.+))?$",
    re.IGNORECASE | re.DOTALL,
)
_ON_TERM_RE = re.compile(rf"^(?P<left>{_QUALIFIED})\s*=\s*(?P<right>{_QUALIFIED})$")
_AND_RE = re.compile(r"\s+AND\s+", re.IGNORECASE)
_TAG_RE = re.compile(r"<!--.*?-->|<(?=[^\s<>])[^>]*>", re.DOTALL)
_QUOTED_RE = re.compile(r"""'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*"|`[^`]*`""", re.DOTALL)
# Colons text() would read as bind parameters
_BIND_RE = re.compile(r"(?<![:\w\\]):(?=\w+(?!:))")

_OPERATION_PATTERNS = (
    ("insert", re.compile(r"^\s*INSERT\s+(?:IGNORE\s+|OR\s+IGNORE\s+)?INTO\s+`?([\w.$]+)", re.IGNORECASE)),
    ("update", re.compile(r"^\s*UPDATE\s+`?([\w.$]+)", re.IGNORECASE)),
    ("delete", re.compile(r"^\s*DELETE\s+FROM\s+`?([\w.$]+)", re.IGNORECASE)),
    ("call", re.compile(r"^\s*CALL\s+`?([\w.$]+)", re.IGNORECASE)),
    ("select", re.compile(r"^\s*SELECT\b.*?\bFROM\s+`?([\w.$]+)", re.IGNORECASE | re.DOTALL)),
)


def _validate_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate that an identifier (table/column name) is safe for SQL interpolation.

    MySQL identifiers can contain letters, digits, underscores, and dollar signs,
    but we restrict to alphanumeric + underscore. Plain identifiers are also used
    as bind-parameter names, so anything looser would break binding as well.

    Args:
        name: The identifier to validate
        identifier_type: Description of the identifier (for error messages)

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        TypeError: If identifier is not a string
        ValueError: If identifier contains unsafe characters or is invalid

    Example:
        >>> _validate_identifier("orders", "table")
        'orders'
        >>> _validate_identifier("'; DROP TABLE--", "table")
        ValueError: Invalid table "'; DROP TABLE--": ...
    """
    if not isinstance(name, str):
        raise TypeError(f"{identifier_type} must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError(f"{identifier_type} cannot be empty")

    if not _IDENTIFIER_RE.match(name):
        raise ValueError(
            f"Invalid {identifier_type} {name!r}: "
            "must start with letter/underscore and contain only alphanumeric characters and underscores"
        )

    if len(name) > 64:
        raise ValueError(f"{identifier_type} {name!r} exceeds MySQL's 64-character limit")

    return name


def _validate_qualified_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate a possibly qualified identifier such as ``users.id`` or
    ``app.users``. Each dot-separated part must pass _validate_identifier.
    """
    if not isinstance(name, str):
        raise TypeError(f"{identifier_type} must be a string, got {type(name).__name__}")

    parts = name.split(".")
    if len(parts) > 3:
        raise ValueError(f"Invalid {identifier_type} {name!r}: too many qualifiers")

    for part in parts:
        _validate_identifier(part, identifier_type)
    return name


def _validate_table_ref(ref: str) -> str:
    """Validate a FROM-list entry: ``table``, ``schema.table``, ``table alias`` or ``table AS alias``."""
    if not isinstance(ref, str):
        raise TypeError(f"table must be a string, got {type(ref).__name__}")

    match = _TABLE_REF_RE.match(ref.strip())
    if match is None:
        raise ValueError(f"Invalid table reference {ref!r}")

    table = _validate_qualified_identifier(match.group("table"), "table")
    alias = match.group("alias")
    if alias:
        return f"{table} AS {_validate_identifier(alias, 'table alias')}"
    return table


def param_name(column: str, prefix: str = "") -> str:
    """Bind-parameter name for a (possibly qualified) column."""
    return f"{prefix}{column.replace('.', '__')}"


def is_condition_pair(value: Any) -> bool:
    """A two-element list/tuple is read as (operator, value)."""
    return isinstance(value, (list, tuple)) and len(value) == 2


def build_where_clause(conditions: ConditionMapping, prefix: str = "") -> str:
    """
    Build `` WHERE a = :a AND b < :b`` from a condition mapping.

    Scalars compare with ``=``; (operator, value) pairs use the operator,
    which must be on the Operator allow-list. Predicates are joined with AND
    only. Returns an empty string when there are no conditions.
    """
    if not conditions:
        return ""

    clauses = []
    for column, value in conditions.items():
        _validate_qualified_identifier(column, "column")
        if is_condition_pair(value):
            operator = Operator.parse(value[0])
        elif isinstance(value, (list, tuple)):
            raise ValueError(
                f"Condition for {column!r} must be a scalar or an (operator, value) pair"
            )
        else:
            operator = Operator.EQ
        clauses.append(f"{column} {operator.value} :{param_name(column, prefix)}")

    return " WHERE " + " AND ".join(clauses)


def bind_params(values: Mapping[str, Any] | None, prefix: str = "") -> dict[str, Any]:
    """
    Map each entry to its (optionally prefixed) bind-parameter name, taking the
    value out of (operator, value) pairs.
    """
    params: dict[str, Any] = {}
    for key, value in (values or {}).items():
        params[param_name(key, prefix)] = value[1] if is_condition_pair(value) else value
    return params


def validate_order_by(order_by: str) -> str:
    """
    Validate and normalise an ORDER BY list: ``col [ASC|DESC], ...``.

    Raises:
        ValueError: If any term is not a column with an optional direction
    """
    if not isinstance(order_by, str):
        raise TypeError(f"order_by must be a string, got {type(order_by).__name__}")

    terms = []
    for raw in order_by.split(","):
        match = _ORDER_TERM_RE.match(raw.strip())
        if match is None:
            raise ValueError(f"Invalid ORDER BY term {raw.strip()!r}")
        column = _validate_qualified_identifier(match.group("column"), "order by column")
        direction = match.group("direction")
        terms.append(f"{column} {direction.upper()}" if direction else column)
    return ", ".join(terms)


def parse_join(clause: str) -> Join:
    """
    Parse a raw JOIN clause into a Join.

    Accepted shape: ``[INNER|CROSS|LEFT [OUTER]|RIGHT [OUTER]] JOIN table
    [[AS] alias] [ON a.x = b.y [AND ...]]``.
    """
    match = _JOIN_RE.match(clause.strip())
    if match is None:
        raise ValueError(f"Invalid JOIN clause {clause!r}")

    kind = JoinType((match.group("kind") or match.group("outer") or "INNER").upper())

    on: list[Tuple[str, str]] = []
    if match.group("on"):
        for term in _AND_RE.split(match.group("on").strip()):
            on_match = _ON_TERM_RE.match(term.strip())
            if on_match is None:
                raise ValueError(f"Invalid JOIN condition {term.strip()!r} in {clause!r}")
            on.append((on_match.group("left"), on_match.group("right")))

    return Join(table=match.group("table"), on=tuple(on), kind=kind, alias=match.group("alias"))


def render_join(join: Union[Join, str]) -> str:
    """Validate a Join (or raw JOIN string) and render it as SQL."""
    if isinstance(join, str):
        join = parse_join(join)

    kind = JoinType(join.kind)
    table = _validate_qualified_identifier(join.table, "join table")

    if kind is JoinType.CROSS and join.on:
        raise ValueError("CROSS JOIN does not take ON conditions")
    if kind in (JoinType.LEFT, JoinType.RIGHT) and not join.on:
        raise ValueError(f"{kind.value} JOIN requires ON conditions")

    sql = f"{kind.value} JOIN {table}"
    if join.alias:
        sql += f" AS {_validate_identifier(join.alias, 'join alias')}"
    if join.on:
        predicates = [
            f"{_validate_qualified_identifier(left, 'join column')} = "
            f"{_validate_qualified_identifier(right, 'join column')}"
            for left, right in join.on
        ]
        sql += " ON " + " AND ".join(predicates)
    return sql


def build_insert_sql(verb: str, table: str, columns: Iterable[str]) -> str:
    table = _validate_qualified_identifier(table, "table")
    cols = [_validate_identifier(c, "column") for c in columns]
    if not cols:
        raise ValueError("columns cannot be empty")

    col_names = ", ".join(cols)
    placeholders = ", ".join(f":{c}" for c in cols)
    return f"{verb} {table} ({col_names}) VALUES ({placeholders})"


def build_update_sql(table: str, columns: Iterable[str], conditions: ConditionMapping | None) -> str:
    table = _validate_qualified_identifier(table, "table")
    cols = [_validate_identifier(c, "column") for c in columns]
    if not cols:
        raise ValueError("columns cannot be empty")

    clashes = set(cols) & {param_name(column, WHERE_PREFIX) for column in (conditions or {})}
    if clashes:
        raise ValueError(
            f"Column(s) {sorted(clashes)} clash with WHERE parameter names; rename or use a custom query"
        )

    set_sql = ", ".join(f"{c} = :{c}" for c in cols)
    return f"UPDATE {table} SET {set_sql}" + build_where_clause(conditions or {}, WHERE_PREFIX)


def build_delete_sql(table: str, conditions: ConditionMapping | None) -> str:
    table = _validate_qualified_identifier(table, "table")
    return f"DELETE FROM {table}" + build_where_clause(conditions or {})


def build_select_sql(
    tables: Union[str, Sequence[str]],
    conditions: ConditionMapping | None = None,
    joins: Sequence[Union[Join, str]] | None = None,
    order_by: str = "",
) -> str:
    if isinstance(tables, str):
        tables = [tables]
    refs = [_validate_table_ref(t) for t in tables]
    if not refs:
        raise ValueError("tables cannot be empty")

    sql = "SELECT * FROM " + ", ".join(refs)
    for join in joins or ():
        sql += " " + render_join(join)
    sql += build_where_clause(conditions or {})
    if order_by:
        sql += " ORDER BY " + validate_order_by(order_by)
    return sql


def is_select_query(query: str) -> bool:
    """True when the query text starts with SELECT at position 0 (case-insensitive)."""
    return query[:6].upper() == "SELECT"


def escape_quoted_colons(query: str) -> str:
    """
    Backslash-escape ``:name`` sequences inside quoted literals and quoted
    identifiers so text() binds only the parameters outside them.
    """
    return _QUOTED_RE.sub(lambda m: _BIND_RE.sub(r"\\:", m.group(0)), query)


def strip_tags(value: str) -> str:
    return _TAG_RE.sub("", value)


def sanitize_value(value: Any) -> Any:
    """Strip markup and escape HTML special characters in string values."""
    if isinstance(value, str):
        return html.escape(strip_tags(value), quote=True)
    return value


def sanitize_columns(columns: ColumnMapping) -> dict[str, Any]:
    return {key: sanitize_value(value) for key, value in columns.items()}


def _parse_sql_operation(sql: str | TextClause) -> tuple[str, str]:
    """
    Best-effort (table, op_type) extraction for metrics labels.

    Returns ("unknown", "unknown") when the statement is not recognised; a
    SELECT without FROM yields ("unknown", "select").
    """
    text_sql = sql.text if isinstance(sql, TextClause) else str(sql)

    for op_type, pattern in _OPERATION_PATTERNS:
        match = pattern.match(text_sql)
        if match:
            return match.group(1), op_type

    if re.match(r"^\s*SELECT\b", text_sql, re.IGNORECASE):
        return "unknown", "select"
    return "unknown", "unknown"
