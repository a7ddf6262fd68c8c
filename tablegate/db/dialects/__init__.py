from __future__ import annotations

from ...config import DialectName
from .base import Dialect
from .mysql import MySQLDialect
from .sqlite import SQLiteDialect


def make_dialect(name: DialectName | str) -> Dialect:
    """Create the SQL dialect for a configured engine."""
    name = DialectName(name)

    if name == DialectName.MYSQL:
        return MySQLDialect()

    if name == DialectName.SQLITE:
        return SQLiteDialect()

    raise ValueError(f"Unknown dialect: {name}")


__all__ = ["Dialect", "MySQLDialect", "SQLiteDialect", "make_dialect"]
