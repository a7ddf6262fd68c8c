from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Tuple, Union


class Operator(str, Enum):
    """Comparison operators accepted in condition mappings."""

    EQ = "="
    NE = "!="
    LT_GT = "<>"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"

    @classmethod
    def parse(cls, value: Union["Operator", str]) -> "Operator":
        """
        Resolve an operator from the allow-list.

        Raises:
            ValueError: If the operator is not allowed
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise TypeError(f"operator must be a string, got {type(value).__name__}")

        normalized = " ".join(value.split()).upper()
        try:
            return cls(normalized)
        except ValueError:
            allowed = ", ".join(op.value for op in cls)
            raise ValueError(f"Operator {value!r} is not allowed; use one of: {allowed}") from None


class JoinType(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    CROSS = "CROSS"


@dataclass(frozen=True)
class Join:
    """
    A JOIN clause for custom_select().

    ``on`` holds (left_column, right_column) pairs combined with AND. CROSS
    joins take no ``on`` pairs.
    """

    table: str
    on: Sequence[Tuple[str, str]] = ()
    kind: JoinType = JoinType.INNER
    alias: Optional[str] = None


ConditionValue = Union[Any, Tuple[Union[Operator, str], Any]]
ColumnMapping = Mapping[str, Any]
ConditionMapping = Mapping[str, ConditionValue]
Row = dict[str, Any]
