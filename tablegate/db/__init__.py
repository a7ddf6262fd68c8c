from .gateway import RelationalTableGateway
from .models import Join, JoinType, Operator
from .tx import DbTransaction, DbTx

__all__ = [
    "RelationalTableGateway",
    "DbTransaction",
    "DbTx",
    "Join",
    "JoinType",
    "Operator",
]
