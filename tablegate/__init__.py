from .config import DbConfig, DialectName
from .db.gateway import RelationalTableGateway
from .db.models import Join, JoinType, Operator

__all__ = ["RelationalTableGateway", "DbConfig", "DialectName", "Join", "JoinType", "Operator"]
