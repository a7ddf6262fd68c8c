from .base import Dialect


class MySQLDialect(Dialect):
    name = "mysql"

    def insert_verb(self, ignore: bool = False) -> str:
        return "INSERT IGNORE INTO" if ignore else "INSERT INTO"

    def call_statement(self, procedure: str, placeholders: str) -> str:
        return f"CALL {procedure}({placeholders})"

    def last_insert_id_sql(self) -> str:
        # LAST_INSERT_ID() is connection-scoped, which matches the gateway's single connection
        return "SELECT LAST_INSERT_ID()"
