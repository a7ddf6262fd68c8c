from .base import Dialect


class SQLiteDialect(Dialect):
    name = "sqlite"

    def insert_verb(self, ignore: bool = False) -> str:
        return "INSERT OR IGNORE INTO" if ignore else "INSERT INTO"

    def call_statement(self, procedure: str, placeholders: str) -> str:
        raise NotImplementedError("SQLite does not support stored procedures")

    def last_insert_id_sql(self) -> str:
        return "SELECT last_insert_rowid()"
