from abc import ABC, abstractmethod


class Dialect(ABC):
    """
    Abstract base for the engine-specific SQL surface forms the gateway emits.
    Everything else it builds is portable SQL.
    """

    name: str

    @abstractmethod
    def insert_verb(self, ignore: bool = False) -> str:
        """Leading INSERT keywords up to and including INTO."""
        ...

    @abstractmethod
    def call_statement(self, procedure: str, placeholders: str) -> str:
        """Statement invoking a stored procedure with positional placeholders."""
        ...

    @abstractmethod
    def last_insert_id_sql(self) -> str:
        """Query returning the session's last auto-increment id."""
        ...
