class TablegateError(Exception):
    """Base exception for tablegate errors."""


class DbConnectionError(TablegateError, ConnectionError):
    """The gateway could not establish its database connection."""


class ExecutionFault(TablegateError):
    """A single statement failed."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class ProcedureFault(TablegateError):
    """A stored procedure call failed."""


class TransactionFault(TablegateError):
    """A transaction could not be completed and was rolled back."""
