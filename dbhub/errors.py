"""Error taxonomy shared by the registry, executor and config loader."""

from __future__ import annotations


class DbHubError(RuntimeError):
    """Base class for every error raised by dbhub."""


class ConfigError(DbHubError):
    """Raised when a connection definition is incomplete or unreadable."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    @classmethod
    def missing(cls, field: str) -> ConfigError:
        return cls(f"Connection definition missing required key '{field}'.", field=field)


class ConfigFormatError(ConfigError):
    """Raised when a config file has an unsupported or undecodable format."""

    def __init__(self, message: str, *, path: str | None = None, extension: str | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.extension = extension


class DuplicateConnectionError(DbHubError):
    """Raised when re-registering an identifier that already holds a live handle."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Cannot override established database connection '{connection_id}'.")
        self.connection_id = connection_id


class UnknownConnectionError(DbHubError, KeyError):
    """Raised for operations against an identifier that was never registered."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Unknown database connection '{connection_id}'.")
        self.connection_id = connection_id

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0])


class QueryExecutionError(DbHubError):
    """Raised when the driver rejects preparing, binding or executing a query."""

    def __init__(self, connection_id: str, query: str, reason: str) -> None:
        super().__init__(f"Query failed on connection '{connection_id}': {reason} [query: {query}]")
        self.connection_id = connection_id
        self.query = query
        self.reason = reason


class TransactionStateError(DbHubError):
    """Raised when the driver rejects begin/commit/rollback in the current state."""

    def __init__(self, connection_id: str, operation: str, reason: str) -> None:
        super().__init__(f"Cannot {operation} on connection '{connection_id}': {reason}")
        self.connection_id = connection_id
        self.operation = operation
        self.reason = reason


__all__ = [
    "ConfigError",
    "ConfigFormatError",
    "DbHubError",
    "DuplicateConnectionError",
    "QueryExecutionError",
    "TransactionStateError",
    "UnknownConnectionError",
]
