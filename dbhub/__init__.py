"""Named database connections with lazy handles and mode-selected queries."""

from __future__ import annotations

__version__ = "0.1.0"

from .database import Database
from .drivers import AsyncpgDriver, DriverError, SqliteDriver
from .errors import (
    ConfigError,
    ConfigFormatError,
    DbHubError,
    DuplicateConnectionError,
    QueryExecutionError,
    TransactionStateError,
    UnknownConnectionError,
)
from .models import ConnectionRecord, ReturnMode
from .query import QueryExecutor
from .registry import ConnectionRegistry
from .transactions import TransactionController

__all__ = [
    "AsyncpgDriver",
    "ConfigError",
    "ConfigFormatError",
    "ConnectionRecord",
    "ConnectionRegistry",
    "Database",
    "DbHubError",
    "DriverError",
    "DuplicateConnectionError",
    "QueryExecutionError",
    "QueryExecutor",
    "ReturnMode",
    "SqliteDriver",
    "TransactionController",
    "TransactionStateError",
    "UnknownConnectionError",
    "__version__",
]
