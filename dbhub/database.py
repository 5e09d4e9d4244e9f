"""Single entry point bundling the registry, executor and transactions."""

from __future__ import annotations

from contextlib import AbstractContextManager
from pathlib import Path
from typing import Iterable

from .config import DbHubSettings, MappingProcessor, load_connections, load_settings
from .drivers import AsyncpgDriver, Driver, Handle, Params, SqliteDriver
from .models import ConnectionRecord, ReturnMode
from .query import QueryExecutor, QueryOutput
from .registry import ConnectionRegistry, RecordSource
from .transactions import TransactionController

Source = str | Path | Iterable[RecordSource]


def default_driver(settings: DbHubSettings) -> Driver:
    """Build the driver named by `settings.default_driver`."""

    if settings.default_driver == "sqlite":
        return SqliteDriver(timeout=settings.connect_timeout)
    return AsyncpgDriver(connect_timeout=settings.connect_timeout)


class Database:
    """Named database connections with lazy handles and mode-selected queries.

    `source` is a config file, a directory of config files, or an iterable of
    connection mappings/records. When omitted, `settings.connections_path`
    is used if set. `process` post-processes every mapping read from config
    files before it is registered.

    Example:

        db = Database("~/.config/dbhub/connections")
        rows = db.query("rw", "SELECT id FROM users WHERE email = ?", ["a@b.c"])
        print(rows.fetch_all())
        rows.close_cursor()
    """

    def __init__(
        self,
        source: Source | None = None,
        *,
        driver: Driver | None = None,
        strict: bool = True,
        settings: DbHubSettings | None = None,
        process: MappingProcessor | None = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._registry = ConnectionRegistry(driver or default_driver(self._settings))
        self._executor = QueryExecutor(self._registry)
        self._transactions = TransactionController(self._registry)
        if source is None:
            source = self._settings.connections_path
        if isinstance(source, (str, Path)):
            source = load_connections(source, strict=strict, process=process)
        if source is not None:
            self._registry.add_connections(source)

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def settings(self) -> DbHubSettings:
        return self._settings

    def add_connection(self, record: RecordSource) -> ConnectionRecord:
        return self._registry.add_connection(record)

    def connect(self, identifier: str) -> Handle:
        return self._registry.connect(identifier)

    def query(
        self,
        identifier: str,
        text: str,
        params: Params = None,
        return_mode: ReturnMode | str | int = ReturnMode.STATEMENT,
    ) -> QueryOutput:
        """Run `text` on `identifier`; see `QueryExecutor.query`."""

        return self._executor.query(identifier, text, params, return_mode)

    def begin_transaction(self, identifier: str) -> None:
        self._transactions.begin_transaction(identifier)

    def commit(self, identifier: str) -> None:
        self._transactions.commit(identifier)

    def rollback(self, identifier: str) -> None:
        self._transactions.rollback(identifier)

    def transaction(self, identifier: str) -> AbstractContextManager[Handle]:
        return self._transactions.transaction(identifier)


__all__ = ["Database", "default_driver"]
