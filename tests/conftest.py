"""Shared fakes for registry/query/transaction tests."""

from __future__ import annotations

from typing import Any

import pytest

from dbhub.drivers import DriverError
from dbhub.registry import ConnectionRegistry


class FakeStatement:
    def __init__(self, handle: "FakeHandle", text: str) -> None:
        self.handle = handle
        self.text = text
        self.params: Any = None
        self.rows: list[dict[str, Any]] = []
        self.closed = True
        self.executions = 0

    def execute(self, params: Any = None) -> None:
        if self.handle.fail_execute:
            raise DriverError("duplicate key value violates unique constraint")
        self.params = params
        self.rows = list(self.handle.rows)
        self.closed = False
        self.executions += 1

    def fetch(self) -> Any:
        return self.rows.pop(0) if self.rows else None

    def fetch_all(self) -> list[Any]:
        rows, self.rows = self.rows, []
        return rows

    def row_count(self) -> int:
        return self.handle.affected

    def close_cursor(self) -> None:
        self.closed = True


class FakeHandle:
    def __init__(self, host: str, database: str, user: str, password: str, persistent: bool) -> None:
        self.host = host
        self.database = database
        self.user = user
        self.password = password
        self.persistent = persistent
        self.statements: list[FakeStatement] = []
        self.rows: list[dict[str, Any]] = []
        self.affected = 0
        self.insert_id: int | str = 1
        self.fail_prepare = False
        self.fail_execute = False
        self.in_transaction = False
        self.log: list[str] = []

    def prepare(self, text: str) -> FakeStatement:
        if self.fail_prepare:
            raise DriverError('syntax error at or near "SELEC"')
        statement = FakeStatement(self, text)
        self.statements.append(statement)
        return statement

    def last_insert_id(self) -> int | str:
        return self.insert_id

    def begin_transaction(self) -> None:
        if self.in_transaction:
            raise DriverError("There is already an active transaction")
        self.in_transaction = True
        self.log.append("begin")

    def commit(self) -> None:
        if not self.in_transaction:
            raise DriverError("There is no active transaction")
        self.in_transaction = False
        self.log.append("commit")

    def rollback(self) -> None:
        if not self.in_transaction:
            raise DriverError("There is no active transaction")
        self.in_transaction = False
        self.log.append("rollback")


class FakeDriver:
    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []

    def connect(self, host: str, database: str, user: str, password: str, persistent: bool = True) -> FakeHandle:
        handle = FakeHandle(host, database, user, password, persistent)
        self.handles.append(handle)
        return handle


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def registry(driver: FakeDriver) -> ConnectionRegistry:
    return ConnectionRegistry(driver)


@pytest.fixture
def record() -> dict[str, Any]:
    return {
        "connection_id": "rw",
        "host": "localhost",
        "database": "testdb",
        "username": "u",
        "password": "p",
    }
