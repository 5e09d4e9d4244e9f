"""Tests for the asyncpg and SQLite driver adapters."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import asyncpg
import pytest

from dbhub.drivers import (
    AsyncpgDriver,
    DriverError,
    Handle,
    SqliteDriver,
    Statement,
    bind_args,
    find_placeholders,
    to_numbered,
)


def test_placeholders_skip_literals_comments_and_casts() -> None:
    sql = "SELECT ':skip', \"a?b\", x::int -- why?\nFROM t WHERE a = ? /* :no */ AND b = :name"

    spans = find_placeholders(sql)

    assert [name for _, _, name in spans] == [None, "name"]


def test_to_numbered_positional() -> None:
    assert to_numbered("INSERT INTO t(a, b) VALUES (?, ?)") == ("INSERT INTO t(a, b) VALUES ($1, $2)", (None, None))


def test_to_numbered_reuses_named_slots() -> None:
    sql, order = to_numbered("SELECT * FROM t WHERE a = :a OR b = :b OR c = :a")

    assert sql == "SELECT * FROM t WHERE a = $1 OR b = $2 OR c = $1"
    assert order == ("a", "b")


def test_to_numbered_rejects_mixed_styles() -> None:
    with pytest.raises(DriverError):
        to_numbered("SELECT * FROM t WHERE a = ? AND b = :b")


def test_to_numbered_leaves_dollar_quoted_bodies_alone() -> None:
    sql = "DO $body$ BEGIN PERFORM 1 WHERE ? IS NULL; END $body$; SELECT $$a?b$$, ?"

    rewritten, order = to_numbered(sql)

    assert rewritten.endswith("SELECT $$a?b$$, $1")
    assert "WHERE ? IS NULL" in rewritten
    assert order == (None,)


def test_to_numbered_keeps_native_markers_and_jsonb_operators() -> None:
    sql = "SELECT * FROM t WHERE data ? 'k' AND id = $1"

    assert to_numbered(sql) == (sql, ())
    assert find_placeholders("SELECT * FROM t WHERE tags ?| :keys") == [(30, 35, "keys")]


def test_to_numbered_ignores_array_slices() -> None:
    sql, order = to_numbered("SELECT arr[1:n], arr[:m], arr[lo:hi] FROM t WHERE id = :id")

    assert sql == "SELECT arr[1:n], arr[:m], arr[lo:hi] FROM t WHERE id = $1"
    assert order == ("id",)


def test_bind_args_shapes() -> None:
    assert bind_args((), [1, 2]) == [1, 2]
    assert bind_args((None, None), (1, 2)) == [1, 2]
    assert bind_args(("a", "b"), {":b": 2, "a": 1}) == [1, 2]
    with pytest.raises(DriverError):
        bind_args((None,), [])
    with pytest.raises(DriverError):
        bind_args(("a",), {"b": 1})
    with pytest.raises(DriverError):
        bind_args((None,), {"a": 1})


def test_sqlite_round_trip(tmp_path: Path) -> None:
    driver = SqliteDriver()
    handle = driver.connect("ignored", str(tmp_path / "app.db"), "u", "p")
    assert isinstance(handle, Handle)

    create = handle.prepare("CREATE TABLE t (id INTEGER PRIMARY KEY, v INT)")
    create.execute()
    create.close_cursor()
    insert = handle.prepare("INSERT INTO t (v) VALUES (:v)")
    insert.execute({"v": 42})
    insert.close_cursor()
    select = handle.prepare("SELECT id, v FROM t WHERE v = ?")
    select.execute([42])

    assert isinstance(select, Statement)
    assert handle.last_insert_id() == 1
    assert dict(select.fetch()) == {"id": 1, "v": 42}
    assert select.fetch() is None
    select.close_cursor()
    assert select.closed is True


def test_sqlite_connects_never_share_a_handle(tmp_path: Path) -> None:
    driver = SqliteDriver()
    path = str(tmp_path / "app.db")

    first = driver.connect("", path, "", "")
    second = driver.connect("", path, "", "")

    assert first is not second
    assert first.persistent is True
    first.begin_transaction()
    assert second.in_transaction is False
    first.rollback()


def test_sqlite_rejects_bad_sql_and_transaction_state() -> None:
    handle = SqliteDriver().connect("", ":memory:", "", "")

    with pytest.raises(DriverError):
        handle.prepare("SELEC 1").execute()
    with pytest.raises(DriverError, match="no active transaction"):
        handle.commit()
    handle.begin_transaction()
    with pytest.raises(DriverError, match="already an active transaction"):
        handle.begin_transaction()
    handle.rollback()
    assert handle.in_transaction is False


class _FakePrepared:
    def __init__(self, conn: "_FakeConnection", sql: str) -> None:
        self._conn = conn
        self.sql = sql

    async def fetch(self, *args: Any) -> list[Any]:
        self._conn.executed.append((self.sql, args))
        if self.sql.startswith("UPDATE"):
            self._conn.status = "UPDATE 3"
            return []
        if "RETURNING" in self.sql:
            self._conn.status = "INSERT 0 1"
            return [(101,)]
        if self.sql.startswith("INSERT"):
            self._conn.status = "INSERT 0 1"
            return []
        self._conn.status = "SELECT 1"
        return [{"v": 42}]

    def get_statusmsg(self) -> str:
        return self._conn.status


class _FakeTransaction:
    def __init__(self, conn: "_FakeConnection") -> None:
        self._conn = conn

    async def start(self) -> None:
        self._conn.log.append("begin")

    async def commit(self) -> None:
        self._conn.log.append("commit")

    async def rollback(self) -> None:
        self._conn.log.append("rollback")

    async def __aenter__(self) -> "_FakeTransaction":
        self._conn.log.append("savepoint")
        return self

    async def __aexit__(self, *exc: object) -> bool:
        return False


class _FakeConnection:
    def __init__(self, lastval: int | None = 7) -> None:
        self.executed: list[tuple[str, tuple[Any, ...]]] = []
        self.log: list[str] = []
        self.status = ""
        self.lastval = lastval
        self.closed = False

    async def prepare(self, sql: str) -> _FakePrepared:
        if sql.startswith("SELEC "):
            raise asyncpg.PostgresSyntaxError("syntax error at or near \"SELEC\"")
        return _FakePrepared(self, sql)

    def transaction(self) -> _FakeTransaction:
        return _FakeTransaction(self)

    async def fetchval(self, sql: str) -> int:
        assert sql == "SELECT lastval()"
        if self.lastval is None:
            raise asyncpg.ObjectNotInPrerequisiteStateError("lastval is not yet defined in this session")
        return self.lastval

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def asyncpg_driver(monkeypatch: pytest.MonkeyPatch):
    connections: list[tuple[dict[str, Any], _FakeConnection]] = []

    async def _connect(**kwargs: Any) -> _FakeConnection:
        conn = _FakeConnection()
        connections.append((kwargs, conn))
        return conn

    monkeypatch.setattr("dbhub.drivers.asyncpg.connect", _connect)
    driver = AsyncpgDriver(connect_timeout=1.5)
    driver.connections = connections  # type: ignore[attr-defined]
    try:
        yield driver
    finally:
        driver.shutdown()


def test_asyncpg_connect_kwargs_and_separate_handles(asyncpg_driver: AsyncpgDriver) -> None:
    first = asyncpg_driver.connect("db.internal:5433", "app", "u", "p")
    second = asyncpg_driver.connect("db.internal:5433", "app", "u", "p")

    kwargs, _ = asyncpg_driver.connections[0]  # type: ignore[attr-defined]
    assert kwargs == {
        "host": "db.internal",
        "port": 5433,
        "database": "app",
        "user": "u",
        "password": "p",
        "timeout": 1.5,
    }
    assert first is not second
    assert len(asyncpg_driver.connections) == 2  # type: ignore[attr-defined]


@pytest.mark.parametrize(
    ("host", "expected"),
    [
        ("::1", {"host": "::1"}),
        ("[::1]:5433", {"host": "::1", "port": 5433}),
        ("[fe80::1]", {"host": "fe80::1"}),
        ("localhost", {"host": "localhost"}),
    ],
)
def test_asyncpg_host_forms(asyncpg_driver: AsyncpgDriver, host: str, expected: dict[str, Any]) -> None:
    asyncpg_driver.connect(host, "app", "u", "p")

    kwargs, _ = asyncpg_driver.connections[0]  # type: ignore[attr-defined]
    assert {key: kwargs[key] for key in ("host", "port") if key in kwargs} == expected


def test_asyncpg_statement_rewrites_and_counts(asyncpg_driver: AsyncpgDriver) -> None:
    handle = asyncpg_driver.connect("localhost", "app", "u", "p")
    _, conn = asyncpg_driver.connections[0]  # type: ignore[attr-defined]

    update = handle.prepare("UPDATE t SET v = :v WHERE id = :id")
    update.execute({"id": 1, "v": 2})
    select = handle.prepare("SELECT v FROM t WHERE id = ?")
    select.execute([1])

    assert conn.executed[0] == ("UPDATE t SET v = $1 WHERE id = $2", (2, 1))
    assert update.row_count() == 3
    assert list(select) == [{"v": 42}]
    assert select.fetch() is None


def test_asyncpg_last_insert_id(asyncpg_driver: AsyncpgDriver) -> None:
    handle = asyncpg_driver.connect("localhost", "app", "u", "p")
    _, conn = asyncpg_driver.connections[0]  # type: ignore[attr-defined]

    handle.prepare("INSERT INTO t (v) VALUES ($1) RETURNING id").execute([1])
    assert handle.last_insert_id() == 101

    handle.prepare("INSERT INTO t (v) VALUES (?)").execute([1])
    assert handle.last_insert_id() == 7

    conn.lastval = None
    assert handle.last_insert_id() == 0


def test_asyncpg_errors_become_driver_errors(asyncpg_driver: AsyncpgDriver) -> None:
    handle = asyncpg_driver.connect("localhost", "app", "u", "p")

    with pytest.raises(DriverError, match="SELEC") as excinfo:
        handle.prepare("SELEC 1")
    assert isinstance(excinfo.value.__cause__, asyncpg.PostgresSyntaxError)


def test_asyncpg_transaction_state(asyncpg_driver: AsyncpgDriver) -> None:
    handle = asyncpg_driver.connect("localhost", "app", "u", "p")
    _, conn = asyncpg_driver.connections[0]  # type: ignore[attr-defined]

    with pytest.raises(DriverError, match="no active transaction"):
        handle.rollback()
    handle.begin_transaction()
    with pytest.raises(DriverError, match="already an active transaction"):
        handle.begin_transaction()
    handle.commit()

    assert conn.log == ["begin", "commit"]
    assert handle.in_transaction is False


def test_asyncpg_connect_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _broken_connect(**kwargs: Any) -> None:
        raise OSError("connection refused")

    monkeypatch.setattr("dbhub.drivers.asyncpg.connect", _broken_connect)
    driver = AsyncpgDriver()

    try:
        with pytest.raises(DriverError, match="connection refused"):
            driver.connect("localhost", "app", "u", "p")
    finally:
        driver.shutdown()


def test_asyncpg_shutdown_closes_connections(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection()

    async def _connect(**kwargs: Any) -> _FakeConnection:
        return conn

    monkeypatch.setattr("dbhub.drivers.asyncpg.connect", _connect)
    driver = AsyncpgDriver()
    handle = driver.connect("localhost", "app", "u", "p")

    driver.shutdown()

    assert conn.closed is True
    assert handle.closed is True
