"""Driver adapters behind the registry's handle/statement contract."""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import threading
from typing import Any, Awaitable, Iterator, Mapping, Protocol, Sequence, TypeVar, runtime_checkable

import asyncpg

from .errors import DbHubError

LOG = logging.getLogger(__name__)

Params = Sequence[Any] | Mapping[str, Any] | None

_T = TypeVar("_T")
_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_NATIVE = re.compile(r"\$\d+")
_NO_ACTIVE = "There is no active transaction"
_ALREADY_ACTIVE = "There is already an active transaction"


class DriverError(DbHubError):
    """Raised by drivers when the database rejects a call."""


@runtime_checkable
class Statement(Protocol):
    """Prepared statement/cursor handed back by `Handle.prepare`."""

    def execute(self, params: Params = None) -> None:
        """Bind parameters and run the statement."""

    def fetch(self) -> Any:
        """Return the next row, or None once exhausted."""

    def fetch_all(self) -> list[Any]:
        """Return every remaining row."""

    def row_count(self) -> int:
        """Rows affected (or returned) by the last execution."""

    def close_cursor(self) -> None:
        """Release the result set so the handle can run another statement."""


@runtime_checkable
class Handle(Protocol):
    """Live connection owned by a registry record."""

    def prepare(self, text: str) -> Statement:
        """Prepare the query text."""

    def last_insert_id(self) -> int | str:
        """Identifier generated by the most recent insert on this handle."""

    def begin_transaction(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@runtime_checkable
class Driver(Protocol):
    """Factory for handles."""

    def connect(self, host: str, database: str, user: str, password: str, persistent: bool = True) -> Handle:
        """Open a new connection; `persistent` is a hint the driver may honor."""


def _scan(text: str) -> tuple[list[tuple[int, int, str | None]], bool]:
    """Locate `?`/`:name` placeholders and report whether native `$n` ones are used."""

    spans: list[tuple[int, int, str | None]] = []
    native = False
    i, size = 0, len(text)
    while i < size:
        ch = text[i]
        after_word = i > 0 and (text[i - 1].isalnum() or text[i - 1] == "_")
        if ch in "'\"`":
            end = text.find(ch, i + 1)
            while end != -1 and text.startswith(ch, end + 1):
                end = text.find(ch, end + 2)
            i = size if end == -1 else end + 1
        elif text.startswith("--", i):
            end = text.find("\n", i)
            i = size if end == -1 else end + 1
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = size if end == -1 else end + 2
        elif ch == "$" and not after_word and (tag := _DOLLAR_TAG.match(text, i)):
            end = text.find(tag.group(0), tag.end())
            i = size if end == -1 else end + len(tag.group(0))
        elif ch == "$" and not after_word and (number := _NATIVE.match(text, i)):
            native = True
            i = number.end()
        elif text.startswith(("?|", "?&"), i):
            # jsonb any/all key operators
            i += 2
        elif ch == "?":
            spans.append((i, i + 1, None))
            i += 1
        elif text.startswith("::", i):
            i += 2
        elif ch == ":" and not (after_word or text[i - 1 : i] == "[") and (match := _NAME.match(text, i + 1)):
            spans.append((i, match.end(), match.group(0)))
            i = match.end()
        else:
            i += 1
    return spans, native


def find_placeholders(text: str) -> list[tuple[int, int, str | None]]:
    """Return `(start, end, name)` spans for `?` and `:name` placeholders.

    Quoted strings, dollar-quoted bodies, quoted identifiers and comments are
    skipped. `::` casts and slice bounds such as `arr[1:n]` are not named
    placeholders. `name` is None for `?`.
    """

    return _scan(text)[0]


def to_numbered(text: str) -> tuple[str, tuple[str | None, ...]]:
    """Rewrite `?`/`:name` placeholders to asyncpg's `$n` form.

    Returns the rewritten SQL and the placeholder order: `None` entries for
    positional markers, names for named ones (each name bound once). Text
    that already uses `$n` markers is returned untouched, so operators such
    as jsonb `?` survive.
    """

    spans, native = _scan(text)
    if native or not spans:
        return text, ()
    kinds = {name is None for _, _, name in spans}
    if len(kinds) > 1:
        raise DriverError("Cannot mix positional and named placeholders in one query.")
    order: list[str | None] = []
    numbers: dict[str, int] = {}
    chunks: list[str] = []
    cursor = 0
    for start, end, name in spans:
        if name is None:
            order.append(None)
            number = len(order)
        elif name in numbers:
            number = numbers[name]
        else:
            order.append(name)
            number = numbers[name] = len(order)
        chunks.append(text[cursor:start])
        chunks.append(f"${number}")
        cursor = end
    chunks.append(text[cursor:])
    return "".join(chunks), tuple(order)


def bind_args(order: Sequence[str | None], params: Params) -> list[Any]:
    """Arrange `params` into the positional argument list for `order`."""

    if not order:
        # Native `$n` text, or no placeholders at all.
        if isinstance(params, Mapping):
            if params:
                raise DriverError("Named parameters supplied but the query has no named placeholders.")
            return []
        return list(params or ())
    if order[0] is None:
        if isinstance(params, Mapping):
            raise DriverError("Positional placeholders require a sequence of parameters.")
        values = list(params or ())
        if len(values) != len(order):
            raise DriverError(f"Query expects {len(order)} parameter(s), {len(values)} given.")
        return values
    if params is not None and not isinstance(params, Mapping):
        raise DriverError("Named placeholders require a mapping of parameters.")
    named = {str(key).lstrip(":"): value for key, value in (params or {}).items()}
    missing = [name for name in order if name not in named]
    if missing:
        raise DriverError(f"Missing value for named parameter(s): {', '.join(str(name) for name in missing)}")
    return [named[name] for name in order]  # type: ignore[index]


def _count_from_status(status: str | None) -> int:
    if not status:
        return 0
    tail = status.rsplit(None, 1)[-1]
    return int(tail) if tail.isdigit() else 0


def split_host(host: str) -> tuple[str, int | None]:
    """Split `host:port` or `[addr]:port`; bare IPv6 addresses keep every colon."""

    if host.startswith("[") and "]" in host:
        address, _, rest = host[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
        return address, int(port) if port.isdigit() else None
    if host.count(":") == 1:
        name, _, port = host.partition(":")
        if name and port.isdigit():
            return name, int(port)
    return host, None


async def _guard(awaitable: Awaitable[_T]) -> _T:
    try:
        return await awaitable
    except DriverError:
        raise
    except Exception as exc:
        raise DriverError(str(exc)) from exc


class AsyncpgStatement:
    """Buffered result of a prepared asyncpg statement."""

    def __init__(self, handle: AsyncpgHandle, prepared: Any, order: tuple[str | None, ...]) -> None:
        self._handle = handle
        self._prepared = prepared
        self._order = order
        self._rows: list[Any] = []
        self._position = 0
        self._status: str | None = None
        self.closed = True

    def execute(self, params: Params = None) -> None:
        args = bind_args(self._order, params)
        rows, status = self._handle._run(self._execute(args))
        self._rows = list(rows)
        self._position = 0
        self._status = status
        self.closed = False
        self._handle._record_result(self._rows, status)

    async def _execute(self, args: list[Any]) -> tuple[list[Any], str | None]:
        rows = await _guard(self._prepared.fetch(*args))
        return rows, self._prepared.get_statusmsg()

    def fetch(self) -> Any:
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return row

    def fetch_all(self) -> list[Any]:
        remaining = self._rows[self._position :]
        self._position = len(self._rows)
        return remaining

    def row_count(self) -> int:
        return _count_from_status(self._status)

    def close_cursor(self) -> None:
        self._rows = []
        self._position = 0
        self.closed = True

    def __iter__(self) -> Iterator[Any]:
        while (row := self.fetch()) is not None:
            yield row


class AsyncpgHandle:
    """Synchronous wrapper around one asyncpg connection."""

    def __init__(self, driver: AsyncpgDriver, connection: Any, *, persistent: bool) -> None:
        self._driver = driver
        self._connection = connection
        self.persistent = persistent
        self._transaction: Any | None = None
        self._returned_id: Any | None = None
        self.closed = False

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    def prepare(self, text: str) -> AsyncpgStatement:
        sql, order = to_numbered(text)
        prepared = self._run(_guard(self._connection.prepare(sql)))
        return AsyncpgStatement(self, prepared, order)

    def last_insert_id(self) -> int | str:
        if self._returned_id is not None:
            return self._returned_id
        return self._run(self._lastval())

    def begin_transaction(self) -> None:
        if self._transaction is not None:
            raise DriverError(_ALREADY_ACTIVE)
        transaction = self._connection.transaction()
        self._run(_guard(transaction.start()))
        self._transaction = transaction

    def commit(self) -> None:
        transaction = self._take_transaction()
        self._run(_guard(transaction.commit()))

    def rollback(self) -> None:
        transaction = self._take_transaction()
        self._run(_guard(transaction.rollback()))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._run(_guard(self._connection.close()))

    def _take_transaction(self) -> Any:
        transaction = self._transaction
        if transaction is None:
            raise DriverError(_NO_ACTIVE)
        self._transaction = None
        return transaction

    def _record_result(self, rows: list[Any], status: str | None) -> None:
        # INSERT ... RETURNING hands back the generated key directly.
        if status and status.startswith("INSERT") and rows:
            self._returned_id = rows[0][0]
        else:
            self._returned_id = None

    async def _lastval(self) -> int:
        try:
            # Savepoint so a missing sequence value cannot abort an open transaction.
            async with self._connection.transaction():
                value = await self._connection.fetchval("SELECT lastval()")
        except asyncpg.ObjectNotInPrerequisiteStateError:
            return 0
        except Exception as exc:
            raise DriverError(str(exc)) from exc
        return int(value)

    def _run(self, coro: Awaitable[_T]) -> _T:
        return self._driver._run(coro)


class AsyncpgDriver:
    """PostgreSQL driver using asyncpg on a private background event loop."""

    def __init__(self, *, connect_timeout: float = 5.0) -> None:
        self._connect_timeout = connect_timeout
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._opened: list[AsyncpgHandle] = []

    def connect(self, host: str, database: str, user: str, password: str, persistent: bool = True) -> AsyncpgHandle:
        connection = self._run(self._open(host, database, user, password))
        handle = AsyncpgHandle(self, connection, persistent=persistent)
        self._opened.append(handle)
        return handle

    def shutdown(self) -> None:
        """Close every connection this driver opened and stop its loop."""

        loop = self._loop
        if loop is None or not loop.is_running():
            return
        for handle in self._opened:
            try:
                handle.close()
            except DriverError:
                LOG.debug("Ignoring close failure during shutdown", exc_info=True)
        self._opened.clear()
        loop.call_soon_threadsafe(loop.stop)
        if self._loop_thread is not None:
            self._loop_thread.join(timeout=1)
        self._loop = None
        self._loop_thread = None

    async def _open(self, host: str, database: str, user: str, password: str) -> Any:
        kwargs: dict[str, object] = {"database": database, "user": user, "password": password}
        kwargs["host"], port = split_host(host)
        if port is not None:
            kwargs["port"] = port
        kwargs.setdefault("timeout", self._connect_timeout)
        try:
            return await asyncpg.connect(**kwargs)
        except Exception as exc:
            raise DriverError(f"Failed to connect to database '{database}' on '{host}': {exc}") from exc

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._loop_thread = threading.Thread(
                    target=self._loop.run_forever,
                    name="dbhub-asyncpg-driver",
                    daemon=True,
                )
                self._loop_thread.start()
                LOG.debug("Started asyncpg driver loop")
            return self._loop

    def _run(self, coro: Awaitable[_T]) -> _T:
        future = asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())  # type: ignore[arg-type]
        return future.result()


class SqliteStatement:
    """Cursor-backed statement for SQLite handles."""

    def __init__(self, handle: SqliteHandle, text: str) -> None:
        self._handle = handle
        self._text = text
        self._cursor: sqlite3.Cursor | None = None

    @property
    def closed(self) -> bool:
        return self._cursor is None

    def execute(self, params: Params = None) -> None:
        if isinstance(params, Mapping):
            bound: Any = {str(key).lstrip(":"): value for key, value in params.items()}
        else:
            bound = tuple(params or ())
        cursor = self._handle._connection.cursor()
        try:
            cursor.execute(self._text, bound)
        except sqlite3.Error as exc:
            cursor.close()
            raise DriverError(str(exc)) from exc
        self._cursor = cursor

    def fetch(self) -> Any:
        if self._cursor is None:
            return None
        return self._cursor.fetchone()

    def fetch_all(self) -> list[Any]:
        if self._cursor is None:
            return []
        return self._cursor.fetchall()

    def row_count(self) -> int:
        if self._cursor is None:
            return 0
        return max(self._cursor.rowcount, 0)

    def close_cursor(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None

    def __iter__(self) -> Iterator[Any]:
        while (row := self.fetch()) is not None:
            yield row


class SqliteHandle:
    """Handle over a `sqlite3` connection in autocommit mode."""

    def __init__(self, connection: sqlite3.Connection, *, persistent: bool) -> None:
        self._connection = connection
        self.persistent = persistent

    @property
    def in_transaction(self) -> bool:
        return self._connection.in_transaction

    def prepare(self, text: str) -> SqliteStatement:
        # sqlite3 compiles on execute; syntax errors surface there.
        return SqliteStatement(self, text)

    def last_insert_id(self) -> int:
        row = self._connection.execute("SELECT last_insert_rowid()").fetchone()
        return int(row[0])

    def begin_transaction(self) -> None:
        if self._connection.in_transaction:
            raise DriverError(_ALREADY_ACTIVE)
        self._exec("BEGIN")

    def commit(self) -> None:
        if not self._connection.in_transaction:
            raise DriverError(_NO_ACTIVE)
        self._exec("COMMIT")

    def rollback(self) -> None:
        if not self._connection.in_transaction:
            raise DriverError(_NO_ACTIVE)
        self._exec("ROLLBACK")

    def _exec(self, sql: str) -> None:
        try:
            self._connection.execute(sql)
        except sqlite3.Error as exc:
            raise DriverError(str(exc)) from exc


class SqliteDriver:
    """SQLite driver for local files; host and credentials are ignored."""

    def __init__(self, *, timeout: float = 5.0) -> None:
        self._timeout = timeout

    def connect(self, host: str, database: str, user: str, password: str, persistent: bool = True) -> SqliteHandle:
        try:
            connection = sqlite3.connect(
                database,
                timeout=self._timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise DriverError(f"Failed to open SQLite database '{database}': {exc}") from exc
        connection.row_factory = sqlite3.Row
        return SqliteHandle(connection, persistent=persistent)


__all__ = [
    "AsyncpgDriver",
    "AsyncpgHandle",
    "AsyncpgStatement",
    "Driver",
    "DriverError",
    "Handle",
    "Params",
    "SqliteDriver",
    "SqliteHandle",
    "SqliteStatement",
    "Statement",
    "bind_args",
    "find_placeholders",
    "split_host",
    "to_numbered",
]
