"""Query execution against registry-owned handles."""

from __future__ import annotations

from .drivers import DriverError, Params, Statement
from .errors import QueryExecutionError
from .models import ReturnMode
from .registry import ConnectionRegistry

QueryOutput = Statement | int | str


class QueryExecutor:
    """Prepares, binds and runs queries, shaping the result by return mode.

    Under `ReturnMode.STATEMENT` the open statement is handed to the caller,
    who must call `close_cursor()` on it before running another statement on
    the same connection. The other modes close the cursor before returning.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    def query(
        self,
        identifier: str,
        text: str,
        params: Params = None,
        return_mode: ReturnMode | str | int = ReturnMode.STATEMENT,
    ) -> QueryOutput:
        mode = ReturnMode.coerce(return_mode)
        handle = self._registry.connect(identifier)
        try:
            statement = handle.prepare(text)
            statement.execute(params)
            if mode is ReturnMode.LAST_INSERT_ID:
                statement.close_cursor()
                return handle.last_insert_id()
            if mode is ReturnMode.AFFECTED_ROWS:
                count = statement.row_count()
                statement.close_cursor()
                return count
        except DriverError as exc:
            raise QueryExecutionError(identifier, text, str(exc)) from exc
        return statement


__all__ = ["QueryExecutor", "QueryOutput"]
