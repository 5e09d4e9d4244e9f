"""Per-connection transaction control delegated to driver handles."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from .drivers import DriverError, Handle
from .errors import TransactionStateError
from .registry import ConnectionRegistry

LOG = logging.getLogger(__name__)


class TransactionController:
    """Begins, commits and rolls back transactions on a single identifier.

    No transaction state is kept here; the handle is the only owner of it.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    def begin_transaction(self, identifier: str) -> None:
        handle = self._registry.connect(identifier)
        self._delegate(identifier, "begin transaction", handle.begin_transaction)

    def commit(self, identifier: str) -> None:
        handle = self._registry.connect(identifier)
        self._delegate(identifier, "commit", handle.commit)

    def rollback(self, identifier: str) -> None:
        handle = self._registry.connect(identifier)
        self._delegate(identifier, "roll back", handle.rollback)

    @contextmanager
    def transaction(self, identifier: str) -> Iterator[Handle]:
        """Commit on normal exit, roll back and re-raise on error or interrupt.

        A failing rollback never masks the error raised inside the block.
        """

        self.begin_transaction(identifier)
        try:
            yield self._registry.connect(identifier)
        except BaseException:
            try:
                self.rollback(identifier)
            except TransactionStateError:
                LOG.debug("Rollback after error failed", extra={"connection_id": identifier}, exc_info=True)
            raise
        self.commit(identifier)

    @staticmethod
    def _delegate(identifier: str, operation: str, call: Callable[[], None]) -> None:
        try:
            call()
        except DriverError as exc:
            raise TransactionStateError(identifier, operation, str(exc)) from exc


__all__ = ["TransactionController"]
