"""Named connection registry with lazily opened driver handles."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, Iterator, Mapping

from .drivers import Driver, Handle
from .errors import DuplicateConnectionError, UnknownConnectionError
from .models import ConnectionRecord

LOG = logging.getLogger(__name__)

RecordSource = ConnectionRecord | Mapping[str, Any]


class ConnectionRegistry:
    """Tracks connection records by identifier and owns one handle per record.

    A record may be re-registered freely until its handle is opened; after
    that the identifier is locked for the lifetime of the registry. Handles
    are never closed or replaced here.
    """

    def __init__(self, driver: Driver, records: Iterable[RecordSource] = ()) -> None:
        self._driver = driver
        self._records: dict[str, ConnectionRecord] = {}
        self.add_connections(records)

    @property
    def driver(self) -> Driver:
        return self._driver

    def add_connection(self, record: RecordSource) -> ConnectionRecord:
        """Register a connection definition, replacing an unconnected one."""

        if isinstance(record, ConnectionRecord):
            record = replace(record, handle=None)
        else:
            record = ConnectionRecord.from_mapping(record)
        existing = self._records.get(record.connection_id)
        if existing is not None:
            if existing.connected:
                raise DuplicateConnectionError(record.connection_id)
            LOG.debug("Replacing connection definition", extra={"connection_id": record.connection_id})
        self._records[record.connection_id] = record
        return record

    def add_connections(self, records: Iterable[RecordSource]) -> None:
        for record in records:
            self.add_connection(record)

    def connect(self, identifier: str) -> Handle:
        """Return the handle for `identifier`, opening it on first use."""

        record = self.record(identifier)
        if record.handle is None:
            record.handle = self._driver.connect(
                record.host,
                record.database,
                record.username,
                record.password,
                record.persistent,
            )
            LOG.debug(
                "Opened database handle",
                extra={"connection_id": identifier, "host": record.host, "database": record.database},
            )
        return record.handle

    def record(self, identifier: str) -> ConnectionRecord:
        try:
            return self._records[identifier]
        except KeyError:
            raise UnknownConnectionError(identifier) from None

    def is_connected(self, identifier: str) -> bool:
        return self.record(identifier).connected

    def identifiers(self) -> tuple[str, ...]:
        return tuple(self._records)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ConnectionRecord]:
        return iter(tuple(self._records.values()))


__all__ = ["ConnectionRegistry", "RecordSource"]
