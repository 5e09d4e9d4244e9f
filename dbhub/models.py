"""Shared dataclasses used across registry/query modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from pydantic import TypeAdapter, ValidationError

from .drivers import Handle
from .errors import ConfigError

REQUIRED_FIELDS: tuple[str, ...] = ("connection_id", "host", "database", "username", "password")

_KNOWN_FIELDS = frozenset((*REQUIRED_FIELDS, "identifier", "persistent"))
_BOOL = TypeAdapter(bool)


class ReturnMode(str, Enum):
    """What `query` hands back to the caller."""

    STATEMENT = "statement"
    LAST_INSERT_ID = "last_insert_id"
    AFFECTED_ROWS = "affected_rows"

    @classmethod
    def coerce(cls, value: ReturnMode | str | int) -> ReturnMode:
        """Accept enum members, their string values, or the legacy 0/1/2 codes."""

        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            members = tuple(cls)
            if 0 <= value < len(members):
                return members[value]
        elif isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                pass
        raise ValueError(f"Unsupported return mode: {value!r}")


@dataclass(slots=True)
class ConnectionRecord:
    """A registered connection definition plus its lazily opened handle."""

    connection_id: str
    host: str
    database: str
    username: str
    password: str = field(repr=False)
    persistent: bool = True
    extras: dict[str, Any] = field(default_factory=dict)
    handle: Handle | None = field(default=None, repr=False, compare=False)

    @property
    def connected(self) -> bool:
        return self.handle is not None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> ConnectionRecord:
        """Build a record from a config mapping, naming the first missing key."""

        data = {str(key).lower(): value for key, value in mapping.items()}
        if data.get("connection_id") is None:
            data["connection_id"] = data.get("identifier")
        for key in REQUIRED_FIELDS:
            if data.get(key) is None:
                raise ConfigError.missing(key)
        persistent = data.get("persistent")
        if persistent is None:
            persistent = True
        else:
            try:
                persistent = _BOOL.validate_python(persistent)
            except ValidationError as exc:
                raise ConfigError(
                    f"Connection '{data['connection_id']}' has an invalid 'persistent' flag: {persistent!r}",
                    field="persistent",
                ) from exc
        return cls(
            connection_id=str(data["connection_id"]),
            host=str(data["host"]),
            database=str(data["database"]),
            username=str(data["username"]),
            password=str(data["password"]),
            persistent=persistent,
            extras={key: value for key, value in data.items() if key not in _KNOWN_FIELDS},
        )


__all__ = ["ConnectionRecord", "REQUIRED_FIELDS", "ReturnMode"]
