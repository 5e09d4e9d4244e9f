"""Connection config loading and library settings."""

from __future__ import annotations

import configparser
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Literal, Mapping

import tomllib
from pydantic import BaseModel, ValidationError

from .errors import ConfigError, ConfigFormatError

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "dbhub" / "config.toml"
CONFIG_ENV_VAR = "DBHUB_CONFIG"

ConnectionMapping = dict[str, Any]
ConfigParser = Callable[[Path], list[ConnectionMapping]]
MappingProcessor = Callable[[ConnectionMapping], ConnectionMapping]

_INI_DEFAULT_SECTION = "connection"


class DbHubSettings(BaseModel):
    """Library-wide defaults read from config.toml."""

    connect_timeout: float = 5.0
    default_driver: Literal["postgres", "sqlite"] = "postgres"
    connections_path: Path | None = None


def load_settings(path: Path | None = None) -> DbHubSettings:
    """Load settings from disk; fall back to defaults if missing or broken."""

    target = path or _settings_path()
    try:
        with target.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return DbHubSettings()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.debug("Ignoring unreadable settings file", extra={"path": str(target)})
        return DbHubSettings()
    section = raw.get("dbhub", raw)
    if not isinstance(section, dict):
        return DbHubSettings()
    try:
        return DbHubSettings(**{key: value for key, value in section.items() if key in DbHubSettings.model_fields})
    except ValidationError:
        LOG.debug("Ignoring invalid settings values", extra={"path": str(target)})
        return DbHubSettings()


def _settings_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    return Path(override).expanduser() if override else CONFIG_FILE


def _lower_keys(mapping: Mapping[str, Any]) -> ConnectionMapping:
    return {str(key).lower(): value for key, value in mapping.items()}


def _parse_ini(path: Path) -> list[ConnectionMapping]:
    text = path.read_text()
    parser = configparser.ConfigParser(interpolation=None)
    try:
        parser.read_string(text, source=str(path))
    except configparser.MissingSectionHeaderError:
        # Flat key/value file without sections is a single connection.
        parser = configparser.ConfigParser(interpolation=None)
        parser.read_string(f"[{_INI_DEFAULT_SECTION}]\n{text}", source=str(path))
        return [_lower_keys(parser[_INI_DEFAULT_SECTION])]
    connections: list[ConnectionMapping] = []
    for name in parser.sections():
        entry = _lower_keys(parser[name])
        entry.setdefault("connection_id", name)
        connections.append(entry)
    return connections


def _parse_json(path: Path) -> list[ConnectionMapping]:
    data = json.loads(path.read_text())
    return _entries(data, path)


def _parse_toml(path: Path) -> list[ConnectionMapping]:
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    if isinstance(data.get("connections"), list):
        return _entries(data["connections"], path)
    return _entries(data, path)


def _entries(data: object, path: Path) -> list[ConnectionMapping]:
    if isinstance(data, dict):
        return [_lower_keys(data)]
    if isinstance(data, list) and all(isinstance(item, dict) for item in data):
        return [_lower_keys(item) for item in data]
    raise ConfigFormatError(
        f"Connection config '{path}' must hold an object or a list of objects.",
        path=str(path),
        extension=_extension(path),
    )


PARSERS: dict[str, ConfigParser] = {
    "ini": _parse_ini,
    "json": _parse_json,
    "toml": _parse_toml,
}


def register_parser(extension: str, parser: ConfigParser) -> None:
    """Register a parser for an additional file extension."""

    PARSERS[extension.lower().lstrip(".")] = parser


def supported_extensions() -> tuple[str, ...]:
    return tuple(sorted(PARSERS))


def load_connection_file(
    path: str | Path,
    *,
    strict: bool = True,
    process: MappingProcessor | None = None,
) -> list[ConnectionMapping]:
    """Parse one config file into connection mappings.

    An unsupported extension raises `ConfigFormatError` when `strict` is
    set; otherwise the file contributes nothing. `process`, when given, is
    applied to every parsed mapping before it is returned.
    """

    file = Path(path)
    extension = _extension(file)
    parser = PARSERS.get(extension)
    if parser is None:
        if strict:
            raise ConfigFormatError(
                f"Unsupported connection config file type: {extension or '<none>'}",
                path=str(file),
                extension=extension,
            )
        LOG.debug("Skipping unsupported config file", extra={"path": str(file)})
        return []
    try:
        entries = parser(file)
    except ConfigError:
        raise
    except (OSError, ValueError, configparser.Error, tomllib.TOMLDecodeError) as exc:
        raise ConfigFormatError(
            f"Failed to parse connection config '{file}': {exc}",
            path=str(file),
            extension=extension,
        ) from exc
    if process is None:
        return entries
    return [process(entry) for entry in entries]


def load_connection_dir(path: str | Path, *, process: MappingProcessor | None = None) -> list[ConnectionMapping]:
    """Parse every supported config file in a directory, ordered by name."""

    connections: list[ConnectionMapping] = []
    for item in sorted(Path(path).iterdir()):
        if not item.is_file() or _extension(item) not in PARSERS:
            LOG.debug("Skipping non-config entry", extra={"path": str(item)})
            continue
        connections.extend(load_connection_file(item, process=process))
    return connections


def load_connections(
    source: str | Path,
    *,
    strict: bool = True,
    process: MappingProcessor | None = None,
) -> list[ConnectionMapping]:
    """Load connection mappings from a config file or a directory of them."""

    path = Path(source).expanduser()
    if path.is_dir():
        return load_connection_dir(path, process=process)
    if not path.exists():
        raise ConfigError(f"Connection config path '{path}' does not exist.")
    return load_connection_file(path, strict=strict, process=process)


def _extension(path: Path) -> str:
    return path.suffix.lower().lstrip(".")


__all__ = [
    "CONFIG_FILE",
    "ConnectionMapping",
    "DbHubSettings",
    "PARSERS",
    "load_connection_dir",
    "load_connection_file",
    "load_connections",
    "load_settings",
    "MappingProcessor",
    "register_parser",
    "supported_extensions",
]
