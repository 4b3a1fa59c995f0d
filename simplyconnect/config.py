"""Connection configuration models and loading helpers."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterator, Mapping

import tomllib
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from .errors import InvalidConfigError

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "simplyconnect" / "config.toml"

ENV_PREFIX = "DB_"

ENV_DEFAULTS: Mapping[str, str] = {
    "DRIVER": "mysql",
    "HOST": "localhost",
    "NAME": "my_database",
    "USER": "root",
    "PASS": "",
    "CHARSET": "utf8",
}


class FrozenOptions(Mapping[str, Any]):
    """Read-only, hashable view of driver options.

    Nested mappings become :class:`FrozenOptions` and lists become tuples,
    so a :class:`ConnectionConfig` holding options can be hashed.
    """

    __slots__ = ("_items",)

    def __init__(self, values: Mapping[str, Any]) -> None:
        self._items = {str(key): _freeze(item) for key, item in values.items()}

    def __getitem__(self, key: str) -> Any:
        return self._items[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __hash__(self) -> int:
        return hash(frozenset(self._items.items()))

    def __repr__(self) -> str:
        return f"FrozenOptions({self._items!r})"

    def to_dict(self) -> dict[str, Any]:
        """Mutable deep copy suitable for driver keyword arguments."""

        return {key: _thaw(item) for key, item in self._items.items()}


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return FrozenOptions(value)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, set):
        return frozenset(value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, FrozenOptions):
        return value.to_dict()
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


class ConnectionConfig(BaseModel):
    """Validated, immutable description of one database target."""

    model_config = ConfigDict(frozen=True)

    driver: str
    host: str = ""
    dbname: str
    user: str = ""
    password: str = Field(default="", repr=False)
    charset: str = "utf8"
    options: dict[str, Any] | None = None

    def __init__(
        self,
        driver: str = "",
        host: str = "",
        dbname: str = "",
        user: str = "",
        password: str = "",
        charset: str = "utf8",
        options: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            driver=driver,
            host=host,
            dbname=dbname,
            user=user,
            password=password,
            charset=charset,
            options=options,
        )

    @field_validator("driver")
    @classmethod
    def _normalise_driver(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("options", mode="before")
    @classmethod
    def _copy_options(cls, value: object) -> object:
        if isinstance(value, Mapping):
            return {str(key): item for key, item in value.items()}
        return value

    @field_validator("options")
    @classmethod
    def _freeze_options(cls, value: dict[str, Any] | None) -> FrozenOptions | None:
        return FrozenOptions(value) if value is not None else None

    @field_serializer("options")
    def _dump_options(self, value: FrozenOptions | None) -> dict[str, Any] | None:
        return value.to_dict() if value is not None else None

    @model_validator(mode="after")
    def _require_driver_and_dbname(self) -> ConnectionConfig:
        if not self.driver or not self.dbname.strip():
            raise InvalidConfigError("Driver and Database name are required.")
        return self

    @classmethod
    def from_environment(
        cls,
        name: str = "DEFAULT",
        environ: Mapping[str, str] | None = None,
    ) -> ConnectionConfig:
        """Build a config from ``DB_<NAME>_*`` environment variables."""

        env = os.environ if environ is None else environ
        prefix = f"{ENV_PREFIX}{name.upper()}_"
        values = {
            suffix: env.get(prefix + suffix, default)
            for suffix, default in ENV_DEFAULTS.items()
        }
        return cls(
            driver=values["DRIVER"],
            host=values["HOST"],
            dbname=values["NAME"],
            user=values["USER"],
            password=values["PASS"],
            charset=values["CHARSET"],
            options=_decode_options(env.get(prefix + "OPTIONS")),
        )

    def connection_key(self) -> str:
        """Digest identifying the logical target (driver, host, dbname, user)."""

        material = "\0".join((self.driver, self.host, self.dbname, self.user))
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def driver_options(self) -> dict[str, Any] | None:
        """Fresh mutable copy of :attr:`options` for handing to a driver."""

        return self.options.to_dict() if self.options is not None else None


class LoggingSettings(BaseModel):
    """Where and how verbosely the connection layer logs."""

    level: str = "DEBUG"
    directory: str | None = None


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    connections: dict[str, ConnectionConfig] = Field(default_factory=dict)
    default_connection: str = "DEFAULT"

    def connection(self, name: str | None = None) -> ConnectionConfig:
        """Return the named connection, falling back to environment variables."""

        key = name or self.default_connection
        for label, config in self.connections.items():
            if label.upper() == key.upper():
                return config
        return ConnectionConfig.from_environment(key)

    def with_connection(self, name: str, config: ConnectionConfig) -> AppConfig:
        """Return a copy with the named connection added or replaced."""

        connections = dict(self.connections)
        connections[name] = config
        return self.model_copy(update={"connections": connections})


def load_environment(path: str | Path | None = None) -> bool:
    """Load a ``.env`` file into ``os.environ`` without overriding set values."""

    return load_dotenv(path, override=False)


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Ignoring unreadable config file %s", CONFIG_FILE)
        return AppConfig()

    return AppConfig(
        logging=data.get("logging", LoggingSettings()),
        connections=data.get("connections", {}),
        default_connection=data.get(
            "default_connection", AppConfig.model_fields["default_connection"].default
        ),
    )


def _read_config_file() -> dict[str, Any]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, Any] = {}
    default_connection = raw.get("default_connection")
    if isinstance(default_connection, str) and default_connection:
        data["default_connection"] = default_connection
    logging_section = raw.get("logging")
    if isinstance(logging_section, dict):
        settings: dict[str, str] = {}
        for key in ("level", "directory"):
            value = logging_section.get(key)
            if isinstance(value, str):
                settings[key] = value
        data["logging"] = LoggingSettings(**settings)
    connections = raw.get("connections")
    if isinstance(connections, dict):
        parsed: dict[str, ConnectionConfig] = {}
        for label, entry in connections.items():
            if not isinstance(entry, dict):
                continue
            config = _connection_from_table(str(label), entry)
            if config is not None:
                parsed[str(label)] = config
        data["connections"] = parsed
    return data


def _connection_from_table(label: str, entry: Mapping[str, Any]) -> ConnectionConfig | None:
    fields: dict[str, Any] = {}
    for key in ("driver", "host", "dbname", "user", "password", "charset"):
        value = entry.get(key)
        if isinstance(value, str):
            fields[key] = value
    options = entry.get("options")
    if isinstance(options, dict):
        fields["options"] = options
    try:
        return ConnectionConfig(**fields)
    except InvalidConfigError:
        LOG.warning("Skipping connection '%s': driver and dbname are required", label)
        return None


def _decode_options(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return decoded if isinstance(decoded, dict) else None


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConnectionConfig",
    "FrozenOptions",
    "LoggingSettings",
    "load_config",
    "load_environment",
]
