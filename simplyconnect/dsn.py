"""Dialect-specific DSN synthesis."""

from __future__ import annotations

from typing import Callable, Mapping

from .config import ConnectionConfig
from .errors import UnsupportedDriverError

DsnTemplate = Callable[[ConnectionConfig], str]


def _network(config: ConnectionConfig) -> str:
    return f"{config.driver}:host={config.host};dbname={config.dbname};charset={config.charset}"


DSN_TEMPLATES: Mapping[str, DsnTemplate] = {
    "mysql": _network,
    "pgsql": _network,
    "sqlite": lambda config: f"sqlite:{config.dbname}",
    "odbc": lambda config: f"odbc:Driver={{Microsoft Access Driver (*.mdb)}};Dbq={config.dbname};",
}


def build_dsn(config: ConnectionConfig) -> str:
    """Return the connection string for *config*'s driver."""

    template = DSN_TEMPLATES.get(config.driver)
    if template is None:
        raise UnsupportedDriverError(f"Unsupported database type: {config.driver}")
    return template(config)


def parse_dsn(dsn: str) -> tuple[str, str, dict[str, str]]:
    """Split ``driver:body`` and decode ``key=value;`` pairs from the body.

    Bodies without ``=`` (sqlite paths) yield an empty parameter dict. Braced
    values such as ``{Microsoft Access Driver (*.mdb)}`` are kept intact.
    """

    driver, sep, body = dsn.partition(":")
    if not sep or not driver:
        raise UnsupportedDriverError(f"Malformed DSN: {dsn!r}")
    params: dict[str, str] = {}
    if "=" not in body:
        return driver, body, params
    for chunk in _split_pairs(body):
        key, _, value = chunk.partition("=")
        if key.strip():
            params[key.strip()] = value.strip()
    return driver, body, params


def _split_pairs(body: str) -> list[str]:
    chunks: list[str] = []
    current: list[str] = []
    depth = 0
    for char in body:
        if char == "{":
            depth += 1
        elif char == "}" and depth:
            depth -= 1
        if char == ";" and not depth:
            chunks.append("".join(current))
            current = []
            continue
        current.append(char)
    if current:
        chunks.append("".join(current))
    return [chunk for chunk in chunks if chunk.strip()]


__all__ = ["DSN_TEMPLATES", "build_dsn", "parse_dsn"]
