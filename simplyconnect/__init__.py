"""Connection registry and query executor for relational databases."""

from __future__ import annotations

__version__ = "0.1.0"

from .broker import ConnectionBroker
from .config import AppConfig, ConnectionConfig, load_config, load_environment
from .drivers import ConnectionHandle, Driver, StatementResult
from .dsn import build_dsn
from .errors import (
    ConnectionFailedError,
    DatabaseError,
    InvalidConfigError,
    InvalidIdentifierError,
    NotConnectedError,
    QueryError,
    SimplyError,
    TransactionError,
    UnsupportedDriverError,
)
from .log import configure_logging
from .query import QueryExecutor
from .registry import ConnectionRegistry

__all__ = [
    "AppConfig",
    "ConnectionBroker",
    "ConnectionConfig",
    "ConnectionFailedError",
    "ConnectionHandle",
    "ConnectionRegistry",
    "DatabaseError",
    "Driver",
    "InvalidConfigError",
    "InvalidIdentifierError",
    "NotConnectedError",
    "QueryError",
    "QueryExecutor",
    "SimplyError",
    "StatementResult",
    "TransactionError",
    "UnsupportedDriverError",
    "build_dsn",
    "configure_logging",
    "load_config",
    "load_environment",
]
