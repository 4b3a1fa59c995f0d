"""Composition root handing callers a ready-to-use executor."""

from __future__ import annotations

import logging

from .config import ConnectionConfig
from .errors import DatabaseError, SimplyError
from .query import QueryExecutor
from .registry import ConnectionRegistry

LOG = logging.getLogger(__name__)


class ConnectionBroker:
    """Binds registry handles into fresh executors."""

    def __init__(self, registry: ConnectionRegistry | None = None) -> None:
        self._registry = registry if registry is not None else ConnectionRegistry()
        self._executor: QueryExecutor | None = None

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def executor(self) -> QueryExecutor | None:
        """Executor produced by the latest successful :meth:`init`."""

        return self._executor

    def init(self, config: ConnectionConfig, *, timeout: float | None = None) -> QueryExecutor:
        """Connect *config* and return an executor bound to its handle."""

        executor = QueryExecutor()
        try:
            executor.set_connection(self._registry.connect(config, timeout=timeout))
        except DatabaseError as exc:
            LOG.error("Database error: %s", exc)
            raise
        except Exception as exc:
            LOG.exception("Unexpected error while initialising the database connection")
            raise SimplyError(
                "An unexpected error occurred during database connection initialization."
            ) from exc
        LOG.info("Connection to %s database '%s' established.", config.driver, config.dbname)
        self._executor = executor
        return executor


__all__ = ["ConnectionBroker"]
