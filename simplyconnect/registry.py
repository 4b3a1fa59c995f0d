"""Connection registry caching one live handle per logical target.

Handles are keyed by :meth:`ConnectionConfig.connection_key`, which covers
driver, host, database name and user only. Two configs differing just in
password, charset or options share a handle; close the old entry before
connecting with rotated credentials.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Mapping

from .config import ConnectionConfig
from .drivers import ConnectionHandle, Driver, default_drivers
from .dsn import build_dsn
from .errors import ConnectionFailedError, UnsupportedDriverError

LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class ConnectionRegistry:
    """Owns the key → handle cache and its lifecycle."""

    def __init__(
        self,
        drivers: Mapping[str, Driver] | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._drivers: dict[str, Driver] = dict(drivers) if drivers is not None else default_drivers()
        self._log = logger or LOG
        self._handles: dict[str, ConnectionHandle] = {}
        self._key_locks: dict[str, _KeyLock] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> ConnectionRegistry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def __contains__(self, config: object) -> bool:
        if not isinstance(config, ConnectionConfig):
            return False
        with self._lock:
            return config.connection_key() in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    @staticmethod
    def connection_key(config: ConnectionConfig) -> str:
        return config.connection_key()

    def register_driver(self, driver: Driver) -> None:
        """Add or replace the driver used for ``driver.name`` DSNs."""

        with self._lock:
            self._drivers[driver.name] = driver

    def connect(self, config: ConnectionConfig, *, timeout: float | None = None) -> ConnectionHandle:
        """Return the cached handle for *config*, opening one on a miss."""

        key = config.connection_key()
        with self._locked_key(key):
            with self._lock:
                handle = self._handles.get(key)
                if handle is not None and not handle.closed:
                    return handle
                self._handles.pop(key, None)
                driver = self._drivers.get(config.driver)
            handle = self._open(config, driver, timeout)
            with self._lock:
                self._handles[key] = handle
            return handle

    def close_connection(self, config: ConnectionConfig) -> None:
        """Close and forget *config*'s handle; no-op when absent."""

        key = config.connection_key()
        with self._locked_key(key):
            with self._lock:
                handle = self._handles.pop(key, None)
            if handle is not None:
                self._close_quiet(key, handle)

    def close_connections(self) -> None:
        """Close and forget every cached handle."""

        with self._lock:
            entries = list(self._handles.items())
            self._handles.clear()
        for key, handle in entries:
            self._close_quiet(key, handle)

    def shutdown(self) -> None:
        """Close every handle and release driver resources."""

        self.close_connections()
        with self._lock:
            drivers = list(self._drivers.values())
        for driver in drivers:
            driver.shutdown()

    def stats(self) -> dict[str, int]:
        """Return cache statistics for monitoring."""

        with self._lock:
            by_driver: dict[str, int] = {}
            for handle in self._handles.values():
                by_driver[handle.driver] = by_driver.get(handle.driver, 0) + 1
            return {"connections": len(self._handles), **by_driver}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _locked_key(self, key: str) -> Iterator[None]:
        """Serialise work on *key*; the lock entry lives only while used."""

        with self._lock:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if not entry.users:
                    del self._key_locks[key]

    def _open(
        self,
        config: ConnectionConfig,
        driver: Driver | None,
        timeout: float | None,
    ) -> ConnectionHandle:
        dsn = build_dsn(config)
        if driver is None:
            raise UnsupportedDriverError(f"No driver registered for database type: {config.driver}")
        try:
            handle = driver.open(
                dsn,
                config.user,
                config.password,
                config.driver_options(),
                timeout=timeout,
            )
        except Exception as exc:
            self._log.error(
                "Connection to %s database '%s' on '%s' failed: %s",
                config.driver,
                config.dbname,
                config.host,
                exc,
                extra={"driver": config.driver, "dbname": config.dbname, "host": config.host},
            )
            raise ConnectionFailedError("Unable to connect to the database.") from exc
        self._log.debug("Opened %s connection to '%s'", config.driver, config.dbname)
        return handle

    def _close_quiet(self, key: str, handle: ConnectionHandle) -> None:
        try:
            handle.close()
        except Exception as exc:
            self._log.warning("Error while closing connection %s: %s", key[:12], exc)
        else:
            self._log.debug("Closed %s connection %s", handle.driver, key[:12])


__all__ = ["ConnectionRegistry"]
