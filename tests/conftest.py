"""Shared fixtures: fake drivers and sqlite-backed configs."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Mapping

import pytest

from simplyconnect.config import ConnectionConfig
from simplyconnect.drivers import ConnectionHandle, SqliteDriver, StatementResult
from simplyconnect.params import CompiledStatement


class FakeHandle(ConnectionHandle):
    """Handle recording statements instead of talking to a database."""

    def __init__(self, driver: str) -> None:
        super().__init__(driver)
        self.statements: list[CompiledStatement] = []
        self.transaction_calls: list[str] = []
        self.close_calls = 0

    def _run(self, statement: CompiledStatement, *, fetch: bool, timeout: float | None) -> StatementResult:
        self.statements.append(statement)
        return StatementResult(columns=(), rows=[], rowcount=1)

    def _begin(self, timeout: float | None) -> None:
        self.transaction_calls.append("begin")

    def _commit(self, timeout: float | None) -> None:
        self.transaction_calls.append("commit")

    def _rollback(self, timeout: float | None) -> None:
        self.transaction_calls.append("rollback")

    def _close(self) -> None:
        self.close_calls += 1


class FakeDriver:
    """Driver producing :class:`FakeHandle` objects."""

    def __init__(self, name: str = "mysql", *, error: Exception | None = None, delay: float = 0.0) -> None:
        self.name = name
        self.error = error
        self.delay = delay
        self.opened: list[dict[str, Any]] = []
        self.shutdown_calls = 0
        self._lock = threading.Lock()

    def open(
        self,
        dsn: str,
        user: str,
        password: str,
        options: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ConnectionHandle:
        if self.delay:
            threading.Event().wait(self.delay)
        if self.error is not None:
            raise self.error
        with self._lock:
            self.opened.append(
                {"dsn": dsn, "user": user, "password": password, "options": options, "timeout": timeout}
            )
        return FakeHandle(self.name)

    def shutdown(self) -> None:
        self.shutdown_calls += 1


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver("mysql")


@pytest.fixture
def mysql_config() -> ConnectionConfig:
    return ConnectionConfig(driver="mysql", host="localhost", dbname="app", user="root", password="secret")


@pytest.fixture
def sqlite_config(tmp_path: Path) -> ConnectionConfig:
    return ConnectionConfig(driver="sqlite", dbname=str(tmp_path / "app.db"))


@pytest.fixture
def sqlite_handle(sqlite_config: ConnectionConfig):
    handle = SqliteDriver().open(f"sqlite:{sqlite_config.dbname}", "", "")
    handle.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, age INTEGER, team TEXT)")
    try:
        yield handle
    finally:
        handle.close()
