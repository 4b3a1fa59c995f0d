"""Tests for the query executor."""

from __future__ import annotations

import logging
from typing import Callable

import pytest

from simplyconnect.drivers import ConnectionHandle
from simplyconnect.errors import (
    InvalidIdentifierError,
    NotConnectedError,
    QueryError,
    TransactionError,
)
from simplyconnect.query import QueryExecutor

from .conftest import FakeHandle


@pytest.mark.parametrize(
    "operation",
    [
        lambda ex: ex.begin_transaction(),
        lambda ex: ex.commit(),
        lambda ex: ex.rollback(),
        lambda ex: ex.execute_query("SELECT 1"),
        lambda ex: ex.select("SELECT 1"),
        lambda ex: ex.insert("users", {"name": "ada"}),
        lambda ex: ex.update("users", {"name": "ada"}, {"id": 1}),
        lambda ex: ex.delete("users", {"id": 1}),
        lambda ex: ex.insert("bad name", {}),
    ],
)
def test_unbound_executor_raises_not_connected(operation: Callable[[QueryExecutor], object]) -> None:
    executor = QueryExecutor()

    with pytest.raises(NotConnectedError):
        operation(executor)
    assert executor.ready is False


def test_set_connection_last_bind_wins() -> None:
    first, second = FakeHandle("sqlite"), FakeHandle("sqlite")
    executor = QueryExecutor(first)

    executor.set_connection(second)
    executor.execute_query("SELECT 1")

    assert executor.connection is second
    assert first.statements == []
    assert len(second.statements) == 1


def test_execute_query_and_select(sqlite_handle: ConnectionHandle) -> None:
    executor = QueryExecutor(sqlite_handle)

    assert executor.execute_query("INSERT INTO users (name, age) VALUES (?, ?)", ["ada", 36]) is True
    assert executor.execute_query("INSERT INTO users (name, age) VALUES (:name, :age)", {"name": "bob", "age": 41})
    rows = executor.select("SELECT name, age FROM users WHERE age >= :min ORDER BY age", {"min": 30})

    assert rows == [{"name": "ada", "age": 36}, {"name": "bob", "age": 41}]


def test_execute_query_wraps_driver_errors(sqlite_handle: ConnectionHandle) -> None:
    executor = QueryExecutor(sqlite_handle)

    with pytest.raises(QueryError) as info:
        executor.execute_query("INSERT INTO nowhere VALUES (1)")

    assert info.value.__cause__ is not None


def test_crud_helpers_round_trip(sqlite_handle: ConnectionHandle) -> None:
    executor = QueryExecutor(sqlite_handle)

    assert executor.insert("users", {"name": "ada", "age": 36, "team": None}) is True
    assert executor.insert("users", {"name": "bob", "age": 41, "team": "ops"}) is True
    assert executor.update("users", {"team": "eng"}, {"team": None}) is True
    assert executor.delete("users", {"name": "bob"}) is True

    rows = executor.select("SELECT name, age, team FROM users")
    assert rows == [{"name": "ada", "age": 36, "team": "eng"}]


def test_crud_values_are_bound_not_interpolated(sqlite_handle: ConnectionHandle) -> None:
    executor = QueryExecutor(sqlite_handle)
    hostile = "x'); DROP TABLE users; --"

    executor.insert("users", {"name": hostile})

    assert executor.select("SELECT name FROM users") == [{"name": hostile}]


@pytest.mark.parametrize("name", ["users; DROP TABLE users", "1users", "users name", "a.b.c", "users\n", ""])
def test_invalid_identifiers_are_rejected(name: str) -> None:
    handle = FakeHandle("sqlite")
    executor = QueryExecutor(handle)

    with pytest.raises(InvalidIdentifierError):
        executor.insert(name, {"name": "ada"})
    with pytest.raises(InvalidIdentifierError):
        executor.update("users", {name: "ada"}, {"id": 1})
    assert handle.statements == []


def test_identifiers_are_quoted_per_dialect() -> None:
    mysql = FakeHandle("mysql")
    pgsql = FakeHandle("pgsql")

    QueryExecutor(mysql).insert("users", {"name": "ada", "age": 36})
    QueryExecutor(pgsql).update("public.users", {"name": "ada"}, {"id": 7, "team": None})

    assert mysql.statements[0].sql == "INSERT INTO `users` (`name`, `age`) VALUES (?, ?)"
    assert mysql.statements[0].args == ("ada", 36)
    assert pgsql.statements[0].sql == (
        'UPDATE "public"."users" SET "name" = ? WHERE "id" = ? AND "team" IS NULL'
    )
    assert pgsql.statements[0].args == ("ada", 7)


def test_writes_without_conditions_or_values_are_refused() -> None:
    handle = FakeHandle("sqlite")
    executor = QueryExecutor(handle)

    with pytest.raises(QueryError):
        executor.insert("users", {})
    with pytest.raises(QueryError):
        executor.update("users", {}, {"id": 1})
    with pytest.raises(QueryError):
        executor.update("users", {"name": "x"}, {})
    with pytest.raises(QueryError):
        executor.delete("users", {})
    assert handle.statements == []


def test_transaction_context_commits(sqlite_handle: ConnectionHandle) -> None:
    executor = QueryExecutor(sqlite_handle)

    with executor.transaction():
        executor.insert("users", {"name": "kept"})

    assert sqlite_handle.in_transaction is False
    assert executor.select("SELECT name FROM users") == [{"name": "kept"}]


def test_transaction_context_rolls_back_on_error(sqlite_handle: ConnectionHandle) -> None:
    executor = QueryExecutor(sqlite_handle)

    with pytest.raises(ValueError):
        with executor.transaction():
            executor.insert("users", {"name": "discarded"})
            raise ValueError("boom")

    assert sqlite_handle.in_transaction is False
    assert executor.select("SELECT name FROM users") == []


class _RollbackFailsHandle(FakeHandle):
    def _rollback(self, timeout: float | None) -> None:
        raise ConnectionResetError("server went away")


def test_failed_rollback_does_not_mask_block_error(caplog: pytest.LogCaptureFixture) -> None:
    handle = _RollbackFailsHandle("mysql")
    executor = QueryExecutor(handle)

    with caplog.at_level(logging.WARNING, logger="simplyconnect.query"):
        with pytest.raises(ValueError, match="boom"):
            with executor.transaction():
                raise ValueError("boom")

    assert handle.in_transaction is False
    assert "server went away" in caplog.text


def test_explicit_transaction_calls_delegate_to_handle() -> None:
    handle = FakeHandle("mysql")
    executor = QueryExecutor(handle)

    executor.begin_transaction()
    executor.commit()
    executor.begin_transaction()
    executor.rollback()

    assert handle.transaction_calls == ["begin", "commit", "begin", "rollback"]


def test_shared_handle_rejects_interleaved_transactions(sqlite_handle: ConnectionHandle) -> None:
    first = QueryExecutor(sqlite_handle)
    second = QueryExecutor(sqlite_handle)
    first.begin_transaction()

    with pytest.raises(TransactionError):
        second.begin_transaction()
    with pytest.raises(TransactionError):
        second.commit()
    with pytest.raises(QueryError):
        second.execute_query("INSERT INTO users (name) VALUES ('intruder')")

    first.rollback()
    second.execute_query("INSERT INTO users (name) VALUES ('after')")
    assert first.select("SELECT name FROM users") == [{"name": "after"}]


def test_handle_closed_elsewhere_surfaces_classified_errors(sqlite_handle: ConnectionHandle) -> None:
    executor = QueryExecutor(sqlite_handle)
    sqlite_handle.close()

    with pytest.raises(QueryError):
        executor.select("SELECT 1")
    with pytest.raises(TransactionError):
        executor.begin_transaction()
