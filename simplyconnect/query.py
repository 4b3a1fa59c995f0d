"""Query and transaction execution over a borrowed connection handle."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from sqlglot import exp

from .drivers import ConnectionHandle
from .errors import DatabaseError, InvalidIdentifierError, NotConnectedError, QueryError
from .params import Params

LOG = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?")

SQL_DIALECTS: Mapping[str, str] = {
    "mysql": "mysql",
    "pgsql": "postgres",
    "sqlite": "sqlite",
    "odbc": "tsql",
}


class QueryExecutor:
    """Runs statements and transactions on the handle it was given."""

    def __init__(self, handle: ConnectionHandle | None = None) -> None:
        self._handle = handle

    @property
    def connection(self) -> ConnectionHandle | None:
        return self._handle

    @property
    def ready(self) -> bool:
        return self._handle is not None

    def set_connection(self, handle: ConnectionHandle) -> None:
        """Bind (or rebind) the executor to *handle*."""

        self._handle = handle

    def begin_transaction(self, *, timeout: float | None = None) -> None:
        self._ensure_connection().begin(timeout=timeout, owner=self)

    def commit(self, *, timeout: float | None = None) -> None:
        self._ensure_connection().commit(timeout=timeout, owner=self)

    def rollback(self, *, timeout: float | None = None) -> None:
        self._ensure_connection().rollback(timeout=timeout, owner=self)

    @contextmanager
    def transaction(self, *, timeout: float | None = None) -> Iterator[QueryExecutor]:
        """Commit when the block succeeds, roll back when it raises."""

        handle = self._ensure_connection()
        self.begin_transaction(timeout=timeout)
        try:
            yield self
        except BaseException:
            if handle.in_transaction:
                try:
                    self.rollback(timeout=timeout)
                except DatabaseError as exc:
                    LOG.warning("Rollback after a failed transaction block also failed: %s", exc)
            raise
        self.commit(timeout=timeout)

    def execute_query(self, query: str, params: Params = None, *, timeout: float | None = None) -> bool:
        """Execute *query* with ``?`` or ``:name`` placeholders bound to *params*."""

        handle = self._ensure_connection()
        handle.execute(query, params, timeout=timeout, owner=self)
        return True

    def select(
        self, query: str, params: Params = None, *, timeout: float | None = None
    ) -> list[dict[str, object]]:
        """Execute *query* and return every row as a column → value dict."""

        handle = self._ensure_connection()
        return handle.execute(query, params, fetch=True, timeout=timeout, owner=self).rows

    def insert(self, table: str, data: Mapping[str, Any]) -> bool:
        handle = self._ensure_connection()
        if not data:
            raise QueryError("Cannot insert an empty row.")
        columns = ", ".join(self._quote(handle, column) for column in data)
        markers = ", ".join("?" for _ in data)
        query = f"INSERT INTO {self._quote(handle, table)} ({columns}) VALUES ({markers})"
        return self.execute_query(query, list(data.values()))

    def update(self, table: str, data: Mapping[str, Any], conditions: Mapping[str, Any]) -> bool:
        handle = self._ensure_connection()
        if not data:
            raise QueryError("Cannot update without values to set.")
        if not conditions:
            raise QueryError("Refusing to update without conditions.")
        assignments = ", ".join(f"{self._quote(handle, column)} = ?" for column in data)
        where, where_params = self._where(handle, conditions)
        query = f"UPDATE {self._quote(handle, table)} SET {assignments} WHERE {where}"
        return self.execute_query(query, [*data.values(), *where_params])

    def delete(self, table: str, conditions: Mapping[str, Any]) -> bool:
        handle = self._ensure_connection()
        if not conditions:
            raise QueryError("Refusing to delete without conditions.")
        where, where_params = self._where(handle, conditions)
        query = f"DELETE FROM {self._quote(handle, table)} WHERE {where}"
        return self.execute_query(query, where_params)

    def _ensure_connection(self) -> ConnectionHandle:
        if self._handle is None:
            raise NotConnectedError("The database connection has not been established.")
        return self._handle

    def _where(self, handle: ConnectionHandle, conditions: Mapping[str, Any]) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in conditions.items():
            if value is None:
                clauses.append(f"{self._quote(handle, column)} IS NULL")
            else:
                clauses.append(f"{self._quote(handle, column)} = ?")
                params.append(value)
        return " AND ".join(clauses), params

    @staticmethod
    def _quote(handle: ConnectionHandle, name: str) -> str:
        if not isinstance(name, str) or not IDENTIFIER_PATTERN.fullmatch(name):
            raise InvalidIdentifierError(f"Invalid identifier: {name!r}")
        dialect = SQL_DIALECTS.get(handle.driver)
        return ".".join(
            exp.to_identifier(part, quoted=True).sql(dialect=dialect) for part in name.split(".")
        )


__all__ = ["IDENTIFIER_PATTERN", "QueryExecutor", "SQL_DIALECTS"]
