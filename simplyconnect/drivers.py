"""Driver adapters opening live connection handles from DSNs."""

from __future__ import annotations

import asyncio
import logging
import math
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Coroutine, Iterator, Mapping, Protocol, runtime_checkable

import asyncpg
import pymysql

from .dsn import parse_dsn
from .errors import DatabaseError, QueryError, TransactionError, error_code
from .params import CompiledStatement, Params, PlaceholderStyle, compile_statement

LOG = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0


@dataclass(frozen=True, slots=True)
class StatementResult:
    """Raw outcome of one statement."""

    columns: tuple[str, ...]
    rows: list[dict[str, object]]
    rowcount: int


class ConnectionHandle:
    """Live connection owning one driver connection.

    Transaction state belongs to the handle, not to whoever borrowed it: a
    transaction is owned by the object passed to :meth:`begin` and other
    borrowers cannot run statements or end it until it finishes.
    """

    placeholder_style: PlaceholderStyle = PlaceholderStyle.QMARK

    def __init__(self, driver: str) -> None:
        self.driver = driver
        self._lock = threading.RLock()
        self._closed = False
        self._in_transaction = False
        self._owner: object | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def execute(
        self,
        query: str,
        params: Params = None,
        *,
        fetch: bool = False,
        timeout: float | None = None,
        owner: object | None = None,
    ) -> StatementResult:
        """Prepare, bind and run *query*; rows are returned when *fetch* is set."""

        statement = compile_statement(query, params, self.placeholder_style)
        with self._lock:
            self._ensure_open(QueryError)
            if self._in_transaction and owner is not self._owner:
                raise QueryError("The connection is in a transaction owned by another executor.")
            try:
                return self._run(statement, fetch=fetch, timeout=timeout)
            except DatabaseError:
                raise
            except Exception as exc:
                raise QueryError(
                    f"An error occurred while executing the query: {exc}",
                    code=error_code(exc),
                ) from exc

    def begin(self, *, timeout: float | None = None, owner: object | None = None) -> None:
        with self._lock:
            self._ensure_open(TransactionError)
            if self._in_transaction:
                raise TransactionError("There is already an active transaction")
            self._transaction_call("begin", timeout)
            self._in_transaction = True
            self._owner = owner

    def commit(self, *, timeout: float | None = None, owner: object | None = None) -> None:
        with self._lock:
            self._check_transaction(owner)
            self._transaction_call("commit", timeout)
            self._in_transaction = False
            self._owner = None

    def rollback(self, *, timeout: float | None = None, owner: object | None = None) -> None:
        with self._lock:
            self._check_transaction(owner)
            try:
                self._transaction_call("rollback", timeout)
            finally:
                self._in_transaction = False
                self._owner = None

    def close(self) -> None:
        """Release the driver connection; later calls fail as closed."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._in_transaction = False
            self._owner = None
            self._close()

    def _check_transaction(self, owner: object | None) -> None:
        self._ensure_open(TransactionError)
        if not self._in_transaction:
            raise TransactionError("There is no active transaction")
        if owner is not self._owner:
            raise TransactionError("The active transaction is owned by another executor.")

    def _transaction_call(self, action: str, timeout: float | None) -> None:
        try:
            getattr(self, f"_{action}")(timeout)
        except DatabaseError:
            raise
        except Exception as exc:
            raise TransactionError(
                f"Unable to {action} the transaction: {exc}", code=error_code(exc)
            ) from exc

    def _ensure_open(self, error: type[QueryError] | type[TransactionError]) -> None:
        if self.closed:
            raise error("The database connection is closed.")

    def _run(self, statement: CompiledStatement, *, fetch: bool, timeout: float | None) -> StatementResult:
        raise NotImplementedError

    def _begin(self, timeout: float | None) -> None:
        raise NotImplementedError

    def _commit(self, timeout: float | None) -> None:
        raise NotImplementedError

    def _rollback(self, timeout: float | None) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError


class DbApiHandle(ConnectionHandle):
    """Handle over a DB-API 2.0 connection opened in autocommit mode."""

    def __init__(self, driver: str, conn: Any) -> None:
        super().__init__(driver)
        self._conn = conn

    def _run(self, statement: CompiledStatement, *, fetch: bool, timeout: float | None) -> StatementResult:
        with self._deadline(timeout):
            cursor = self._conn.cursor()
            try:
                cursor.execute(statement.sql, statement.args)
                if not fetch:
                    return StatementResult(columns=(), rows=[], rowcount=cursor.rowcount)
                columns = tuple(str(desc[0]) for desc in cursor.description or ())
                rows = [dict(zip(columns, row, strict=True)) for row in cursor.fetchall()]
                return StatementResult(columns=columns, rows=rows, rowcount=len(rows))
            finally:
                cursor.close()

    @contextmanager
    def _deadline(self, timeout: float | None) -> Iterator[None]:
        yield

    def _close(self) -> None:
        self._conn.close()


class SqliteHandle(DbApiHandle):
    def _begin(self, timeout: float | None) -> None:
        self._conn.execute("BEGIN")

    def _commit(self, timeout: float | None) -> None:
        self._conn.execute("COMMIT")

    def _rollback(self, timeout: float | None) -> None:
        self._conn.execute("ROLLBACK")

    @contextmanager
    def _deadline(self, timeout: float | None) -> Iterator[None]:
        if not timeout:
            yield
            return
        timer = threading.Timer(timeout, self._conn.interrupt)
        timer.daemon = True
        timer.start()
        try:
            yield
        finally:
            timer.cancel()


class MysqlHandle(DbApiHandle):
    placeholder_style = PlaceholderStyle.FORMAT

    def _begin(self, timeout: float | None) -> None:
        self._conn.begin()

    def _commit(self, timeout: float | None) -> None:
        self._conn.commit()

    def _rollback(self, timeout: float | None) -> None:
        self._conn.rollback()

    @contextmanager
    def _deadline(self, timeout: float | None) -> Iterator[None]:
        if not timeout:
            yield
            return
        previous = self._execution_time()
        self._set_execution_time(int(timeout * 1000))
        try:
            yield
        finally:
            try:
                self._set_execution_time(previous)
            except pymysql.MySQLError as exc:
                LOG.warning("Unable to restore max_execution_time to %s ms: %s", previous, exc)

    def _execution_time(self) -> int:
        cursor = self._conn.cursor()
        try:
            cursor.execute("SELECT @@SESSION.max_execution_time")
            row = cursor.fetchone()
        finally:
            cursor.close()
        return int(row[0]) if row and row[0] is not None else 0

    def _set_execution_time(self, millis: int) -> None:
        cursor = self._conn.cursor()
        try:
            cursor.execute("SET SESSION max_execution_time = %s", (millis,))
        finally:
            cursor.close()


class OdbcHandle(DbApiHandle):
    def _begin(self, timeout: float | None) -> None:
        self._conn.autocommit = False

    def _commit(self, timeout: float | None) -> None:
        self._conn.commit()
        self._conn.autocommit = True

    def _rollback(self, timeout: float | None) -> None:
        try:
            self._conn.rollback()
        finally:
            self._conn.autocommit = True

    @contextmanager
    def _deadline(self, timeout: float | None) -> Iterator[None]:
        if not timeout:
            yield
            return
        self._conn.timeout = max(1, math.ceil(timeout))
        try:
            yield
        finally:
            self._conn.timeout = 0


class AsyncpgHandle(ConnectionHandle):
    """Handle over an asyncpg connection driven by its driver's event loop."""

    placeholder_style = PlaceholderStyle.DOLLAR

    def __init__(self, driver: str, conn: Any, runner: PgsqlDriver) -> None:
        super().__init__(driver)
        self._conn = conn
        self._runner = runner

    @property
    def closed(self) -> bool:
        return self._closed or self._conn.is_closed()

    def _run(self, statement: CompiledStatement, *, fetch: bool, timeout: float | None) -> StatementResult:
        if fetch:
            return self._runner.run(_asyncpg_fetch(self._conn, statement, timeout))
        status = self._runner.run(self._conn.execute(statement.sql, *statement.args, timeout=timeout))
        return StatementResult(columns=(), rows=[], rowcount=_status_rowcount(status))

    def _begin(self, timeout: float | None) -> None:
        self._runner.run(self._conn.execute("BEGIN", timeout=timeout))

    def _commit(self, timeout: float | None) -> None:
        self._runner.run(self._conn.execute("COMMIT", timeout=timeout))

    def _rollback(self, timeout: float | None) -> None:
        self._runner.run(self._conn.execute("ROLLBACK", timeout=timeout))

    def _close(self) -> None:
        self._runner.run(self._conn.close())


async def _asyncpg_fetch(conn: Any, statement: CompiledStatement, timeout: float | None) -> StatementResult:
    prepared = await conn.prepare(statement.sql, timeout=timeout)
    columns = tuple(attr.name for attr in prepared.get_attributes())
    records = await prepared.fetch(*statement.args, timeout=timeout)
    rows = [dict(record.items()) for record in records]
    return StatementResult(columns=columns, rows=rows, rowcount=len(rows))


def _status_rowcount(status: str | None) -> int:
    if not status:
        return -1
    tail = status.rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else -1


@runtime_checkable
class Driver(Protocol):
    """Opens handles for one DSN prefix."""

    name: str

    def open(
        self,
        dsn: str,
        user: str,
        password: str,
        options: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ConnectionHandle:
        """Open a connection; driver errors propagate unchanged."""

    def shutdown(self) -> None:
        """Release resources held by the driver itself."""


class SqliteDriver:
    """Opens file-backed databases with the stdlib ``sqlite3`` module."""

    name = "sqlite"

    def open(
        self,
        dsn: str,
        user: str,
        password: str,
        options: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ConnectionHandle:
        _, path, _ = parse_dsn(dsn)
        kwargs: dict[str, Any] = {"timeout": DEFAULT_CONNECT_TIMEOUT}
        kwargs.update(options or {})
        if timeout:
            kwargs["timeout"] = timeout
        kwargs.update(isolation_level=None, check_same_thread=False)
        conn = sqlite3.connect(path, **kwargs)
        return SqliteHandle(self.name, conn)

    def shutdown(self) -> None:
        return None


class MysqlDriver:
    """Opens MySQL connections through PyMySQL."""

    name = "mysql"

    def open(
        self,
        dsn: str,
        user: str,
        password: str,
        options: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ConnectionHandle:
        _, _, params = parse_dsn(dsn)
        kwargs: dict[str, Any] = {"connect_timeout": DEFAULT_CONNECT_TIMEOUT}
        kwargs.update(options or {})
        if timeout:
            kwargs["connect_timeout"] = timeout
        kwargs.update(
            host=params.get("host") or None,
            database=params.get("dbname"),
            charset=params.get("charset") or "utf8",
            user=user or None,
            password=password,
            autocommit=True,
        )
        conn = pymysql.connect(**kwargs)
        return MysqlHandle(self.name, conn)

    def shutdown(self) -> None:
        return None


class PgsqlDriver:
    """Opens PostgreSQL connections via asyncpg on a background event loop."""

    name = "pgsql"

    def __init__(self, *, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT) -> None:
        self._connect_timeout = connect_timeout
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None
        self._start_lock = threading.Lock()

    def open(
        self,
        dsn: str,
        user: str,
        password: str,
        options: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ConnectionHandle:
        _, _, params = parse_dsn(dsn)
        kwargs: dict[str, Any] = {"timeout": self._connect_timeout}
        kwargs.update(options or {})
        if timeout:
            kwargs["timeout"] = timeout
        kwargs["host"] = params.get("host") or "localhost"
        kwargs["database"] = params.get("dbname")
        if user:
            kwargs["user"] = user
        if password:
            kwargs["password"] = password
        conn = self.run(asyncpg.connect(**kwargs))
        return AsyncpgHandle(self.name, conn, self)

    def run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())
        return future.result()

    def shutdown(self) -> None:
        """Stop and close the background event loop."""

        with self._start_lock:
            loop, thread = self._loop, self._loop_thread
            self._loop = None
            self._loop_thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=1)
            if thread.is_alive():
                LOG.warning("asyncpg event loop did not stop; leaving it open")
                return
        loop.close()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._start_lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._loop_thread = threading.Thread(
                    target=self._loop.run_forever,
                    name="simplyconnect-asyncpg",
                    daemon=True,
                )
                self._loop_thread.start()
            return self._loop


class OdbcDriver:
    """Opens ODBC data sources through pyodbc (``odbc`` extra)."""

    name = "odbc"

    def open(
        self,
        dsn: str,
        user: str,
        password: str,
        options: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ConnectionHandle:
        import pyodbc

        _, body, _ = parse_dsn(dsn)
        connection_string = body
        if user:
            connection_string += f"UID={user};"
        if password:
            connection_string += f"PWD={password};"
        kwargs: dict[str, Any] = dict(options or {})
        if timeout:
            kwargs["timeout"] = max(1, math.ceil(timeout))
        kwargs["autocommit"] = True
        conn = pyodbc.connect(connection_string, **kwargs)
        return OdbcHandle(self.name, conn)

    def shutdown(self) -> None:
        return None


def default_drivers() -> dict[str, Driver]:
    """Fresh instances of the bundled drivers keyed by DSN prefix."""

    drivers: tuple[Driver, ...] = (MysqlDriver(), PgsqlDriver(), SqliteDriver(), OdbcDriver())
    return {driver.name: driver for driver in drivers}


__all__ = [
    "AsyncpgHandle",
    "ConnectionHandle",
    "DbApiHandle",
    "Driver",
    "MysqlDriver",
    "OdbcDriver",
    "PgsqlDriver",
    "SqliteDriver",
    "StatementResult",
    "default_drivers",
]
