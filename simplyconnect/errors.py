"""Exception hierarchy shared by the registry, executor and broker."""

from __future__ import annotations


class DatabaseError(RuntimeError):
    """Base class for every database-layer failure."""


class InvalidConfigError(DatabaseError):
    """Raised when a connection config is missing its driver or database name."""


class UnsupportedDriverError(DatabaseError):
    """Raised when no DSN template or driver exists for the requested driver."""


class ConnectionFailedError(DatabaseError):
    """Raised when the driver cannot open a connection.

    The driver's own message is logged and kept as ``__cause__``; the message
    of this error stays generic.
    """


class NotConnectedError(DatabaseError):
    """Raised when an executor is used before a connection has been bound."""


class _DriverFailure(DatabaseError):
    """Driver failure carrying the original message and error code."""

    def __init__(self, message: str, *, code: object | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class QueryError(_DriverFailure):
    """Raised when preparing, binding or executing a statement fails."""


class InvalidIdentifierError(QueryError):
    """Raised when a table or column name fails the identifier allow-list."""


class TransactionError(_DriverFailure):
    """Raised when begin/commit/rollback fails or conflicts with handle state."""


class SimplyError(RuntimeError):
    """Generic application error for unexpected failures during initialisation."""


def error_code(exc: BaseException) -> object | None:
    """Best-effort extraction of a driver error code (SQLSTATE or errno)."""

    for attr in ("sqlstate", "sqlite_errorcode", "errno"):
        value = getattr(exc, attr, None)
        if value is not None:
            return value
    args = getattr(exc, "args", ())
    if len(args) > 1 and isinstance(args[0], (int, str)):
        return args[0]
    return None


__all__ = [
    "ConnectionFailedError",
    "DatabaseError",
    "InvalidConfigError",
    "InvalidIdentifierError",
    "NotConnectedError",
    "QueryError",
    "SimplyError",
    "TransactionError",
    "UnsupportedDriverError",
    "error_code",
]
