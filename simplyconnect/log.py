"""Logging setup for applications embedding the connection layer."""

from __future__ import annotations

import logging
import os
import sys
from datetime import date
from pathlib import Path
from types import TracebackType

DEFAULT_CHANNEL = "simplyconnect"
DEFAULT_LOG_DIRECTORY = Path("storage") / "logs"
LOG_FORMAT = "%(asctime)s %(name)s.%(levelname)s: %(message)s"

# Syslog-style names map onto the nearest stdlib level.
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "NOTICE": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
    "ALERT": logging.CRITICAL,
    "EMERGENCY": logging.CRITICAL,
}


class DailyFileHandler(logging.FileHandler):
    """File handler writing to ``<directory>/<YYYY-MM-DD>.log`` for the current day."""

    def __init__(self, directory: str | Path, *, encoding: str = "utf-8") -> None:
        self.directory = Path(directory).absolute()
        self._day = date.today()
        super().__init__(self._path_for(self._day), encoding=encoding)

    def emit(self, record: logging.LogRecord) -> None:
        today = date.today()
        if today != self._day:
            self._day = today
            if self.stream is not None:
                self.stream.close()
                self.stream = None  # reopened lazily by FileHandler.emit
            self.baseFilename = os.fspath(self._path_for(today))
        super().emit(record)

    def _path_for(self, day: date) -> Path:
        return self.directory / f"{day.isoformat()}.log"


def configure_logging(
    channel: str = DEFAULT_CHANNEL,
    *,
    log_directory: str | Path | None = None,
    level: str = "DEBUG",
) -> logging.Logger:
    """Attach a :class:`DailyFileHandler` to *channel*'s logger."""

    try:
        numeric_level = LOG_LEVELS[level.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}") from None
    directory = Path(log_directory) if log_directory is not None else DEFAULT_LOG_DIRECTORY
    directory.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(channel)
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        if isinstance(handler, DailyFileHandler) and handler.directory == directory.absolute():
            handler.setLevel(numeric_level)
            return logger
    handler = DailyFileHandler(directory)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return logger


def install_exception_hook(logger: logging.Logger) -> None:
    """Log uncaught exceptions on *logger* before the previous hook runs."""

    previous = sys.excepthook

    def _hook(
        exc_type: type[BaseException],
        exc: BaseException,
        traceback: TracebackType | None,
    ) -> None:
        logger.error("Uncaught Exception: %s", exc, exc_info=(exc_type, exc, traceback))
        previous(exc_type, exc, traceback)

    sys.excepthook = _hook


__all__ = ["DailyFileHandler", "LOG_LEVELS", "configure_logging", "install_exception_hook"]
