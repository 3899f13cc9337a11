"""Logging setup: stdlib loggers rendered through rich."""

from __future__ import annotations

import logging as py_logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"


def resolve_level(level: str) -> int:
    """Map a level name to a logging constant, defaulting to INFO."""
    return LOG_LEVELS.get(level.upper(), py_logging.INFO)


def configure_logging(
    level: str = "INFO",
    *,
    log_file: str | Path | None = None,
    console: Console | None = None,
) -> py_logging.Logger:
    """Attach a rich stderr handler (and optionally a file handler) to the package logger."""
    resolved = resolve_level(level)

    logger = py_logging.getLogger("termpilot")
    logger.setLevel(resolved)
    logger.handlers.clear()

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
        markup=False,
    )
    handler.setLevel(resolved)
    logger.addHandler(handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = py_logging.FileHandler(log_path, encoding="utf-8")
        except OSError as exc:
            logger.warning("Cannot open log file %s: %s", log_path, exc)
        else:
            file_handler.setLevel(py_logging.DEBUG)
            file_handler.setFormatter(py_logging.Formatter(_FILE_FORMAT))
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger
