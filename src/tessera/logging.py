"""Console and file logging for the tessera command line."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

from .config import ConfigError, LoggingConfig
from .sandbox import UNIT_LOGGER_PREFIX

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
MAIN_LOG_NAME = "tessera.log"
DEBUG_LOG_NAME = "debug.log"
MAX_LOG_BYTES = 5_000_000
LOG_BACKUPS = 5

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_MARKERS: dict[int, tuple[str, str]] = {
    logging.DEBUG: ("D", "\x1b[36m"),
    logging.INFO: ("I", "\x1b[32m"),
    logging.WARNING: ("!", "\x1b[33m"),
    logging.ERROR: ("X", "\x1b[31m"),
    logging.CRITICAL: ("X", "\x1b[35m"),
}
_RESET = "\x1b[0m"


class ConsoleFormatter(logging.Formatter):
    """One-letter level marker, then the logger name and message.

    Records logged by unit code show ``unit <stem>`` instead of the full
    ``tessera.units.<stem>`` logger name.
    """

    def __init__(self, use_color: bool) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        marker, color = _MARKERS.get(record.levelno, ("?", "\x1b[37m"))
        if self.use_color:
            marker = f"{color}{marker}{_RESET}"
        return f"{marker} {_source_label(record.name)}: {super().format(record)}"


def configure_logging(logging_config: LoggingConfig, *, verbose: bool = False) -> None:
    """Route tessera and unit logs to stderr, plus rotating files when a log directory is set."""

    handlers: list[logging.Handler] = [console_handler(sys.stderr)]
    if logging_config.directory is not None:
        log_dir = logging_config.directory.expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(rotating_handler(log_dir / MAIN_LOG_NAME, logging.INFO))
        if logging_config.debug_file:
            handlers.append(rotating_handler(log_dir / DEBUG_LOG_NAME, logging.DEBUG))

    level = logging.DEBUG if verbose else level_from_string(logging_config.level)
    logging.basicConfig(level=level, handlers=handlers, force=True)


def level_from_string(level: str) -> int:
    try:
        return LEVELS[level.strip().upper()]
    except KeyError as exc:
        raise ConfigError(f"Unknown log level: {level}") from exc


def console_handler(stream: TextIO) -> logging.Handler:
    """Stream handler that colours its markers only when ``stream`` is a terminal."""

    isatty = getattr(stream, "isatty", None)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ConsoleFormatter(bool(isatty and isatty())))
    return handler


def rotating_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _source_label(name: str) -> str:
    prefix = UNIT_LOGGER_PREFIX + "."
    if name.startswith(prefix):
        return f"unit {name[len(prefix):]}"
    return name


__all__ = ["ConsoleFormatter", "configure_logging", "console_handler", "level_from_string", "rotating_handler"]
