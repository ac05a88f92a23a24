# src/kanban_sync/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "kanban.log"

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Loggers that fire on every snapshot push or countdown tick.
_CHATTY_PREFIXES = (
    "kanban_sync.stores.",
    "kanban_sync.tasks.snapshot_store",
    "kanban_sync.reminders.countdown",
    "kanban_sync.reminders.local_notifications",
)


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the REPL readable: the prompt shares stderr/stdout with log output.

    - kanban_sync logs pass, except chatty sync/timer loggers below WARNING
    - asyncio passes from WARNING
    - everything else (py.warnings, third-party) only from ERROR
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith("kanban_sync."):
            if name.startswith(_CHATTY_PREFIXES):
                return record.levelno >= logging.WARNING
            return True
        if name == "asyncio":
            return record.levelno >= logging.WARNING
        return record.levelno >= logging.ERROR


def _console_handler(level: int, fmt: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.addFilter(_ConsoleNoiseFilter())
    return handler


def _file_handler(path: Path, level: int, fmt: logging.Formatter) -> logging.Handler:
    handler = RotatingFileHandler(str(path), maxBytes=2_000_000, backupCount=3, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(fmt)
    return handler


def setup_logging(
    *,
    log_dir: str | Path = ".local/kanban",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Install a filtered console handler and a rotating file handler with
    full DEBUG output under `log_dir`. Returns the log file path.

    Call once, before the first log call; existing root handlers are replaced.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)
    root.addHandler(_console_handler(console_level, fmt))
    root.addHandler(_file_handler(log_file, file_level, fmt))

    # warnings.warn(...) -> 'py.warnings' logger
    logging.captureWarnings(True)
    return log_file
