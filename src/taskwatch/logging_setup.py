# src/taskwatch/logging_setup.py

"""
Two sinks: a console that stays readable next to the REPL prompt, and
<data_dir>/taskwatch.log with everything at DEBUG.

The console decides per logger. A task change is one INFO line from
taskwatch.tasks.task_service. Per-notice delivery lines and scheduler
housekeeping stay in the file unless they are WARNING or worse, and so does
the Matrix connector. Third-party loggers and captured Python warnings need
ERROR.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "taskwatch.log"

# Console floor per logger-name prefix; the longest matching prefix wins.
CONSOLE_THRESHOLDS: dict[str, int] = {
    "taskwatch": logging.NOTSET,
    "taskwatch.connectors.matrix_": logging.WARNING,
    "taskwatch.tasks.delivery": logging.WARNING,
    "taskwatch.tasks.reminder_scheduler": logging.WARNING,
    "taskwatch.tasks.daily_report": logging.INFO,
}
FOREIGN_THRESHOLD = logging.ERROR

# Applied at the logger itself, so these also bound what lands in the file.
LIBRARY_LEVELS: dict[str, int] = {
    "nio": logging.INFO,
    "aiohttp": logging.WARNING,
    "peewee": logging.WARNING,
}


def console_threshold(name: str) -> int:
    best = ""
    for prefix in CONSOLE_THRESHOLDS:
        if (name == prefix or name.startswith(prefix)) and len(prefix) > len(best):
            best = prefix
    if not best:
        return FOREIGN_THRESHOLD
    return CONSOLE_THRESHOLDS[best]


class ConsoleFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= console_threshold(record.name)


def _level(name: str | int | None, default: int = logging.INFO) -> int:
    if isinstance(name, int):
        return name
    value = logging.getLevelName(str(name or "").upper())
    return value if isinstance(value, int) else default


def setup_logging(settings) -> Path:
    """
    Configure the root logger from settings (log_level, data_dir) and return
    the log file path. Call once, before the first log line.
    """
    console_level = _level(getattr(settings, "log_level", "INFO"))
    log_dir = Path(getattr(settings, "data_dir", ".local/taskwatch"))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(ConsoleFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    for name, level in LIBRARY_LEVELS.items():
        # A quieter console setting quiets the libraries too.
        logging.getLogger(name).setLevel(max(level, console_level))

    logging.captureWarnings(True)
    return log_file
