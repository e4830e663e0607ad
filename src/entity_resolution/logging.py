"""
Logging setup for entity resolution runs.

Every record emitted under the ``entity_resolution`` logger carries the run
name (``run``, ``run-test``, ...), and pipeline code attaches ``stage``,
``count``, ``record_id`` or ``duration_ms`` through ``extra=``. The console
shows the stage next to the message; the optional log file, one per run name,
keeps every field when written as JSON lines.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# Attributes every LogRecord has; anything else arrived through ``extra=``.
_RESERVED = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {"message", "asctime"}


def extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in vars(record).items() if key not in _RESERVED and not key.startswith("_")}


class RunContextFilter(logging.Filter):
    """Stamp the run name on every record passing through a handler."""

    def __init__(self, run_name: str) -> None:
        super().__init__()
        self.run_name = run_name

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run"):
            record.run = self.run_name
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, timestamped with the record's creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **extra_fields(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        line = f"{timestamp} [{record.levelname:8}] {record.name}: {record.getMessage()}"
        stage = getattr(record, "stage", None)
        if stage:
            line = f"{line} ({stage})"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    name: str = "entity_resolution",
    level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    json_output: bool = False,
    console: bool = True,
    run_name: str = "resolution",
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        name: Logger to configure (the package root by default, so every
            module logger created with ``logging.getLogger(__name__)`` inherits it)
        level: Logging level
        log_dir: Directory for ``<run_name>.log``, appended to across runs
            (None = no file logging)
        json_output: If True, the file handler writes JSON lines
        console: If True, log to stderr
        run_name: Attached to every record as ``run``; the CLI passes its subcommand

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    context = RunContextFilter(run_name)
    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(ConsoleFormatter())
        console_handler.addFilter(context)
        logger.addHandler(console_handler)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"{run_name}.log"

        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        if json_output:
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)-8s] %(run)s %(name)s: %(message)s"))
        file_handler.addFilter(context)
        logger.addHandler(file_handler)
        logger.debug(f"Logging to: {log_file}")

    return logger
