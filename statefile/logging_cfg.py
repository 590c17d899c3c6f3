"""
Logging setup for applications embedding state files.

The library logs to the "statefile" logger and never installs handlers on
its own; call build_logger() from an application (the CLI does).
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Optional

from rich.logging import RichHandler


class JsonFormatter(logging.Formatter):
    """Compact JSON formatter for structured log ingestion."""

    def format(self, record: logging.LogRecord) -> str:
        ts = time.time()
        payload = {
            "ts": ts,
            "ts_iso": datetime.fromtimestamp(ts).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


def build_logger(
    name: str = "statefile",
    level: int = logging.INFO,
    file_path: Optional[str] = None,
) -> logging.Logger:
    """
    Build a logger with a rich console handler and optional JSON file output.

    Args:
        name: Logger name
        level: Minimum log level
        file_path: Path to log file (None to disable file logging)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Idempotent handler setup
    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    stream_handler = RichHandler(
        rich_tracebacks=False,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
    )
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(stream_handler)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(JsonFormatter())
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **data,
) -> None:
    """
    Log a structured event.

    Usage:
        log_event(log, "state_persisted", path="state.json", bytes=42)
    """
    payload = {"event": event, **data}
    logger.log(level, json.dumps(payload, default=str))
