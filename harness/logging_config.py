"""
Structured logging configuration for harness runs.

Usage:
    from harness.logging_config import setup_logging
    setup_logging(level="DEBUG", console=True, log_file="harness.log")
    logger = logging.getLogger(__name__)
    logger.info("message", extra={"service": "auth", "status_code": 401})
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

EXTRA_KEYS = (
    "service",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "user_id",
    "role",
    "attempt",
    "scenario",
)


class JSONFormatter(logging.Formatter):
    """JSON lines formatter, one object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    level: str = "INFO",
    console: bool = True,
    log_file: Optional[str] = None,
    json_output: bool = False,
) -> None:
    """
    Configure the root logger for a harness run.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        console: Emit to stdout.
        log_file: Also append JSON lines to this file when set.
        json_output: Use JSON on the console instead of the human format.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    root.handlers.clear()

    if console:
        handler = logging.StreamHandler(sys.stdout)
        if json_output:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s [harness] %(levelname)s %(name)s - %(message)s",
                    datefmt="%Y-%m-%dT%H:%M:%S",
                )
            )
        root.addHandler(handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("faker").setLevel(logging.WARNING)


def setup_logging_from_settings(current) -> None:
    """Apply the LOG_* settings of a `HarnessSettings` snapshot."""
    setup_logging(
        level=current.effective_log_level,
        console=current.log_console,
        log_file=current.log_file,
        json_output=current.ci,
    )
