"""Logging setup for the agentcore-stack CLI and library.

Log lines go to stderr so that JSON printed by ``plan`` and ``outputs``
stays machine-readable on stdout. Console output is colored on a TTY; CI
runs can switch to newline-delimited JSON with ``AGENTCORE_LOG_JSON``.
"""

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Any

# Attributes callers attach through ``extra=`` that JSON output carries
CONTEXT_FIELDS = ("step", "stack")

# Loggers from the AWS SDK that are chatty at INFO and DEBUG
AWS_SDK_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer")

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the deployment step and stack when known."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Plain-text formatter that colors the level name on a terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        if sys.stderr.isatty():
            color = self.LEVEL_COLORS.get(record.levelname, "")
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("true", "1", "yes")


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Install a single stderr handler on the root logger.

    ``AGENTCORE_LOG_LEVEL`` and ``AGENTCORE_LOG_JSON`` take precedence over
    the arguments. Unknown level names fall back to INFO.

    Args:
        level: Logging level name.
        json_format: Emit JSON lines instead of colored text.
    """
    log_level = getattr(logging, os.getenv("AGENTCORE_LOG_LEVEL", level).upper(), logging.INFO)
    json_format = json_format or _env_flag("AGENTCORE_LOG_JSON")

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(fmt=CONSOLE_FORMAT, datefmt=CONSOLE_DATE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    for name in AWS_SDK_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
