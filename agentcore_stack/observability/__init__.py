"""Observability: logging configuration."""

from .logging import ConsoleFormatter, JSONFormatter, get_logger, setup_logging

__all__ = [
    "ConsoleFormatter",
    "JSONFormatter",
    "get_logger",
    "setup_logging",
]
