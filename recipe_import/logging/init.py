from __future__ import annotations

import logging
import sys

"""Package logging: "LABEL message" lines on stdout (INFO|WARN|ERROR|SUMMARY).

Modules log through logging.getLogger(__name__); every recipe_import.* logger
propagates to the "recipe_import" logger configured here, which does not
propagate further.
"""

__all__ = [
    "LOGGER_NAME",
    "SUMMARY_LEVEL",
    "LabeledFormatter",
    "setup_logging",
    "set_level",
    "get_logger",
    "log_summary",
    "reset_logging",
]

LOGGER_NAME = "recipe_import"

# INFO(20) < SUMMARY < WARNING(30)
SUMMARY_LEVEL = 25

_LABELS = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    SUMMARY_LEVEL: "SUMMARY",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "CRITICAL",
}

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Formats records as "LABEL message", traceback appended when present."""

    def format(self, record: logging.LogRecord) -> str:
        label = _LABELS.get(record.levelno, record.levelname)
        text = f"{label} {record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Install one stdout handler on the package logger.

    Idempotent: once configured, later calls return the same logger unchanged
    (use set_level() to adjust verbosity).
    """
    global _logger
    if _logger is not None:
        return _logger

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")
    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    _logger = logger
    set_level(level)
    return logger


def set_level(level: int) -> None:
    """Apply level to the package logger and its handlers."""
    logger = get_logger()
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def get_logger() -> logging.Logger:
    return _logger if _logger is not None else setup_logging()


def log_summary(message: str) -> None:
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Forget the configured logger so the next setup_logging() rebinds stdout (tests)."""
    global _logger
    _logger = None
