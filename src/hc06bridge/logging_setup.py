#!/usr/bin/env python3
"""
Centralized logging configuration for the bridge.

Keeps emoji prefixes on warnings and errors for visual scanning in logs.
"""
import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s"
LOG_FORMAT_SIMPLE = "%(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers of the HTTP stack that drown serial traffic at INFO
NOISY_LOGGERS = ("uvicorn.access", "uvicorn.error", "sse_starlette")


class EmojiFormatter(logging.Formatter):
    """Formatter that adds a level-based emoji prefix unless the message has one."""

    LEVEL_EMOJIS = {
        logging.DEBUG: "",
        logging.INFO: "",
        logging.WARNING: "⚠️ ",
        logging.ERROR: "❌ ",
        logging.CRITICAL: "💥 ",
    }

    def format(self, record: logging.LogRecord) -> str:
        emoji = self.LEVEL_EMOJIS.get(record.levelno, "")
        if emoji and not record.getMessage().strip().startswith(tuple("⚠️❌💥🔌📡")):
            record.msg = f"{emoji}{record.msg}"
        return super().format(record)


def setup_logging(
    verbose: bool = False,
    log_file: str | None = None,
    simple_format: bool = False,
) -> None:
    """
    Configure root logging for the bridge process.

    Args:
        verbose: Enable DEBUG level logging (default: INFO)
        log_file: Optional file path for log output
        simple_format: Use simplified format without timestamps
    """
    level = logging.DEBUG if verbose else logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    fmt = LOG_FORMAT_SIMPLE if simple_format else LOG_FORMAT

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(EmojiFormatter(fmt, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    if not verbose:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Usage:
        from .logging_setup import get_logger
        logger = get_logger(__name__)
        logger.info("Relay listening on %s:%d", host, port)
    """
    return logging.getLogger(name)
