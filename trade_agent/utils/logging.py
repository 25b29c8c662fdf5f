"""Logging configuration for the trade agent.

Logs go to stdout. Session code attaches wallet / action context to its
log lines through log_with_context so a single grep reconstructs a session.
"""

import logging
import sys
from typing import Any, Iterable

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that log every HTTP request or job tick at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler")


def setup_logging(
    level: str = "INFO",
    log_format: str | None = None,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Configure the root logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom format string. If None, uses DEFAULT_FORMAT.
        quiet_loggers: Logger names raised to WARNING unless level is DEBUG

    Example:
        >>> from trade_agent.utils.logging import setup_logging
        >>> setup_logging(level="DEBUG")
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format=log_format or DEFAULT_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    if numeric_level > logging.DEBUG:
        for name in quiet_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_config(config) -> None:
    """Configure logging from the `logging` section of a Config."""
    setup_logging(
        level=config.get("logging.level", "INFO"),
        log_format=config.get("logging.format"),
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: Any,
) -> None:
    """Log a message with key=value context appended.

    None-valued context fields are dropped.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        **context: Additional context fields

    Example:
        >>> log_with_context(
        ...     logger, "info", "Swap confirmed",
        ...     wallet="7xKX...", action=0, signature="5h3..."
        ... )
        # Logs: "Swap confirmed | wallet=7xKX... action=0 signature=5h3..."
    """
    log_func = getattr(logger, level.lower())

    fields = {k: v for k, v in context.items() if v is not None}
    if fields:
        context_str = " ".join(f"{k}={v}" for k, v in fields.items())
        full_message = f"{message} | {context_str}"
    else:
        full_message = message

    log_func(full_message)
