"""Logging configuration for the portfolio rebalancer.

All output goes to stdout so command results and diagnostics can be
redirected together.
"""

import logging
import sys
from typing import Any

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    log_format: str | None = None,
) -> None:
    """Configure the root logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
        log_format: Custom format string. If None, uses DEFAULT_FORMAT.

    Example:
        >>> setup_logging(level="DEBUG")
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(
        level=numeric_level,
        format=log_format or DEFAULT_FORMAT,
        stream=sys.stdout,
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module (pass ``__name__``)."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: Any,
) -> None:
    """Log a message with ``key=value`` context appended.

    Args:
        logger: Logger instance
        level: Log level name (debug, info, warning, error, critical)
        message: Log message
        **context: Additional context fields

    Example:
        >>> log_with_context(
        ...     logger, "info", "Allocation computed",
        ...     investment="100 USD", positions=3
        ... )
        # Logs: "Allocation computed | investment=100 USD positions=3"
    """
    log_func = getattr(logger, level.lower())

    if context:
        context_str = " ".join(f"{k}={v}" for k, v in context.items())
        message = f"{message} | {context_str}"

    log_func(message)
