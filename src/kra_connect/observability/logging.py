"""Shared logging utilities for consistent client observability.

Usage example:
    from kra_connect.observability.logging import get_logger

    logger = get_logger("kra_connect.application.pipeline")
    logger.warning("Retrying %s (attempt %d)", endpoint, attempt)
"""

from __future__ import annotations

import logging
import time

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def get_logger(name: str) -> logging.Logger:
    """Return a standard logger configured for UTC timestamps.

    Args:
        name: Logger name (use a stable module-qualified name).

    Returns:
        A logger with a single stream handler and a consistent UTC format.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)
        formatter.converter = time.gmtime
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger


def set_debug(enabled: bool) -> None:
    """Switch every `kra_connect` logger created so far to DEBUG (or back to INFO)."""
    level = logging.DEBUG if enabled else logging.INFO
    for name, candidate in logging.Logger.manager.loggerDict.items():
        if name.startswith("kra_connect") and isinstance(candidate, logging.Logger):
            candidate.setLevel(level)
