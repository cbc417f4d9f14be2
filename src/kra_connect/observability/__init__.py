"""Observability helpers."""

from .logging import get_logger, set_debug

__all__ = ["get_logger", "set_debug"]
