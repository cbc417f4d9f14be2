"""Concrete infrastructure implementations and shared helpers."""

from .cache import ResponseCache, generate_cache_key
from .http import RequestsTransport, parse_retry_after
from .resilience import (
    ClassifiedError,
    ErrorKind,
    RateLimiter,
    RetryExecutor,
    classify_error,
    is_retryable,
)

__all__ = [
    "ClassifiedError",
    "ErrorKind",
    "RateLimiter",
    "RequestsTransport",
    "ResponseCache",
    "RetryExecutor",
    "classify_error",
    "generate_cache_key",
    "is_retryable",
    "parse_retry_after",
]
