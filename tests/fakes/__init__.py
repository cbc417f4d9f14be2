"""Exports for test fakes."""

from .cache import FailingCache, InMemoryCache
from .clock import FakeClock
from .resilience import FakeRateLimiter, PassThroughRetryExecutor
from .transport import FakeTransport

__all__ = [
    "FailingCache",
    "FakeClock",
    "FakeRateLimiter",
    "FakeTransport",
    "InMemoryCache",
    "PassThroughRetryExecutor",
]
