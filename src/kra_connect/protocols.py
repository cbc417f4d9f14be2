"""Protocol definitions for dependency injection.

These protocols define the abstract interfaces that the request pipeline depends on,
enabling isolated unit testing with fake implementations.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]


def _empty_payload() -> dict[str, object]:
    return {}


@dataclass(frozen=True)
class TransportRequest:
    """One wire call: the transport decides how to encode it."""

    method: HttpMethod
    endpoint: str
    payload: Mapping[str, object] = field(default_factory=_empty_payload)


@runtime_checkable
class Transport(Protocol):
    """Abstract transport that performs a single API call."""

    def send(self, request: TransportRequest) -> dict[str, object]:
        """Send the request and return the decoded JSON object.

        Raises:
            KraConnectError: A classified failure (timeout, network, status code,
                malformed body, authentication, rate limit).
        """
        ...


@runtime_checkable
class RateLimiter(Protocol):
    """Abstract admission control for outbound requests."""

    def acquire(self, tokens_needed: int = 1, block: bool | None = None) -> bool:
        """Take tokens, waiting if permitted; raise RateLimitExceededError otherwise."""
        ...

    def try_acquire(self, tokens_needed: int = 1) -> bool:
        """Take tokens if immediately available."""
        ...

    def stats(self) -> dict[str, object]:
        """Return a point-in-time snapshot of limiter state."""
        ...


@runtime_checkable
class Cache(Protocol):
    """Abstract response cache with per-entry TTL.

    Backend failures must surface as `CacheOperationError`; the pipeline treats
    that error as non-fatal and lets any other exception propagate.
    """

    def get(self, key: str) -> object | None:
        """Retrieve a fresh cached value by key, or None if absent or expired.

        Raises:
            CacheOperationError: If the backend read fails.
        """
        ...

    def set(self, key: str, value: object, ttl: float | None = None) -> bool:
        """Store value with the given TTL; return False if the cache is disabled.

        Raises:
            CacheOperationError: If the value cannot be stored or the backend write fails.
        """
        ...

    def get_or_set[ValueT](
        self, key: str, factory: Callable[[], ValueT], ttl: float | None = None
    ) -> ValueT:
        """Return the cached value, or compute, store and return it."""
        ...

    def clear(self) -> None:
        """Remove every entry."""
        ...

    def stats(self) -> dict[str, object]:
        """Return a point-in-time snapshot of cache state."""
        ...


@runtime_checkable
class RetryExecutor(Protocol):
    """Abstract executor that re-invokes an operation on retryable failure."""

    def execute[ResultT](self, operation: Callable[[], ResultT], context: str = "") -> ResultT:
        """Run the operation until success, a non-retryable failure, or exhaustion."""
        ...
