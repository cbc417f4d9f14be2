"""Request pipeline: cache -> rate limit -> retried send -> cache store.

Usage example:
    from kra_connect.application.pipeline import RequestDescriptor, RequestPipeline

    pipeline = RequestPipeline(cache=cache, rate_limiter=limiter, retry_executor=executor)
    payload = pipeline.execute(
        RequestDescriptor(
            endpoint="/checker/v1/pinbypin",
            operation=lambda: transport.send(request),
            cache_key="pin_verification:...",
            ttl=3600,
        )
    )
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from ..exceptions import CacheOperationError, KraConnectError, RateLimitExceededError
from ..observability import get_logger
from ..protocols import Cache, RateLimiter, RetryExecutor

logger = get_logger("kra_connect.application.pipeline")


@dataclass(frozen=True)
class RequestDescriptor[ResultT]:
    """One logical request.

    Attributes:
        endpoint: Identity of the operation, used in errors and logs.
        operation: Zero-argument callable performing the guarded network call(s).
        cache_key: Key for memoising the result. None bypasses the cache entirely,
            which write-style operations must do.
        ttl: Cache TTL override in seconds (cache default when None).
        tokens: Rate-limit tokens the request consumes.
    """

    endpoint: str
    operation: Callable[[], ResultT]
    cache_key: str | None = None
    ttl: float | None = None
    tokens: int = 1

    @property
    def cacheable(self) -> bool:
        return self.cache_key is not None


@dataclass(frozen=True)
class BatchItem[ResultT]:
    """Outcome of one descriptor in a batch: a value or the error it raised."""

    endpoint: str
    value: ResultT | None = None
    error: KraConnectError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RequestPipeline:
    """Threads a request through the shared cache, rate limiter and retry executor.

    The cache and rate limiter are long-lived and shared across requests; the
    pipeline only calls their operations. Cache failures are never fatal: a read
    failure falls through to a live call and a write failure is logged.
    """

    def __init__(
        self,
        *,
        cache: Cache,
        rate_limiter: RateLimiter,
        retry_executor: RetryExecutor,
    ) -> None:
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.retry_executor = retry_executor

    def execute[ResultT](self, descriptor: RequestDescriptor[ResultT]) -> ResultT:
        """Run one logical request.

        Raises:
            RateLimitExceededError: If the limiter denies a non-blocking request
                (tagged with the endpoint and `attempts == 0`), or the API keeps
                answering 429 after retries.
            KraConnectError: The last classified failure once retries are exhausted
                or on a non-retryable failure.
        """
        if descriptor.cache_key is not None:
            cached = self._cache_lookup(descriptor.cache_key)
            if cached is not None:
                logger.debug("Cache hit for %s", descriptor.endpoint)
                return cached  # type: ignore[return-value]

        try:
            self.rate_limiter.acquire(descriptor.tokens)
        except RateLimitExceededError as exc:
            # Denied before any send.
            exc.endpoint = descriptor.endpoint
            exc.attempts = 0
            raise
        result = self.retry_executor.execute(descriptor.operation, descriptor.endpoint)

        if descriptor.cache_key is not None:
            self._cache_store(descriptor.cache_key, result, descriptor.ttl)
        return result

    def execute_batch[ResultT](
        self, descriptors: Iterable[RequestDescriptor[ResultT]]
    ) -> list[BatchItem[ResultT]]:
        """Run descriptors one after another, collecting a value or error for each."""
        items: list[BatchItem[ResultT]] = []
        for descriptor in descriptors:
            try:
                value = self.execute(descriptor)
            except KraConnectError as exc:
                logger.warning("Batch item %s failed: %s", descriptor.endpoint, exc)
                items.append(BatchItem(descriptor.endpoint, error=exc))
            else:
                items.append(BatchItem(descriptor.endpoint, value=value))
        return items

    def cache_stats(self) -> dict[str, object]:
        return self.cache.stats()

    def rate_limit_stats(self) -> dict[str, object]:
        return self.rate_limiter.stats()

    def _cache_lookup(self, key: str) -> object | None:
        try:
            return self.cache.get(key)
        except CacheOperationError as exc:
            logger.warning("Cache read failed, falling back to live call: %s", exc)
            return None

    def _cache_store(self, key: str, value: object, ttl: float | None) -> None:
        if value is None:
            return
        try:
            self.cache.set(key, value, ttl)
        except CacheOperationError as exc:
            logger.warning("Cache write failed, result not cached: %s", exc)
