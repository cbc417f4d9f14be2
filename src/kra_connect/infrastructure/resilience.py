"""Resilience utilities for infrastructure.

Usage example:
    from kra_connect.config import RateLimitConfig, RetryConfig
    from kra_connect.infrastructure.resilience import RateLimiter, RetryExecutor

    rate_limiter = RateLimiter(RateLimitConfig(max_requests=100, window_seconds=60))
    retry_executor = RetryExecutor(RetryConfig(max_retries=3))
    payload = retry_executor.execute(lambda: fetch(), context="/checker/v1/pinbypin")
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import override

import requests

from ..config import RateLimitConfig, RetryConfig
from ..exceptions import (
    ApiError,
    ApiTimeoutError,
    AuthenticationError,
    KraConnectError,
    MalformedResponseError,
    NetworkError,
    RateLimitExceededError,
    ValidationError,
)
from ..observability import get_logger
from ..protocols import RateLimiter as RateLimiterProtocol
from ..protocols import RetryExecutor as RetryExecutorProtocol

logger = get_logger("kra_connect.infrastructure.resilience")

Clock = Callable[[], float]
Sleeper = Callable[[float], None]


@dataclass
class RateLimiter(RateLimiterProtocol):
    """Token bucket rate limiter.

    Tokens refill continuously at `refill_rate` per second up to the burst size.
    Refill and debit happen under one lock, so two concurrent callers can never
    both take the last token. Blocking waits sleep outside the lock.
    """

    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    clock: Clock = time.monotonic
    sleep: Sleeper = time.sleep
    _tokens: float = field(init=False)
    _last_refill: float = field(init=False)
    _lock: threading.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens = float(self.capacity)
        self._last_refill = self.clock()

    @property
    def capacity(self) -> int:
        return self.config.effective_burst_size

    @property
    def refill_rate(self) -> float:
        return self.config.effective_refill_rate

    @override
    def acquire(self, tokens_needed: int = 1, block: bool | None = None) -> bool:
        """Take `tokens_needed` tokens.

        Args:
            tokens_needed: Positive number of tokens to debit.
            block: Wait for tokens when short. None uses `config.block_on_limit`.

        Raises:
            ValueError: If `tokens_needed` is not a positive integer or exceeds capacity.
            RateLimitExceededError: If tokens are short and blocking is not permitted.
        """
        if not self.config.enabled:
            return True
        self._check_request(tokens_needed)
        should_block = self.config.block_on_limit if block is None else block

        while True:
            with self._lock:
                self._refill()
                if self._tokens >= tokens_needed:
                    self._tokens -= tokens_needed
                    return True
                wait_seconds = self.config.calculate_wait_time(self._tokens, tokens_needed)

            if not should_block:
                raise RateLimitExceededError(
                    math.ceil(wait_seconds),
                    limit=self.config.max_requests,
                    window_seconds=self.config.window_seconds,
                )
            logger.debug(
                "Rate limit reached; waiting %.3fs for %d token(s)", wait_seconds, tokens_needed
            )
            self.sleep(wait_seconds)

    @override
    def try_acquire(self, tokens_needed: int = 1) -> bool:
        try:
            return self.acquire(tokens_needed, block=False)
        except RateLimitExceededError:
            return False

    def available_tokens(self) -> int:
        """Whole tokens available right now (a snapshot, not a reservation)."""
        with self._lock:
            self._refill()
            return math.floor(self._tokens)

    def has_tokens(self, tokens_needed: int = 1) -> bool:
        with self._lock:
            self._refill()
            return self._tokens >= tokens_needed

    def wait_time(self, tokens_needed: int = 1) -> float:
        """Seconds until `tokens_needed` tokens would be available (0.0 if now)."""
        with self._lock:
            self._refill()
            return self.config.calculate_wait_time(self._tokens, tokens_needed)

    def reset(self) -> None:
        """Refill the bucket completely and restart the refill clock."""
        with self._lock:
            self._tokens = float(self.capacity)
            self._last_refill = self.clock()

    def execute[ResultT](self, operation: Callable[[], ResultT], tokens_needed: int = 1) -> ResultT:
        self.acquire(tokens_needed)
        return operation()

    def execute_batch[ResultT](
        self, operations: Iterable[Callable[[], ResultT]], tokens_per_call: int = 1
    ) -> list[ResultT]:
        return [self.execute(operation, tokens_per_call) for operation in operations]

    @override
    def stats(self) -> dict[str, object]:
        with self._lock:
            self._refill()
            tokens = self._tokens
        return {
            "enabled": self.config.enabled,
            "available_tokens": math.floor(tokens),
            "burst_size": self.capacity,
            "refill_rate": self.refill_rate,
            "max_requests": self.config.max_requests,
            "window_seconds": self.config.window_seconds,
            "avg_requests_per_second": self.config.average_requests_per_second,
            "utilization_percentage": round((1 - tokens / self.capacity) * 100, 2),
        }

    def _check_request(self, tokens_needed: int) -> None:
        if isinstance(tokens_needed, bool) or not isinstance(tokens_needed, int):
            raise ValueError("tokens_needed must be an integer")
        if tokens_needed <= 0:
            raise ValueError("tokens_needed must be > 0")
        if tokens_needed > self.capacity:
            raise ValueError(f"tokens_needed must be <= burst size ({self.capacity})")

    def _refill(self) -> None:
        # Caller holds the lock.
        now = self.clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_rate)
        self._last_refill = now


class ErrorKind(StrEnum):
    """Semantic failure categories that drive retry decisions."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    NETWORK_ERROR = "network_error"
    MALFORMED_RESPONSE = "malformed_response"
    AUTHENTICATION_ERROR = "authentication_error"
    VALIDATION_ERROR = "validation_error"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class ClassifiedError:
    """A failure normalised into an `ErrorKind`, keeping the original cause."""

    kind: ErrorKind
    cause: BaseException
    status_code: int | None = None
    retry_after: int | None = None


def _kind_for_status(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return ErrorKind.AUTHENTICATION_ERROR
    if 500 <= status_code < 600:
        return ErrorKind.SERVER_ERROR
    if 400 <= status_code < 500:
        return ErrorKind.CLIENT_ERROR
    return ErrorKind.UNCLASSIFIED


def classify_error(error: BaseException) -> ClassifiedError:
    """Map any raised failure to a `ClassifiedError`."""
    match error:
        case ValidationError():
            return ClassifiedError(ErrorKind.VALIDATION_ERROR, error, error.status_code)
        case AuthenticationError():
            return ClassifiedError(ErrorKind.AUTHENTICATION_ERROR, error, error.status_code)
        case ApiTimeoutError() | requests.Timeout():
            return ClassifiedError(ErrorKind.TIMEOUT, error, 408)
        case RateLimitExceededError():
            return ClassifiedError(ErrorKind.RATE_LIMITED, error, 429, error.retry_after)
        case NetworkError() | requests.ConnectionError():
            return ClassifiedError(ErrorKind.NETWORK_ERROR, error)
        case MalformedResponseError():
            return ClassifiedError(ErrorKind.MALFORMED_RESPONSE, error)
        case ApiError() if error.status_code is not None:
            return ClassifiedError(_kind_for_status(error.status_code), error, error.status_code)
        case requests.HTTPError() if error.response is not None:
            status_code = error.response.status_code
            return ClassifiedError(_kind_for_status(status_code), error, status_code)
        case KraConnectError() if error.status_code is not None:
            return ClassifiedError(_kind_for_status(error.status_code), error, error.status_code)
        case _:
            return ClassifiedError(ErrorKind.UNCLASSIFIED, error)


def is_retryable(classified: ClassifiedError, policy: RetryConfig) -> bool:
    """Decide whether a classified failure should be retried under `policy`."""
    match classified.kind:
        case ErrorKind.VALIDATION_ERROR | ErrorKind.AUTHENTICATION_ERROR:
            return False
        case ErrorKind.TIMEOUT:
            return policy.retry_on_timeout
        case ErrorKind.RATE_LIMITED:
            return policy.retry_on_rate_limit
    if classified.status_code is not None:
        return policy.should_retry_status_code(classified.status_code)
    return False


@dataclass
class RetryExecutor(RetryExecutorProtocol):
    """Runs an operation with exponential backoff on retryable failures.

    Attempts are 1-indexed. The error that finally escapes is always the last one
    observed, annotated with the number of attempts made.
    """

    policy: RetryConfig = field(default_factory=RetryConfig)
    sleep: Sleeper = time.sleep

    @override
    def execute[ResultT](self, operation: Callable[[], ResultT], context: str = "") -> ResultT:
        total_attempts = self.policy.total_attempts
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except Exception as exc:
                if isinstance(exc, KraConnectError):
                    exc.attempts = attempt
                if self.policy.has_exhausted_attempts(attempt):
                    raise
                classified = classify_error(exc)
                if not is_retryable(classified, self.policy):
                    raise
                delay = self.policy.calculate_delay(attempt)
                logger.warning(
                    'Attempt %d/%d for "%s" failed (%s); retrying in %.2fs: %s',
                    attempt,
                    total_attempts,
                    context,
                    classified.kind,
                    delay,
                    exc,
                )
                self.sleep(delay)

    def execute_with_policy[ResultT](
        self, operation: Callable[[], ResultT], policy: RetryConfig, context: str = ""
    ) -> ResultT:
        """Run `operation` under a one-off policy, sharing this executor's sleeper."""
        return RetryExecutor(policy=policy, sleep=self.sleep).execute(operation, context)
