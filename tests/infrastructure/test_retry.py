"""Tests for error classification and the retry executor."""

from collections.abc import Callable

import pytest
import requests

from kra_connect.config import RetryConfig
from kra_connect.exceptions import (
    ApiTimeoutError,
    AuthenticationError,
    ClientError,
    InvalidPinFormatError,
    KraConnectError,
    MalformedResponseError,
    NetworkError,
    RateLimitExceededError,
    ServerError,
)
from kra_connect.infrastructure import resilience
from kra_connect.infrastructure.resilience import (
    ClassifiedError,
    ErrorKind,
    RetryExecutor,
    classify_error,
    is_retryable,
)
from tests.fakes import FakeClock


def _always_failing(error: Exception, calls: list[int]) -> Callable[[], str]:
    def operation() -> str:
        calls.append(1)
        raise error

    return operation


def _failing_then(errors: list[Exception], result: str, calls: list[int]) -> Callable[[], str]:
    def operation() -> str:
        calls.append(1)
        if errors:
            raise errors.pop(0)
        return result

    return operation


class TestBackoffSchedule:
    """Tests for RetryConfig.calculate_delay."""

    def test_first_delay_is_initial_delay(self) -> None:
        assert RetryConfig(initial_delay=0.5).calculate_delay(1) == 0.5

    def test_delays_grow_geometrically_and_cap(self) -> None:
        """delay(n) = initial * multiplier^(n-1), capped at max_delay."""
        policy = RetryConfig(initial_delay=1.0, max_delay=10.0, backoff_multiplier=3.0)

        delays = [policy.calculate_delay(n) for n in range(1, 6)]

        assert delays == [1.0, 3.0, 9.0, 10.0, 10.0]

    def test_delays_are_non_decreasing(self) -> None:
        policy = RetryConfig.aggressive()

        delays = [policy.calculate_delay(n) for n in range(1, 20)]

        assert delays == sorted(delays)
        assert max(delays) == policy.max_delay


class TestClassifyError:
    """Tests for mapping raised failures to error kinds."""

    @pytest.mark.parametrize(
        ("error", "kind", "status_code"),
        [
            (InvalidPinFormatError("x"), ErrorKind.VALIDATION_ERROR, 422),
            (AuthenticationError.invalid_api_key(), ErrorKind.AUTHENTICATION_ERROR, 401),
            (AuthenticationError.forbidden(), ErrorKind.AUTHENTICATION_ERROR, 403),
            (ApiTimeoutError("/x", 5.0), ErrorKind.TIMEOUT, 408),
            (requests.Timeout(), ErrorKind.TIMEOUT, 408),
            (RateLimitExceededError(30), ErrorKind.RATE_LIMITED, 429),
            (NetworkError("/x", "refused"), ErrorKind.NETWORK_ERROR, None),
            (requests.ConnectionError(), ErrorKind.NETWORK_ERROR, None),
            (MalformedResponseError("/x", "bad"), ErrorKind.MALFORMED_RESPONSE, None),
            (ServerError(503, "/x"), ErrorKind.SERVER_ERROR, 503),
            (ClientError(404, "/x"), ErrorKind.CLIENT_ERROR, 404),
            (KraConnectError("boom"), ErrorKind.UNCLASSIFIED, None),
            (ValueError("boom"), ErrorKind.UNCLASSIFIED, None),
        ],
    )
    def test_kinds(self, error: Exception, kind: ErrorKind, status_code: int | None) -> None:
        classified = classify_error(error)

        assert classified.kind == kind
        assert classified.status_code == status_code
        assert classified.cause is error

    def test_rate_limited_keeps_retry_after(self) -> None:
        classified = classify_error(RateLimitExceededError(17))

        assert classified.retry_after == 17

    def test_requests_http_error_uses_response_status(self) -> None:
        response = requests.Response()
        response.status_code = 502

        classified = classify_error(requests.HTTPError(response=response))

        assert classified.kind == ErrorKind.SERVER_ERROR
        assert classified.status_code == 502


class TestIsRetryable:
    """Tests for the retryability rule."""

    def test_validation_and_authentication_are_never_retried(self) -> None:
        policy = RetryConfig(retryable_status_codes=frozenset({401, 422}))

        assert not is_retryable(classify_error(InvalidPinFormatError("x")), policy)
        assert not is_retryable(classify_error(AuthenticationError()), policy)

    def test_timeout_follows_switch(self) -> None:
        timeout = classify_error(ApiTimeoutError("/x", 1.0))

        assert is_retryable(timeout, RetryConfig())
        assert not is_retryable(timeout, RetryConfig(retry_on_timeout=False))

    def test_rate_limit_follows_switch(self) -> None:
        limited = classify_error(RateLimitExceededError())

        assert is_retryable(limited, RetryConfig())
        assert not is_retryable(limited, RetryConfig(retry_on_rate_limit=False))

    def test_server_errors_retry_without_being_listed(self) -> None:
        """Any 5xx retries while retry_on_server_error is on."""
        policy = RetryConfig(retryable_status_codes=frozenset())

        assert is_retryable(classify_error(ServerError(507, "/x")), policy)
        assert not is_retryable(
            classify_error(ServerError(507, "/x")),
            policy.with_overrides(retry_on_server_error=False),
        )

    def test_client_errors_retry_only_when_listed(self) -> None:
        assert not is_retryable(classify_error(ClientError(400, "/x")), RetryConfig())
        assert is_retryable(
            classify_error(ClientError(409, "/x")),
            RetryConfig(retryable_status_codes=frozenset({409})),
        )

    def test_failures_without_status_are_not_retried(self) -> None:
        assert not is_retryable(classify_error(NetworkError("/x", "down")), RetryConfig())
        assert not is_retryable(
            ClassifiedError(ErrorKind.UNCLASSIFIED, ValueError("x")), RetryConfig()
        )


class TestRetryExecutor:
    """Tests for RetryExecutor.execute."""

    def test_success_on_first_attempt_does_not_sleep(self, clock: FakeClock) -> None:
        executor = RetryExecutor(RetryConfig(), sleep=clock.sleep)

        assert executor.execute(lambda: "ok") == "ok"
        assert clock.sleeps == []

    def test_always_failing_retryable_runs_max_retries_plus_one(self, clock: FakeClock) -> None:
        """k retries means k+1 invocations and the last error surfaces."""
        calls: list[int] = []
        executor = RetryExecutor(RetryConfig(max_retries=3), sleep=clock.sleep)

        with pytest.raises(ServerError) as exc_info:
            executor.execute(_always_failing(ServerError(503, "/x"), calls), "/x")

        assert len(calls) == 4
        assert clock.sleeps == [1.0, 2.0, 4.0]
        assert exc_info.value.attempts == 4

    def test_last_error_is_surfaced(self, clock: FakeClock) -> None:
        calls: list[int] = []
        errors: list[Exception] = [ServerError(500, "/x"), ApiTimeoutError("/x", 1.0)]
        executor = RetryExecutor(RetryConfig(max_retries=1), sleep=clock.sleep)

        with pytest.raises(ApiTimeoutError) as exc_info:
            executor.execute(_failing_then(errors, "never", calls))

        assert exc_info.value.attempts == 2
        assert len(calls) == 2

    def test_backoff_is_capped(self, clock: FakeClock) -> None:
        calls: list[int] = []
        policy = RetryConfig(max_retries=5, initial_delay=1.0, max_delay=5.0)
        executor = RetryExecutor(policy, sleep=clock.sleep)

        with pytest.raises(ServerError):
            executor.execute(_always_failing(ServerError(503, "/x"), calls))

        assert clock.sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]

    @pytest.mark.parametrize(
        "error",
        [
            InvalidPinFormatError("bad"),
            AuthenticationError.invalid_api_key("/x"),
            ClientError(400, "/x"),
            NetworkError("/x", "refused"),
            ValueError("programming error"),
        ],
    )
    def test_non_retryable_errors_surface_immediately(
        self, clock: FakeClock, error: Exception
    ) -> None:
        calls: list[int] = []
        executor = RetryExecutor(RetryConfig(max_retries=3), sleep=clock.sleep)

        with pytest.raises(type(error)):
            executor.execute(_always_failing(error, calls))

        assert len(calls) == 1
        assert clock.sleeps == []

    def test_timeouts_not_retried_when_switched_off(self, clock: FakeClock) -> None:
        calls: list[int] = []
        executor = RetryExecutor(RetryConfig(retry_on_timeout=False), sleep=clock.sleep)

        with pytest.raises(ApiTimeoutError):
            executor.execute(_always_failing(ApiTimeoutError("/x", 2.0), calls))

        assert len(calls) == 1

    def test_disabled_policy_runs_once(self, clock: FakeClock) -> None:
        calls: list[int] = []
        executor = RetryExecutor(RetryConfig.disabled(), sleep=clock.sleep)

        with pytest.raises(ServerError) as exc_info:
            executor.execute(_always_failing(ServerError(503, "/x"), calls))

        assert len(calls) == 1
        assert exc_info.value.attempts == 1

    def test_recovers_after_transient_failures(self, clock: FakeClock) -> None:
        calls: list[int] = []
        errors: list[Exception] = [RateLimitExceededError(1), ServerError(502, "/x")]
        executor = RetryExecutor(RetryConfig(max_retries=2), sleep=clock.sleep)

        result = executor.execute(_failing_then(errors, "ok", calls))

        assert result == "ok"
        assert len(calls) == 3
        assert clock.sleeps == [1.0, 2.0]

    def test_execute_with_policy_uses_one_off_policy(self, clock: FakeClock) -> None:
        calls: list[int] = []
        executor = RetryExecutor(RetryConfig(max_retries=3), sleep=clock.sleep)

        with pytest.raises(ServerError):
            executor.execute_with_policy(
                _always_failing(ServerError(503, "/x"), calls), RetryConfig.no_retry()
            )

        assert len(calls) == 1

    def test_each_retry_is_logged_at_warning(
        self, clock: FakeClock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        messages: list[str] = []

        def record(message: str, *args: object) -> None:
            messages.append(message % args)

        monkeypatch.setattr(resilience.logger, "warning", record)
        calls: list[int] = []
        executor = RetryExecutor(RetryConfig(max_retries=2), sleep=clock.sleep)

        with pytest.raises(ServerError):
            executor.execute(_always_failing(ServerError(503, "/pin"), calls), "/pin")

        assert len(messages) == 2
        assert 'Attempt 1/3 for "/pin" failed (server_error)' in messages[0]
