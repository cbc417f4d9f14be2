"""Custom exceptions for the KRA Connect client.

Every failure the client surfaces derives from `KraConnectError`, so callers can
catch the whole family or branch on a specific kind. Each error carries the
structured detail (status code, endpoint, attempt count) needed to decide
programmatically whether to degrade gracefully or alert.
"""

from __future__ import annotations

from typing import Self


class KraConnectError(Exception):
    """Base exception for all client errors."""

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, object] | None = None,
        status_code: int | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, object] = dict(details or {})
        self.status_code = status_code
        self.endpoint = endpoint
        self.attempts = 1

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable summary of the error."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
            "endpoint": self.endpoint,
            "attempts": self.attempts,
            "details": dict(self.details),
        }


class ConfigurationError(KraConnectError, ValueError):
    """Raised when a configuration value is invalid."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class EnvVarError(ConfigurationError):
    """Raised when an environment variable cannot be parsed."""

    def __init__(self, env_name: str, expected: str) -> None:
        super().__init__(f"{env_name} must be {expected}.")


class UnknownPresetError(ConfigurationError):
    """Raised when a named configuration preset does not exist."""

    def __init__(self, section: str, preset: str, allowed: tuple[str, ...]) -> None:
        super().__init__(
            f"Unknown {section} preset '{preset}'. Allowed presets: {', '.join(allowed)}."
        )


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a config file path does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Config file not found: {path}")


class ConfigFileParseError(ConfigurationError):
    """Raised when a config file is not valid TOML."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Config file {path} is not valid TOML: {reason}")


class ConfigFileValidationError(ConfigurationError):
    """Raised when a config file fails schema validation."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Config file {path} is invalid: {reason}")


class ValidationError(KraConnectError):
    """Raised when caller-supplied input is rejected before any network activity.

    Never retried.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        errors: dict[str, list[str]] | None = None,
    ) -> None:
        self.errors: dict[str, list[str]] = dict(errors or {})
        super().__init__(message, details={"validation_errors": self.errors}, status_code=422)

    @classmethod
    def for_field(cls, field: str, error: str) -> Self:
        return cls(f'Validation failed for field "{field}": {error}', {field: [error]})

    @classmethod
    def out_of_range(cls, field: str, value: object, minimum: object, maximum: object) -> Self:
        return cls.for_field(
            field, f"Value {value} is out of range. Must be between {minimum} and {maximum}"
        )

    def field_errors(self, field: str) -> list[str]:
        return list(self.errors.get(field, []))


class InvalidPinFormatError(ValidationError):
    """Raised when a KRA PIN does not match the expected format."""

    def __init__(self, pin_number: str) -> None:
        super().__init__(
            f"Invalid PIN format: '{pin_number}'. "
            "Expected format: P followed by 9 digits and a letter (e.g., P051234567A)",
            {"pin": ["invalid format"]},
        )
        self.details["pin_number"] = pin_number


class InvalidTccFormatError(ValidationError):
    """Raised when a Tax Compliance Certificate number is malformed."""

    def __init__(self, tcc_number: str) -> None:
        super().__init__(
            f"Invalid TCC format: '{tcc_number}'. "
            "Expected format: TCC followed by digits (e.g., TCC123456)",
            {"tcc": ["invalid format"]},
        )
        self.details["tcc_number"] = tcc_number


class InvalidEslipFormatError(ValidationError):
    """Raised when an e-slip number is malformed."""

    def __init__(self, eslip_number: str) -> None:
        super().__init__(
            f"Invalid e-slip format: '{eslip_number}'. Expected at least 10 digits",
            {"eslip": ["invalid format"]},
        )
        self.details["eslip_number"] = eslip_number


class AuthenticationError(KraConnectError):
    """Raised when API authentication fails (401 Unauthorized / 403 Forbidden).

    This is a fatal error - it is never retried.
    """

    def __init__(
        self,
        message: str = "API authentication failed",
        *,
        status_code: int = 401,
        endpoint: str | None = None,
        error_type: str = "authentication_failed",
    ) -> None:
        super().__init__(
            message,
            details={"error_type": error_type},
            status_code=status_code,
            endpoint=endpoint,
        )

    @classmethod
    def invalid_api_key(cls, endpoint: str | None = None) -> Self:
        return cls(
            "Invalid API key provided. Please check your credentials.\n"
            "Set KRA_API_KEY in .env or pass api_key explicitly.",
            endpoint=endpoint,
            error_type="invalid_api_key",
        )

    @classmethod
    def missing_api_key(cls) -> Self:
        return cls(
            "API key is required but was not provided. Set KRA_API_KEY in .env.",
            error_type="missing_api_key",
        )

    @classmethod
    def forbidden(cls, endpoint: str | None = None) -> Self:
        return cls(
            "API access forbidden (403). The key may lack permission for this endpoint.",
            status_code=403,
            endpoint=endpoint,
            error_type="forbidden",
        )


class RateLimitExceededError(KraConnectError):
    """Raised when a rate limit is exceeded, locally or by the API (429)."""

    def __init__(
        self,
        retry_after: int = 60,
        *,
        limit: int | None = None,
        window_seconds: int | None = None,
        endpoint: str | None = None,
    ) -> None:
        self.retry_after = retry_after
        self.limit = limit
        self.window_seconds = window_seconds
        message = f"API rate limit exceeded. Please retry after {retry_after} seconds."
        details: dict[str, object] = {
            "retry_after": retry_after,
            "error_type": "rate_limit_exceeded",
        }
        if limit:
            details["limit"] = limit
            details["window_seconds"] = window_seconds
            message += f" (Limit: {limit} requests per {window_seconds} seconds)"
        super().__init__(message, details=details, status_code=429, endpoint=endpoint)


class ApiTimeoutError(KraConnectError):
    """Raised when a request times out before a response arrives."""

    def __init__(self, endpoint: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f'API request to "{endpoint}" timed out after {timeout_seconds:.2f} seconds',
            details={"timeout": timeout_seconds, "error_type": "timeout"},
            status_code=408,
            endpoint=endpoint,
        )


class NetworkError(KraConnectError):
    """Raised on a connectivity failure before any response is received."""

    def __init__(self, endpoint: str, reason: str) -> None:
        super().__init__(
            f'Network error while calling "{endpoint}": {reason}',
            details={"error_type": "network_error", "error_message": reason},
            endpoint=endpoint,
        )


class MalformedResponseError(KraConnectError):
    """Raised when a response body cannot be decoded into a JSON object."""

    def __init__(self, endpoint: str, reason: str) -> None:
        super().__init__(
            f'Invalid response from "{endpoint}": {reason}',
            details={"error_type": "invalid_response", "reason": reason},
            endpoint=endpoint,
        )


class ApiError(KraConnectError):
    """Raised when the API answers with an unsuccessful status code."""

    def __init__(self, status_code: int, endpoint: str, body: str = "") -> None:
        super().__init__(
            f'API request to "{endpoint}" failed with status {status_code}',
            details={"response_body": body},
            status_code=status_code,
            endpoint=endpoint,
        )

    @classmethod
    def from_status(cls, status_code: int, endpoint: str, body: str = "") -> ApiError:
        """Return the error subclass matching the status code family."""
        if 500 <= status_code < 600:
            return ServerError(status_code, endpoint, body)
        if 400 <= status_code < 500:
            return ClientError(status_code, endpoint, body)
        return cls(status_code, endpoint, body)


class ServerError(ApiError):
    """Raised for upstream 5xx responses."""


class ClientError(ApiError):
    """Raised for upstream 4xx responses other than rate limiting and auth."""


class CacheOperationError(KraConnectError):
    """Raised when a cache read or write fails.

    Never fatal to the overall call: the pipeline logs it and carries on.
    """

    def __init__(self, operation: str, key: str, reason: str = "") -> None:
        self.operation = operation
        self.key = key
        message = f'Failed to {operation} cache entry for key "{key}"'
        if reason:
            message += f": {reason}"
        super().__init__(message, details={"operation": operation, "key": key, "reason": reason})

    @classmethod
    def read_failed(cls, key: str, reason: str = "") -> Self:
        return cls("read", key, reason)

    @classmethod
    def write_failed(cls, key: str, reason: str = "") -> Self:
        return cls("write", key, reason)
