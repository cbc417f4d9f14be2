"""Centralised, injectable configuration for the KRA Connect client.

All configuration objects are immutable. "Updating" one means building a new value
from an existing one plus overrides (`with_overrides`), or picking a named preset.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Self

from dotenv import load_dotenv

from .config_file import KraConfigFile
from .exceptions import AuthenticationError, ConfigurationError, EnvVarError, UnknownPresetError

DEFAULT_BASE_URL = "https://api.kra.go.ke/gavaconnect/v1"
CLIENT_VERSION = "0.1.0"


@dataclass(frozen=True)
class RateLimitConfig:
    """Token bucket settings.

    Refill rate defaults to `max_requests / window_seconds` and burst size to
    `max_requests` unless set explicitly.
    """

    enabled: bool = True
    max_requests: int = 100
    window_seconds: int = 60
    block_on_limit: bool = True
    refill_rate: float | None = None
    burst_size: int | None = None

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ConfigurationError("max_requests must be > 0")
        if self.window_seconds <= 0:
            raise ConfigurationError("window_seconds must be > 0")
        if self.refill_rate is not None and self.refill_rate <= 0:
            raise ConfigurationError("refill_rate must be > 0")
        if self.burst_size is not None and self.burst_size <= 0:
            raise ConfigurationError("burst_size must be > 0")

    @classmethod
    def disabled(cls) -> Self:
        return cls(enabled=False)

    @classmethod
    def strict(cls) -> Self:
        return cls(max_requests=50, window_seconds=60)

    @classmethod
    def lenient(cls) -> Self:
        return cls(max_requests=200, window_seconds=60)

    @property
    def effective_refill_rate(self) -> float:
        if self.refill_rate is not None:
            return self.refill_rate
        return self.max_requests / self.window_seconds

    @property
    def effective_burst_size(self) -> int:
        return self.burst_size if self.burst_size is not None else self.max_requests

    @property
    def average_requests_per_second(self) -> float:
        return self.max_requests / self.window_seconds

    def calculate_wait_time(self, current_tokens: float, tokens_needed: int = 1) -> float:
        """Seconds until `tokens_needed` tokens exist, given `current_tokens` now."""
        if current_tokens >= tokens_needed:
            return 0.0
        return (tokens_needed - current_tokens) / self.effective_refill_rate

    def with_overrides(self, **changes: object) -> Self:
        """Return a new config with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "block_on_limit": self.block_on_limit,
            "refill_rate": self.effective_refill_rate,
            "burst_size": self.effective_burst_size,
            "avg_requests_per_second": self.average_requests_per_second,
        }


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff retry policy.

    `max_retries` counts retries after the first attempt, so an operation runs at
    most `max_retries + 1` times.
    """

    enabled: bool = True
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 32.0
    backoff_multiplier: float = 2.0
    retry_on_timeout: bool = True
    retry_on_server_error: bool = True
    retry_on_rate_limit: bool = True
    retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: frozenset({408, 429, 500, 502, 503, 504})
    )

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.initial_delay <= 0:
            raise ConfigurationError("initial_delay must be > 0")
        if self.max_delay < self.initial_delay:
            raise ConfigurationError("max_delay must be >= initial_delay")
        if self.backoff_multiplier <= 1.0:
            raise ConfigurationError("backoff_multiplier must be > 1.0")
        if not isinstance(self.retryable_status_codes, frozenset):
            object.__setattr__(
                self, "retryable_status_codes", frozenset(self.retryable_status_codes)
            )

    @classmethod
    def no_retry(cls) -> Self:
        return cls(max_retries=0)

    @classmethod
    def disabled(cls) -> Self:
        return cls(enabled=False)

    @classmethod
    def aggressive(cls) -> Self:
        return cls(max_retries=5, initial_delay=0.5, max_delay=60.0, backoff_multiplier=2.0)

    @classmethod
    def conservative(cls) -> Self:
        return cls(max_retries=2, initial_delay=2.0, max_delay=16.0, backoff_multiplier=2.0)

    @property
    def total_attempts(self) -> int:
        """Total attempts allowed, including the first one."""
        return (self.max_retries if self.enabled else 0) + 1

    def calculate_delay(self, attempt_number: int) -> float:
        """Backoff delay after the given (1-indexed) failed attempt."""
        if attempt_number <= 0:
            return 0.0
        delay = self.initial_delay * self.backoff_multiplier ** (attempt_number - 1)
        return min(delay, self.max_delay)

    def should_retry_status_code(self, status_code: int) -> bool:
        if status_code in self.retryable_status_codes:
            return True
        if self.retry_on_server_error and 500 <= status_code < 600:
            return True
        return self.retry_on_rate_limit and status_code == 429

    def has_exhausted_attempts(self, attempt_number: int) -> bool:
        return attempt_number >= self.total_attempts

    def with_overrides(self, **changes: object) -> Self:
        """Return a new config with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "max_retries": self.max_retries,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "backoff_multiplier": self.backoff_multiplier,
            "retry_on_timeout": self.retry_on_timeout,
            "retry_on_server_error": self.retry_on_server_error,
            "retry_on_rate_limit": self.retry_on_rate_limit,
            "retryable_status_codes": sorted(self.retryable_status_codes),
        }


@dataclass(frozen=True)
class CacheConfig:
    """Response cache settings, with a TTL per kind of cached lookup."""

    enabled: bool = True
    ttl: float = 3600
    pin_verification_ttl: float = 3600
    tcc_verification_ttl: float = 1800
    eslip_validation_ttl: float = 3600
    taxpayer_details_ttl: float = 7200
    prefix: str = "kra_connect:"
    max_size: int = 1000

    def __post_init__(self) -> None:
        if self.ttl < 0:
            raise ConfigurationError("ttl must be >= 0")
        if self.max_size <= 0:
            raise ConfigurationError("max_size must be > 0")

    @classmethod
    def disabled(cls) -> Self:
        return cls(enabled=False)

    @classmethod
    def aggressive(cls) -> Self:
        return cls(
            ttl=7200,
            pin_verification_ttl=7200,
            tcc_verification_ttl=3600,
            eslip_validation_ttl=7200,
            taxpayer_details_ttl=14400,
        )

    @classmethod
    def conservative(cls) -> Self:
        return cls(
            ttl=300,
            pin_verification_ttl=300,
            tcc_verification_ttl=300,
            eslip_validation_ttl=300,
            taxpayer_details_ttl=600,
        )

    def ttl_for(self, kind: str) -> float:
        """Return the TTL for a cache kind, falling back to the default TTL."""
        match kind:
            case "pin_verification":
                return self.pin_verification_ttl
            case "tcc_verification":
                return self.tcc_verification_ttl
            case "eslip_validation":
                return self.eslip_validation_ttl
            case "taxpayer_details":
                return self.taxpayer_details_ttl
            case _:
                return self.ttl

    def full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def with_overrides(self, **changes: object) -> Self:
        """Return a new config with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "ttl": self.ttl,
            "pin_verification_ttl": self.pin_verification_ttl,
            "tcc_verification_ttl": self.tcc_verification_ttl,
            "eslip_validation_ttl": self.eslip_validation_ttl,
            "taxpayer_details_ttl": self.taxpayer_details_ttl,
            "prefix": self.prefix,
            "max_size": self.max_size,
        }


RATE_LIMIT_PRESETS = {
    "default": RateLimitConfig,
    "strict": RateLimitConfig.strict,
    "lenient": RateLimitConfig.lenient,
    "disabled": RateLimitConfig.disabled,
}
RETRY_PRESETS = {
    "default": RetryConfig,
    "aggressive": RetryConfig.aggressive,
    "conservative": RetryConfig.conservative,
    "no_retry": RetryConfig.no_retry,
    "disabled": RetryConfig.disabled,
}
CACHE_PRESETS = {
    "default": CacheConfig,
    "aggressive": CacheConfig.aggressive,
    "conservative": CacheConfig.conservative,
    "disabled": CacheConfig.disabled,
}


def rate_limit_preset(name: str) -> RateLimitConfig:
    return _preset("rate limit", RATE_LIMIT_PRESETS, name)


def retry_preset(name: str) -> RetryConfig:
    return _preset("retry", RETRY_PRESETS, name)


def cache_preset(name: str) -> CacheConfig:
    return _preset("cache", CACHE_PRESETS, name)


def _preset[ConfigT](
    section: str, presets: Mapping[str, Callable[[], ConfigT]], name: str
) -> ConfigT:
    key = name.strip().lower().replace("-", "_")
    if key not in presets:
        raise UnknownPresetError(section, name, tuple(presets))
    return presets[key]()


@dataclass(frozen=True)
class KraConfig:
    """Immutable configuration object for the client.

    Load from environment with `KraConfig.from_env()` or construct directly for testing.
    """

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    debug: bool = False
    user_agent: str | None = None
    additional_headers: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.api_key.strip():
            raise AuthenticationError.missing_api_key()
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be > 0")

    @classmethod
    def from_env(cls, dotenv_path: str | None = None, **overrides: object) -> Self:
        """Load configuration from environment variables.

        Args:
            dotenv_path: Optional path to .env file. If None, uses default .env discovery.
            overrides: Field values that take precedence over the environment.

        Returns:
            KraConfig instance populated from environment.
        """
        load_dotenv(dotenv_path)

        values: dict[str, object] = {
            "api_key": os.getenv("KRA_API_KEY", "").strip(),
            "base_url": os.getenv("KRA_BASE_URL", "").strip() or DEFAULT_BASE_URL,
            "timeout_seconds": _parse_positive_float(
                os.getenv("KRA_TIMEOUT", ""), env_name="KRA_TIMEOUT", default=30.0
            ),
            "debug": _parse_optional_bool(os.getenv("KRA_DEBUG", ""), env_name="KRA_DEBUG")
            or False,
            "rate_limit": rate_limit_preset(
                os.getenv("KRA_RATE_LIMIT_PRESET", "").strip() or "default"
            ),
            "retry": retry_preset(os.getenv("KRA_RETRY_PRESET", "").strip() or "default"),
            "cache": cache_preset(os.getenv("KRA_CACHE_PRESET", "").strip() or "default"),
        }
        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]

    def with_overrides(self, **changes: object) -> Self:
        """Return a new config with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]

    def with_file_overrides(self, file_config: KraConfigFile) -> Self:
        """Return a new config with config-file values overriding env/default values."""
        return replace(
            self,
            base_url=self.base_url if file_config.base_url is None else file_config.base_url,
            timeout_seconds=self.timeout_seconds
            if file_config.timeout_seconds is None
            else file_config.timeout_seconds,
            debug=self.debug if file_config.debug is None else file_config.debug,
            rate_limit=self.rate_limit
            if not file_config.rate_limit
            else self.rate_limit.with_overrides(**file_config.rate_limit),
            retry=self.retry
            if not file_config.retry
            else self.retry.with_overrides(**file_config.retry),
            cache=self.cache
            if not file_config.cache
            else self.cache.with_overrides(**file_config.cache),
        )

    @property
    def effective_user_agent(self) -> str:
        return self.user_agent or f"kra-connect-python/{CLIENT_VERSION}"

    def headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.effective_user_agent,
        }
        headers.update(dict(self.additional_headers))
        return headers

    def to_dict(self) -> dict[str, object]:
        return {
            "api_key": "***REDACTED***",
            "base_url": self.base_url,
            "timeout_seconds": self.timeout_seconds,
            "retry": self.retry.to_dict(),
            "cache": self.cache.to_dict(),
            "rate_limit": self.rate_limit.to_dict(),
            "debug": self.debug,
            "user_agent": self.effective_user_agent,
        }


def _parse_positive_float(value: str, *, env_name: str, default: float) -> float:
    """Parse an optional positive float from an environment variable."""
    text = value.strip()
    if not text:
        return default
    try:
        parsed = float(text)
    except ValueError as exc:
        raise EnvVarError(env_name, "a positive number") from exc
    if parsed <= 0:
        raise EnvVarError(env_name, "a positive number")
    return parsed


def _parse_optional_bool(value: str, *, env_name: str) -> bool | None:
    """Parse an optional boolean from an environment variable."""
    text = value.strip().lower()
    if not text:
        return None
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    raise EnvVarError(env_name, "a boolean value (true/false, 1/0, yes/no, on/off)")
