"""Typed parsing and validation for client config files.

Example `kra-connect.toml`:

    schema_version = 1

    [client]
    timeout_seconds = 10

    [rate_limit]
    max_requests = 50

    [retry]
    max_retries = 2
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .exceptions import ConfigFileNotFoundError, ConfigFileParseError, ConfigFileValidationError

_SCHEMA_VERSION = 1


def _empty_section() -> dict[str, object]:
    return {}


@dataclass(frozen=True)
class KraConfigFile:
    """Validated client config values loaded from a TOML file.

    Section dicts only hold the keys present in the file.
    """

    base_url: str | None = None
    timeout_seconds: float | None = None
    debug: bool | None = None
    rate_limit: dict[str, object] = field(default_factory=_empty_section)
    retry: dict[str, object] = field(default_factory=_empty_section)
    cache: dict[str, object] = field(default_factory=_empty_section)


class _ClientSectionModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: str | None = None
    timeout_seconds: float | None = None
    debug: bool | None = None

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        text = value.strip()
        if not text.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return text.rstrip("/")

    @field_validator("timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("timeout_seconds must be > 0")
        return value


class _RateLimitSectionModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool | None = None
    max_requests: int | None = None
    window_seconds: int | None = None
    block_on_limit: bool | None = None
    refill_rate: float | None = None
    burst_size: int | None = None

    @field_validator("max_requests", "window_seconds", "burst_size")
    @classmethod
    def _validate_positive_int(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("must be a positive integer")
        return value


class _RetrySectionModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool | None = None
    max_retries: int | None = None
    initial_delay: float | None = None
    max_delay: float | None = None
    backoff_multiplier: float | None = None
    retry_on_timeout: bool | None = None
    retry_on_server_error: bool | None = None
    retry_on_rate_limit: bool | None = None
    retryable_status_codes: frozenset[int] | None = None

    @field_validator("retryable_status_codes")
    @classmethod
    def _validate_status_codes(cls, value: frozenset[int] | None) -> frozenset[int] | None:
        if value is None:
            return None
        if any(code < 100 or code > 599 for code in value):
            raise ValueError("status codes must be between 100 and 599")
        return value


class _CacheSectionModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool | None = None
    ttl: float | None = None
    pin_verification_ttl: float | None = None
    tcc_verification_ttl: float | None = None
    eslip_validation_ttl: float | None = None
    taxpayer_details_ttl: float | None = None
    prefix: str | None = None
    max_size: int | None = None


class _ConfigFileModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: int
    client: _ClientSectionModel = _ClientSectionModel()
    rate_limit: _RateLimitSectionModel = _RateLimitSectionModel()
    retry: _RetrySectionModel = _RetrySectionModel()
    cache: _CacheSectionModel = _CacheSectionModel()

    @field_validator("schema_version")
    @classmethod
    def _validate_schema_version(cls, value: int) -> int:
        if value != _SCHEMA_VERSION:
            raise ValueError(f"unsupported schema_version (expected {_SCHEMA_VERSION})")
        return value


def _format_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ("<root>",)))
    message = str(first.get("msg", "invalid value"))
    return f"{location}: {message}"


def load_config_file(path: Path) -> KraConfigFile:
    """Load and validate a client TOML config file."""
    if not path.exists():
        raise ConfigFileNotFoundError(str(path))

    raw_payload = path.read_text(encoding="utf-8")
    try:
        payload: object = tomllib.loads(raw_payload)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigFileParseError(str(path), str(exc)) from exc

    try:
        model = _ConfigFileModel.model_validate(payload)
    except ValidationError as exc:
        raise ConfigFileValidationError(str(path), _format_validation_error(exc)) from exc

    return KraConfigFile(
        base_url=model.client.base_url,
        timeout_seconds=model.client.timeout_seconds,
        debug=model.client.debug,
        rate_limit=model.rate_limit.model_dump(exclude_none=True),
        retry=model.retry.model_dump(exclude_none=True),
        cache=model.cache.model_dump(exclude_none=True),
    )
