"""Tests for config-file schema parsing and fail-fast validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from kra_connect.config_file import load_config_file
from kra_connect.exceptions import (
    ConfigFileNotFoundError,
    ConfigFileParseError,
    ConfigFileValidationError,
)


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "kra-connect.toml"
    path.write_text(content.strip(), encoding="utf-8")
    return path


def test_load_config_file_parses_valid_toml(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
schema_version = 1

[client]
base_url = " https://sandbox.example.test/v1/ "
timeout_seconds = 10
debug = true

[rate_limit]
max_requests = 50
block_on_limit = false

[retry]
max_retries = 2
retryable_status_codes = [500, 503]

[cache]
ttl = 120
max_size = 10
""",
    )

    config_file = load_config_file(path)

    assert config_file.base_url == "https://sandbox.example.test/v1"
    assert config_file.timeout_seconds == 10.0
    assert config_file.debug is True
    assert config_file.rate_limit == {"max_requests": 50, "block_on_limit": False}
    assert config_file.retry == {
        "max_retries": 2,
        "retryable_status_codes": frozenset({500, 503}),
    }
    assert config_file.cache == {"ttl": 120.0, "max_size": 10}


def test_load_config_file_allows_missing_sections(tmp_path: Path) -> None:
    path = _write(tmp_path, "schema_version = 1")

    config_file = load_config_file(path)

    assert config_file.base_url is None
    assert config_file.timeout_seconds is None
    assert config_file.rate_limit == {}
    assert config_file.retry == {}
    assert config_file.cache == {}


def test_load_config_file_missing_path(tmp_path: Path) -> None:
    with pytest.raises(ConfigFileNotFoundError):
        load_config_file(tmp_path / "missing.toml")


def test_load_config_file_invalid_toml(tmp_path: Path) -> None:
    path = _write(tmp_path, "schema_version = ")

    with pytest.raises(ConfigFileParseError):
        load_config_file(path)


@pytest.mark.parametrize(
    ("content", "location"),
    [
        ("schema_version = 2", "schema_version"),
        ("[client]\ntimeout_seconds = 5", "schema_version"),
        ("schema_version = 1\n[client]\nbase_url = 'ftp://example.test'", "client.base_url"),
        ("schema_version = 1\n[client]\ntimeout_seconds = 0", "client.timeout_seconds"),
        ("schema_version = 1\n[rate_limit]\nmax_requests = 0", "rate_limit.max_requests"),
        (
            "schema_version = 1\n[retry]\nretryable_status_codes = [99]",
            "retry.retryable_status_codes",
        ),
        ("schema_version = 1\n[cache]\nunknown = 1", "cache.unknown"),
        ("schema_version = 1\n[extra]\nvalue = 1", "extra"),
    ],
)
def test_load_config_file_rejects_invalid_values(
    tmp_path: Path, content: str, location: str
) -> None:
    path = _write(tmp_path, content)

    with pytest.raises(ConfigFileValidationError) as exc_info:
        load_config_file(path)

    assert f"{location}:" in str(exc_info.value)
