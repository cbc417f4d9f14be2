"""Normalisation and format checks for KRA identifiers.

All checks run before any network activity; failures raise `ValidationError`
subclasses, which are never retried.
"""

from __future__ import annotations

import re

from .exceptions import (
    InvalidEslipFormatError,
    InvalidPinFormatError,
    InvalidTccFormatError,
    ValidationError,
)

_PIN_RE = re.compile(r"^P\d{9}[A-Z]$")
_TCC_RE = re.compile(r"^TCC\d+$")
_ESLIP_RE = re.compile(r"^\d{10,}$")

MIN_FILING_YEAR = 2000


def _normalise(value: str) -> str:
    return value.strip().upper()


def validate_pin(pin_number: str) -> str:
    """Return the normalised PIN (e.g. `p051234567a ` -> `P051234567A`)."""
    normalised = _normalise(pin_number)
    if not _PIN_RE.match(normalised):
        raise InvalidPinFormatError(pin_number)
    return normalised


def validate_tcc(tcc_number: str) -> str:
    normalised = _normalise(tcc_number)
    if not _TCC_RE.match(normalised):
        raise InvalidTccFormatError(tcc_number)
    return normalised


def validate_eslip(eslip_number: str) -> str:
    normalised = _normalise(eslip_number)
    if not _ESLIP_RE.match(normalised):
        raise InvalidEslipFormatError(eslip_number)
    return normalised


def is_pin_valid(pin_number: str) -> bool:
    return bool(_PIN_RE.match(_normalise(pin_number)))


def validate_nil_return_period(obligation_code: int, month: int, year: int) -> None:
    if obligation_code <= 0:
        raise ValidationError.for_field(
            "obligation_code", "Obligation code must be a positive integer"
        )
    if not 1 <= month <= 12:
        raise ValidationError.out_of_range("month", month, 1, 12)
    if year < MIN_FILING_YEAR:
        raise ValidationError.for_field("year", f"Year must be {MIN_FILING_YEAR} or later")
