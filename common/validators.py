"""Validation helpers shared across expense tracker services."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

from .exceptions import ValidationError
from .models import ensure_utc, parse_datetime

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 50
# Keeps (page - 1) * limit inside a signed 64-bit OFFSET.
MAX_PAGE = 10**9

CATEGORY_MAX_LENGTH = 50
EMAIL_MAX_LENGTH = 100
AMOUNT_MAX_DIGITS = 10

REPORT_GROUPS = {"day", "month"}


def _quantize_two_decimals(amount: Decimal) -> Decimal:
    """Round the amount to two decimal places using HALF_UP rounding."""
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def parse_amount(raw: object, field: str) -> Decimal:
    """Convert raw input to a Decimal with exactly two fraction digits.

    The sign is not checked; refunds and corrections may be negative.
    """
    if raw is None or isinstance(raw, bool):
        raise ValidationError(f"{field} must be a numeric value")
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, TypeError) as exc:  # type: ignore[arg-type]
        raise ValidationError(f"{field} must be a numeric value") from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a numeric value")

    # numeric(10, 2) leaves eight digits before the decimal point, both before
    # and after rounding.
    if amount.adjusted() >= AMOUNT_MAX_DIGITS - 2:
        raise ValidationError(f"{field} must be less than 100000000")
    amount = _quantize_two_decimals(amount)
    if amount.adjusted() >= AMOUNT_MAX_DIGITS - 2:
        raise ValidationError(f"{field} must be less than 100000000")
    return amount


def validate_required_str(value: object, field: str, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(f"{field} cannot be empty")
    if max_length is not None and len(trimmed) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return trimmed


def validate_optional_str(value: object, field: str, max_length: Optional[int] = None) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return validate_required_str(value, field, max_length)


def validate_category(value: object, field: str = "category") -> str:
    return validate_required_str(value, field, CATEGORY_MAX_LENGTH)


def validate_email(value: object, field: str = "email") -> str:
    email = validate_required_str(value, field, EMAIL_MAX_LENGTH)
    if not EMAIL_PATTERN.fullmatch(email):
        raise ValidationError(f"{field} must be a valid email address")
    return email


def validate_datetime(value: object, field: str) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return parse_datetime(value)
        except ValueError as exc:
            raise ValidationError(f"{field} must be an ISO 8601 date or datetime") from exc
    raise ValidationError(f"{field} must be a datetime or ISO 8601 string")


def validate_enum(value: object, field: str, allowed: Iterable[str]) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    canonical = value.strip().lower()
    if canonical not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(allowed))}")
    return canonical


def _to_int(raw: object) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    if value.adjusted() > 18:
        return 10**18 if value > 0 else -(10**18)
    return int(value)


def coerce_page(raw: object) -> int:
    """Return a page number in ``[1, MAX_PAGE]``, defaulting when unusable."""
    page = _to_int(raw)
    if page is None or page < 1:
        return DEFAULT_PAGE
    return min(page, MAX_PAGE)


def coerce_limit(raw: object) -> int:
    """Return a page size in ``[1, MAX_LIMIT]``.

    Missing, unparseable and zero values fall back to the default size.
    """
    limit = _to_int(raw)
    if not limit:
        return DEFAULT_LIMIT
    return min(MAX_LIMIT, max(1, limit))
