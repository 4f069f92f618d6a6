"""
Input validation helpers.

Every helper either returns a normalized value or raises ValidationError
naming the offending field. Money is accepted as Decimal, int or decimal
text and never as a binary float.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from budget_period import MAX_RESET_DAY, MIN_RESET_DAY, to_local_naive
from exceptions import ValidationError

CENT = Decimal("0.01")

_AMOUNT_RE = re.compile(r"^-?\d+(\.\d{1,2})?$")
_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


def parse_money(
    value: Any,
    field: str = "amount",
    *,
    allow_negative: bool = False,
    strictly_positive: bool = False
) -> Decimal:
    """
    Parse a money value into a cent-quantized Decimal.

    Args:
        value: Decimal, int, or text such as "12.50" / "-3"
        field: Field name reported on failure
        allow_negative: Accept values below zero
        strictly_positive: Require a value above zero

    Returns:
        Decimal with two decimal places

    Raises:
        ValidationError: On floats, malformed text, sub-cent precision or sign violations
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be a decimal string, not a float", field=field)

    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValidationError(f"{field} must be a finite number", field=field)
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        text = value.strip()
        if not _AMOUNT_RE.match(text):
            raise ValidationError(
                f"{field} must be a number with at most two decimal places",
                field=field,
                details={"value": value}
            )
        amount = Decimal(text)
    else:
        raise ValidationError(f"{field} must be a number", field=field)

    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation as exc:
        raise ValidationError(f"{field} is out of range", field=field, original_error=exc) from exc
    if quantized != amount:
        raise ValidationError(f"{field} must have at most two decimal places", field=field)

    if strictly_positive and quantized <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    if not allow_negative and quantized < 0:
        raise ValidationError(f"{field} must not be negative", field=field)
    return quantized


def require_text(value: Any, field: str, max_length: int = 100) -> str:
    """Return stripped, non-empty text no longer than ``max_length``."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return text


def optional_text(value: Any, field: str, max_length: int = 100) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text", field=field)
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return text or None


def validate_color(value: Any, field: str = "color") -> str:
    if not isinstance(value, str) or not _COLOR_RE.match(value.strip()):
        raise ValidationError(f"{field} must be a hex color like #3b82f6", field=field)
    return value.strip().lower()


def _coerce_int(value: Any, field: str, message: str) -> Any:
    """Turn an ASCII digit string into an int; other values pass through."""
    if isinstance(value, bool):
        raise ValidationError(message, field=field)
    if isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdecimal()):
            raise ValidationError(message, field=field, details={"value": value})
        try:
            return int(text)
        except ValueError as exc:
            raise ValidationError(message, field=field, details={"value": value}) from exc
    return value


def validate_reset_day(value: Any) -> int:
    """Accept an int (or digit string) between 1 and 31."""
    value = _coerce_int(value, "reset_day", "reset_day must be an integer")
    if not isinstance(value, int):
        raise ValidationError("reset_day must be an integer", field="reset_day")
    if not MIN_RESET_DAY <= value <= MAX_RESET_DAY:
        raise ValidationError(
            f"reset_day must be between {MIN_RESET_DAY} and {MAX_RESET_DAY}",
            field="reset_day",
            details={"value": value}
        )
    return value


def validate_id(value: Any, field: str) -> int:
    """Positive integer identifier."""
    value = _coerce_int(value, field, f"{field} must be a positive integer id")
    if not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be a positive integer id", field=field)
    return value


def optional_id(value: Any, field: str) -> Optional[int]:
    if value is None:
        return None
    return validate_id(value, field)


def parse_timestamp(value: Any, field: str = "date") -> datetime:
    """
    Parse a datetime, date or ISO-8601 string into a naive local datetime.

    Raises:
        ValidationError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, (datetime, date)):
        return to_local_naive(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(
                f"{field} must be an ISO-8601 date or datetime",
                field=field,
                details={"value": value},
                original_error=exc
            ) from exc
        return to_local_naive(parsed)
    raise ValidationError(f"{field} must be a date", field=field)
