from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from credis.errors import ValidationError
from credis.time_utils import parse_iso_datetime


# Maximum single transaction: 9,999,999.99 (999,999,999 cents)
# Keeps amounts inside a 32-bit INTEGER column on every backend
MAX_AMOUNT_CENTS = 999_999_999


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON bodies and query strings.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals
    and scientific notation instead of silently truncating them.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def optional_int(value: Any, field: str) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_int(value, field)


def parse_amount_cents(payload: dict, *, required: bool = True) -> int | None:
    """
    Read a money amount from a request body.

    ``amount_cents`` (integer minor units) wins; otherwise ``amount`` is
    accepted as a decimal major-unit value ("12.50" or 12.5) and converted
    exactly with Decimal. Sign and range are checked by the ledger service,
    except for the upper bound which is checked here.
    """
    if payload.get("amount_cents") is not None:
        cents = coerce_int(payload["amount_cents"], "amount_cents")
    elif payload.get("amount") is not None:
        raw = payload["amount"]
        if isinstance(raw, bool):
            raise ValidationError("amount must be a number")
        try:
            amount = Decimal(str(raw).strip())
        except InvalidOperation:
            raise ValidationError("amount must be a number")
        if not amount.is_finite():
            raise ValidationError("amount must be a number")
        cents_exact = amount * 100
        if cents_exact != cents_exact.to_integral_value():
            raise ValidationError("amount cannot have more than 2 decimal places")
        cents = int(cents_exact)
    else:
        if required:
            raise ValidationError("amount_cents is required")
        return None

    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"amount_cents cannot exceed {MAX_AMOUNT_CENTS}")
    return cents


def parse_datetime(value: Any, field: str) -> datetime | None:
    """ISO-8601 string (or datetime) to UTC-naive datetime; None/blank passes through."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def optional_text(payload: dict, field: str, max_length: int | None = None) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    value = str(value).strip()
    if max_length and len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value or None
