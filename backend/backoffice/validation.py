from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime, Numeric

from .errors import ValidationError

# Maximum money value: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

_SAFE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_safe_identifier(name: Any) -> bool:
    return isinstance(name, str) and bool(_SAFE_IDENTIFIER.match(name))


def require_identifier(name: Any, label: str) -> str:
    """Reject anything that is not a plain SQL identifier (table/column name)."""
    if not is_safe_identifier(name):
        raise ValidationError(f"Invalid {label}")
    return name


def coerce_column_value(col, value: Any):
    """
    Coerce a client-supplied value to the python type of a reflected column.

    Strict for integers (no floats, no scientific notation) so a primary key
    value like "12.5" never silently matches row 12.
    """
    coltype = col.type
    key = col.key

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{key} must be an integer, not a decimal")
        raise ValidationError(f"{key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return value.strip().lower() == "true"
        raise ValidationError(f"{key} must be a boolean")

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 datetime")
        raise ValidationError(f"{key} must be a datetime")

    if isinstance(coltype, Numeric) and isinstance(value, str):
        return value.strip()

    if isinstance(coltype, (String, Text)):
        val = str(value)
        if isinstance(coltype, String) and coltype.length and len(val) > coltype.length:
            raise ValidationError(f"{key} exceeds max length {coltype.length}")
        return val

    return value


def require_int(value: Any, label: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{label} must be >= {minimum}")
    return value


def require_optional_int(value: Any, label: str, *, minimum: int | None = None) -> int | None:
    if value is None:
        return None
    return require_int(value, label, minimum=minimum)


def require_amount_cents(value: Any, label: str) -> int:
    amount = require_int(value, label, minimum=0)
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{label} cannot exceed {MAX_AMOUNT_CENTS}")
    return amount


def require_text(value: Any, label: str, *, max_length: int | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    text = value.strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{label} exceeds max length {max_length}")
    return text
