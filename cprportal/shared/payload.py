"""Request payload parsing and response serialization helpers."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from flask import request
from sqlalchemy import inspect as sa_inspect

from .errors import PortalValidationError

CENTS = Decimal("0.01")
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {}
    return payload


def clean_str(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_str(payload: dict, key: str, label: str | None = None) -> str:
    value = clean_str(payload.get(key))
    if not value:
        raise PortalValidationError(f"{label or key} is required")
    return value


def to_money(value, label: str = "amount") -> Decimal:
    if value in (None, ""):
        raise PortalValidationError(f"{label} is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise PortalValidationError(f"{label} must be a number")
    if not amount.is_finite():
        raise PortalValidationError(f"{label} must be a number")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_int(value, label: str, minimum: int | None = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise PortalValidationError(f"{label} must be an integer")
    if minimum is not None and number < minimum:
        raise PortalValidationError(f"{label} must be at least {minimum}")
    return number


def to_bool(value) -> bool | None:
    """Return True/False for boolean-like input, None when unrecognized."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
    return None


def jsonable(value):
    if isinstance(value, Decimal):
        return float(value.quantize(CENTS, rounding=ROUND_HALF_UP))
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def model_to_dict(obj, exclude: tuple[str, ...] = ()) -> dict:
    """Serialize mapped column attributes of ``obj`` into JSON-safe values."""
    mapper = sa_inspect(obj).mapper
    return {
        attr.key: jsonable(getattr(obj, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in exclude
    }


def apply_fields(obj, payload: dict, fields: tuple[str, ...]) -> list[str]:
    """Copy string fields present in payload onto obj; return changed keys."""
    changed = []
    for field in fields:
        if field not in payload:
            continue
        value = clean_str(payload.get(field))
        if getattr(obj, field) != value:
            setattr(obj, field, value)
            changed.append(field)
    return changed
