# Overview: Request validation; domain error types, payload allowlists and amount checks.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from orderdesk.time_utils import parse_iso_datetime


# 9,999,999.99 in cents; keeps sums of amounts well inside a 32-bit column
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem. `details` is merged into the error response."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., a concurrent update lost the race)."""


class NotFoundError(LookupError):
    """404-level missing entity."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which payload keys a client may send for a model.

    - writable_fields: allowlist; anything else is rejected
    - required_on_create: keys that must be present when partial=False
    - passthrough_fields: writable keys that are not columns (e.g. id lists),
      handed to the service untouched
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    passthrough_fields: set[str] = field(default_factory=set)


def _field_error(key: str, message: str) -> ValidationError:
    return ValidationError(f"{key} {message}", details={"field": key})


# =============================================================================
# COERCION (one function per column type)
# =============================================================================

def _to_int(key: str, value: Any) -> int:
    # bool is an int subclass; floats and "12.5" / "1e3" strings are rejected
    if isinstance(value, bool):
        raise _field_error(key, "must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise _field_error(key, "must be an integer, not a decimal")
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        if "." in text:
            raise _field_error(key, "must be an integer (no decimals)")
    raise _field_error(key, "must be an integer")


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise _field_error(key, "must be a boolean")


def _to_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed
    raise _field_error(key, "must be an ISO-8601 datetime")


def _to_text(key: str, value: Any) -> str:
    return str(value).strip()


_COERCERS: tuple[tuple[type, Callable[[str, Any], Any]], ...] = (
    (Boolean, _to_bool),
    (Integer, _to_int),
    (DateTime, _to_datetime),
    (String, _to_text),
    (Text, _to_text),
)


def _coerce(col, value: Any) -> Any:
    for coltype, coercer in _COERCERS:
        if isinstance(col.type, coltype):
            return coercer(col.key, value)
    return value


# =============================================================================
# PAYLOADS
# =============================================================================

def _screen_keys(payload: dict, columns: dict, policy: ModelValidationPolicy, partial: bool) -> None:
    if not partial:
        missing = sorted(k for k in policy.required_on_create if k not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing_fields": missing},
            )
    for key in payload:
        if key not in policy.writable_fields:
            raise _field_error(key, "is not writable")
        if key not in columns and key not in policy.passthrough_fields:
            raise _field_error(key, "is not a known field")


def _clean(col, raw: Any) -> Any:
    if raw is None:
        if not col.nullable:
            raise _field_error(col.key, "cannot be null")
        return None

    value = _coerce(col, raw)
    if isinstance(value, str):
        if value == "" and not col.nullable:
            raise _field_error(col.key, "cannot be blank")
        length = getattr(col.type, "length", None)
        if length and len(value) > length:
            raise _field_error(col.key, f"exceeds max length {length}")
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validate and normalize a JSON body against the model's columns and a policy.

    partial=False is create semantics (required keys enforced); partial=True
    is patch semantics (only the keys sent are checked). Returns a patch dict
    holding only writable keys, with column values coerced to their types.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    columns = {c.key: c for c in model.__mapper__.columns}
    _screen_keys(payload, columns, policy, partial)

    patch: dict = {}
    for key, raw in payload.items():
        if key in policy.passthrough_fields:
            patch[key] = raw
        else:
            patch[key] = _clean(columns[key], raw)
    return patch


def require_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """Coerce a query/body value to int with optional bounds."""
    if value is None:
        raise _field_error(field, "must be an integer")
    number = _to_int(field, value)
    if minimum is not None and number < minimum:
        raise _field_error(field, f"must be >= {minimum}")
    if maximum is not None and number > maximum:
        raise _field_error(field, f"must be <= {maximum}")
    return number


def enforce_amount_cents(patch: dict, field: str, *, allow_negative: bool = False) -> None:
    amount = patch.get(field)
    if amount is None:
        return
    if amount < 0 and not allow_negative:
        raise _field_error(field, "must be >= 0")
    if abs(amount) > MAX_AMOUNT_CENTS:
        raise _field_error(field, f"cannot exceed {MAX_AMOUNT_CENTS}")


def enforce_rules_product(patch: dict) -> None:
    enforce_amount_cents(patch, "base_price_cents")
    units = patch.get("units_per_case")
    if units is not None and units < 1:
        raise _field_error("units_per_case", "must be >= 1")
