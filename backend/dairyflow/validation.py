from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from dairyflow.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Quantities are Numeric(12, 3)
QUANTITY_EXPONENT = Decimal("0.001")
MAX_QUANTITY = Decimal("999999999.999")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - choices: closed vocabularies for string columns
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    choices: dict[str, set[str]] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def parse_quantity(value: Any, field_name: str = "quantity", *, allow_zero: bool = False) -> Decimal:
    """
    Coerce a JSON number/string into a Decimal quantity with 3 decimal places.

    Floats are routed through str() so 0.1 stays 0.1.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} is required")
    if isinstance(value, Decimal):
        qty = value
    elif isinstance(value, (int, float, str)):
        try:
            qty = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field_name} must be a number")
    else:
        raise ValidationError(f"{field_name} must be a number")

    if not qty.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    if qty < 0 or (qty == 0 and not allow_zero):
        raise ValidationError(f"{field_name} must be {'>= 0' if allow_zero else '> 0'}")
    if qty > MAX_QUANTITY:
        raise ValidationError(f"{field_name} exceeds maximum {MAX_QUANTITY}")
    if qty != qty.quantize(QUANTITY_EXPONENT):
        raise ValidationError(f"{field_name} allows at most 3 decimal places")
    return qty.quantize(QUANTITY_EXPONENT)


def parse_cents(value: Any, field_name: str, *, allow_zero: bool = True) -> int:
    """Money is integer cents; reject floats and bools outright."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be an integer number of cents")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field_name} must be an integer number of cents")
        value = int(stripped)
    if not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer number of cents")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field_name} must be {'>= 0' if allow_zero else '> 0'}")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field_name} cannot exceed {MAX_PRICE_CENTS}")
    return value


def parse_datetime_field(value: Any, field_name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field_name} must be an ISO-8601 datetime")
    raise ValidationError(f"{field_name} must be an ISO-8601 datetime")


def clean_text(value: Any, field_name: str, max_length: int | None = None) -> str | None:
    """Strip an optional free-text field; blank collapses to None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", details={"field": field_name})
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field_name} exceeds max length {max_length}", details={"field": field_name})
    return value or None


def require_choice(value: Any, field_name: str, allowed) -> str:
    if value not in allowed:
        raise ValidationError(
            f"{field_name} must be one of: {', '.join(sorted(allowed))}",
            details={"field": field_name, "allowed": sorted(allowed)},
        )
    return value


def validate_closed_map(
    value: Any,
    field_name: str,
    *,
    allowed_keys: set[str],
    allowed_values: set[str] | None = None,
) -> dict:
    """
    Validate a JSON object against a closed set of keys (and optionally values).

    Used for quality checks and delivery addresses so the stored structures
    stay checkable instead of open-ended maps.
    """
    if not isinstance(value, dict):
        raise ValidationError(f"{field_name} must be an object")
    unknown = sorted(set(value) - allowed_keys)
    if unknown:
        raise ValidationError(
            f"{field_name} has unknown keys: {', '.join(unknown)}",
            details={"field": field_name, "allowed_keys": sorted(allowed_keys)},
        )
    cleaned = {}
    for key, raw in value.items():
        if allowed_values is not None:
            require_choice(raw, f"{field_name}.{key}", allowed_values)
            cleaned[key] = raw
        else:
            if raw is not None and not isinstance(raw, str):
                raise ValidationError(f"{field_name}.{key} must be a string")
            cleaned[key] = raw.strip() if isinstance(raw, str) else raw
    return cleaned


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            # Reject scientific notation (e.g., "1e15", "1E10")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            # Reject decimal points (e.g., "12.5")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        # Reject floats explicitly
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        # Other types
        raise ValidationError(f"{col.key} must be an integer")

    # Quantities
    if isinstance(coltype, Numeric):
        return parse_quantity(value, col.key, allow_zero=True)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        result = parse_datetime_field(value, col.key)
        if result is None:
            raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
        return result

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    if isinstance(coltype, JSON):
        return value

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    - closed vocabularies (policy.choices)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        if k in policy.choices:
            require_choice(val, k, policy.choices[k])

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("unit_price_cents", "cost_price_cents"):
        if key in patch and patch[key] is not None:
            parse_cents(patch[key], key)

    if "min_threshold" in patch and "max_capacity" in patch:
        if patch["max_capacity"] < patch["min_threshold"]:
            raise ValidationError("max_capacity must be >= min_threshold")

    if "shelf_life_days" in patch and patch["shelf_life_days"] is not None:
        if patch["shelf_life_days"] <= 0:
            raise ValidationError("shelf_life_days must be > 0")


def enforce_rules_client(patch: dict) -> None:
    if "rating" in patch and patch["rating"] is not None:
        if not (Decimal("0") <= patch["rating"] <= Decimal("5")):
            raise ValidationError("rating must be between 0 and 5")

    if "payment_terms_days" in patch and patch["payment_terms_days"] is not None:
        if patch["payment_terms_days"] < 0:
            raise ValidationError("payment_terms_days must be >= 0")
