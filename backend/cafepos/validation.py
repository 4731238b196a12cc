from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from cafepos.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from cafepos.money import MAX_PRICE_CENTS, MAX_PERCENT_BPS


class ValidationError(ValueError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    status = 400


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate promotion code)."""
    code = "DUPLICATE_CODE"
    status = 409


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - choices: closed vocabularies for string fields (e.g. status)
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    choices: dict[str, tuple[str, ...]] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, name: str) -> int:
    """Strict integer parsing: rejects bools, floats with fractions and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{name} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    raise ValidationError(f"{name} must be an integer")


def coerce_decimal(value: Any, name: str, scale: int = 3) -> Decimal:
    """Parse a JSON number or numeric string into a Decimal rounded to `scale` places."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{name} must be a number")
    try:
        # str() first so floats like 0.1 keep their printed value
        dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not dec.is_finite():
        raise ValidationError(f"{name} must be a finite number")
    return dec.quantize(Decimal(1).scaleb(-scale))


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Numeric):
        return coerce_decimal(value, col.key, scale=coltype.scale or 0)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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
    - a policy allowlist (writable_fields) and closed vocabularies (choices)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Unknown keys are ignored rather than rejected: the React client sends whole
    form objects (id, created_at, ...) back on update.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            continue
        col = cols[k]

        if raw is None or (raw == "" and col.nullable and not isinstance(col.type, (String, Text))):
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        allowed = policy.choices.get(k)
        if allowed is not None and val not in allowed:
            raise ValidationError(f"{k} must be one of: {', '.join(allowed)}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    if "price_cents" in patch and patch["price_cents"] is not None:
        price = patch["price_cents"]
        if price < 0:
            raise ValidationError("price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_ingredient(patch: dict) -> None:
    for key in ("reorder_point", "stock_qty"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
    if patch.get("cost_per_unit_cents") is not None and patch["cost_per_unit_cents"] < 0:
        raise ValidationError("cost_per_unit_cents must be >= 0")


PROMOTION_TYPE_ALIASES = {
    "percent": "percent",
    "percentage": "percent",
    "fixed": "fixed",
    "amount": "fixed",
}


def normalize_promotion_type(raw: Any) -> str:
    promo_type = PROMOTION_TYPE_ALIASES.get(str(raw or "").strip().lower())
    if promo_type is None:
        raise ValidationError("type must be one of: percent, fixed")
    return promo_type


def enforce_rules_promotion(patch: dict, *, current_type: str | None = None,
                            current_start=None, current_end=None) -> None:
    """
    value is basis points for percent (0..10000) and cents for fixed (>= 0).
    The window, when both ends are set, must not be inverted.
    """
    promo_type = patch.get("type", current_type)
    if "value" in patch and patch["value"] is not None:
        value = patch["value"]
        if value < 0:
            raise ValidationError("value must be >= 0")
        if promo_type == "percent" and value > MAX_PERCENT_BPS:
            raise ValidationError(f"percent value is in basis points and cannot exceed {MAX_PERCENT_BPS}")

    if patch.get("min_spend_cents") is not None and patch["min_spend_cents"] < 0:
        raise ValidationError("min_spend_cents must be >= 0")

    start = patch.get("start_at", current_start)
    end = patch.get("end_at", current_end)
    if start is not None and end is not None and end < start:
        raise ValidationError("end_at must not be before start_at")


def parse_pagination(args, *, default_size: int, max_size: int) -> tuple[int, int]:
    """(page, page_size) from query args; page is 1-indexed, size is clamped."""
    try:
        page = max(int(args.get("page", 1)), 1)
    except (TypeError, ValueError):
        page = 1
    raw_size = args.get("page_size", args.get("limit", default_size))
    try:
        page_size = int(raw_size)
    except (TypeError, ValueError):
        page_size = default_size
    return page, min(max(page_size, 1), max_size)
