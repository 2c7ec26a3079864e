from __future__ import annotations
from datetime import datetime
from branch_ledger.time_utils import parse_iso_datetime, parse_range_bound

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from branch_ledger.errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MAX_RATING_LENGTH = 32


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion for JSON input (rejects bools, floats and '1e3')."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
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
    if value is None:
        return None
    return coerce_int(value, field)


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
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
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
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

        patch[k] = val

    return patch


def enforce_rules_line_item(patch: dict, *, signed: bool) -> None:
    """
    Quantity/price rules for one transaction line.

    signed=True is stock-adjustment semantics: any non-zero delta.
    """
    quantity = patch.get("quantity")
    if quantity is None:
        raise ValidationError("quantity is required")
    if signed:
        if quantity == 0:
            raise ValidationError("quantity must be non-zero for STOCK_ADJUSTMENT")
    elif quantity <= 0:
        raise ValidationError("quantity must be > 0")

    price = patch.get("price_cents")
    if price is not None:
        if price < 0:
            raise ValidationError("price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS}")

    for key in ("credit_months", "credit_percent_bps", "monthly_payment_cents"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")


def enforce_rules_schedule_metadata(patch: dict) -> None:
    rating = patch.get("rating")
    if rating is not None and len(rating) > MAX_RATING_LENGTH:
        raise ValidationError(f"rating exceeds max length {MAX_RATING_LENGTH}")


def enforce_rules_condition(patch: dict) -> None:
    quantity = patch.get("quantity")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0")
    replacement_quantity = patch.get("replacement_quantity")
    if replacement_quantity is not None and replacement_quantity <= 0:
        raise ValidationError("replacement_quantity must be > 0")


def parse_date_filters(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    """
    Parse start/end query parameters for reports.

    Bare dates cover whole days, so end_date=2024-05-31 includes that day.
    """
    try:
        start_dt = parse_range_bound(start)
        end_dt = parse_range_bound(end, end_of_day=True)
    except ValueError:
        raise ValidationError("start_date and end_date must be ISO-8601 dates")
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start_date must not be after end_date")
    return start_dt, end_dt
