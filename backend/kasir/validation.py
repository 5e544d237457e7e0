from __future__ import annotations
from datetime import date, datetime
from kasir.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: Rp 999,999,999,999
MAX_PRICE = 999_999_999_999

USER_ROLES = ("ADMIN", "PETUGAS")
RECORD_STATUSES = ("active", "inactive")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate barcode)."""


class NotFoundError(LookupError):
    """404-level: entity missing or soft-deleted."""


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


def coerce_int(key: str, value: Any) -> int:
    """
    Strict integer coercion shared by column validation and ad-hoc payload
    fields (cart lines, stock adjustments). Rejects floats with a fraction,
    scientific notation and booleans.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # Form inputs and JSON strings - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # "15000.00" comes from decimal money inputs; accept only a zero fraction
        if '.' in stripped:
            whole, _, frac = stripped.partition('.')
            if frac.strip('0'):
                raise ValidationError(f"{key} must be an integer (no decimals)")
            stripped = whole
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
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
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
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


def form_to_payload(form, fields: set[str]) -> dict:
    """Pick known fields out of a form submission (MultiDict) as a plain dict."""
    return {k: form.get(k) for k in fields if k in form}


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for field in ("cost_price", "sale_price"):
        if field in patch and patch[field] is not None:
            price = patch[field]
            if price < 0:
                raise ValidationError(f"{field} must be >= 0")
            if price > MAX_PRICE:
                raise ValidationError(f"{field} cannot exceed {MAX_PRICE}")

    if "stock" in patch and patch["stock"] is not None and patch["stock"] < 0:
        raise ValidationError("stock must be >= 0")

    if "barcode" in patch and patch["barcode"] == "":
        patch["barcode"] = None


def enforce_rules_status(patch: dict) -> None:
    if "status" in patch and patch["status"] not in RECORD_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(RECORD_STATUSES)}")


def enforce_rules_user(patch: dict) -> None:
    enforce_rules_status(patch)
    if "role" in patch and patch["role"] not in USER_ROLES:
        raise ValidationError("Invalid role value")


def enforce_rules_event(patch: dict) -> None:
    starts_at = patch.get("starts_at")
    ends_at = patch.get("ends_at")
    if starts_at is not None and ends_at is not None and ends_at < starts_at:
        raise ValidationError("ends_at must not be before starts_at")


def parse_discount_percent(value: Any) -> int:
    """
    Convert a percentage (0-100, up to two decimals) to basis points.
    """
    if value is None or (isinstance(value, str) and not value.strip()) or isinstance(value, bool):
        raise ValidationError("discount_percent is required")
    try:
        percent = float(value)
    except (TypeError, ValueError):
        raise ValidationError("discount_percent must be a number")
    if percent < 0 or percent > 100:
        raise ValidationError("discount_percent must be between 0 and 100")
    return int(round(percent * 100))


def parse_date_param(key: str, value: str | None) -> date | None:
    """Query-string date ("YYYY-MM-DD"); empty means unset."""
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{key} must be a date (YYYY-MM-DD)")
