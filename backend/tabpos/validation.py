from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from tabpos.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# 100% expressed in basis points
MAX_PERCENTAGE_BPS = 10_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    # Rates - always Decimal, never float
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{col.key} must be a number")
        if not result.is_finite():
            raise ValidationError(f"{col.key} must be a finite number")
        return result

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

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

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _non_negative(patch: dict, *fields: str) -> None:
    for field in fields:
        value = patch.get(field)
        if value is not None and value < 0:
            raise ValidationError(f"{field} must be >= 0")


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "sale_price_cents", "cost_price_cents", "track_stock",
        "current_stock", "is_active", "eligible_for_loyalty", "earns_cashback",
    },
    required_on_create={"sku", "name", "sale_price_cents"},
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "document", "email", "phone", "is_active"},
    required_on_create={"name"},
)

COUPON_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "description", "coupon_type", "discount_value", "min_purchase_cents",
        "max_discount_cents", "usage_limit", "valid_from", "valid_to", "status",
    },
    required_on_create={"code", "coupon_type", "discount_value"},
)

LOYALTY_CONFIG_POLICY = ModelValidationPolicy(
    writable_fields={
        "points_per_real", "min_purchase_for_points_cents", "points_expiration_days",
        "min_points_to_redeem", "points_redemption_value", "is_active", "apply_to_all_products",
    },
)

CASHBACK_CONFIG_POLICY = ModelValidationPolicy(
    writable_fields={
        "cashback_percentage", "min_purchase_for_cashback_cents", "max_cashback_per_purchase_cents",
        "cashback_expiration_days", "min_cashback_to_use_cents", "is_active", "apply_to_all_products",
    },
)

LOYALTY_REWARD_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "name", "description", "points_required", "quantity_available", "is_active"},
    required_on_create={"name", "points_required"},
)


def enforce_rules_product(patch: dict) -> None:
    for field in ("sale_price_cents", "cost_price_cents"):
        price = patch.get(field)
        if price is None:
            continue
        if price < 0:
            raise ValidationError(f"{field} must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    _non_negative(patch, "current_stock")


def enforce_rules_coupon(patch: dict) -> None:
    """Coupon rules; valid_from/valid_to ordering is checked against the merged record."""
    if "code" in patch:
        patch["code"] = patch["code"].upper()

    coupon_type = patch.get("coupon_type")
    if coupon_type is not None and coupon_type not in ("PERCENTAGE", "FIXED"):
        raise ValidationError("coupon_type must be PERCENTAGE or FIXED")

    if "discount_value" in patch:
        value = patch["discount_value"]
        if value is None or value <= 0:
            raise ValidationError("discount_value must be > 0")
        if coupon_type == "PERCENTAGE" and value > MAX_PERCENTAGE_BPS:
            raise ValidationError("PERCENTAGE discount_value cannot exceed 10000 basis points (100%)")

    status = patch.get("status")
    if status is not None and status not in ("ACTIVE", "INACTIVE", "EXPIRED"):
        raise ValidationError("status must be ACTIVE, INACTIVE or EXPIRED")

    _non_negative(patch, "min_purchase_cents", "max_discount_cents")
    if patch.get("usage_limit") is not None and patch["usage_limit"] <= 0:
        raise ValidationError("usage_limit must be > 0")


def enforce_rules_loyalty_config(patch: dict) -> None:
    _non_negative(
        patch,
        "points_per_real",
        "min_purchase_for_points_cents",
        "min_points_to_redeem",
        "points_redemption_value",
    )
    if patch.get("points_expiration_days") is not None and patch["points_expiration_days"] < 0:
        raise ValidationError("points_expiration_days must be >= 0")


def enforce_rules_cashback_config(patch: dict) -> None:
    _non_negative(
        patch,
        "cashback_percentage",
        "min_purchase_for_cashback_cents",
        "max_cashback_per_purchase_cents",
        "min_cashback_to_use_cents",
    )
    percentage = patch.get("cashback_percentage")
    if percentage is not None and percentage > 100:
        raise ValidationError("cashback_percentage cannot exceed 100")
    if patch.get("cashback_expiration_days") is not None and patch["cashback_expiration_days"] < 0:
        raise ValidationError("cashback_expiration_days must be >= 0")


def enforce_rules_loyalty_reward(patch: dict) -> None:
    if "points_required" in patch and (patch["points_required"] is None or patch["points_required"] <= 0):
        raise ValidationError("points_required must be > 0")
    _non_negative(patch, "quantity_available")


def require_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """Strict int coercion for scalar arguments that are not model columns."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return value
