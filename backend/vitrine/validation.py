from __future__ import annotations
from datetime import datetime
from vitrine.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime, JSON
from sqlalchemy.orm import DeclarativeMeta

from .models.customers import CUSTOMER_STATUSES
from .models.orders import ORDER_STATUSES
from .models.promotions import DISCOUNT_TYPES, DISCOUNT_PERCENTAGE, PROMO_STATUSES


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# 100% in basis points
MAX_PERCENTAGE_BPS = 10_000


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate coupon code)."""


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
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
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
        # fallback: truthiness
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

    if isinstance(coltype, JSON):
        if not isinstance(value, (dict, list)):
            raise ValidationError(f"{col.key} must be an object or list")
        return value

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

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    if "price_cents" in patch and patch["price_cents"] is not None:
        price = patch["price_cents"]
        if price < 0:
            raise ValidationError("price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS}")
    if patch.get("stock") is not None and patch["stock"] < 0:
        raise ValidationError("stock must be >= 0")
    if patch.get("low_stock_threshold") is not None and patch["low_stock_threshold"] < 0:
        raise ValidationError("low_stock_threshold must be >= 0")


def enforce_rules_promotion(patch: dict, *, discount_type: str | None = None) -> None:
    """
    discount_type is the effective type (patched or stored) so that a patch
    of discount_value alone is still range-checked.
    """
    effective_type = patch.get("discount_type", discount_type)
    if "discount_type" in patch and patch["discount_type"] not in DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of: {', '.join(DISCOUNT_TYPES)}")
    if "status" in patch and patch["status"] not in PROMO_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PROMO_STATUSES)}")

    for key in ("discount_value", "min_order_value_cents", "max_discount_value_cents", "usage_limit"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")

    if patch.get("discount_value") is not None and effective_type == DISCOUNT_PERCENTAGE:
        if patch["discount_value"] > MAX_PERCENTAGE_BPS:
            raise ValidationError("discount_value for percentage coupons is in basis points (max 10000)")

    if "code" in patch and patch["code"] is not None:
        code = patch["code"].strip().upper()
        if not code:
            raise ValidationError("code cannot be blank")
        if any(ch.isspace() for ch in code):
            raise ValidationError("code cannot contain whitespace")
        patch["code"] = code


def enforce_rules_customer(patch: dict) -> None:
    if "status" in patch and patch["status"] not in CUSTOMER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(CUSTOMER_STATUSES)}")
    if patch.get("email"):
        if "@" not in patch["email"] or any(ch.isspace() for ch in patch["email"]):
            raise ValidationError("email must be a valid address")


def enforce_rules_order_status(status) -> str:
    if status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    return status


def validate_order_items(raw_items) -> list[dict]:
    """
    Normalize order lines:
    [{product_id, quantity, variant_id?, unit_price_cents?, discount_cents?}].
    unit_price_cents may be omitted, in which case the catalog price is used.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    items = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        if "product_id" not in raw or "quantity" not in raw:
            raise ValidationError(f"items[{idx}] requires product_id and quantity")

        item = {
            "product_id": coerce_int(f"items[{idx}].product_id", raw["product_id"]),
            "quantity": coerce_int(f"items[{idx}].quantity", raw["quantity"]),
            "variant_id": None,
            "unit_price_cents": None,
            "discount_cents": 0,
        }
        if item["quantity"] <= 0:
            raise ValidationError(f"items[{idx}].quantity must be > 0")

        if raw.get("variant_id") not in (None, ""):
            variant_id = str(raw["variant_id"]).strip()
            if len(variant_id) > 64:
                raise ValidationError(f"items[{idx}].variant_id exceeds max length 64")
            item["variant_id"] = variant_id

        if raw.get("unit_price_cents") is not None:
            price = coerce_int(f"items[{idx}].unit_price_cents", raw["unit_price_cents"])
            if price < 0 or price > MAX_PRICE_CENTS:
                raise ValidationError(f"items[{idx}].unit_price_cents out of range")
            item["unit_price_cents"] = price

        if raw.get("discount_cents") is not None:
            discount = coerce_int(f"items[{idx}].discount_cents", raw["discount_cents"])
            if discount < 0:
                raise ValidationError(f"items[{idx}].discount_cents must be >= 0")
            item["discount_cents"] = discount

        items.append(item)
    return items
