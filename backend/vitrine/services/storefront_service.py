# Overview: Public storefront operations; coupon preview and checkout addressed by tenant slug.

"""
Storefront Service

The storefront is unauthenticated and addressed by tenant slug. It never
trusts client prices: lines are priced from the catalog and the coupon is
re-evaluated server-side at checkout. Coupon usage is recorded in the same
transaction that creates the order.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer
from ..models.orders import SOURCE_STOREFRONT, STATUS_WAITING
from ..validation import ValidationError, coerce_int
from .concurrency import run_with_retry
from .customers_service import find_customer_by_phone, normalize_phone
from .order_service import OrderSaveResult, _create_order_locked
from .promotions_service import CouponEvaluation, commit_coupon_usage, evaluate_coupon


def _read_customer(raw) -> tuple[str, str, str | None]:
    if not isinstance(raw, dict):
        raise ValidationError("customer must be an object")
    name = str(raw.get("name") or "").strip()
    phone = normalize_phone(raw.get("phone"))
    email = str(raw.get("email") or "").strip() or None
    if not name:
        raise ValidationError("customer.name is required")
    if not phone:
        raise ValidationError("customer.phone is required")
    return name, phone, email


def _find_or_create_customer(owner_id: int, name: str, phone: str, email: str | None) -> Customer:
    """
    Anonymous checkouts never overwrite a stored customer; they only fill in
    an email the record does not have yet.
    """
    customer = find_customer_by_phone(owner_id, phone)
    if customer is not None:
        if email and not customer.email:
            customer.email = email
        return customer

    customer = Customer(owner_id=owner_id, name=name, phone=phone, email=email)
    nested = db.session.begin_nested()
    try:
        db.session.add(customer)
        db.session.flush()
        nested.commit()
    except IntegrityError:
        # Concurrent checkout with the same phone created it first
        nested.rollback()
        customer = find_customer_by_phone(owner_id, phone)
        if customer is None:
            raise
    return customer


def preview_coupon(owner_id: int, code, subtotal_cents, customer_phone=None) -> CouponEvaluation:
    """Cart-time coupon check. Writes nothing."""
    subtotal = coerce_int("subtotal_cents", subtotal_cents)
    if subtotal < 0:
        raise ValidationError("subtotal_cents must be >= 0")
    customer = find_customer_by_phone(owner_id, customer_phone) if customer_phone else None
    return evaluate_coupon(owner_id, code, subtotal, customer_id=customer.id if customer else None)


def place_order(owner_id: int, payload: dict) -> OrderSaveResult:
    """
    Checkout: {customer: {name, phone, email?}, items: [{product_id, quantity, variant_id?}],
    coupon_code?, notes?}. The order is created in waiting.

    Raises ValidationError, OrderError, CouponError (caller rolls back).
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    name, phone, email = _read_customer(payload.get("customer"))

    def _op():
        customer = _find_or_create_customer(owner_id, name, phone, email)

        data = {
            "client_name": name,
            "client_phone": customer.phone,
            "customer_id": customer.id,
            "status": STATUS_WAITING,
            "items": payload.get("items"),
        }
        if payload.get("notes"):
            data["notes"] = payload["notes"]
        if payload.get("coupon_code"):
            data["coupon_code"] = payload["coupon_code"]

        result = _create_order_locked(
            owner_id=owner_id,
            data=data,
            actor=None,
            source=SOURCE_STOREFRONT,
            catalog_prices_only=True,
        )

        order = result.order
        if order.promotion_id is not None:
            commit_coupon_usage(owner_id, order.promotion_id, customer.id, order_id=order.id)
            order.coupon_usage_recorded = True

        db.session.commit()
        return result

    return run_with_retry(_op)
