# Overview: Service-layer operations for coupons; eligibility, discount math and usage recording.

"""
Promotion Engine

Eligibility is checked in a fixed order and the first failure wins:
  1. coupon exists and is active   (coupon_not_found / coupon_inactive)
  2. customer has not used it      (coupon_already_used)
  3. expires after now             (coupon_expired)
  4. usage_limit not reached       (coupon_usage_limit_reached)
  5. subtotal >= min order value   (coupon_min_order_value)

Money is integer cents; percentage discounts are basis points and round
half-up to the cent.

CONCURRENCY: usage_count is only changed by a single guarded UPDATE, and the
CustomerCouponUsage unique constraint settles two checkouts racing for the
same customer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, Promotion, CustomerCouponUsage
from ..models.promotions import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE, PROMO_ACTIVE
from ..validation import ConflictError
from vitrine.time_utils import utcnow
from .tenant_service import get_owned, scoped_query


REASON_NOT_FOUND = "coupon_not_found"
REASON_INACTIVE = "coupon_inactive"
REASON_ALREADY_USED = "coupon_already_used"
REASON_EXPIRED = "coupon_expired"
REASON_USAGE_LIMIT = "coupon_usage_limit_reached"
REASON_MIN_ORDER_VALUE = "coupon_min_order_value"

REASON_MESSAGES = {
    REASON_NOT_FOUND: "Coupon not found",
    REASON_INACTIVE: "Coupon is not active",
    REASON_ALREADY_USED: "Coupon has already been used by this customer",
    REASON_EXPIRED: "Coupon has expired",
    REASON_USAGE_LIMIT: "Coupon usage limit reached",
    REASON_MIN_ORDER_VALUE: "Order does not reach the coupon minimum value",
}


class CouponError(Exception):
    """Raised when a coupon cannot be applied or its usage cannot be recorded."""
    def __init__(self, reason: str, message: str | None = None, details: dict | None = None):
        super().__init__(message or REASON_MESSAGES.get(reason, reason))
        self.reason = reason
        self.details = details or {}


@dataclass(frozen=True)
class CouponEvaluation:
    code: str
    subtotal_cents: int
    applied: bool
    discount_cents: int = 0
    total_cents: int = 0
    reason: str | None = None
    promotion: Promotion | None = None

    def to_dict(self) -> dict:
        if not self.applied:
            return {
                "applied": False,
                "code": self.code,
                "reason": self.reason,
                "message": REASON_MESSAGES.get(self.reason, self.reason),
            }
        return {
            "applied": True,
            "code": self.code,
            "promotion_id": self.promotion.id,
            "discount_type": self.promotion.discount_type,
            "discount_cents": self.discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
        }

    def raise_if_rejected(self) -> None:
        if not self.applied:
            raise CouponError(self.reason, details={"code": self.code})


def normalize_code(code) -> str:
    return str(code or "").strip().upper()


def compute_discount(promotion: Promotion, subtotal_cents: int) -> int:
    """
    fixed:      min(value, subtotal)
    percentage: round_half_up(subtotal * bps / 10000), capped by
                max_discount_value_cents when that is > 0
    Never more than the subtotal, never negative.
    """
    if subtotal_cents <= 0:
        return 0

    if promotion.discount_type == DISCOUNT_FIXED:
        discount = promotion.discount_value
    elif promotion.discount_type == DISCOUNT_PERCENTAGE:
        discount = (subtotal_cents * promotion.discount_value + 5_000) // 10_000
        if promotion.max_discount_value_cents and promotion.max_discount_value_cents > 0:
            discount = min(discount, promotion.max_discount_value_cents)
    else:
        raise ValueError(f"unknown discount_type: {promotion.discount_type}")

    return max(0, min(discount, subtotal_cents))


def find_promotion_by_code(owner_id: int, code: str) -> Promotion | None:
    return scoped_query(Promotion, owner_id).filter(Promotion.code == normalize_code(code)).first()


def has_customer_used(owner_id: int, promotion_id: int, customer_id: int) -> bool:
    return (
        scoped_query(CustomerCouponUsage, owner_id)
        .filter_by(promotion_id=promotion_id, customer_id=customer_id)
        .first()
        is not None
    )


def evaluate_coupon(
    owner_id: int,
    code,
    subtotal_cents: int,
    customer_id: int | None = None,
    now: datetime | None = None,
) -> CouponEvaluation:
    """Run the eligibility checks and price the discount. Writes nothing."""
    normalized = normalize_code(code)
    now = now or utcnow()

    def _reject(reason: str) -> CouponEvaluation:
        return CouponEvaluation(code=normalized, subtotal_cents=subtotal_cents, applied=False, reason=reason)

    promotion = find_promotion_by_code(owner_id, normalized) if normalized else None
    if promotion is None:
        return _reject(REASON_NOT_FOUND)
    if promotion.status != PROMO_ACTIVE:
        return _reject(REASON_INACTIVE)
    if customer_id is not None and has_customer_used(owner_id, promotion.id, customer_id):
        return _reject(REASON_ALREADY_USED)
    if promotion.expiry_date is not None and promotion.expiry_date <= now:
        return _reject(REASON_EXPIRED)
    if promotion.usage_limit > 0 and promotion.usage_count >= promotion.usage_limit:
        return _reject(REASON_USAGE_LIMIT)
    if subtotal_cents < promotion.min_order_value_cents:
        return _reject(REASON_MIN_ORDER_VALUE)

    discount = compute_discount(promotion, subtotal_cents)
    return CouponEvaluation(
        code=normalized,
        subtotal_cents=subtotal_cents,
        applied=True,
        discount_cents=discount,
        total_cents=max(0, subtotal_cents - discount),
        promotion=promotion,
    )


def commit_coupon_usage(
    owner_id: int,
    promotion_id: int,
    customer_id: int | None,
    order_id: int | None = None,
) -> CustomerCouponUsage | None:
    """
    Record one use of a coupon inside the caller's transaction.

    The counter is bumped by a store-side UPDATE guarded on the limit, so
    two concurrent checkouts can never push usage_count past usage_limit.
    Returns the usage row, or None when the order has no customer.

    Raises CouponError (caller rolls back):
        coupon_usage_limit_reached / coupon_not_found: zero rows updated
        coupon_already_used: the (customer, promotion) row already exists
    """
    result = db.session.execute(
        update(Promotion)
        .where(
            Promotion.id == promotion_id,
            Promotion.owner_id == owner_id,
            or_(Promotion.usage_limit == 0, Promotion.usage_count < Promotion.usage_limit),
        )
        .values(
            usage_count=Promotion.usage_count + 1,
            version_id=Promotion.version_id + 1,
        )
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount == 0:
        promotion = get_owned(Promotion, promotion_id, owner_id)
        reason = REASON_NOT_FOUND if promotion is None else REASON_USAGE_LIMIT
        raise CouponError(reason, details={"promotion_id": promotion_id})

    if customer_id is None:
        return None

    usage = CustomerCouponUsage(
        owner_id=owner_id,
        customer_id=customer_id,
        promotion_id=promotion_id,
        order_id=order_id,
    )
    nested = db.session.begin_nested()
    try:
        db.session.add(usage)
        db.session.flush()
        nested.commit()
    except IntegrityError:
        nested.rollback()
        raise CouponError(
            REASON_ALREADY_USED,
            details={"promotion_id": promotion_id, "customer_id": customer_id},
        )
    return usage


# --- CRUD -------------------------------------------------------------------


def list_promotions(owner_id: int, *, status: str | None = None) -> list[Promotion]:
    q = scoped_query(Promotion, owner_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Promotion.created_at.desc(), Promotion.id.desc()).all()


def list_storefront_promotions(owner_id: int, now: datetime | None = None) -> list[Promotion]:
    """Active, visible, unexpired and not exhausted."""
    now = now or utcnow()
    return (
        scoped_query(Promotion, owner_id)
        .filter(
            Promotion.status == PROMO_ACTIVE,
            Promotion.show_on_storefront.is_(True),
            or_(Promotion.expiry_date.is_(None), Promotion.expiry_date > now),
            or_(Promotion.usage_limit == 0, Promotion.usage_count < Promotion.usage_limit),
        )
        .order_by(Promotion.code.asc())
        .all()
    )


def _ensure_code_free(owner_id: int, code: str, exclude_id: int | None = None) -> None:
    q = scoped_query(Promotion, owner_id).filter(Promotion.code == code)
    if exclude_id is not None:
        q = q.filter(Promotion.id != exclude_id)
    if q.first():
        raise ConflictError("Coupon code already exists.")


def create_promotion(owner_id: int, patch: dict) -> Promotion:
    """patch is already validated (validate_payload + enforce_rules_promotion)."""
    _ensure_code_free(owner_id, patch["code"])
    promo = Promotion(owner_id=owner_id, usage_count=0)
    for key, value in patch.items():
        setattr(promo, key, value)
    db.session.add(promo)
    db.session.commit()
    return promo


def update_promotion(owner_id: int, promo_id: int, patch: dict) -> Promotion | None:
    promo = get_owned(Promotion, promo_id, owner_id)
    if not promo:
        return None
    if "code" in patch and patch["code"] != promo.code:
        _ensure_code_free(owner_id, patch["code"], exclude_id=promo.id)
    for key, value in patch.items():
        setattr(promo, key, value)
    db.session.commit()
    return promo


def delete_promotion(owner_id: int, promo_id: int) -> bool:
    """
    Returns False if not found. A coupon that has been used is referenced
    by immutable usage rows and can only be deactivated.
    """
    promo = get_owned(Promotion, promo_id, owner_id)
    if not promo:
        return False
    if promo.usage_count > 0 or scoped_query(CustomerCouponUsage, owner_id).filter_by(promotion_id=promo.id).first():
        raise ConflictError("Coupon has been used; deactivate it instead.")
    if scoped_query(Order, owner_id).filter_by(promotion_id=promo.id).first():
        raise ConflictError("Coupon is attached to orders; deactivate it instead.")
    db.session.delete(promo)
    db.session.commit()
    return True
