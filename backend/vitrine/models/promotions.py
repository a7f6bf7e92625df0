from __future__ import annotations

from ..extensions import db
from vitrine.time_utils import to_utc_z


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)

PROMO_ACTIVE = "active"
PROMO_INACTIVE = "inactive"
PROMO_STATUSES = (PROMO_ACTIVE, PROMO_INACTIVE)


class Promotion(db.Model):
    """
    Coupon codes.

    MULTI-TENANT: code is unique per tenant and case-insensitive; codes are
    normalized to uppercase on write.

    discount_value is basis points for percentage (1000 = 10%) and cents for
    fixed. max_discount_value_cents caps percentage discounts only (0 = no
    cap). usage_limit 0 means unlimited.

    usage_count is only incremented by a store-side UPDATE in
    services/promotions_service.py, never by read-modify-write.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "code", name="uq_promotions_owner_code"),
        db.Index("ix_promotions_owner_status", "owner_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    code = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Integer, nullable=False, default=0)

    min_order_value_cents = db.Column(db.Integer, nullable=False, default=0)
    max_discount_value_cents = db.Column(db.Integer, nullable=False, default=0)

    usage_limit = db.Column(db.Integer, nullable=False, default=0)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=PROMO_ACTIVE)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)
    show_on_storefront = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Promotion id={self.id} code={self.code!r} owner_id={self.owner_id}>"

    def to_dict(self):
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_order_value_cents": self.min_order_value_cents,
            "max_discount_value_cents": self.max_discount_value_cents,
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "status": self.status,
            "expiry_date": to_utc_z(self.expiry_date) if self.expiry_date else None,
            "show_on_storefront": self.show_on_storefront,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerCouponUsage(db.Model):
    """
    One row per (customer, promotion, tenant), written when an order using
    the coupon is placed or confirmed.

    IMMUTABLE: never updated or deleted. Its existence is the only gate that
    stops a customer from reusing a coupon; the unique constraint closes the
    race between two concurrent checkouts.
    """
    __tablename__ = "customer_coupon_usages"
    __table_args__ = (
        db.UniqueConstraint(
            "customer_id", "promotion_id", "owner_id",
            name="uq_coupon_usage_customer_promotion_owner",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "customer_id": self.customer_id,
            "promotion_id": self.promotion_id,
            "order_id": self.order_id,
            "created_at": to_utc_z(self.created_at),
        }
