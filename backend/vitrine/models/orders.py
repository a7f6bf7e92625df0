from __future__ import annotations

from ..extensions import db
from vitrine.time_utils import to_utc_z


STATUS_WAITING = "waiting"
STATUS_IN_PROGRESS = "in_progress"
STATUS_FINISHED = "finished"
STATUS_DELIVERED = "delivered"

ORDER_STATUSES = (STATUS_WAITING, STATUS_IN_PROGRESS, STATUS_FINISHED, STATUS_DELIVERED)

SOURCE_ADMIN = "admin"
SOURCE_STOREFRONT = "storefront"


class Order(db.Model):
    """
    Quotation / order document.

    LIFECYCLE: waiting -> in_progress -> finished -> delivered, with direct
    jumps allowed. Only the transition INTO delivered decrements stock
    (see services/order_service.py).

    DERIVED FIELDS: items_total_cents and total_cents are recomputed from the
    lines on every save and are never accepted from client input.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_owner_status", "owner_id", "status"),
        db.Index("ix_orders_owner_created", "owner_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    source = db.Column(db.String(16), nullable=False, default=SOURCE_ADMIN)
    status = db.Column(db.String(16), nullable=False, default=STATUS_WAITING, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    client_name = db.Column(db.String(255), nullable=False)
    client_phone = db.Column(db.String(32), nullable=True)
    seller_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    items_total_cents = db.Column(db.Integer, nullable=False, default=0)

    coupon_code = db.Column(db.String(64), nullable=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=True, index=True)
    coupon_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    # True once CustomerCouponUsage + usage_count have been written for this order
    coupon_usage_recorded = db.Column(db.Boolean, nullable=False, default=False)

    total_cents = db.Column(db.Integer, nullable=False, default=0)

    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    promotion = db.relationship("Promotion")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total_cents={self.total_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "source": self.source,
            "status": self.status,
            "customer_id": self.customer_id,
            "client_name": self.client_name,
            "client_phone": self.client_phone,
            "seller_name": self.seller_name,
            "notes": self.notes,
            "items": [item.to_dict() for item in self.items],
            "items_total_cents": self.items_total_cents,
            "coupon_code": self.coupon_code,
            "promotion_id": self.promotion_id,
            "coupon_discount_cents": self.coupon_discount_cents,
            "coupon_usage_recorded": self.coupon_usage_recorded,
            "total_cents": self.total_cents,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """Order line. product_name is a snapshot taken when the line is written."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=True)
    # Selected variant for products with variant stock
    variant_id = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    order = db.relationship("Order", back_populates="items")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity - (self.discount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
        }
