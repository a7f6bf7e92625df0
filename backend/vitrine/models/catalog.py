from __future__ import annotations

from ..extensions import db
from vitrine.time_utils import to_utc_z


REASON_INITIAL_STOCK = "initial_stock"
REASON_MANUAL_ADJUSTMENT = "manual_adjustment"
REASON_SALE_DELIVERY = "sale_delivery"
REASON_RETURN = "return"

STOCK_REASONS = (
    REASON_INITIAL_STOCK,
    REASON_MANUAL_ADJUSTMENT,
    REASON_SALE_DELIVERY,
    REASON_RETURN,
)


class Product(db.Model):
    """
    Product master data with its authoritative stock figure.

    MULTI-TENANT: Products are scoped to a tenant via owner_id.

    STOCK DESIGN:
    - stock is the current quantity and is only written by the stock ledger
      service, together with a StockHistoryEntry, in one transaction.
    - variant_stock maps selected variant (subcategory) ids to quantities.
      When it is non-empty, stock == sum(variant_stock.values()).
      An empty map means variants are not in use and stock is edited directly.
    - version_id guards concurrent stock writers (optimistic locking).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "sku", name="uq_products_owner_sku"),
        db.Index("ix_products_owner_name", "owner_id", "name"),
        db.Index("ix_products_owner_active", "owner_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    variant_stock = db.Column(db.JSON, nullable=False, default=dict)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))
    stock_history = db.relationship(
        "StockHistoryEntry",
        back_populates="product",
        order_by="StockHistoryEntry.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock} owner_id={self.owner_id}>"

    @property
    def uses_variants(self) -> bool:
        return bool(self.variant_stock)

    def to_dict(self, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "stock": self.stock,
            "variant_stock": dict(self.variant_stock or {}),
            "low_stock_threshold": self.low_stock_threshold,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_history:
            data["stock_history"] = [e.to_dict() for e in self.stock_history]
        return data


class StockHistoryEntry(db.Model):
    """
    Append-only stock ledger row.

    IMMUTABLE: Rows are never updated or deleted (enforced by ORM listeners
    in models/immutability.py). Corrections are new rows.

    INVARIANTS:
    - change_amount == new_stock - previous_stock
    - For one product, applying the rows in id order starting from 0
      reproduces Product.stock.
    """
    __tablename__ = "stock_history_entries"
    __table_args__ = (
        db.Index("ix_stock_history_product_id", "product_id", "id"),
        db.Index("ix_stock_history_owner_reason", "owner_id", "reason"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    change_amount = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(32), nullable=False)

    # Order id for sale deliveries, return document for returns, etc.
    reference_id = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.String(500), nullable=True)
    actor_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="stock_history")

    @classmethod
    def build(
        cls,
        *,
        product: Product,
        previous_stock: int,
        new_stock: int,
        reason: str,
        notes: str | None = None,
        reference_id: str | None = None,
        actor_name: str | None = None,
    ) -> "StockHistoryEntry":
        """Construct an entry with change_amount derived, never supplied."""
        if reason not in STOCK_REASONS:
            raise ValueError(f"unknown stock reason: {reason}")
        return cls(
            product=product,
            owner_id=product.owner_id,
            previous_stock=previous_stock,
            new_stock=new_stock,
            change_amount=new_stock - previous_stock,
            reason=reason,
            notes=notes,
            reference_id=reference_id,
            actor_name=actor_name,
        )

    def __repr__(self) -> str:
        return (
            f"<StockHistoryEntry id={self.id} product_id={self.product_id} "
            f"{self.previous_stock}->{self.new_stock} reason={self.reason}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "change_amount": self.change_amount,
            "reason": self.reason,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "actor_name": self.actor_name,
            "created_at": to_utc_z(self.created_at),
        }
