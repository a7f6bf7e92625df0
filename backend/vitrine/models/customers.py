from __future__ import annotations

from ..extensions import db
from vitrine.time_utils import to_utc_z

CUSTOMER_ACTIVE = "active"
CUSTOMER_INACTIVE = "inactive"
CUSTOMER_STATUSES = (CUSTOMER_ACTIVE, CUSTOMER_INACTIVE)


class Customer(db.Model):
    """
    Customer record, created by the admin or by a storefront checkout.

    MULTI-TENANT: Customers are scoped to a tenant via owner_id. The phone
    number is the storefront identity (checkout asks for name + phone), so it
    is unique within a tenant.

    WHY: Coupon single-use is enforced per customer (CustomerCouponUsage).

    Customers are never deleted, only set to inactive: orders and coupon
    usages keep pointing at them.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "phone", name="uq_customers_owner_phone"),
        db.Index("ix_customers_owner_status", "owner_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    document = db.Column(db.String(32), nullable=True)

    # Delivery address
    zip_code = db.Column(db.String(16), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    address_number = db.Column(db.String(16), nullable=True)
    neighborhood = db.Column(db.String(128), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=CUSTOMER_ACTIVE, server_default=CUSTOMER_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status == CUSTOMER_ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "document": self.document,
            "zip_code": self.zip_code,
            "address": self.address,
            "address_number": self.address_number,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "state": self.state,
            "notes": self.notes,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
