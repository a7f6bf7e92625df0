# backend/vitrine/services/products_service.py
"""
Products Service with Multi-Tenant Support

MULTI-TENANT: All product operations are tenant-scoped by owner_id.

Stock is not a writable product field: creation seeds it through
record_initial_stock and afterwards it only changes through the stock
ledger service.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..validation import ConflictError, ValidationError, coerce_int
from .stock_ledger_service import record_initial_stock
from .tenant_service import get_owned, scoped_query

PRODUCT_MUTABLE_FIELDS = {"sku", "name", "description", "price_cents", "is_active", "low_stock_threshold"}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_sku_free(owner_id: int, sku: str | None, exclude_id: int | None = None) -> None:
    if not sku:
        return
    query = scoped_query(Product, owner_id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("SKU already exists for this tenant.")


def list_products(owner_id: int, *, include_inactive: bool = True) -> list[Product]:
    query = scoped_query(Product, owner_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(owner_id: int, product_id: int) -> Product | None:
    return get_owned(Product, product_id, owner_id)


def create_product(
    *,
    owner_id: int,
    patch: dict,
    initial_stock=0,
    actor: str | None = None,
) -> Product:
    """
    Create a product and its initial_stock ledger row in one transaction.

    Raises:
        ValidationError: negative initial stock
        ConflictError: SKU already used in this tenant
    """
    quantity = coerce_int("stock", initial_stock if initial_stock is not None else 0)
    if quantity < 0:
        raise ValidationError("stock must be >= 0")

    _ensure_sku_free(owner_id, patch.get("sku"))

    p = Product(owner_id=owner_id, variant_stock={})
    apply_product_patch(p, patch)

    # The entry is attached before p has an id; the flush inside resolves it.
    record_initial_stock(p, quantity, actor=actor)

    db.session.commit()
    return p


def update_product(*, owner_id: int, product_id: int, patch: dict) -> Product | None:
    """Edit catalog fields. Returns None if not found."""
    p = get_owned(Product, product_id, owner_id)
    if p is None:
        return None

    if "sku" in patch:
        _ensure_sku_free(owner_id, patch["sku"], exclude_id=p.id)

    apply_product_patch(p, patch)
    db.session.commit()
    return p
