# Overview: Service-layer operations for the stock ledger; every stock write goes through here.

"""
Vitrine Stock Ledger Invariants (authoritative)

- Product.stock is only written by this module, and every write appends
  exactly one StockHistoryEntry in the same DB transaction.
- change_amount == new_stock - previous_stock, computed here, never supplied.
- Replaying a product's entries in id order from 0 reproduces Product.stock.
- Stock is never negative. Sale deliveries that over-request are floored at 0
  (oversell is tolerated, not rejected).
- A manual adjustment to the current value writes nothing.
- Products with variants only change through their variant map; the total
  is re-aggregated on every write.

The record_* functions work on a loaded Product inside the caller's
transaction and only flush. The public wrappers (adjust_stock, return_stock,
bulk_adjust_stock) own the transaction: they lock, retry on version
conflicts and commit.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import OperationalError

from ..extensions import db
from ..models import Product, StockHistoryEntry
from ..models.catalog import (
    REASON_INITIAL_STOCK,
    REASON_MANUAL_ADJUSTMENT,
    REASON_SALE_DELIVERY,
    REASON_RETURN,
)
from ..validation import ValidationError, coerce_int
from .concurrency import run_with_retry
from .tenant_service import get_owned, scoped_query
from .variant_stock_service import with_variant_delta


DEFAULT_BULK_NOTE = "Bulk adjustment"


class StockError(Exception):
    """Raised for stock operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class IntegrityWarning:
    """A ledger inconsistency found in stored data. Reported, never raised."""
    product_id: int
    code: str
    message: str
    entry_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "entry_id": self.entry_id,
            "code": self.code,
            "message": self.message,
        }


def _require_quantity(value, key: str, *, allow_zero: bool) -> int:
    qty = coerce_int(key, value)
    if qty < 0 or (qty == 0 and not allow_zero):
        raise ValidationError(f"{key} must be {'>= 0' if allow_zero else '> 0'}")
    return qty


def _append_entry(
    product: Product,
    *,
    new_stock: int,
    reason: str,
    notes: str | None,
    reference_id: str | None,
    actor: str | None,
    previous_stock: int | None = None,
) -> StockHistoryEntry:
    """Write stock + ledger row together. Caller owns the transaction."""
    if previous_stock is None:
        previous_stock = product.stock or 0
    entry = StockHistoryEntry.build(
        product=product,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason,
        notes=notes,
        reference_id=reference_id,
        actor_name=actor,
    )
    if product.stock != new_stock:
        product.stock = new_stock
    db.session.add(entry)
    db.session.flush()
    return entry


def record_initial_stock(
    product: Product,
    quantity: int,
    note: str | None = None,
    actor: str | None = None,
) -> StockHistoryEntry:
    """
    First ledger row of a product, written exactly once at creation.

    The product may still be transient (no id yet). The entry is attached
    through the relationship and the flush inserts the product first, then
    the entry with the real product_id.
    """
    qty = _require_quantity(quantity, "stock", allow_zero=True)
    if product.id is not None and product.stock_history:
        raise StockError("Initial stock already recorded", details={"product_id": product.id})

    if product not in db.session:
        db.session.add(product)

    return _append_entry(
        product,
        previous_stock=0,
        new_stock=qty,
        reason=REASON_INITIAL_STOCK,
        notes=note or "Initial stock",
        reference_id=None,
        actor=actor,
    )


def record_manual_adjustment(
    product: Product,
    new_stock: int,
    note: str | None = None,
    actor: str | None = None,
    *,
    variant_stock: dict | None = None,
) -> StockHistoryEntry | None:
    """
    Set stock to an absolute value.

    Returns None, writing no ledger row, when new_stock equals the current
    stock. variant_stock is the re-aggregated map from the variant path; a
    product with variants cannot be edited without it.
    """
    target = _require_quantity(new_stock, "new_stock", allow_zero=True)

    if variant_stock is None and product.uses_variants:
        raise StockError(
            "Stock is derived from variant quantities; update the variants instead",
            details={"product_id": product.id},
        )
    if variant_stock is not None:
        if sum(variant_stock.values()) != target:
            raise StockError("Variant quantities do not add up to the new stock")
        if variant_stock != (product.variant_stock or {}):
            product.variant_stock = dict(variant_stock)

    if target == product.stock:
        db.session.flush()
        return None

    return _append_entry(
        product,
        new_stock=target,
        reason=REASON_MANUAL_ADJUSTMENT,
        notes=note,
        reference_id=None,
        actor=actor,
    )


def _variant_target(product: Product, variant_id, delta: int) -> int:
    """Apply delta to one variant; returns the new aggregated total."""
    if variant_id is None:
        raise StockError(
            "variant_id is required for a product with variants",
            details={"product_id": product.id},
        )
    key = str(variant_id)
    if key not in product.variant_stock:
        raise StockError(
            "Variant is not selected for this product",
            details={"product_id": product.id, "variant_id": key},
        )
    variant_stock, total = with_variant_delta(product.variant_stock, key, delta)
    product.variant_stock = variant_stock
    return total


def record_sale_delivery(
    product: Product,
    quantity_delivered: int,
    order_id,
    customer_label: str | None = None,
    actor: str | None = None,
    *,
    variant_id=None,
) -> StockHistoryEntry:
    """
    Decrement stock for a delivered order line.

    new_stock = max(0, previous - quantity). A delivery is always recorded,
    even when stock was already 0.
    """
    qty = _require_quantity(quantity_delivered, "quantity", allow_zero=False)

    if product.uses_variants:
        new_stock = _variant_target(product, variant_id, -qty)
    else:
        new_stock = max(0, (product.stock or 0) - qty)

    note = f"Delivery of order #{order_id}"
    if customer_label:
        note = f"{note} to {customer_label}"

    return _append_entry(
        product,
        new_stock=new_stock,
        reason=REASON_SALE_DELIVERY,
        notes=note,
        reference_id=str(order_id),
        actor=actor,
    )


def record_return(
    product: Product,
    quantity_returned: int,
    reference_id: str | None = None,
    note: str | None = None,
    actor: str | None = None,
    *,
    variant_id=None,
) -> StockHistoryEntry:
    """Put returned units back on hand."""
    qty = _require_quantity(quantity_returned, "quantity", allow_zero=False)

    if product.uses_variants:
        new_stock = _variant_target(product, variant_id, qty)
    else:
        new_stock = (product.stock or 0) + qty

    return _append_entry(
        product,
        new_stock=new_stock,
        reason=REASON_RETURN,
        notes=note or "Return",
        reference_id=str(reference_id) if reference_id is not None else None,
        actor=actor,
    )


def _load_product(owner_id: int, product_id: int) -> Product:
    product = get_owned(Product, product_id, owner_id, lock=True)
    if product is None:
        raise StockError("Product not found", details={"product_id": product_id})
    return product


def adjust_stock(
    *,
    owner_id: int,
    product_id: int,
    new_stock,
    note: str | None = None,
    actor: str | None = None,
) -> tuple[Product, StockHistoryEntry | None]:
    """Manual stock edit from the product form. Commits."""
    target = _require_quantity(new_stock, "new_stock", allow_zero=True)

    def _op():
        product = _load_product(owner_id, product_id)
        entry = record_manual_adjustment(product, target, note=note, actor=actor)
        db.session.commit()
        return product, entry

    return run_with_retry(_op)


def return_stock(
    *,
    owner_id: int,
    product_id: int,
    quantity,
    reference_id: str | None = None,
    note: str | None = None,
    actor: str | None = None,
    variant_id=None,
) -> tuple[Product, StockHistoryEntry]:
    qty = _require_quantity(quantity, "quantity", allow_zero=False)

    def _op():
        product = _load_product(owner_id, product_id)
        entry = record_return(
            product, qty, reference_id=reference_id, note=note, actor=actor, variant_id=variant_id,
        )
        db.session.commit()
        return product, entry

    return run_with_retry(_op)


def bulk_adjust_stock(*, owner_id: int, updates, actor: str | None = None) -> list[dict]:
    """
    Mass stock adjustment: [{product_id, new_stock, notes?}, ...].

    Rows are independent; each runs in its own savepoint so a bad row does
    not undo the others. Returns one outcome per row:
    {"product_id", "status": adjusted|unchanged|failed, "entry"?, "error"?}.
    """
    if not isinstance(updates, list) or not updates:
        raise ValidationError("updates must be a non-empty list")

    def _op():
        outcomes = []
        for idx, row in enumerate(updates):
            product_id = row.get("product_id") if isinstance(row, dict) else None
            try:
                if not isinstance(row, dict) or "product_id" not in row or "new_stock" not in row:
                    raise ValidationError(f"updates[{idx}] requires product_id and new_stock")
                with db.session.begin_nested():
                    product = _load_product(owner_id, coerce_int("product_id", product_id))
                    entry = record_manual_adjustment(
                        product,
                        row["new_stock"],
                        note=row.get("notes") or DEFAULT_BULK_NOTE,
                        actor=actor,
                    )
            except (StaleDataError, OperationalError):
                raise
            except (StockError, ValidationError) as exc:
                outcomes.append({"product_id": product_id, "status": "failed", "error": str(exc)})
                continue

            if entry is None:
                outcomes.append({"product_id": product.id, "status": "unchanged"})
            else:
                outcomes.append({"product_id": product.id, "status": "adjusted", "entry": entry.to_dict()})

        db.session.commit()
        return outcomes

    return run_with_retry(_op)


def list_stock_history(*, owner_id: int, product_id: int) -> list[StockHistoryEntry]:
    """Oldest-first ledger rows for one product."""
    product = get_owned(Product, product_id, owner_id)
    if product is None:
        raise StockError("Product not found", details={"product_id": product_id})
    return (
        scoped_query(StockHistoryEntry, owner_id)
        .filter_by(product_id=product_id)
        .order_by(StockHistoryEntry.id.asc())
        .all()
    )


def verify_stock_history(product: Product) -> list[IntegrityWarning]:
    """
    Replay a product's ledger and report every inconsistency found:
    change_amount mismatches, chain breaks (previous_stock != running total),
    a final total different from Product.stock, and a variant map that does
    not add up to stock.
    """
    warnings: list[IntegrityWarning] = []
    running = 0

    for entry in product.stock_history:
        if entry.change_amount != entry.new_stock - entry.previous_stock:
            warnings.append(IntegrityWarning(
                product_id=product.id,
                entry_id=entry.id,
                code="change_amount_mismatch",
                message=(
                    f"change_amount {entry.change_amount} != "
                    f"{entry.new_stock} - {entry.previous_stock}"
                ),
            ))
        if entry.previous_stock != running:
            warnings.append(IntegrityWarning(
                product_id=product.id,
                entry_id=entry.id,
                code="chain_break",
                message=f"previous_stock {entry.previous_stock} != replayed {running}",
            ))
        running = entry.new_stock

    if running != product.stock:
        warnings.append(IntegrityWarning(
            product_id=product.id,
            code="replay_mismatch",
            message=f"replayed stock {running} != current stock {product.stock}",
        ))

    if product.variant_stock and sum(product.variant_stock.values()) != product.stock:
        warnings.append(IntegrityWarning(
            product_id=product.id,
            code="variant_sum_mismatch",
            message=(
                f"variant total {sum(product.variant_stock.values())} != "
                f"current stock {product.stock}"
            ),
        ))

    for warning in warnings:
        current_app.logger.warning(
            "Stock ledger integrity warning product=%s entry=%s: %s",
            warning.product_id, warning.entry_id, warning.message,
        )
    return warnings


def verify_tenant_stock(owner_id: int | None = None) -> list[IntegrityWarning]:
    """Run verify_stock_history over every product (optionally one tenant)."""
    query = db.session.query(Product)
    if owner_id is not None:
        query = query.filter_by(owner_id=owner_id)
    warnings: list[IntegrityWarning] = []
    for product in query.order_by(Product.id).all():
        warnings.extend(verify_stock_history(product))
    return warnings


def low_stock_products(owner_id: int) -> list[Product]:
    """Active products at or below their low-stock threshold."""
    return (
        scoped_query(Product, owner_id)
        .filter(
            Product.is_active.is_(True),
            Product.stock <= Product.low_stock_threshold,
        )
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )
