# Overview: Derives a product's total stock from its selected variant (subcategory) quantities.

"""
Variant stock aggregation.

INVARIANTS:
- When a product has selected variants, Product.stock == sum(variant_stock.values()).
- variant_stock only holds selected variants. A deselected variant's entry is
  removed, not zeroed, so a stale quantity can never come back into the sum.
- An empty selection disables aggregation; stock reverts to being edited
  directly and is left as it is.
- The total is always recomputed from scratch, never adjusted incrementally.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..validation import ValidationError, coerce_int
from .concurrency import run_with_retry
from .tenant_service import get_owned


def normalize_variant_ids(selected_variant_ids) -> list[str]:
    """Stringify and de-duplicate, keeping the caller's order."""
    if selected_variant_ids is None:
        return []
    if not isinstance(selected_variant_ids, (list, tuple)):
        raise ValidationError("variant_ids must be a list")
    seen: list[str] = []
    for raw in selected_variant_ids:
        key = str(raw).strip()
        if not key:
            raise ValidationError("variant ids cannot be blank")
        if key not in seen:
            seen.append(key)
    return seen


def aggregate_variant_stock(selected_variant_ids, quantities) -> tuple[dict[str, int], int | None]:
    """
    Pure function: (selection, quantities) -> (variant_stock, total).

    Quantities for ids outside the selection are dropped. Selected ids with
    no quantity count as 0. Returns ({}, None) for an empty selection, which
    means "aggregation disabled".
    """
    selected = normalize_variant_ids(selected_variant_ids)
    if not selected:
        return {}, None

    quantities = quantities or {}
    if not isinstance(quantities, dict):
        raise ValidationError("variant quantities must be an object")
    by_key = {str(k): v for k, v in quantities.items()}

    variant_stock: dict[str, int] = {}
    for variant_id in selected:
        qty = coerce_int(f"variant_stock[{variant_id}]", by_key.get(variant_id, 0))
        if qty < 0:
            raise ValidationError(f"variant_stock[{variant_id}] must be >= 0")
        variant_stock[variant_id] = qty

    return variant_stock, sum(variant_stock.values())


def with_variant_delta(variant_stock: dict, variant_id: str, delta: int) -> tuple[dict[str, int], int]:
    """
    Apply a signed delta to one selected variant, floored at zero, and
    re-aggregate the whole map. The caller checks that variant_id is selected.
    """
    updated = dict(variant_stock)
    updated[variant_id] = max(0, int(updated[variant_id]) + delta)
    aggregated, total = aggregate_variant_stock(list(updated.keys()), updated)
    return aggregated, total or 0


def apply_variant_stock(
    *,
    owner_id: int,
    product_id: int,
    selected_variant_ids,
    quantities,
    note: str | None = None,
    actor: str | None = None,
):
    """
    Persist a new variant selection/quantities for a product.

    Returns (product, entry). entry is None when the total did not change or
    aggregation was disabled. A changed total goes through the ledger as a
    manual adjustment, in the same transaction as the map.
    """
    # Imported here: the ledger imports this module for the pure helpers
    from .stock_ledger_service import StockError, record_manual_adjustment

    variant_stock, total = aggregate_variant_stock(selected_variant_ids, quantities)

    def _op():
        product = get_owned(Product, product_id, owner_id, lock=True)
        if product is None:
            raise StockError("Product not found", details={"product_id": product_id})

        if total is None:
            if product.variant_stock:
                product.variant_stock = {}
            db.session.commit()
            return product, None

        entry = record_manual_adjustment(
            product,
            total,
            note=note or "Variant stock update",
            actor=actor,
            variant_stock=variant_stock,
        )
        db.session.commit()
        return product, entry

    return run_with_retry(_op)
