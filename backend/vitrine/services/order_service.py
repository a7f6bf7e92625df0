# Overview: Service-layer operations for orders; quotation lifecycle and delivery fulfillment.

"""
Order Fulfillment State Machine

STATES: waiting -> in_progress -> finished -> delivered. Any status may be
set directly.

FULFILLMENT: only the transition INTO delivered from a non-delivered status
(creation counts as "no status") decrements stock, once per line, through
record_sale_delivery. The status before the edit is captured from the row
read inside the retried transaction, and Order.version_id makes two
concurrent "deliver" saves conflict instead of both fulfilling.

Each line is fulfilled inside its own savepoint. A line that cannot be
fulfilled (missing/foreign product, deselected variant) is rolled back on
its own, logged, and reported as a failed FulfillmentOutcome; the order
save still commits.

KNOWN GAP: moving an order out of delivered does not restock. It is logged.

COUPONS: admin orders keep a coupon "pending" until the order is delivered
(or confirmed); the usage row and the usage_count bump are written then.
A pending coupon is re-checked whenever the lines or the customer change and
again at delivery; a coupon that no longer applies fails the save with
CouponError. Storefront orders record usage at checkout.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Customer, Order, OrderItem, Product, CustomerCouponUsage
from ..models.orders import STATUS_DELIVERED, STATUS_WAITING, SOURCE_ADMIN
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_order_status,
    validate_order_items,
    validate_payload,
)
from vitrine.time_utils import utcnow
from .concurrency import run_with_retry
from .promotions_service import (
    commit_coupon_usage,
    compute_discount,
    evaluate_coupon,
    normalize_code,
)
from .stock_ledger_service import StockError, record_sale_delivery
from .tenant_service import get_owned, scoped_query


ORDER_POLICY = ModelValidationPolicy(
    writable_fields={"client_name", "client_phone", "seller_name", "notes", "status", "customer_id"},
    required_on_create={"client_name"},
)

# Keys handled outside validate_payload
_NESTED_KEYS = ("items", "coupon_code")


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class FulfillmentOutcome:
    order_item_id: int | None
    product_id: int
    quantity: int
    succeeded: bool
    entry_id: int | None = None
    previous_stock: int | None = None
    new_stock: int | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "order_item_id": self.order_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "succeeded": self.succeeded,
            "entry_id": self.entry_id,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "error": self.error,
        }


@dataclass
class OrderSaveResult:
    order: Order
    previous_status: str | None
    fulfilled: bool = False
    outcomes: list[FulfillmentOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "previous_status": self.previous_status,
            "fulfilled": self.fulfilled,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def is_delivery_transition(previous_status: str | None, new_status: str) -> bool:
    return previous_status != STATUS_DELIVERED and new_status == STATUS_DELIVERED


def recompute_totals(order: Order) -> None:
    """Derived totals; never taken from client input."""
    items_total = sum(item.line_total_cents for item in order.items)
    order.items_total_cents = items_total

    if order.promotion is not None:
        order.coupon_discount_cents = compute_discount(order.promotion, items_total)
    else:
        order.coupon_discount_cents = 0

    order.total_cents = max(0, items_total - order.coupon_discount_cents)


def _build_items(owner_id: int, raw_items, *, catalog_prices_only: bool = False) -> list[OrderItem]:
    """
    Validated lines with product name snapshots. Products must belong to
    the tenant. unit_price_cents defaults to the catalog price.
    """
    lines = validate_order_items(raw_items)
    items = []
    for position, line in enumerate(lines):
        product = get_owned(Product, line["product_id"], owner_id)
        if product is None:
            raise OrderError("Product not found", details={"product_id": line["product_id"]})
        if product.uses_variants and line["variant_id"] is None:
            raise OrderError(
                "variant_id is required for a product with variants",
                details={"product_id": product.id},
            )

        if catalog_prices_only or line["unit_price_cents"] is None:
            unit_price = product.price_cents
        else:
            unit_price = line["unit_price_cents"]
        discount = 0 if catalog_prices_only else line["discount_cents"]
        if discount > unit_price * line["quantity"]:
            raise ValidationError(f"items[{position}].discount_cents exceeds the line value")

        items.append(OrderItem(
            position=position,
            product_id=product.id,
            product_name=product.name,
            variant_id=line["variant_id"],
            quantity=line["quantity"],
            unit_price_cents=unit_price,
            discount_cents=discount,
        ))
    return items


def _attach_coupon(order: Order, code) -> None:
    """Validate and attach (or with a blank code, detach) a pending coupon."""
    normalized = normalize_code(code)
    if order.coupon_usage_recorded:
        if normalized != (order.coupon_code or ""):
            raise OrderError("Coupon usage already recorded for this order")
        return

    if not normalized:
        order.coupon_code = None
        order.promotion = None
        order.promotion_id = None
        return

    subtotal = sum(item.line_total_cents for item in order.items)
    evaluation = evaluate_coupon(order.owner_id, normalized, subtotal, customer_id=order.customer_id)
    evaluation.raise_if_rejected()
    order.coupon_code = evaluation.code
    order.promotion = evaluation.promotion


def _recheck_pending_coupon(order: Order) -> None:
    """
    A pending coupon must still pass every eligibility check against the
    order as it is now. Raises CouponError; the caller rolls the save back.
    """
    if order.promotion is None or order.coupon_usage_recorded:
        return
    subtotal = sum(item.line_total_cents for item in order.items)
    evaluation = evaluate_coupon(
        order.owner_id, order.promotion.code, subtotal, customer_id=order.customer_id,
    )
    evaluation.raise_if_rejected()
    order.coupon_code = evaluation.code


def _apply_edits(order: Order, data: dict, *, partial: bool, catalog_prices_only: bool = False) -> None:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    header = {k: v for k, v in data.items() if k not in _NESTED_KEYS}
    patch = validate_payload(model=Order, payload=header, policy=ORDER_POLICY, partial=partial)
    if "status" in patch:
        enforce_rules_order_status(patch["status"])

    if patch.get("customer_id") is not None:
        customer = get_owned(Customer, patch["customer_id"], order.owner_id)
        if customer is None:
            raise OrderError("Customer not found", details={"customer_id": patch["customer_id"]})
        if order.source == SOURCE_ADMIN and not customer.is_active and customer.id != order.customer_id:
            raise OrderError("Customer is inactive", details={"customer_id": customer.id})

    for key, value in patch.items():
        setattr(order, key, value)

    if "items" in data:
        order.items = _build_items(order.owner_id, data["items"], catalog_prices_only=catalog_prices_only)
    elif not partial:
        raise ValidationError("items must be a non-empty list")

    if "coupon_code" in data:
        _attach_coupon(order, data["coupon_code"])
    elif "items" in data or "customer_id" in patch:
        _recheck_pending_coupon(order)

    recompute_totals(order)


def _record_pending_coupon(order: Order) -> None:
    if order.promotion_id is None or order.coupon_usage_recorded:
        return
    commit_coupon_usage(order.owner_id, order.promotion_id, order.customer_id, order_id=order.id)
    order.coupon_usage_recorded = True


def _fulfill_items(order: Order, actor: str | None) -> list[FulfillmentOutcome]:
    outcomes = []
    customer_label = order.client_name

    for item in order.items:
        nested = db.session.begin_nested()
        try:
            product = get_owned(Product, item.product_id, order.owner_id, lock=True)
            if product is None:
                raise StockError("Product not found", details={"product_id": item.product_id})
            entry = record_sale_delivery(
                product,
                item.quantity,
                order.id,
                customer_label,
                actor,
                variant_id=item.variant_id,
            )
            nested.commit()
        except (StaleDataError, OperationalError):
            # Conflicts abort the whole save so run_with_retry starts over
            raise
        except (StockError, ValidationError, SQLAlchemyError) as exc:
            nested.rollback()
            current_app.logger.warning(
                "Order %s: could not fulfill item product_id=%s qty=%s: %s",
                order.id, item.product_id, item.quantity, exc,
            )
            outcomes.append(FulfillmentOutcome(
                order_item_id=item.id,
                product_id=item.product_id,
                quantity=item.quantity,
                succeeded=False,
                error=str(exc),
            ))
            continue

        outcomes.append(FulfillmentOutcome(
            order_item_id=item.id,
            product_id=item.product_id,
            quantity=item.quantity,
            succeeded=True,
            entry_id=entry.id,
            previous_stock=entry.previous_stock,
            new_stock=entry.new_stock,
        ))
    return outcomes


def _apply_transition(order: Order, previous_status: str | None, actor: str | None) -> OrderSaveResult:
    """Side effects of a status change. The order must already be flushed."""
    result = OrderSaveResult(order=order, previous_status=previous_status)

    if is_delivery_transition(previous_status, order.status):
        _recheck_pending_coupon(order)
        _record_pending_coupon(order)
        order.delivered_at = utcnow()
        db.session.flush()

        result.outcomes = _fulfill_items(order, actor)
        result.fulfilled = True

        failed = sum(1 for o in result.outcomes if not o.succeeded)
        current_app.logger.info(
            "Order %s delivered: %s items fulfilled, %s failed",
            order.id, len(result.outcomes) - failed, failed,
        )
    elif previous_status == STATUS_DELIVERED and order.status != STATUS_DELIVERED:
        current_app.logger.info(
            "Order %s moved from delivered to %s; stock is not restored",
            order.id, order.status,
        )
        order.delivered_at = None

    return result


def _create_order_locked(
    *,
    owner_id: int,
    data: dict,
    actor: str | None,
    source: str = SOURCE_ADMIN,
    catalog_prices_only: bool = False,
) -> OrderSaveResult:
    """Build, flush and fulfill if created as delivered. No commit."""
    order = Order(owner_id=owner_id, source=source, status=STATUS_WAITING, coupon_usage_recorded=False)
    # Added after the edits: lookups below autoflush and client_name is NOT NULL
    _apply_edits(order, data, partial=False, catalog_prices_only=catalog_prices_only)
    db.session.add(order)
    db.session.flush()
    return _apply_transition(order, None, actor)


def create_order(owner_id: int, data: dict, actor: str | None = None) -> OrderSaveResult:
    """
    Create an admin quotation. Status defaults to waiting; creating it
    directly as delivered fulfills it.
    """
    def _op():
        result = _create_order_locked(owner_id=owner_id, data=data, actor=actor)
        db.session.commit()
        return result

    return run_with_retry(_op)


def _load_order(owner_id: int, order_id: int) -> Order:
    order = get_owned(Order, order_id, owner_id, lock=True)
    if order is None:
        raise OrderError("Order not found", details={"order_id": order_id})
    return order


def save_order(owner_id: int, order_id: int, data: dict, actor: str | None = None) -> OrderSaveResult:
    """
    Apply edits (any subset of header fields, items, coupon_code, status)
    and run the side effects of the status change.
    """
    def _op():
        order = _load_order(owner_id, order_id)
        previous_status = order.status

        if "items" in data and previous_status == STATUS_DELIVERED:
            raise OrderError("Delivered orders cannot change items", details={"order_id": order_id})

        _apply_edits(order, data, partial=True)
        db.session.flush()

        result = _apply_transition(order, previous_status, actor)
        db.session.commit()
        return result

    return run_with_retry(_op)


def confirm_order(owner_id: int, order_id: int, actor: str | None = None) -> OrderSaveResult:
    """
    Confirmation boundary: record pending coupon usage and deliver.
    Confirming an already delivered order changes nothing.
    """
    def _op():
        order = _load_order(owner_id, order_id)
        previous_status = order.status
        if previous_status == STATUS_DELIVERED:
            return OrderSaveResult(order=order, previous_status=previous_status)

        order.status = STATUS_DELIVERED
        db.session.flush()

        result = _apply_transition(order, previous_status, actor)
        db.session.commit()
        return result

    return run_with_retry(_op)


def get_order(owner_id: int, order_id: int) -> Order | None:
    return get_owned(Order, order_id, owner_id)


def list_orders(owner_id: int, *, status: str | None = None, source: str | None = None) -> list[Order]:
    q = scoped_query(Order, owner_id)
    if status:
        q = q.filter_by(status=enforce_rules_order_status(status))
    if source:
        q = q.filter_by(source=source)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def delete_order(owner_id: int, order_id: int) -> bool:
    """
    Returns False if not found. Delivered orders and orders with recorded
    coupon usage are referenced by the ledgers and cannot be deleted.
    """
    order = get_owned(Order, order_id, owner_id)
    if order is None:
        return False
    if order.status == STATUS_DELIVERED:
        raise OrderError("Delivered orders cannot be deleted", details={"order_id": order_id})
    if order.coupon_usage_recorded or (
        scoped_query(CustomerCouponUsage, owner_id).filter_by(order_id=order.id).first()
    ):
        raise OrderError("Order has recorded coupon usage", details={"order_id": order_id})

    db.session.delete(order)
    db.session.commit()
    return True
