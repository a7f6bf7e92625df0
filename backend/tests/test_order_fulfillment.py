# Overview: Pytest coverage for the order lifecycle and delivery fulfillment.

"""
Order Fulfillment Tests

Verifies:
- Only the transition into delivered decrements stock, once per line
- Re-saving a delivered order never decrements again
- A line that cannot be fulfilled is reported and does not undo the others
- Totals are derived from the lines, never taken from input
- Moving an order out of delivered does not restock
- A pending coupon is re-checked when the order changes and at delivery
"""

import logging
from datetime import timedelta

import pytest
from conftest import make_product, make_promotion

from vitrine.models import CustomerCouponUsage, Order, OrderItem, Product, Promotion
from vitrine.services.customers_service import create_customer
from vitrine.services.order_service import (
    OrderError,
    confirm_order,
    create_order,
    delete_order,
    is_delivery_transition,
    save_order,
)
from vitrine.services.promotions_service import CouponError
from vitrine.services.stock_ledger_service import list_stock_history
from vitrine.services.variant_stock_service import apply_variant_stock
from vitrine.validation import ValidationError
from vitrine.time_utils import utcnow


def _sale_entries(owner_id, product_id):
    return [
        e for e in list_stock_history(owner_id=owner_id, product_id=product_id)
        if e.reason == "sale_delivery"
    ]


@pytest.mark.parametrize("previous,new,expected", [
    (None, "delivered", True),
    ("waiting", "delivered", True),
    ("finished", "delivered", True),
    ("delivered", "delivered", False),
    ("waiting", "finished", False),
    ("delivered", "waiting", False),
])
def test_is_delivery_transition(previous, new, expected):
    assert is_delivery_transition(previous, new) is expected


class TestOrderTotals:

    def test_totals_derived_from_lines(self, db_session, tenant_a):
        p1 = make_product(tenant_a.id, name="Mug", price_cents=1000)
        p2 = make_product(tenant_a.id, name="Plate", price_cents=800)

        result = create_order(tenant_a.id, {
            "client_name": "Jo Buyer",
            "items": [
                {"product_id": p1.id, "quantity": 2},
                {"product_id": p2.id, "quantity": 1, "unit_price_cents": 500, "discount_cents": 100},
            ],
        })
        order = result.order

        assert order.status == "waiting"
        assert order.items_total_cents == 2400
        assert order.total_cents == 2400
        assert [i.product_name for i in order.items] == ["Mug", "Plate"]
        assert result.fulfilled is False
        assert db_session.get(Product, p1.id).stock == 10

    def test_client_totals_not_accepted(self, db_session, tenant_a):
        p1 = make_product(tenant_a.id)

        with pytest.raises(ValidationError):
            create_order(tenant_a.id, {
                "client_name": "Jo",
                "total_cents": 1,
                "items": [{"product_id": p1.id, "quantity": 1}],
            })
        db_session.rollback()

        assert db_session.query(Order).count() == 0

    def test_pending_coupon_discounts_total(self, db_session, tenant_a):
        p1 = make_product(tenant_a.id, price_cents=10000)
        promo = make_promotion(tenant_a.id, code="SAVE10")

        result = create_order(tenant_a.id, {
            "client_name": "Jo",
            "coupon_code": "save10",
            "items": [{"product_id": p1.id, "quantity": 2}],
        })
        order = result.order

        assert order.coupon_code == "SAVE10"
        assert order.coupon_discount_cents == 2000
        assert order.total_cents == 18000
        assert order.coupon_usage_recorded is False
        assert db_session.get(Promotion, promo.id).usage_count == 0

    def test_unknown_product_rejected(self, db_session, tenant_a):
        with pytest.raises(OrderError, match="Product not found"):
            create_order(tenant_a.id, {
                "client_name": "Jo",
                "items": [{"product_id": 4242, "quantity": 1}],
            })
        db_session.rollback()


class TestDeliveryTransition:

    def _order(self, owner_id, product, quantity=3, **header):
        data = {"client_name": "Jo Buyer", "items": [{"product_id": product.id, "quantity": quantity}]}
        data.update(header)
        return create_order(owner_id, data, actor="Alice").order

    def test_delivery_decrements_once(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)
        order = self._order(tenant_a.id, product)

        result = save_order(tenant_a.id, order.id, {"status": "delivered"}, actor="Alice")

        assert result.fulfilled is True
        assert result.previous_status == "waiting"
        assert [o.succeeded for o in result.outcomes] == [True]
        assert result.outcomes[0].new_stock == 7
        assert result.order.delivered_at is not None
        assert db_session.get(Product, product.id).stock == 7

        entries = _sale_entries(tenant_a.id, product.id)
        assert len(entries) == 1
        assert entries[0].reference_id == str(order.id)
        assert entries[0].actor_name == "Alice"

    def test_resave_delivered_does_not_decrement_again(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)
        order = self._order(tenant_a.id, product)
        save_order(tenant_a.id, order.id, {"status": "delivered"})

        result = save_order(tenant_a.id, order.id, {"status": "delivered", "notes": "Left at door"})

        assert result.fulfilled is False
        assert result.order.notes == "Left at door"
        assert db_session.get(Product, product.id).stock == 7
        assert len(_sale_entries(tenant_a.id, product.id)) == 1

    def test_intermediate_statuses_do_not_touch_stock(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)
        order = self._order(tenant_a.id, product)

        for status in ("in_progress", "finished"):
            result = save_order(tenant_a.id, order.id, {"status": status})
            assert result.fulfilled is False
            assert db_session.get(Product, product.id).stock == 10

        save_order(tenant_a.id, order.id, {"status": "delivered"})
        assert db_session.get(Product, product.id).stock == 7

    def test_created_as_delivered_fulfills(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)

        result = create_order(tenant_a.id, {
            "client_name": "Walk-in",
            "status": "delivered",
            "items": [{"product_id": product.id, "quantity": 4}],
        })

        assert result.fulfilled is True
        assert result.previous_status is None
        assert db_session.get(Product, product.id).stock == 6

    def test_oversell_floors_at_zero(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=2)
        order = self._order(tenant_a.id, product, quantity=5)

        result = save_order(tenant_a.id, order.id, {"status": "delivered"})

        assert result.outcomes[0].succeeded is True
        assert result.outcomes[0].new_stock == 0
        assert db_session.get(Product, product.id).stock == 0

    def test_undeliver_does_not_restock(self, db_session, tenant_a, caplog):
        product = make_product(tenant_a.id, stock=10)
        order = self._order(tenant_a.id, product)
        save_order(tenant_a.id, order.id, {"status": "delivered"})

        with caplog.at_level(logging.INFO):
            result = save_order(tenant_a.id, order.id, {"status": "waiting"})

        assert result.order.delivered_at is None
        assert db_session.get(Product, product.id).stock == 7
        assert "stock is not restored" in caplog.text

        # Delivering again decrements again
        save_order(tenant_a.id, order.id, {"status": "delivered"})
        assert db_session.get(Product, product.id).stock == 4
        assert len(_sale_entries(tenant_a.id, product.id)) == 2

    def test_items_locked_after_delivery(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)
        order = self._order(tenant_a.id, product)
        save_order(tenant_a.id, order.id, {"status": "delivered"})

        with pytest.raises(OrderError):
            save_order(tenant_a.id, order.id, {"items": [{"product_id": product.id, "quantity": 1}]})
        db_session.rollback()

    def test_unknown_order(self, db_session, tenant_a):
        with pytest.raises(OrderError, match="Order not found"):
            save_order(tenant_a.id, 999, {"status": "delivered"})
        db_session.rollback()


class TestPartialFulfillment:

    def test_deselected_variant_line_fails_alone(self, db_session, tenant_a):
        shirt = make_product(tenant_a.id, name="Shirt", stock=0)
        apply_variant_stock(
            owner_id=tenant_a.id, product_id=shirt.id,
            selected_variant_ids=["s", "m"], quantities={"s": 3, "m": 4},
        )
        mug = make_product(tenant_a.id, name="Mug", stock=10)

        order = create_order(tenant_a.id, {
            "client_name": "Jo",
            "items": [
                {"product_id": shirt.id, "quantity": 1, "variant_id": "s"},
                {"product_id": mug.id, "quantity": 2},
            ],
        }).order

        apply_variant_stock(
            owner_id=tenant_a.id, product_id=shirt.id,
            selected_variant_ids=["m"], quantities={"m": 4},
        )

        result = save_order(tenant_a.id, order.id, {"status": "delivered"})

        assert [o.succeeded for o in result.outcomes] == [False, True]
        assert "not selected" in result.outcomes[0].error
        assert result.order.status == "delivered"
        assert db_session.get(Product, mug.id).stock == 8
        assert db_session.get(Product, shirt.id).stock == 4
        assert _sale_entries(tenant_a.id, shirt.id) == []

    def test_foreign_product_line_fails(self, db_session, tenant_a, tenant_b):
        mug = make_product(tenant_a.id, name="Mug", stock=10)
        foreign = make_product(tenant_b.id, name="Foreign", stock=10)
        order = create_order(tenant_a.id, {
            "client_name": "Jo",
            "items": [{"product_id": mug.id, "quantity": 1}, {"product_id": mug.id, "quantity": 1}],
        }).order

        items = OrderItem.__table__
        second_item_id = order.items[1].id
        db_session.execute(items.update().where(items.c.id == second_item_id).values(product_id=foreign.id))
        db_session.commit()
        db_session.expire_all()

        result = save_order(tenant_a.id, order.id, {"status": "delivered"})

        assert [o.succeeded for o in result.outcomes] == [True, False]
        assert result.outcomes[1].error == "Product not found"
        assert db_session.get(Product, mug.id).stock == 9
        assert db_session.get(Product, foreign.id).stock == 10


class TestConfirmAndDelete:

    def test_confirm_delivers_and_records_coupon(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10, price_cents=5000)
        promo = make_promotion(tenant_a.id, code="FIVE", discount_type="fixed", discount_value=500)
        order = create_order(tenant_a.id, {
            "client_name": "Jo",
            "coupon_code": "FIVE",
            "items": [{"product_id": product.id, "quantity": 1}],
        }).order

        result = confirm_order(tenant_a.id, order.id)

        assert result.fulfilled is True
        assert result.order.status == "delivered"
        assert result.order.coupon_usage_recorded is True
        assert db_session.get(Promotion, promo.id).usage_count == 1
        assert db_session.get(Product, product.id).stock == 9

        again = confirm_order(tenant_a.id, order.id)
        assert again.fulfilled is False
        assert db_session.get(Promotion, promo.id).usage_count == 1
        assert db_session.get(Product, product.id).stock == 9

    def test_delete_waiting_order(self, db_session, tenant_a):
        product = make_product(tenant_a.id)
        order = create_order(tenant_a.id, {
            "client_name": "Jo", "items": [{"product_id": product.id, "quantity": 1}],
        }).order

        assert delete_order(tenant_a.id, order.id) is True
        assert db_session.query(OrderItem).count() == 0
        assert delete_order(tenant_a.id, order.id) is False

    def test_delivered_order_cannot_be_deleted(self, db_session, tenant_a):
        product = make_product(tenant_a.id)
        order = create_order(tenant_a.id, {
            "client_name": "Jo",
            "status": "delivered",
            "items": [{"product_id": product.id, "quantity": 1}],
        }).order

        with pytest.raises(OrderError):
            delete_order(tenant_a.id, order.id)


class TestPendingCouponRecheck:

    def _order_with_coupon(self, owner_id, product, code, quantity=10, **header):
        data = {
            "client_name": "Jo",
            "coupon_code": code,
            "items": [{"product_id": product.id, "quantity": quantity}],
        }
        data.update(header)
        return create_order(owner_id, data).order

    def test_items_below_minimum_reject_save(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=20, price_cents=1000)
        make_promotion(tenant_a.id, code="BIG", discount_type="fixed", discount_value=500, min_order_value_cents=5000)
        order_id = self._order_with_coupon(tenant_a.id, product, "BIG").id

        with pytest.raises(CouponError) as exc_info:
            save_order(tenant_a.id, order_id, {"items": [{"product_id": product.id, "quantity": 1}]})
        db_session.rollback()

        assert exc_info.value.reason == "coupon_min_order_value"
        stored = db_session.get(Order, order_id)
        assert stored.items_total_cents == 10000
        assert stored.coupon_discount_cents == 500

    def test_items_edit_with_coupon_removed(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=20, price_cents=1000)
        make_promotion(tenant_a.id, code="BIG", discount_type="fixed", discount_value=500, min_order_value_cents=5000)
        order_id = self._order_with_coupon(tenant_a.id, product, "BIG").id

        result = save_order(tenant_a.id, order_id, {
            "coupon_code": "",
            "items": [{"product_id": product.id, "quantity": 1}],
        })

        assert result.order.coupon_code is None
        assert result.order.coupon_discount_cents == 0
        assert result.order.total_cents == 1000

    def test_items_edit_still_eligible_recomputes_discount(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=20, price_cents=1000)
        make_promotion(tenant_a.id, code="SAVE10", min_order_value_cents=5000)
        order_id = self._order_with_coupon(tenant_a.id, product, "SAVE10").id

        result = save_order(tenant_a.id, order_id, {"items": [{"product_id": product.id, "quantity": 6}]})

        assert result.order.coupon_discount_cents == 600
        assert result.order.total_cents == 5400

    def test_confirm_with_deactivated_coupon_rejected(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=20, price_cents=1000)
        promo = make_promotion(tenant_a.id, code="OLD", discount_type="fixed", discount_value=500)
        order_id = self._order_with_coupon(tenant_a.id, product, "OLD").id
        promo.status = "inactive"
        promo.expiry_date = utcnow() - timedelta(days=3)
        db_session.commit()

        with pytest.raises(CouponError) as exc_info:
            confirm_order(tenant_a.id, order_id)
        db_session.rollback()

        assert exc_info.value.reason == "coupon_inactive"
        assert db_session.get(Promotion, promo.id).usage_count == 0
        assert db_session.get(Order, order_id).status == "waiting"
        assert db_session.get(Product, product.id).stock == 20
        assert _sale_entries(tenant_a.id, product.id) == []

    def test_deliver_with_expired_coupon_rejected(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=20, price_cents=1000)
        promo = make_promotion(tenant_a.id, code="SOON", discount_type="fixed", discount_value=500)
        order_id = self._order_with_coupon(tenant_a.id, product, "SOON").id
        promo.expiry_date = utcnow() - timedelta(minutes=1)
        db_session.commit()

        with pytest.raises(CouponError) as exc_info:
            save_order(tenant_a.id, order_id, {"status": "delivered"})
        db_session.rollback()

        assert exc_info.value.reason == "coupon_expired"
        assert db_session.get(Promotion, promo.id).usage_count == 0
        assert db_session.get(Product, product.id).stock == 20

    def test_customer_who_used_coupon_rejected(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=20, price_cents=1000)
        promo = make_promotion(tenant_a.id, code="ONCE")
        customer = create_customer(tenant_a.id, {"name": "Jo", "phone": "5550100"})
        db_session.add(CustomerCouponUsage(owner_id=tenant_a.id, customer_id=customer.id, promotion_id=promo.id))
        db_session.commit()
        order_id = self._order_with_coupon(tenant_a.id, product, "ONCE").id

        with pytest.raises(CouponError) as exc_info:
            save_order(tenant_a.id, order_id, {"customer_id": customer.id})
        db_session.rollback()

        assert exc_info.value.reason == "coupon_already_used"
        assert db_session.get(Order, order_id).customer_id is None

    def test_confirm_rejection_over_http(self, client, db_session, tenant_a, headers_a):
        product = make_product(tenant_a.id, stock=20, price_cents=1000)
        promo = make_promotion(tenant_a.id, code="OLD", discount_type="fixed", discount_value=500)
        order_id = self._order_with_coupon(tenant_a.id, product, "OLD").id
        promo.status = "inactive"
        db_session.commit()

        response = client.post(f'/api/orders/{order_id}/confirm', headers=headers_a)

        assert response.status_code == 400
        assert response.json["reason"] == "coupon_inactive"
        assert db_session.get(Order, order_id).status == "waiting"


class TestOrdersApi:

    def test_deliver_over_http(self, client, db_session, tenant_a, headers_a):
        product = make_product(tenant_a.id, stock=10)

        response = client.post('/api/orders', headers=headers_a, json={
            "client_name": "Jo",
            "items": [{"product_id": product.id, "quantity": 2}],
        })
        assert response.status_code == 201
        order_id = response.json["order"]["id"]

        response = client.put(f'/api/orders/{order_id}', headers=headers_a, json={"status": "delivered"})

        assert response.status_code == 200
        body = response.json
        assert body["fulfilled"] is True
        assert body["previous_status"] == "waiting"
        assert body["outcomes"][0]["succeeded"] is True
        assert body["order"]["status"] == "delivered"
        entries = _sale_entries(tenant_a.id, product.id)
        assert entries[0].actor_name == "Alice Admin"

    def test_delete_delivered_is_conflict(self, client, db_session, tenant_a, headers_a):
        product = make_product(tenant_a.id)
        order = create_order(tenant_a.id, {
            "client_name": "Jo",
            "status": "delivered",
            "items": [{"product_id": product.id, "quantity": 1}],
        }).order

        response = client.delete(f'/api/orders/{order.id}', headers=headers_a)

        assert response.status_code == 409

    def test_invalid_status_rejected(self, client, db_session, tenant_a, headers_a):
        product = make_product(tenant_a.id)

        response = client.post('/api/orders', headers=headers_a, json={
            "client_name": "Jo",
            "status": "shipped",
            "items": [{"product_id": product.id, "quantity": 1}],
        })

        assert response.status_code == 400

    def test_missing_order_is_404(self, client, db_session, headers_a):
        response = client.put('/api/orders/999', headers=headers_a, json={"status": "delivered"})
        assert response.status_code == 404
