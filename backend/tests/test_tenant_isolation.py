# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

These tests create two tenants with their own users, then verify that:
1. User A cannot read or write data owned by Tenant B
2. Foreign rows look exactly like missing rows (404, never 403)
3. Listings only ever contain the caller's own rows
4. Ledger rows written for one tenant never mention another

Test Coverage:
- Products: cross-tenant read/write/stock blocked
- Stock ledger: cross-tenant history blocked
- Orders: cross-tenant read/write blocked, foreign products rejected
- Promotions: cross-tenant patch/delete blocked, codes not shared
- Customers: cross-tenant read/write blocked, phones not shared
"""

from conftest import make_product, make_promotion

from vitrine.models import Customer, Product, Promotion, StockHistoryEntry
from vitrine.services.order_service import create_order
from vitrine.services.tenant_service import get_owned, scoped_query


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_get_owned_hides_foreign_rows(self, db_session, tenant_a, tenant_b):
        product_b = make_product(tenant_b.id)

        assert get_owned(Product, product_b.id, tenant_b.id).id == product_b.id
        assert get_owned(Product, product_b.id, tenant_a.id) is None
        assert get_owned(Product, None, tenant_a.id) is None

    def test_scoped_query(self, db_session, tenant_a, tenant_b):
        make_product(tenant_a.id, name="Mine")
        make_product(tenant_b.id, name="Theirs")

        assert [p.name for p in scoped_query(Product, tenant_a.id).all()] == ["Mine"]


class TestProductIsolation:

    def test_list_only_own(self, client, db_session, tenant_a, tenant_b, headers_a):
        make_product(tenant_a.id, name="Mine")
        make_product(tenant_b.id, name="Theirs")

        response = client.get('/api/products', headers=headers_a)

        assert response.status_code == 200
        assert [p["name"] for p in response.json["items"]] == ["Mine"]

    def test_read_foreign_is_404(self, client, db_session, tenant_b, headers_a):
        product_b = make_product(tenant_b.id)

        assert client.get(f'/api/products/{product_b.id}', headers=headers_a).status_code == 404

    def test_update_foreign_is_404(self, client, db_session, tenant_b, headers_a):
        product_b = make_product(tenant_b.id, name="Theirs")

        response = client.put(f'/api/products/{product_b.id}', headers=headers_a, json={"name": "Hijacked"})

        assert response.status_code == 404
        assert db_session.get(Product, product_b.id).name == "Theirs"

    def test_stock_edit_foreign_is_404(self, client, db_session, tenant_b, headers_a):
        product_b = make_product(tenant_b.id, stock=5)

        response = client.put(f'/api/products/{product_b.id}/stock', headers=headers_a, json={"new_stock": 0})

        assert response.status_code == 404
        assert db_session.get(Product, product_b.id).stock == 5
        assert db_session.query(StockHistoryEntry).filter_by(product_id=product_b.id).count() == 1

    def test_variants_and_returns_foreign_are_404(self, client, db_session, tenant_b, headers_a):
        product_b = make_product(tenant_b.id, stock=5)

        response = client.put(f'/api/products/{product_b.id}/variants', headers=headers_a, json={
            "variant_ids": ["s"], "quantities": {"s": 1},
        })
        assert response.status_code == 404

        response = client.post(f'/api/products/{product_b.id}/returns', headers=headers_a, json={"quantity": 1})
        assert response.status_code == 404

        assert db_session.get(Product, product_b.id).stock == 5

    def test_history_foreign_is_404(self, client, db_session, tenant_b, headers_a):
        product_b = make_product(tenant_b.id)

        assert client.get(f'/api/products/{product_b.id}/stock-history', headers=headers_a).status_code == 404

    def test_ledger_rows_carry_owner(self, db_session, tenant_a, tenant_b):
        product_a = make_product(tenant_a.id)
        product_b = make_product(tenant_b.id)

        owners = {
            e.product_id: e.owner_id for e in db_session.query(StockHistoryEntry).all()
        }
        assert owners == {product_a.id: tenant_a.id, product_b.id: tenant_b.id}


class TestOrderIsolation:

    def test_order_with_foreign_product_rejected(self, client, db_session, tenant_b, headers_a):
        product_b = make_product(tenant_b.id)

        response = client.post('/api/orders', headers=headers_a, json={
            "client_name": "Jo", "items": [{"product_id": product_b.id, "quantity": 1}],
        })

        assert response.status_code == 400
        assert response.json["error"] == "Product not found"

    def test_foreign_order_invisible(self, client, db_session, tenant_b, headers_a, headers_b):
        product_b = make_product(tenant_b.id, stock=5)
        order_b = create_order(tenant_b.id, {
            "client_name": "Jo", "items": [{"product_id": product_b.id, "quantity": 1}],
        }).order

        assert client.get(f'/api/orders/{order_b.id}', headers=headers_a).status_code == 404
        assert client.put(
            f'/api/orders/{order_b.id}', headers=headers_a, json={"status": "delivered"},
        ).status_code == 404
        assert client.post(f'/api/orders/{order_b.id}/confirm', headers=headers_a).status_code == 404
        assert client.delete(f'/api/orders/{order_b.id}', headers=headers_a).status_code == 404
        assert client.get('/api/orders', headers=headers_a).json["count"] == 0

        assert db_session.get(Product, product_b.id).stock == 5
        assert client.get(f'/api/orders/{order_b.id}', headers=headers_b).status_code == 200


class TestPromotionIsolation:

    def test_same_code_in_two_tenants(self, client, db_session, tenant_b, headers_a):
        make_promotion(tenant_b.id, code="SAVE10")

        response = client.post('/api/promotions', headers=headers_a, json={
            "code": "SAVE10", "discount_type": "fixed", "discount_value": 100,
        })

        assert response.status_code == 201

    def test_foreign_promotion_patch_and_delete(self, client, db_session, tenant_b, headers_a):
        promo_b = make_promotion(tenant_b.id, code="BETA")

        assert client.patch(
            f'/api/promotions/{promo_b.id}', headers=headers_a, json={"status": "inactive"},
        ).status_code == 404
        assert client.delete(f'/api/promotions/{promo_b.id}', headers=headers_a).status_code == 404
        assert db_session.get(Promotion, promo_b.id).status == "active"

    def test_foreign_coupon_not_applied_to_order(self, client, db_session, tenant_a, tenant_b, headers_a):
        make_promotion(tenant_b.id, code="BETA")
        product_a = make_product(tenant_a.id)

        response = client.post('/api/orders', headers=headers_a, json={
            "client_name": "Jo",
            "coupon_code": "BETA",
            "items": [{"product_id": product_a.id, "quantity": 1}],
        })

        assert response.status_code == 400
        assert response.json["reason"] == "coupon_not_found"


class TestCustomerIsolation:

    def _customer(self, db_session, owner_id, phone="5550100"):
        customer = Customer(owner_id=owner_id, name="Jo Buyer", phone=phone)
        db_session.add(customer)
        db_session.commit()
        return customer

    def test_foreign_customer_invisible(self, client, db_session, tenant_b, headers_a):
        customer_b = self._customer(db_session, tenant_b.id)

        assert client.get('/api/customers', headers=headers_a).json["items"] == []
        assert client.get(f'/api/customers/{customer_b.id}', headers=headers_a).status_code == 404
        assert client.patch(
            f'/api/customers/{customer_b.id}', headers=headers_a, json={"name": "Mallory"},
        ).status_code == 404
        assert client.delete(f'/api/customers/{customer_b.id}', headers=headers_a).status_code == 404

        stored = db_session.get(Customer, customer_b.id)
        assert stored.name == "Jo Buyer"
        assert stored.status == "active"

    def test_same_phone_in_two_tenants(self, client, db_session, tenant_b, headers_a):
        self._customer(db_session, tenant_b.id, phone="5550100")

        response = client.post('/api/customers', headers=headers_a, json={"name": "Jo", "phone": "555-0100"})

        assert response.status_code == 201

    def test_foreign_customer_not_attached_to_order(self, client, db_session, tenant_a, tenant_b, headers_a):
        customer_b = self._customer(db_session, tenant_b.id)
        product_a = make_product(tenant_a.id)

        response = client.post('/api/orders', headers=headers_a, json={
            "client_name": "Jo",
            "customer_id": customer_b.id,
            "items": [{"product_id": product_a.id, "quantity": 1}],
        })

        assert response.status_code == 400
        assert response.json["error"] == "Customer not found"
