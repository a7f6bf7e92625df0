# Overview: Pytest coverage for the append-only stock ledger.

"""
Stock Ledger Tests

Verifies:
- Every stock write appends exactly one entry with a derived change_amount
- Replaying entries from 0 reproduces Product.stock
- Manual edits to the current value write nothing
- Sale deliveries never drive stock below zero
- Entries cannot be updated or deleted through the ORM
- Integrity verification reports tampered rows instead of raising
"""

import pytest
from conftest import make_product

from vitrine.models import Product, StockHistoryEntry, ImmutableRecordError
from vitrine.services.stock_ledger_service import (
    StockError,
    adjust_stock,
    bulk_adjust_stock,
    list_stock_history,
    low_stock_products,
    record_initial_stock,
    record_sale_delivery,
    return_stock,
    verify_stock_history,
)
from vitrine.validation import ValidationError


def _replay(entries) -> int:
    running = 0
    for entry in entries:
        assert entry.previous_stock == running
        assert entry.change_amount == entry.new_stock - entry.previous_stock
        running = entry.new_stock
    return running


class TestInitialStock:

    def test_creation_writes_initial_entry(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)

        entries = list_stock_history(owner_id=tenant_a.id, product_id=product.id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.product_id == product.id
        assert (entry.previous_stock, entry.new_stock, entry.change_amount) == (0, 10, 10)
        assert entry.reason == "initial_stock"
        assert entry.actor_name == "tests"
        assert entry.owner_id == tenant_a.id
        assert product.stock == 10

    def test_zero_initial_stock_still_recorded(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=0)

        entries = list_stock_history(owner_id=tenant_a.id, product_id=product.id)
        assert [(e.new_stock, e.change_amount) for e in entries] == [(0, 0)]

    def test_initial_stock_only_once(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=4)

        with pytest.raises(StockError):
            record_initial_stock(product, 9)
        db_session.rollback()

        assert len(list_stock_history(owner_id=tenant_a.id, product_id=product.id)) == 1


class TestManualAdjustment:

    def test_adjustment_appends_entry(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)

        _, entry = adjust_stock(
            owner_id=tenant_a.id, product_id=product.id, new_stock=14, note="Recount", actor="Alice",
        )

        assert entry.reason == "manual_adjustment"
        assert (entry.previous_stock, entry.new_stock, entry.change_amount) == (10, 14, 4)
        assert entry.notes == "Recount"
        assert entry.actor_name == "Alice"
        assert db_session.get(Product, product.id).stock == 14

    def test_same_value_writes_nothing(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)
        version_before = product.version_id

        _, entry = adjust_stock(owner_id=tenant_a.id, product_id=product.id, new_stock=10)

        assert entry is None
        assert len(list_stock_history(owner_id=tenant_a.id, product_id=product.id)) == 1
        assert db_session.get(Product, product.id).version_id == version_before

    def test_negative_value_rejected_before_any_write(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)

        with pytest.raises(ValidationError):
            adjust_stock(owner_id=tenant_a.id, product_id=product.id, new_stock=-1)

        assert db_session.get(Product, product.id).stock == 10
        assert len(list_stock_history(owner_id=tenant_a.id, product_id=product.id)) == 1

    def test_unknown_product(self, db_session, tenant_a):
        with pytest.raises(StockError, match="Product not found"):
            adjust_stock(owner_id=tenant_a.id, product_id=99999, new_stock=1)


class TestSaleDeliveryAndReturns:

    def test_delivery_decrements(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=10)

        entry = record_sale_delivery(product, 4, 42, "Jo Buyer", "Alice")
        db_session.commit()

        assert entry.reason == "sale_delivery"
        assert (entry.previous_stock, entry.new_stock, entry.change_amount) == (10, 6, -4)
        assert entry.reference_id == "42"
        assert "Jo Buyer" in entry.notes
        assert product.stock == 6

    def test_oversell_floors_at_zero(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=3)

        entry = record_sale_delivery(product, 5, 7)
        db_session.commit()

        assert entry.new_stock == 0
        assert entry.change_amount == -3
        assert product.stock == 0

    def test_delivery_recorded_even_at_zero_stock(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=0)

        entry = record_sale_delivery(product, 2, 8)
        db_session.commit()

        assert (entry.previous_stock, entry.new_stock, entry.change_amount) == (0, 0, 0)
        assert len(list_stock_history(owner_id=tenant_a.id, product_id=product.id)) == 2

    def test_return_increments(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=2)

        _, entry = return_stock(
            owner_id=tenant_a.id, product_id=product.id, quantity=3, reference_id="RMA-1",
        )

        assert entry.reason == "return"
        assert (entry.previous_stock, entry.new_stock) == (2, 5)
        assert entry.reference_id == "RMA-1"

    def test_return_requires_positive_quantity(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=2)

        with pytest.raises(ValidationError):
            return_stock(owner_id=tenant_a.id, product_id=product.id, quantity=0)


class TestReplay:

    def test_replay_reproduces_stock(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=5)

        adjust_stock(owner_id=tenant_a.id, product_id=product.id, new_stock=12)
        return_stock(owner_id=tenant_a.id, product_id=product.id, quantity=3)
        record_sale_delivery(db_session.get(Product, product.id), 20, 1)
        db_session.commit()
        adjust_stock(owner_id=tenant_a.id, product_id=product.id, new_stock=6)

        entries = list_stock_history(owner_id=tenant_a.id, product_id=product.id)
        assert [e.reason for e in entries] == [
            "initial_stock", "manual_adjustment", "return", "sale_delivery", "manual_adjustment",
        ]
        product = db_session.get(Product, product.id)
        assert _replay(entries) == product.stock == 6
        assert verify_stock_history(product) == []


class TestImmutability:

    def test_entry_update_rejected(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=5)
        entry = list_stock_history(owner_id=tenant_a.id, product_id=product.id)[0]

        entry.notes = "tampered"
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

        assert list_stock_history(owner_id=tenant_a.id, product_id=product.id)[0].notes == "Initial stock"

    def test_entry_delete_rejected(self, db_session, tenant_a):
        product = make_product(tenant_a.id, stock=5)
        entry = list_stock_history(owner_id=tenant_a.id, product_id=product.id)[0]

        db_session.delete(entry)
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

        assert len(list_stock_history(owner_id=tenant_a.id, product_id=product.id)) == 1


class TestIntegrityVerification:

    def test_tampered_rows_reported_not_raised(self, db_session, app, tenant_a):
        product = make_product(tenant_a.id, stock=5)
        adjust_stock(owner_id=tenant_a.id, product_id=product.id, new_stock=8)
        first, second = list_stock_history(owner_id=tenant_a.id, product_id=product.id)

        table = StockHistoryEntry.__table__
        db_session.execute(table.update().where(table.c.id == first.id).values(change_amount=99))
        db_session.execute(table.update().where(table.c.id == second.id).values(previous_stock=4))
        db_session.execute(
            Product.__table__.update().where(Product.__table__.c.id == product.id).values(stock=11)
        )
        db_session.commit()
        db_session.expire_all()

        warnings = verify_stock_history(db_session.get(Product, product.id))
        codes = {w.code for w in warnings}

        assert codes == {"change_amount_mismatch", "chain_break", "replay_mismatch"}
        entry_ids = {w.entry_id for w in warnings if w.code != "replay_mismatch"}
        assert entry_ids == {first.id, second.id}


class TestBulkAdjustment:

    def test_rows_are_independent(self, db_session, tenant_a, tenant_b):
        p1 = make_product(tenant_a.id, name="Alpha", stock=5)
        p2 = make_product(tenant_a.id, name="Bravo", stock=8)
        foreign = make_product(tenant_b.id, name="Foreign", stock=1)

        outcomes = bulk_adjust_stock(
            owner_id=tenant_a.id,
            updates=[
                {"product_id": p1.id, "new_stock": 9},
                {"product_id": p2.id, "new_stock": 8},
                {"product_id": foreign.id, "new_stock": 50},
                {"product_id": p2.id, "new_stock": -1},
                {"product_id": p2.id, "new_stock": 3, "notes": "Shelf recount"},
            ],
            actor="Alice",
        )

        assert [o["status"] for o in outcomes] == ["adjusted", "unchanged", "failed", "failed", "adjusted"]
        assert outcomes[0]["entry"]["notes"] == "Bulk adjustment"
        assert outcomes[4]["entry"]["notes"] == "Shelf recount"

        assert db_session.get(Product, p1.id).stock == 9
        assert db_session.get(Product, p2.id).stock == 3
        assert db_session.get(Product, foreign.id).stock == 1
        assert len(list_stock_history(owner_id=tenant_b.id, product_id=foreign.id)) == 1

    def test_empty_updates_rejected(self, db_session, tenant_a):
        with pytest.raises(ValidationError):
            bulk_adjust_stock(owner_id=tenant_a.id, updates=[])


class TestLowStock:

    def test_active_products_at_or_below_threshold(self, db_session, tenant_a, tenant_b):
        low = make_product(tenant_a.id, name="Low", stock=2)
        edge = make_product(tenant_a.id, name="Edge", stock=5)
        make_product(tenant_a.id, name="Plenty", stock=50)
        make_product(tenant_a.id, name="Retired", stock=0, is_active=False)
        make_product(tenant_b.id, name="Other tenant", stock=0)

        names = [p.name for p in low_stock_products(tenant_a.id)]

        assert names == [low.name, edge.name]
