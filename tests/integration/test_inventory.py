"""
Integration tests for the store inventory projection and its ledger checks.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from models.purchase_order import PurchaseOrderInput, PurchaseOrderItemInput
from models.result import ReceivingLine


@pytest.fixture
def stocked(service):
    """Two products received into two stores; returns the sent order."""
    order = service.create_purchase_order(PurchaseOrderInput(
        supplier_id="SUP-002",
        order_date=date(2026, 2, 1),
        items=[
            PurchaseOrderItemInput(product_id="P-001", quantity=50, unit_price=Decimal("116.00")),
            PurchaseOrderItemInput(product_id="P-002", quantity=40, unit_price=Decimal("250.00"),
                                   tax_class="zero_rated"),
        ],
    ))
    order = service.send_purchase_order(order.id)
    chairs, rice = order.items

    service.receive_items(order.id, "S-A", [
        ReceivingLine(item_id=chairs.id, quantity=20),
        ReceivingLine(item_id=rice.id, quantity=8),
    ])
    service.receive_items(order.id, "S-B", [ReceivingLine(item_id=chairs.id, quantity=5)])
    return order


@pytest.mark.integration
class TestProjection:
    """Tests for current-stock reads."""

    def test_quantity_of(self, service, stocked):
        assert service.inventory.quantity_of("S-A", "P-001") == 20
        assert service.inventory.quantity_of("S-B", "P-001") == 5
        assert service.inventory.quantity_of("S-B", "P-002") == 0

    def test_all_for_store_is_enriched(self, service, stocked):
        rows = service.inventory.all_for_store("S-A")
        assert [(r.product_id, r.quantity) for r in rows] == [("P-001", 20), ("P-002", 8)]
        chairs = rows[0]
        assert chairs.product_name == "Office Chair"
        assert chairs.product_code == "CHR-01"
        assert chairs.category == "Furniture"
        assert chairs.unit_of_measure == "ea"
        assert chairs.store_name == "Store A"
        assert chairs.inventory_value == Decimal("2000.00")

    def test_all_for_product(self, service, stocked):
        rows = service.inventory.all_for_product("P-001")
        assert {(r.store_id, r.quantity) for r in rows} == {("S-A", 20), ("S-B", 5)}

    def test_summary_by_store(self, service, stocked):
        summaries = {s.store_id: s for s in service.inventory.summary_by_store()}
        a = summaries["S-A"]
        assert a.store_name == "Store A"
        assert a.store_code == "STA"
        assert a.total_products == 2
        assert a.total_items == 28
        assert a.total_inventory_value == Decimal("4000.00")
        assert summaries["S-B"].total_items == 5

    def test_low_stock(self, service, stocked):
        low = service.inventory.low_stock()
        assert [(r.store_id, r.product_id, r.quantity) for r in low] == [("S-B", "P-001", 5), ("S-A", "P-002", 8)]
        assert service.inventory.low_stock(threshold=5, store_id="S-B")[0].quantity == 5
        assert service.inventory.low_stock(threshold=4) == []

    def test_empty_store(self, service, master_data):
        assert service.inventory.all_for_store("S-A") == []
        assert service.inventory.summary_by_store() == []


@pytest.mark.integration
class TestLedgerViews:
    """Tests for ledger-derived stock and reconciliation."""

    def test_projection_equals_ledger_sum(self, service, stocked):
        ledger = {(r["store_id"], r["product_id"]): r["quantity"] for r in service.db.ledger_totals()}
        projection = {(r.store_id, r.product_id): r.quantity for r in service.db.get_store_inventory()}
        assert ledger == projection
        assert service.inventory.reconcile() == []

    def test_as_of_today_and_before(self, service, stocked):
        today = datetime.now(timezone.utc).date()
        levels = {(s.store_id, s.product_id): s.quantity for s in service.inventory.as_of(today)}
        assert levels == {("S-A", "P-001"): 20, ("S-A", "P-002"): 8, ("S-B", "P-001"): 5}

        assert service.inventory.as_of(today - timedelta(days=1)) == []

    def test_as_of_for_one_store(self, service, stocked):
        today = datetime.now(timezone.utc).date()
        levels = service.inventory.as_of(today, store_id="S-B")
        assert [(s.product_id, s.quantity, s.store_name) for s in levels] == [("P-001", 5, "Store B")]

    def test_reconcile_reports_drift(self, service, stocked):
        """A projection row edited outside the reconciler shows up as a mismatch."""
        with service.db.transaction() as conn:
            conn.execute(
                "UPDATE store_inventory SET quantity = 99 WHERE store_id = 'S-A' AND product_id = 'P-001'"
            )
            conn.execute(
                "UPDATE purchase_order_items SET received_quantity = 1 WHERE id = ?",
                (stocked.items[1].id,),
            )

        mismatches = service.inventory.reconcile()
        by_kind = {m.kind: m for m in mismatches}
        assert len(mismatches) == 2
        assert by_kind["store_inventory"].store_id == "S-A"
        assert by_kind["store_inventory"].ledger_quantity == 20
        assert by_kind["store_inventory"].recorded_quantity == 99
        assert by_kind["order_item"].purchase_order_item_id == stocked.items[1].id
        assert by_kind["order_item"].ledger_quantity == 8
        assert by_kind["order_item"].recorded_quantity == 1
