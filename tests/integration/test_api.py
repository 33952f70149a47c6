"""
API tests for the FastAPI procurement backend.
"""
import pytest
from fastapi.testclient import TestClient

import dashboard.app as app_module


@pytest.fixture
def client(service, monkeypatch) -> TestClient:
    """TestClient bound to the isolated service."""
    monkeypatch.setattr(app_module, "_service", service)
    return TestClient(app_module.app)


@pytest.fixture
def created(client) -> dict:
    resp = client.post("/api/purchase-orders", params={"actor": "buyer"}, json={
        "supplier_id": "SUP-001",
        "order_date": "2026-01-15",
        "notes": "Chairs",
        "items": [{"product_id": "P-001", "quantity": 100, "unit_price": "116.00", "tax_class": "16%"}],
    })
    assert resp.status_code == 201
    return resp.json()


@pytest.mark.api
class TestPurchaseOrderEndpoints:
    """Tests for the order lifecycle routes."""

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_create(self, created):
        assert created["po_number"] == "PO-20260115-0001"
        assert created["status"] == "draft"
        assert created["total_amount"] == "11600.00"
        assert created["items"][0]["unit_price_exclusive"] == "100.00"

    def test_create_validation_error(self, client):
        resp = client.post("/api/purchase-orders", json={"supplier_id": "SUP-001", "items": []})
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

    def test_full_flow(self, client, created):
        order_id = created["id"]
        item_id = created["items"][0]["id"]

        assert client.post(f"/api/purchase-orders/{order_id}/send").json()["status"] == "sent"

        resp = client.post(f"/api/purchase-orders/{order_id}/receive", json={
            "store_id": "S-A",
            "items": [{"item_id": item_id, "quantity": 40}],
            "actor": "clerk",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "partially_received"
        assert body["total_quantity"] == 40
        assert body["total_cost"] == "4000.00"

        detail = client.get(f"/api/purchase-orders/{order_id}").json()
        assert detail["order"]["items"][0]["received_quantity"] == 40
        assert len(detail["receipts"]) == 1

        stock = client.get("/api/stores/S-A/inventory").json()
        assert stock[0]["quantity"] == 40
        assert stock[0]["inventory_value"] == "4000.00"

        assert client.get("/api/inventory/reconcile").json() == {"consistent": True, "mismatches": []}
        assert client.get("/api/stats").json()["partially_received"] == 1

    def test_over_receipt_is_conflict(self, client, created):
        order_id = created["id"]
        client.post(f"/api/purchase-orders/{order_id}/send")
        resp = client.post(f"/api/purchase-orders/{order_id}/receive", json={
            "store_id": "S-A",
            "items": [{"item_id": created["items"][0]["id"], "quantity": 101}],
        })
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "quantity_exceeded"
        assert body["requested"] == 101
        assert body["remaining"] == 100

    def test_receive_into_draft_is_conflict(self, client, created):
        resp = client.post(f"/api/purchase-orders/{created['id']}/receive", json={
            "store_id": "S-A",
            "items": [{"item_id": created["items"][0]["id"], "quantity": 1}],
        })
        assert resp.status_code == 409
        assert resp.json()["error"] == "invalid_state"

    def test_unknown_store_is_not_found(self, client, created):
        client.post(f"/api/purchase-orders/{created['id']}/send")
        resp = client.post(f"/api/purchase-orders/{created['id']}/receive", json={
            "store_id": "S-404",
            "items": [{"item_id": created["items"][0]["id"], "quantity": 1}],
        })
        assert resp.status_code == 404

    def test_update_and_cancel(self, client, created):
        order_id = created["id"]
        resp = client.patch(f"/api/purchase-orders/{order_id}", json={"notes": "Updated"})
        assert resp.status_code == 200
        assert resp.json()["notes"] == "Updated"

        resp = client.post(f"/api/purchase-orders/{order_id}/cancel", json={"reason": "No budget"})
        assert resp.json()["status"] == "cancelled"

        resp = client.post(f"/api/purchase-orders/{order_id}/cancel")
        assert resp.status_code == 409

        audit = client.get(f"/api/purchase-orders/{order_id}/audit").json()
        assert [e["action"] for e in audit] == ["created", "updated", "cancelled"]

    def test_list_filters(self, client, created):
        assert len(client.get("/api/purchase-orders").json()) == 1
        assert client.get("/api/purchase-orders", params={"status": "sent"}).json() == []
        assert len(client.get("/api/purchase-orders", params={"search": "acme"}).json()) == 1
        assert client.get("/api/purchase-orders", params={"date_range": "yesterday"}).status_code == 422

    def test_missing_order(self, client, master_data):
        resp = client.get("/api/purchase-orders/999")
        assert resp.status_code == 404
        assert resp.json()["entity"] == "purchase order"


@pytest.mark.api
class TestInventoryEndpoints:
    """Tests for inventory read routes."""

    def test_summary_low_stock_and_as_of(self, client, created):
        order_id = created["id"]
        client.post(f"/api/purchase-orders/{order_id}/send")
        client.post(f"/api/purchase-orders/{order_id}/receive", json={
            "store_id": "S-B",
            "items": [{"product_id": "P-001", "quantity": 7}],
        })

        summary = client.get("/api/inventory/summary").json()
        assert summary[0]["store_id"] == "S-B"
        assert summary[0]["total_items"] == 7

        low = client.get("/api/inventory/low-stock").json()
        assert [(r["store_id"], r["quantity"]) for r in low] == [("S-B", 7)]

        assert client.get("/api/products/P-001/inventory").json()[0]["store_name"] == "Store B"
        assert client.get("/api/inventory/as-of", params={"date": "2000-01-01"}).json() == []

    def test_unknown_store_inventory(self, client, master_data):
        assert client.get("/api/stores/NOPE/inventory").status_code == 404
