"""
HTTP surface smoke tests through TestClient
"""
import pytest
from fastapi.testclient import TestClient

from main import create_app


@pytest.fixture
def client(store):
    with TestClient(create_app(store, enable_scheduler=False)) as client:
        yield client


def create_item(client, sku, quantity=0, cost=None):
    response = client.post("/api/inventory/items", json={
        "sku": sku, "name": sku.title(), "opening_quantity": quantity, "opening_cost": cost,
    })
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestInventoryApi:
    def test_item_and_transactions(self, client):
        item = create_item(client, "bolt", quantity=10, cost=5)

        response = client.post("/api/inventory/transactions", json={
            "item_id": item["id"], "direction": "OUT", "type": "SALE", "quantity": "4", "reference_id": "SO-1",
        })
        assert response.status_code == 201, response.text
        assert float(response.json()["balance_after"]) == 6

        history = client.get(f"/api/inventory/items/{item['id']}/transactions").json()
        assert [t["type"] for t in history] == ["SALE", "INITIAL"]

    def test_business_errors_map_to_status_codes(self, client):
        item = create_item(client, "nut", quantity=1, cost=1)

        response = client.post("/api/inventory/transactions", json={
            "item_id": item["id"], "direction": "OUT", "type": "SALE", "quantity": "5",
        })
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INSUFFICIENT_STOCK"

        missing = client.get("/api/inventory/items/00000000-0000-0000-0000-000000000000")
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "ITEM_NOT_FOUND"

    def test_adjust_reserve_and_fulfil(self, client):
        item = create_item(client, "washer", quantity=10, cost=1)
        base = f"/api/inventory/items/{item['id']}"

        adjusted = client.post(f"{base}/adjust", json={"quantity": "-2", "reason": "Count"})
        assert adjusted.status_code == 201, adjusted.text
        assert float(adjusted.json()["balance_after"]) == 8

        assert client.post(f"{base}/reserve", json={"quantity": "5", "reference_id": "SO-7"}).status_code == 201
        released = client.post(f"{base}/release", json={"quantity": "1", "reference_id": "SO-7"})
        assert float(released.json()["balance_after"]) == 4
        sale = client.post(f"{base}/fulfil", json={"quantity": "4", "reference_id": "SO-7"})
        assert sale.status_code == 201, sale.text
        assert sale.json()["type"] == "SALE"
        assert float(sale.json()["balance_after"]) == 4

        over = client.post(f"{base}/release", json={"quantity": "1", "reference_id": "SO-7"})
        assert over.status_code == 422
        assert over.json()["detail"]["code"] == "INVALID_QUANTITY"

    def test_correction_links_row(self, client):
        item = create_item(client, "rivet", quantity=3, cost=1)
        history = client.get(f"/api/inventory/items/{item['id']}/transactions").json()
        response = client.post(f"/api/inventory/items/{item['id']}/corrections", json={
            "direction": "OUT", "quantity": "1", "reason": "Opening count was high",
            "corrects_transaction_id": history[0]["id"],
        })
        assert response.status_code == 201, response.text
        assert response.json()["corrects_transaction_id"] == history[0]["id"]

    def test_availability(self, client):
        item = create_item(client, "spring", quantity=2, cost=1)
        response = client.post("/api/inventory/availability", json=[
            {"item_id": item["id"], "quantity": "3"},
        ])
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["available"] is False
        assert float(body["lines"][0]["shortage"]) == 1


class TestPurchaseApi:
    def test_preview_then_receive(self, client):
        item = create_item(client, "panel")
        order = client.post("/api/purchases", json={
            "supplier_name": "Acme",
            "lines": [{"item_id": item["id"], "quantity": "3", "unit_cost": "4.00"}],
        }).json()
        assert order["status"] == "DRAFT"

        preview = client.post(f"/api/purchases/{order['id']}/preview")
        assert preview.status_code == 200, preview.text
        assert float(preview.json()["total_value"]) == 12

        results = client.post(f"/api/purchases/{order['id']}/receive").json()
        assert results[0]["success"]
        assert client.get(f"/api/purchases/{order['id']}").json()["status"] == "RECEIVED"

    def test_list_and_stats(self, client):
        item = create_item(client, "hinge")
        for supplier in ("Acme", "Globex"):
            response = client.post("/api/purchases", json={
                "supplier_name": supplier,
                "lines": [{"item_id": item["id"], "quantity": "2", "unit_cost": "5.00"}],
            })
            assert response.status_code == 201, response.text

        listing = client.get("/api/purchases", params={"supplier_name": "Acme"})
        assert listing.status_code == 200, listing.text
        body = listing.json()
        assert body["total"] == 1
        assert body["orders"][0]["supplier_name"] == "Acme"
        assert float(body["orders"][0]["total_amount"]) == 10

        stats = client.get("/api/purchases/stats").json()
        assert stats["total"] == 2
        assert stats["by_status"]["DRAFT"] == 2
        assert float(stats["total_amount"]) == 20


class TestReconciliationApi:
    def test_clean_run(self, client):
        create_item(client, "frame", quantity=2, cost=1)
        body = client.get("/api/reconciliation").json()
        assert body["results"] == []
        assert body["summary"]["total"] == 0


class TestProductionApi:
    def test_batch_listing(self, client):
        part = create_item(client, "board", quantity=10, cost=2)
        model = client.post("/api/production/models", json={
            "sku": "SHELF", "name": "Shelf", "bom": [{"component_item_id": part["id"], "quantity_per_unit": "1"}],
        })
        assert model.status_code == 201, model.text
        batch = client.post("/api/production/batches", json={"model_id": model.json()["id"], "planned_quantity": "2"})
        assert batch.status_code == 201, batch.text
        client.post(f"/api/production/batches/{batch.json()['id']}/start")

        listing = client.get("/api/production/batches", params={"status": "IN_PROGRESS"})
        assert listing.status_code == 200, listing.text
        assert listing.json()["total"] == 1
        assert listing.json()["batches"][0]["id"] == batch.json()["id"]
        assert client.get("/api/production/batches", params={"status": "DONE"}).json()["total"] == 0
