"""REST API through FastAPI's TestClient."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from interfaces.api.server import create_app


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as c:
        yield c


@pytest.fixture
def customer_id(client):
    resp = client.post("/api/customers", json={"name": "Autohaus Nord", "email": "info@nord.de"})
    assert resp.status_code == 201
    return resp.json()["customer"]["id"]


def _order_body(customer_id, plate="M-AB 1", **extra):
    return {
        "customer_id": customer_id,
        "license_plate": plate,
        "vehicle_model": "Golf",
        "base_service_id": "premium",
        "addon_service_ids": ["polish"],
        **extra,
    }


class TestBasics:

    def test_health_and_catalog(self, client):
        assert client.get("/health").json() == {"status": "ok"}
        catalog = client.get("/api/catalog").json()
        assert len(catalog["base_services"]) == 3
        assert len(catalog["addon_services"]) == 4

    def test_customer_validation_is_400(self, client):
        resp = client.post("/api/customers", json={"name": ""})
        assert resp.status_code == 400
        assert "required" in resp.json()["detail"]

    def test_company_profile(self, client):
        assert client.get("/api/company").json()["company"]["name"] == "Auto-Anlage GmbH"
        resp = client.put("/api/company", json={"email": "billing@shop.de"})
        assert resp.status_code == 200
        assert resp.json()["company"]["email"] == "billing@shop.de"


class TestOrders:

    def test_single_line_body(self, client, customer_id):
        resp = client.post("/api/orders", json=_order_body(customer_id))
        assert resp.status_code == 201
        assert resp.json()["orders_created"] == 1
        listed = client.get("/api/orders").json()["orders"]
        assert listed[0]["customer_name"] == "Autohaus Nord"

    def test_multi_line_body(self, client, customer_id):
        resp = client.post("/api/orders", json={
            "customer_id": customer_id,
            "orders": [
                {"license_plate": "A-1", "vehicle_model": "Golf", "base_service_id": "basic"},
                {"license_plate": "A-2", "vehicle_model": "Polo", "base_service_id": "showroom"},
            ],
        })
        assert resp.status_code == 201
        assert [o["license_plate"] for o in resp.json()["orders"]] == ["A-1", "A-2"]

    def test_unknown_customer_is_404(self, client):
        resp = client.post("/api/orders", json=_order_body("cust_missing"))
        assert resp.status_code == 404

    def test_bad_service_is_400(self, client, customer_id):
        resp = client.post("/api/orders", json=_order_body(customer_id, base_service_id="wax"))
        assert resp.status_code == 400

    def test_update_and_get(self, client, customer_id):
        order_id = client.post("/api/orders", json=_order_body(customer_id)).json()["orders"][0]["id"]
        resp = client.put(f"/api/orders/{order_id}", json={"notes": "keys at desk"})
        assert resp.status_code == 200
        assert client.get(f"/api/orders/{order_id}").json()["order"]["notes"] == "keys at desk"
        assert client.get("/api/orders/ord_missing").status_code == 404


class TestInvoices:

    def _bill(self, client, customer_id):
        order_id = client.post("/api/orders", json=_order_body(customer_id)).json()["orders"][0]["id"]
        resp = client.post(f"/api/orders/{order_id}/invoice")
        assert resp.status_code == 201
        return resp.json()["invoice"]

    def test_bill_single_order(self, client, customer_id):
        invoice = self._bill(client, customer_id)
        assert invoice["invoice_number"] == "RE-2026-00001"
        assert invoice["total_gross"] == 247.52
        assert invoice["stage"] == "created"

    def test_lifecycle_and_overdue(self, client, customer_id, clock):
        invoice = self._bill(client, customer_id)
        assert client.patch(f"/api/invoices/{invoice['id']}/paid").status_code == 400

        resp = client.patch(f"/api/invoices/{invoice['id']}/sent")
        assert resp.status_code == 200
        assert resp.json()["invoices"][0]["stage"] == "sent"
        assert client.patch(f"/api/invoices/{invoice['id']}/sent").status_code == 400

        clock.now += timedelta(days=20)
        assert client.get(f"/api/invoices/{invoice['id']}").json()["invoice"]["stage"] == "overdue"
        assert client.get("/api/invoices/summary").json()["summary"]["overdue"] == 1

        resp = client.patch(f"/api/invoices/{invoice['id']}/paid")
        assert resp.json()["invoices"][0]["stage"] == "paid"

    def test_weekly(self, client, customer_id):
        client.post("/api/orders", json=_order_body(customer_id, plate="A-1"))
        client.post("/api/orders", json=_order_body(customer_id, plate="A-2", base_service_id="basic",
                                                    addon_service_ids=[]))
        resp = client.post("/api/invoices/weekly", json={"customer_ids": [customer_id, "cust_missing"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["week_start"] == "2026-03-02T00:00:00.000+00:00"
        assert body["skipped_customers"] == ["cust_missing"]
        [invoice] = body["invoices"]
        assert invoice["subtotal_net"] == 287.00
        assert invoice["total_gross"] == 341.53

    def test_weekly_with_half_range_is_400(self, client):
        resp = client.post("/api/invoices/weekly", json={"week_start": "2026-03-02"})
        assert resp.status_code == 400

    def test_pdf_download(self, client, customer_id):
        invoice = self._bill(client, customer_id)
        resp = client.get(f"/api/invoices/{invoice['id']}/pdf")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert "Invoice-RE-2026-00001.pdf" in resp.headers["content-disposition"]
        assert resp.content.startswith(b"%PDF")

    def test_missing_invoice_is_404(self, client):
        assert client.get("/api/invoices/inv_missing").status_code == 404
        assert client.get("/api/invoices/inv_missing/pdf").status_code == 404
        assert client.patch("/api/invoices/inv_missing/sent").status_code == 404
