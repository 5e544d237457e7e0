"""
HTTP contract of checkout, invoice edit/void and stock adjustment.
"""

import json

import pytest

from kasir.extensions import db
from kasir.models import Product, Sale, StockMovement


def _stock(client, headers, product_id):
    return client.get(f"/api/products/{product_id}", headers=headers).json["stock"]


class TestCheckoutRoute:

    def test_json_checkout(self, client, petugas_headers, make_product, customer):
        p = make_product(sale_price=12000, stock=5)

        resp = client.post("/api/sales", headers=petugas_headers, json={
            "customer_id": customer.id,
            "amount_tendered": 25000,
            "lines": [{"id": p.id, "quantity": 2}],
        })

        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["subtotal"] == 24000
        assert sale["customer_discount"] == 2400
        assert sale["net_total"] == 21600
        assert sale["change"] == 3400
        assert sale["customer"]["name"] == "Budi"
        assert sale["lines"][0]["product_name"] == p.name
        assert _stock(client, petugas_headers, p.id) == 3

    def test_form_checkout_ignores_client_totals(self, client, petugas_headers, make_product):
        p = make_product(sale_price=5000, stock=5)

        resp = client.post("/api/sales", headers=petugas_headers, data={
            "selectedProduk": json.dumps([{"id": p.id, "quantity": 1, "diskon": 0}]),
            "amount_tendered": "5000",
            "net_total": "1",
            "diskon": "4999",
        })

        assert resp.status_code == 201
        assert resp.json["sale"]["net_total"] == 5000

    def test_short_payment_is_400(self, client, petugas_headers, make_product):
        p = make_product(sale_price=5000, stock=5)
        resp = client.post("/api/sales", headers=petugas_headers, json={
            "amount_tendered": 4000,
            "lines": [{"id": p.id, "quantity": 1}],
        })
        assert resp.status_code == 400
        assert resp.json["details"]["net_total"] == 5000
        assert db.session.query(Sale).count() == 0

    def test_insufficient_stock_is_409(self, client, petugas_headers, make_product):
        p = make_product(name="Roti", stock=1)
        resp = client.post("/api/sales", headers=petugas_headers, json={
            "amount_tendered": 10**6,
            "lines": [{"id": p.id, "quantity": 2}],
        })
        assert resp.status_code == 409
        assert "Roti" in resp.json["error"]
        assert _stock(client, petugas_headers, p.id) == 1

    @pytest.mark.parametrize("payload", [
        {"lines": [{"id": 1, "quantity": 1}]},
        {"amount_tendered": 100, "lines": []},
        {"amount_tendered": 100, "lines": "[{"},
        {"amount_tendered": "1.5", "lines": [{"id": 1, "quantity": 1}]},
        [1],
        "lines",
    ])
    def test_malformed_checkout_is_400(self, client, petugas_headers, payload):
        resp = client.post("/api/sales", headers=petugas_headers, json=payload)
        assert resp.status_code == 400

    def test_requires_auth(self, client, db_session):
        resp = client.post("/api/sales", json={})
        assert resp.status_code == 401

    def test_quote(self, client, petugas_headers, make_product):
        p = make_product(sale_price=7000, stock=1)
        resp = client.post("/api/sales/quote", headers=petugas_headers, json={
            "lines": [{"id": p.id, "quantity": 3}],
            "amount_tendered": 25000,
        })
        assert resp.status_code == 200
        assert resp.json["totals"]["net_total"] == 21000
        assert resp.json["totals"]["change"] == 4000
        # quoting never touches stock
        assert _stock(client, petugas_headers, p.id) == 1

    def test_quote_rejects_non_object_body(self, client, petugas_headers):
        resp = client.post("/api/sales/quote", headers=petugas_headers, json=[{"id": 1, "quantity": 1}])
        assert resp.status_code == 400


class TestInvoiceRoutes:

    def _checkout(self, client, headers, product, qty):
        resp = client.post("/api/sales", headers=headers, json={
            "amount_tendered": 10**7,
            "lines": [{"id": product.id, "quantity": qty}],
        })
        assert resp.status_code == 201
        return resp.json["sale"]["id"]

    def test_get_and_list(self, client, petugas_headers, make_product):
        p = make_product(stock=5)
        sale_id = self._checkout(client, petugas_headers, p, 1)

        resp = client.get(f"/api/sales/{sale_id}", headers=petugas_headers)
        assert resp.status_code == 200
        assert resp.json["sale"]["invoice_number"].startswith(f"{sale_id:04d}/INV/IK/")

        resp = client.get("/api/sales?per_page=5", headers=petugas_headers)
        assert resp.json["pagination"]["total"] == 1

        assert client.get("/api/sales/999999", headers=petugas_headers).status_code == 404

    def test_edit_and_delete_are_admin_only(self, client, petugas_headers, admin_headers, make_product):
        p = make_product(stock=10)
        sale_id = self._checkout(client, petugas_headers, p, 2)

        body = {"amount_tendered": 10**7, "lines": [{"id": p.id, "quantity": 4}]}
        assert client.put(f"/api/sales/{sale_id}", headers=petugas_headers, json=body).status_code == 403
        assert client.delete(f"/api/sales/{sale_id}", headers=petugas_headers).status_code == 403

        resp = client.put(f"/api/sales/{sale_id}", headers=admin_headers, json=body)
        assert resp.status_code == 200
        assert _stock(client, admin_headers, p.id) == 6

        resp = client.delete(f"/api/sales/{sale_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert _stock(client, admin_headers, p.id) == 10
        assert client.get(f"/api/sales/{sale_id}", headers=admin_headers).status_code == 404

    def test_void_after_product_deleted(self, client, admin_headers, make_product):
        p = make_product(stock=10)
        sale_id = self._checkout(client, admin_headers, p, 3)
        assert client.delete(f"/api/products/{p.id}", headers=admin_headers).status_code == 200

        resp = client.delete(f"/api/sales/{sale_id}", headers=admin_headers)

        assert resp.status_code == 200
        assert db.session.get(Product, p.id, populate_existing=True).stock == 10


class TestStockAdjustRoute:

    def test_in_and_out(self, client, petugas_headers, make_product):
        p = make_product(stock=2)

        resp = client.post("/api/stock/adjust", headers=petugas_headers,
                           json={"product_id": p.id, "amount": 5, "type": "in"})
        assert resp.status_code == 200
        assert resp.json["stock"] == 7
        assert resp.json["movement"]["stock_in"] == 5

        resp = client.post("/api/stock/adjust", headers=petugas_headers,
                           json={"product_id": p.id, "amount": 7, "type": "out"})
        assert resp.status_code == 200
        assert resp.json["stock"] == 0

    def test_out_beyond_stock_is_409(self, client, petugas_headers, make_product):
        p = make_product(stock=2)
        movements = db.session.query(StockMovement).count()

        resp = client.post("/api/stock/adjust", headers=petugas_headers,
                           json={"product_id": p.id, "amount": 3, "type": "out"})

        assert resp.status_code == 409
        assert _stock(client, petugas_headers, p.id) == 2
        assert db.session.query(StockMovement).count() == movements

    @pytest.mark.parametrize("body", [
        {"amount": 1, "type": "in"},
        {"product_id": 1, "type": "in"},
        {"product_id": 1, "amount": 0, "type": "in"},
        {"product_id": 1, "amount": 1, "type": "up"},
        {"product_id": 1, "amount": 1, "type": 1},
        [1],
    ])
    def test_bad_input_is_400(self, client, petugas_headers, make_product, body):
        make_product(stock=2)
        resp = client.post("/api/stock/adjust", headers=petugas_headers, json=body)
        assert resp.status_code == 400

    def test_unknown_product_is_404(self, client, petugas_headers):
        resp = client.post("/api/stock/adjust", headers=petugas_headers,
                           json={"product_id": 999999, "amount": 1, "type": "in"})
        assert resp.status_code == 404

    def test_current_stock(self, client, petugas_headers, make_product):
        p = make_product(stock=4)
        resp = client.get(f"/api/stock/{p.id}", headers=petugas_headers)
        assert resp.status_code == 200
        assert resp.json == {"product_id": p.id, "stock": 4}

        assert client.get("/api/stock/999999", headers=petugas_headers).status_code == 404

    def test_history_is_admin_only(self, client, petugas_headers, admin_headers, make_product):
        p = make_product(stock=2)
        assert client.get("/api/stock/history", headers=petugas_headers).status_code == 403

        resp = client.get(f"/api/stock/history?product_id={p.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["items"][0]["product_name"] == p.name

        resp = client.get("/api/stock/history?start_date=nope", headers=admin_headers)
        assert resp.status_code == 400
