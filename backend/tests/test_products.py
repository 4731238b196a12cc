"""Product catalogue and recipe routes."""

from decimal import Decimal

from cafepos.extensions import db
from cafepos.models import Product, ProductRecipe

from conftest import make_product


class TestProductCrud:

    def test_create_and_fetch(self, client, manager_headers):
        resp = client.post("/products", headers=manager_headers, json={
            "name": "Flat white", "category": "coffee", "price_cents": 450,
        })
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["price"] == "4.50"
        assert data["status"] == "active"

        fetched = client.get(f"/products/{data['id']}", headers=manager_headers).get_json()["data"]
        assert fetched["name"] == "Flat white"
        assert fetched["recipe"] == []

    def test_create_validation(self, client, manager_headers):
        resp = client.post("/products", headers=manager_headers, json={"name": "Free"})
        assert resp.status_code == 400

        resp = client.post("/products", headers=manager_headers, json={"name": "Neg", "price_cents": -1})
        assert resp.status_code == 400

        resp = client.post("/products", headers=manager_headers,
                           json={"name": "X", "price_cents": 1, "status": "archived"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_update_price_does_not_touch_existing_orders(self, client, manager_headers, staff_headers, espresso):
        order_id = client.post("/orders", headers=staff_headers, json={
            "items": [{"product_id": espresso.id, "qty": 1}],
        }).get_json()["data"]["id"]

        resp = client.put(f"/products/{espresso.id}", headers=manager_headers, json={"price_cents": 1200})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["price_cents"] == 1200

        order = client.get(f"/orders/{order_id}", headers=staff_headers).get_json()["data"]
        assert order["items"][0]["unit_price_cents"] == 1000

    def test_list_filters(self, client, staff_headers, db_session):
        make_product("Espresso", 250)
        make_product("Iced tea", 300)
        make_product("Old brew", 300, status="inactive")

        rows = client.get("/products?q=esp", headers=staff_headers).get_json()["data"]
        assert [r["name"] for r in rows] == ["Espresso"]

        rows = client.get("/products?status=inactive", headers=staff_headers).get_json()["data"]
        assert [r["name"] for r in rows] == ["Old brew"]

    def test_soft_delete(self, client, manager_headers, espresso):
        assert client.delete(f"/products/{espresso.id}", headers=manager_headers).status_code == 200
        assert client.get(f"/products/{espresso.id}", headers=manager_headers).status_code == 404
        assert db.session.get(Product, espresso.id).deleted_at is not None

    def test_staff_cannot_create(self, client, staff_headers):
        resp = client.post("/products", headers=staff_headers, json={"name": "X", "price_cents": 1})
        assert resp.status_code == 403


class TestRecipe:

    def test_replace_recipe(self, client, manager_headers, latte, beans, milk):
        resp = client.put(f"/products/{latte.id}/recipe", headers=manager_headers, json={
            "items": [{"ingredient_id": milk.id, "qty": "180"}],
        })
        assert resp.status_code == 200
        recipe = resp.get_json()["data"]
        assert [(r["ingredient_id"], Decimal(r["qty"])) for r in recipe] == [(milk.id, Decimal("180"))]
        assert db.session.query(ProductRecipe).filter_by(product_id=latte.id).count() == 1

    def test_replacement_is_what_settlement_consumes(self, client, manager_headers, staff_headers, espresso, milk):
        client.put(f"/products/{espresso.id}/recipe", headers=manager_headers, json={
            "items": [{"ingredient_id": milk.id, "qty": 30}],
        })
        client.post("/orders", headers=staff_headers, json={"items": [{"product_id": espresso.id, "qty": 2}]})
        rows = client.get("/inventory/movements?type=consume", headers=staff_headers).get_json()["data"]
        assert [(r["ingredient_id"], r["qty"]) for r in rows] == [(milk.id, "-60.000")]

    def test_empty_list_clears(self, client, manager_headers, latte):
        resp = client.put(f"/products/{latte.id}/recipe", headers=manager_headers, json={"items": []})
        assert resp.status_code == 200
        assert client.get(f"/products/{latte.id}/recipe", headers=manager_headers).get_json()["data"] == []

    def test_duplicate_ingredient_rejected(self, client, manager_headers, espresso, beans):
        resp = client.put(f"/products/{espresso.id}/recipe", headers=manager_headers, json={
            "items": [{"ingredient_id": beans.id, "qty": 1}, {"ingredient_id": beans.id, "qty": 2}],
        })
        assert resp.status_code == 400
        assert db.session.query(ProductRecipe).filter_by(product_id=espresso.id).count() == 1

    def test_unknown_ingredient_rejected(self, client, manager_headers, espresso):
        resp = client.put(f"/products/{espresso.id}/recipe", headers=manager_headers, json={
            "items": [{"ingredient_id": 5050, "qty": 1}],
        })
        assert resp.status_code == 404
        body = resp.get_json()
        assert body["error"] == "INGREDIENT_NOT_FOUND"
        assert body["details"] == {"ingredient_ids": [5050]}

    def test_non_positive_qty_rejected(self, client, manager_headers, espresso, beans):
        resp = client.put(f"/products/{espresso.id}/recipe", headers=manager_headers, json={
            "items": [{"ingredient_id": beans.id, "qty": 0}],
        })
        assert resp.status_code == 400
