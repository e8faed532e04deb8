"""Tests for the /cart endpoints."""

from models.log import Log


class TestCartApi:
    def test_requires_token(self, client):
        assert client.get("/cart").status_code == 401

    def test_empty_cart(self, client, auth_headers):
        response = client.get("/cart", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0.0, "item_count": 0}

    def test_add_update_delete(self, client, auth_headers, make_product):
        product = make_product("Kurta", "250.00", stock=5)

        response = client.post("/cart/add", json={"product_id": product.id, "qty": 2}, headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 500.0
        assert data["items"][0]["max_stock"] == 5

        response = client.put(f"/cart/items/{product.id}", json={"qty": 9}, headers=auth_headers)
        assert response.json()["items"][0]["qty"] == 5

        response = client.delete(f"/cart/items/{product.id}", headers=auth_headers)
        assert response.json()["items"] == []

    def test_add_is_capped_at_stock(self, client, auth_headers, make_product, db):
        product = make_product(stock=3)
        response = client.post("/cart/add", json={"product_id": product.id, "qty": 7}, headers=auth_headers)
        assert response.json()["item_count"] == 3
        assert db.query(Log).filter(Log.action == "CART_ADD", Log.status == "CAPPED").count() == 1

    def test_cart_survives_requests(self, client, auth_headers, make_product):
        a = make_product("Lamp", "300.00")
        b = make_product("Mug", "50.00")
        client.post("/cart/add", json={"product_id": a.id}, headers=auth_headers)
        client.post("/cart/add", json={"product_id": b.id, "qty": 3}, headers=auth_headers)

        data = client.get("/cart", headers=auth_headers).json()
        assert [i["product_id"] for i in data["items"]] == [a.id, b.id]
        assert data["total"] == 450.0
        assert data["item_count"] == 4

    def test_set_quantity_zero_removes(self, client, auth_headers, make_product):
        product = make_product()
        client.post("/cart/add", json={"product_id": product.id}, headers=auth_headers)
        response = client.put(f"/cart/items/{product.id}", json={"qty": 0}, headers=auth_headers)
        assert response.json()["items"] == []

    def test_unknown_product(self, client, auth_headers):
        response = client.post("/cart/add", json={"product_id": 999}, headers=auth_headers)
        assert response.status_code == 404

    def test_sold_out_product(self, client, auth_headers, make_product):
        product = make_product(stock=0)
        response = client.post("/cart/add", json={"product_id": product.id}, headers=auth_headers)
        assert response.status_code == 400

    def test_missing_line(self, client, auth_headers):
        assert client.put("/cart/items/5", json={"qty": 1}, headers=auth_headers).status_code == 404
        assert client.delete("/cart/items/5", headers=auth_headers).status_code == 404

    def test_clear(self, client, auth_headers, make_product):
        product = make_product()
        client.post("/cart/add", json={"product_id": product.id}, headers=auth_headers)
        response = client.delete("/cart", headers=auth_headers)
        assert response.json()["item_count"] == 0
