"""Tests for the /orders endpoints."""

import pytest

from conftest import cart_line
from models.order import VerificationMethod
from models.users import User
from schemas.checkout import DeliveryAddress
from utils.order_intent import create_provisional_order
from utils.pricing import calculate_price_breakdown
from utils.reconciliation import confirm_pending_order
from utils.tokenJWT import create_access_token


@pytest.fixture
def confirmed_order(db, shopper, make_product, delivery_address):
    product = make_product("Kurta", "250.00", stock=5)
    pending = create_provisional_order(
        db,
        user_id=shopper.id,
        items=[cart_line(product, 2)],
        breakdown=calculate_price_breakdown(500),
        address=DeliveryAddress(**delivery_address),
    )
    return confirm_pending_order(db, pending, "pay_O1", VerificationMethod.MANUAL).order


class TestOrdersApi:
    def test_list(self, client, auth_headers, confirmed_order):
        response = client.get("/orders", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["page"] == 1
        order = data["items"][0]
        assert order["order_number"] == confirmed_order.order_number
        assert order["total_amount"] == 601.8
        assert order["assurance"] == "low"
        assert order["items"][0]["line_total"] == 500.0

    def test_detail(self, client, auth_headers, confirmed_order, seller):
        response = client.get(f"/orders/{confirmed_order.id}", headers=auth_headers)
        assert response.status_code == 200
        item = response.json()["items"][0]
        assert item["seller_id"] == seller.id
        assert item["fulfillment_status"] == "pending"

    def test_lookup_by_payment(self, client, auth_headers, confirmed_order):
        response = client.get("/orders/lookup/pay_O1", headers=auth_headers)
        assert response.json()["id"] == confirmed_order.id
        assert client.get("/orders/lookup/pay_none", headers=auth_headers).status_code == 404

    def test_other_users_cannot_see_order(self, client, db, confirmed_order):
        other = User(email="other@example.com")
        db.add(other)
        db.commit()
        headers = {"Authorization": f"Bearer {create_access_token({'sub': other.email})}"}

        assert client.get(f"/orders/{confirmed_order.id}", headers=headers).status_code == 404
        assert client.get("/orders", headers=headers).json()["total"] == 0


class TestSellerItems:
    def _headers(self, user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}

    def test_seller_sees_own_lines(self, client, seller, confirmed_order):
        response = client.get("/orders/seller-items", headers=self._headers(seller))
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        line = data["items"][0]
        assert line["order_id"] == confirmed_order.id
        assert line["order_number"] == confirmed_order.order_number
        assert line["quantity"] == 2
        assert line["line_total"] == 500.0
        assert line["fulfillment_status"] == "pending"

    def test_buyer_has_no_seller_lines(self, client, auth_headers, confirmed_order):
        data = client.get("/orders/seller-items", headers=auth_headers).json()
        assert data["total"] == 0
        assert data["items"] == []

    def test_paginated(self, client, db, shopper, seller, make_product, delivery_address):
        first, second = make_product("Kurta", "250.00", stock=5), make_product("Dupatta", "100.00", stock=5)
        pending = create_provisional_order(
            db,
            user_id=shopper.id,
            items=[cart_line(first, 1), cart_line(second, 1)],
            breakdown=calculate_price_breakdown(350),
            address=DeliveryAddress(**delivery_address),
        )
        confirm_pending_order(db, pending, "pay_S1", VerificationMethod.MANUAL)

        page_one = client.get("/orders/seller-items", params={"page_size": 1}, headers=self._headers(seller)).json()
        page_two = client.get("/orders/seller-items", params={"page": 2, "page_size": 1},
                              headers=self._headers(seller)).json()

        assert page_one["total"] == 2
        assert len(page_one["items"]) == 1 and len(page_two["items"]) == 1
        assert {page_one["items"][0]["title"], page_two["items"][0]["title"]} == {"Kurta", "Dupatta"}
