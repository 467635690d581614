# Overview: HTTP tests for the JSON API; envelopes, status codes and domain-error mapping.

from datetime import timedelta

import pytest

from orderdesk.time_utils import to_utc_z, utcnow

from conftest import VALID_CARD


@pytest.fixture
def shop(db_session, make_product, make_customer):
    return {
        "water": make_product(name="Water", base_price_cents=1200),
        "cola": make_product(name="Cola", base_price_cents=2400),
        "customer": make_customer(credit_limit_cents=50_000),
    }


def add(client, customer_id, product_id, quantity=1):
    return client.post(f"/api/customers/{customer_id}/cart", json={"product_id": product_id, "quantity": quantity})


class TestSystem:

    def test_health(self, client, shop):
        response = client.get("/api/health")
        body = response.get_json()

        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["products"] == 2

    def test_stuck_reward_degrades_health(self, client, db_session, make_customer):
        from datetime import datetime

        from orderdesk.models import CustomerReward

        customer = make_customer()
        db_session.add(CustomerReward(
            customer_id=customer.id,
            quarter=3,
            year=2026,
            status="processing",
            processing_started_at=datetime(2026, 1, 1),
        ))
        db_session.commit()

        response = client.get("/api/health")
        body = response.get_json()

        assert response.status_code == 200
        assert body["status"] == "degraded"
        assert body["checks"]["reward_batch"]["details"]["stale_processing_rewards"] == 1

    def test_version(self, client):
        body = client.get("/api/version").get_json()
        assert body["api_version"]
        assert "secret" not in str(body).lower()

    def test_cors_headers(self, client):
        response = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert response.headers.get("Access-Control-Allow-Origin") == "http://localhost:5173"

        foreign = client.get("/api/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in foreign.headers


class TestCatalogRoutes:

    def test_list_products_is_paginated(self, client, shop):
        response = client.get("/api/products?per_page=1")
        body = response.get_json()

        assert response.status_code == 200
        assert body["success"] is True
        assert len(body["data"]) == 1
        assert body["pagination"]["total"] == 2
        assert body["pagination"]["has_next"] is True

    def test_create_product_and_validation(self, client, db_session):
        created = client.post("/api/products", json={"sku": "NEW-1", "name": "Tonic", "base_price_cents": 900})
        assert created.status_code == 201
        assert created.get_json()["data"]["sku"] == "NEW-1"

        invalid = client.post("/api/products", json={"sku": "NEW-2", "name": "Bad", "base_price_cents": -5})
        assert invalid.status_code == 400
        assert invalid.get_json()["success"] is False

    def test_customer_price(self, client, shop, make_price_list):
        price_list = make_price_list({shop["water"].id: 1000})
        customer_id = shop["customer"].id
        client.put(f"/api/customers/{customer_id}/price-list", json={"price_list_id": price_list.id})

        response = client.get(f"/api/products/{shop['water'].id}/price?customer_id={customer_id}")

        assert response.status_code == 200
        assert response.get_json()["data"]["unit_price_cents"] == 1000

    def test_missing_product_is_404(self, client, db_session):
        response = client.get("/api/products/999")
        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"


class TestCartRoutes:

    def test_add_and_read_cart(self, client, shop):
        customer_id = shop["customer"].id
        response = add(client, customer_id, shop["water"].id, 3)

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["subtotal_cents"] == 3600
        assert data["total_cents"] == 3600

        assert client.get(f"/api/customers/{customer_id}/cart").get_json()["data"]["subtotal_cents"] == 3600

    def test_client_cannot_add_free_items(self, client, shop):
        response = client.post(
            f"/api/customers/{shop['customer'].id}/cart",
            json={"product_id": shop["water"].id, "quantity": 1, "is_free_item": True},
        )
        assert response.status_code == 400

    def test_update_and_remove_line(self, client, shop):
        customer_id = shop["customer"].id
        item_id = add(client, customer_id, shop["water"].id, 1).get_json()["data"]["items"][0]["id"]

        updated = client.put(f"/api/customers/{customer_id}/cart/items/{item_id}", json={"quantity": 4})
        assert updated.get_json()["data"]["subtotal_cents"] == 4800

        removed = client.delete(f"/api/customers/{customer_id}/cart/items/{item_id}")
        assert removed.get_json()["data"]["items"] == []

    def test_bad_quantity_is_400(self, client, shop):
        response = add(client, shop["customer"].id, shop["water"].id, 0)
        assert response.status_code == 400
        assert response.get_json()["code"] == "validation_error"

    def test_claim_returns_201_then_200(self, client, shop, make_discount):
        customer_id = shop["customer"].id
        discount = make_discount("buy_get", 0, product_ids=[shop["water"].id], min_quantity=3, bonus_quantity=1)
        add(client, customer_id, shop["water"].id, 3)
        url = f"/api/customers/{customer_id}/cart/discounts/{discount.id}/claim"
        body = {"selections": [{"product_id": shop["water"].id, "quantity": 1}]}

        first = client.post(url, json=body)
        second = client.post(url, json=body)

        assert first.status_code == 201
        assert second.status_code == 200
        cart = second.get_json()["data"]["cart"]
        assert [i["is_free_item"] for i in cart["items"]].count(True) == 1
        assert cart["applied_discounts"][0]["already_claimed"] is True

    def test_wrong_claim_count_reports_entitlement(self, client, shop, make_discount):
        customer_id = shop["customer"].id
        discount = make_discount("buy_get", 0, min_quantity=3, bonus_quantity=1)
        add(client, customer_id, shop["water"].id, 6)

        response = client.post(
            f"/api/customers/{customer_id}/cart/discounts/{discount.id}/claim",
            json={"selections": [{"product_id": shop["water"].id, "quantity": 1}]},
        )

        assert response.status_code == 400
        assert response.get_json()["free_items_count"] == 2


class TestCheckoutRoutes:

    def test_credit_checkout(self, client, shop):
        customer_id = shop["customer"].id
        add(client, customer_id, shop["water"].id, 2)

        response = client.post(f"/api/customers/{customer_id}/checkout", json={"payment_method": "credit"})

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["order_number"] == "ORD-000001"
        assert data["status"] == "pending"
        assert len(data["items"]) == 1
        assert data["status_history"][0]["to_status"] == "pending"

    def test_insufficient_credit_is_409_with_details(self, client, make_product, make_customer):
        product = make_product(base_price_cents=100)
        customer = make_customer(credit_limit_cents=5000, credit_used_cents=4800)
        add(client, customer.id, product.id, 3)

        response = client.post(f"/api/customers/{customer.id}/checkout", json={"payment_method": "credit"})
        body = response.get_json()

        assert response.status_code == 409
        assert body["code"] == "insufficient_credit"
        assert body["required_cents"] == 300
        assert body["available_cents"] == 200
        assert "card" in body["alternative_payment_methods"]

    def test_declined_card_is_402(self, client, shop):
        customer_id = shop["customer"].id
        add(client, customer_id, shop["water"].id, 1)

        response = client.post(
            f"/api/customers/{customer_id}/checkout",
            json={"payment_method": "card", "card": dict(VALID_CARD, number="4000 0000 0000 0002")},
        )

        assert response.status_code == 402
        assert response.get_json()["code"] == "payment_declined"

    def test_missing_payment_method(self, client, shop):
        response = client.post(f"/api/customers/{shop['customer'].id}/checkout", json={})
        assert response.status_code == 400


class TestOrderRoutes:

    @pytest.fixture
    def order_id(self, client, shop):
        customer_id = shop["customer"].id
        add(client, customer_id, shop["cola"].id, 1)
        response = client.post(f"/api/customers/{customer_id}/checkout", json={"payment_method": "credit"})
        return response.get_json()["data"]["id"]

    def test_status_update_and_invalid_transition(self, client, order_id):
        ok = client.put(f"/api/orders/{order_id}/status", json={"status": "confirmed"})
        assert ok.status_code == 200
        assert ok.get_json()["data"]["status"] == "confirmed"

        bad = client.put(f"/api/orders/{order_id}/status", json={"status": "pending"})
        body = bad.get_json()
        assert bad.status_code == 409
        assert body["code"] == "invalid_status_transition"
        assert body["from_status"] == "confirmed"

    def test_cancel(self, client, shop, order_id):
        response = client.post(f"/api/orders/{order_id}/cancel", json={"note": "duplicate"})
        assert response.status_code == 200
        assert response.get_json()["data"]["status"] == "cancelled"

        customer = client.get(f"/api/customers/{shop['customer'].id}").get_json()["data"]
        assert customer["credit_used_cents"] == 0

    def test_customer_order_history(self, client, shop, order_id, make_customer):
        customer_id = shop["customer"].id
        listed = client.get(f"/api/customers/{customer_id}/orders").get_json()
        assert [o["id"] for o in listed["data"]] == [order_id]

        detail = client.get(f"/api/customers/{customer_id}/orders/{order_id}")
        assert detail.status_code == 200

        stranger = make_customer()
        assert client.get(f"/api/customers/{stranger.id}/orders/{order_id}").status_code == 404

    def test_unknown_order_is_404(self, client, db_session):
        assert client.get("/api/orders/404").status_code == 404


class TestDiscountRoutes:

    def test_create_and_patch(self, client, shop):
        now = utcnow()
        payload = {
            "name": "Summer 10%",
            "discount_type": "percentage",
            "value": 1000,
            "start_date": to_utc_z(now - timedelta(days=1)),
            "end_date": to_utc_z(now + timedelta(days=10)),
            "eligible_product_ids": [shop["water"].id],
        }
        created = client.post("/api/discounts", json=payload)
        assert created.status_code == 201
        data = created.get_json()["data"]
        assert data["computed_status"] == "active"
        assert data["eligible_product_ids"] == [shop["water"].id]

        patched = client.patch(f"/api/discounts/{data['id']}", json={"is_active": False})
        assert patched.get_json()["data"]["computed_status"] == "inactive"

        listed = client.get("/api/discounts?status=inactive").get_json()
        assert [d["id"] for d in listed["data"]] == [data["id"]]

    def test_invalid_discount_is_400(self, client, db_session):
        now = utcnow()
        response = client.post("/api/discounts", json={
            "name": "Broken",
            "discount_type": "percentage",
            "value": 20_000,
            "start_date": to_utc_z(now),
            "end_date": to_utc_z(now + timedelta(days=1)),
        })
        assert response.status_code == 400


class TestRewardRoutes:

    def test_tier_crud(self, client, db_session):
        body = {"name": "Bronze", "quarter": 3, "year": 2026, "min_cartons": 0, "max_cartons": 49,
                "cashback_per_carton_cents": 2}
        created = client.post("/api/reward-tiers", json=body)
        assert created.status_code == 201
        tier_id = created.get_json()["data"]["id"]

        overlap = client.post("/api/reward-tiers", json=dict(body, name="Overlap", min_cartons=10))
        assert overlap.status_code == 400

        listed = client.get("/api/reward-tiers?quarter=3&year=2026").get_json()["data"]
        assert [t["name"] for t in listed] == ["Bronze"]

        deleted = client.delete(f"/api/reward-tiers/{tier_id}")
        assert deleted.get_json()["data"] == {"id": tier_id, "deleted": True}

    def test_process_requires_period(self, client, db_session):
        response = client.post("/api/customer-rewards/process", json={"quarter": 3})
        assert response.status_code == 400

    def test_process_empty_quarter(self, client, db_session):
        response = client.post("/api/customer-rewards/process", json={"quarter": 3, "year": 2026})
        data = response.get_json()["data"]

        assert response.status_code == 200
        assert data["processed"] == 0
        assert data["results"] == []

    def test_adjust_unknown_reward(self, client, db_session):
        response = client.put("/api/customer-rewards/404", json={"manual_adjustment_cents": 10})
        assert response.status_code == 404
