# Overview: Pytest coverage for recorded payments, order paid amounts and the dashboard figures.

"""
Payment Tests

A recorded payment moves its order's paid_cents only while completed, and
paid_cents always stays within [0, total_cents].
"""

import pytest

from orderdesk.extensions import db
from orderdesk.models import Order, Payment
from orderdesk.services import cart_service, checkout_service, order_service, payment_service
from orderdesk.validation import ConflictError, NotFoundError, ValidationError

from conftest import VALID_CARD


def reload_order(order_id):
    return db.session.get(Order, order_id, populate_existing=True)


@pytest.fixture
def credit_order(db_session, make_product, make_customer):
    """A pending credit order with total 1000 and nothing paid."""
    product = make_product(base_price_cents=500)
    customer = make_customer()
    cart_service.add_item(customer.id, product.id, 2)
    return checkout_service.checkout(customer.id, payment_method="credit")


def pay(order, amount_cents, **fields):
    return payment_service.record_payment({
        "customer_id": order.customer_id,
        "order_id": order.id,
        "amount_cents": amount_cents,
        "method": "bank_transfer",
        **fields,
    })


class TestRecordPayment:

    def test_partial_payments_raise_paid_amount(self, db_session, credit_order):
        first = pay(credit_order, 300, reference="TRX-1")
        pay(credit_order, 700)

        order = reload_order(credit_order.id)
        assert order.paid_cents == 1000
        assert order.to_dict()["balance_due_cents"] == 0
        assert first.payment_type == "manual"
        assert first.status == "completed"
        assert first.payment_number.startswith("PAY-")
        assert first.reference == "TRX-1"

    def test_overpayment_is_rejected_with_nothing_written(self, db_session, credit_order):
        pay(credit_order, 600)

        with pytest.raises(ConflictError):
            pay(credit_order, 500)

        assert reload_order(credit_order.id).paid_cents == 600
        assert db_session.query(Payment).filter_by(order_id=credit_order.id).count() == 1

    def test_pending_payment_does_not_count_until_completed(self, db_session, credit_order):
        payment = pay(credit_order, 400, status="pending")
        assert reload_order(credit_order.id).paid_cents == 0

        payment_service.update_payment_status(payment.id, "completed")
        assert reload_order(credit_order.id).paid_cents == 400

        refunded = payment_service.update_payment_status(payment.id, "refunded")
        assert refunded.refunded_at is not None
        assert reload_order(credit_order.id).paid_cents == 0

    def test_account_payment_without_order(self, db_session, make_customer):
        customer = make_customer()
        payment = payment_service.record_payment({
            "customer_id": customer.id, "amount_cents": 2500, "method": "cash", "notes": "on account",
        })
        assert payment.order_id is None
        assert payment.notes == "on account"

    def test_cancelled_order_takes_no_payment(self, db_session, credit_order):
        order_service.cancel_order(credit_order.id)
        with pytest.raises(ConflictError, match="cancelled"):
            pay(credit_order, 100)

    def test_order_of_another_customer_is_not_found(self, db_session, credit_order, make_customer):
        stranger = make_customer()
        with pytest.raises(NotFoundError):
            payment_service.record_payment({
                "customer_id": stranger.id, "order_id": credit_order.id, "amount_cents": 100, "method": "cash",
            })

    @pytest.mark.parametrize("payload,detail", [
        ({"amount_cents": 100, "method": "cash"}, "missing_fields"),
        ({"customer_id": 1, "amount_cents": 100, "method": "bitcoin"}, "field"),
        ({"customer_id": 1, "amount_cents": 0, "method": "cash"}, "field"),
        ({"customer_id": 1, "amount_cents": 100, "method": "cash", "status": "refunded"}, "field"),
    ])
    def test_invalid_payloads(self, db_session, payload, detail):
        with pytest.raises(ValidationError) as exc_info:
            payment_service.record_payment(payload)
        assert detail in exc_info.value.details


class TestChangeAndDelete:

    def test_delete_takes_amount_back(self, db_session, credit_order):
        payment = pay(credit_order, 250)

        result = payment_service.delete_payment(payment.id)

        assert result == {"id": payment.id, "payment_number": result["payment_number"], "deleted": True}
        assert reload_order(credit_order.id).paid_cents == 0
        assert db_session.query(Payment).filter_by(id=payment.id).count() == 0
        with pytest.raises(NotFoundError):
            payment_service.get_payment(payment.id)

    def test_delete_of_failed_payment_leaves_order_alone(self, db_session, credit_order):
        kept = pay(credit_order, 300)
        failed = pay(credit_order, 200)
        payment_service.update_payment_status(failed.id, "failed")
        assert reload_order(credit_order.id).paid_cents == 300

        payment_service.delete_payment(failed.id)
        assert reload_order(credit_order.id).paid_cents == 300
        assert payment_service.get_payment(kept.id).status == "completed"

    def test_checkout_payments_are_read_only(self, db_session, make_product, make_customer):
        product = make_product(base_price_cents=700)
        customer = make_customer()
        cart_service.add_item(customer.id, product.id, 1)
        order = checkout_service.checkout(customer.id, payment_method="card", card=VALID_CARD)
        card_payment = db_session.query(Payment).filter_by(order_id=order.id).one()

        with pytest.raises(ConflictError):
            payment_service.update_payment_status(card_payment.id, "refunded")
        with pytest.raises(ConflictError):
            payment_service.delete_payment(card_payment.id)
        assert reload_order(order.id).paid_cents == 700

    def test_unknown_status_and_payment(self, db_session, credit_order):
        payment = pay(credit_order, 100)
        with pytest.raises(ValidationError):
            payment_service.update_payment_status(payment.id, "lost")
        with pytest.raises(NotFoundError):
            payment_service.update_payment_status(9999, "failed")


class TestListing:

    def test_filters_and_references(self, db_session, credit_order):
        pay(credit_order, 100)
        pay(credit_order, 200, status="pending")

        result = payment_service.list_payments(order_id=credit_order.id, status="pending")

        assert result["pagination"]["total"] == 1
        item = result["items"][0]
        assert item["amount_cents"] == 200
        assert item["order_number"] == credit_order.order_number
        assert item["customer_name"]

        with pytest.raises(ValidationError):
            payment_service.list_payments(payment_type="gift")


class TestPaymentRoutes:

    def test_record_change_and_delete(self, client, credit_order):
        created = client.post("/api/payments", json={
            "customer_id": credit_order.customer_id,
            "order_id": credit_order.id,
            "amount_cents": 400,
            "method": "cheque",
        })
        assert created.status_code == 201
        payment_id = created.get_json()["data"]["id"]

        order = client.get(f"/api/orders/{credit_order.id}").get_json()["data"]
        assert order["paid_cents"] == 400
        assert order["balance_due_cents"] == 600

        failed = client.put(f"/api/payments/{payment_id}/status", json={"status": "failed"})
        assert failed.get_json()["data"]["status"] == "failed"
        assert client.get(f"/api/orders/{credit_order.id}").get_json()["data"]["paid_cents"] == 0

        deleted = client.delete(f"/api/payments/{payment_id}")
        assert deleted.get_json()["data"]["deleted"] is True
        assert client.get(f"/api/payments/{payment_id}").status_code == 404

    def test_overpayment_is_409(self, client, credit_order):
        response = client.post("/api/payments", json={
            "customer_id": credit_order.customer_id,
            "order_id": credit_order.id,
            "amount_cents": 5000,
            "method": "cash",
        })
        assert response.status_code == 409
        assert response.get_json()["code"] == "conflict"

    def test_bad_method_is_400(self, client, credit_order):
        response = client.post("/api/payments", json={
            "customer_id": credit_order.customer_id, "amount_cents": 10, "method": "barter",
        })
        assert response.status_code == 400
        assert response.get_json()["field"] == "method"

    def test_list_is_paginated(self, client, credit_order):
        for amount in (100, 200, 300):
            pay(credit_order, amount)

        body = client.get("/api/payments?per_page=2").get_json()

        assert len(body["data"]) == 2
        assert body["pagination"]["total"] == 3
        assert body["data"][0]["amount_cents"] == 300

    def test_status_is_required(self, client, credit_order):
        payment = pay(credit_order, 100)
        assert client.put(f"/api/payments/{payment.id}/status", json={}).status_code == 400


class TestDashboard:

    def test_dashboard_figures(self, client, credit_order, make_customer):
        make_customer()
        pay(credit_order, 250)

        data = client.get("/api/stats/dashboard").get_json()["data"]

        assert data["stats"]["customer_count"] == 2
        assert data["stats"]["pending_orders"] == 1
        assert data["stats"]["outstanding_credit_cents"] == 1000
        assert data["stats"]["unpaid_balance_cents"] == 750
        assert data["recent_orders"][0]["order_number"] == credit_order.order_number
        assert data["recent_orders"][0]["customer"]["business_name"]
