# Overview: Pytest coverage for the order status state machine and cancellation compensation.

import pytest

from orderdesk.extensions import db
from orderdesk.models import Customer, OrderStatusEvent, Payment
from orderdesk.services import cart_service, checkout_service, order_service
from orderdesk.services.order_service import InvalidStatusTransition, can_transition
from orderdesk.validation import NotFoundError, ValidationError

from conftest import VALID_CARD


FULFILMENT_PATH = ["confirmed", "processing", "shipped", "delivered"]


@pytest.fixture
def place_order(db_session, make_product, make_customer):
    """place_order(method="credit", quantity=3, **customer_fields) -> (order, customer)"""
    product = make_product(base_price_cents=1000)

    def _place(method="credit", quantity=3, **customer_fields):
        customer = make_customer(**customer_fields)
        cart_service.add_item(customer.id, product.id, quantity)
        card = VALID_CARD if method == "card" else None
        order = checkout_service.checkout(customer.id, payment_method=method, card=card)
        return order, customer

    return _place


def reload(customer_id):
    return db.session.get(Customer, customer_id, populate_existing=True)


class TestTransitions:

    def test_full_fulfilment_path(self, place_order):
        order, _ = place_order()

        for status in FULFILMENT_PATH:
            order = order_service.update_order_status(order.id, status)
            assert order.status == status

        assert order.delivered_at is not None
        events = db.session.query(OrderStatusEvent).filter_by(order_id=order.id).order_by(OrderStatusEvent.id).all()
        assert [(e.from_status, e.to_status) for e in events] == [
            (None, "pending"),
            ("pending", "confirmed"),
            ("confirmed", "processing"),
            ("processing", "shipped"),
            ("shipped", "delivered"),
        ]

    def test_shipped_cannot_go_back_to_pending(self, place_order):
        order, _ = place_order()
        for status in ["confirmed", "processing", "shipped"]:
            order_service.update_order_status(order.id, status)

        with pytest.raises(InvalidStatusTransition) as exc_info:
            order_service.update_order_status(order.id, "pending")

        assert exc_info.value.from_status == "shipped"
        assert exc_info.value.to_status == "pending"
        assert order_service.get_order(order.id).status == "shipped"

    def test_steps_cannot_be_skipped(self, place_order):
        order, _ = place_order()
        with pytest.raises(InvalidStatusTransition):
            order_service.update_order_status(order.id, "shipped")

    @pytest.mark.parametrize("terminal", ["delivered", "cancelled"])
    def test_terminal_states_are_final(self, terminal):
        for target in ["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]:
            assert can_transition(terminal, target) is False

    def test_delivered_order_cannot_be_cancelled(self, place_order):
        order, customer = place_order()
        for status in FULFILMENT_PATH:
            order_service.update_order_status(order.id, status)

        with pytest.raises(InvalidStatusTransition):
            order_service.cancel_order(order.id)
        assert reload(customer.id).credit_used_cents == 3000

    def test_unknown_status_is_rejected(self, place_order):
        order, _ = place_order()
        with pytest.raises(ValidationError):
            order_service.update_order_status(order.id, "lost")

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.update_order_status(404, "confirmed")

    def test_advance_by_number(self, place_order):
        order, _ = place_order()
        advanced = order_service.advance_by_number(order.order_number, "confirmed")
        assert advanced.status == "confirmed"
        with pytest.raises(NotFoundError):
            order_service.advance_by_number("ORD-999999", "confirmed")


class TestCancellation:

    def test_credit_order_releases_credit(self, place_order):
        order, customer = place_order("credit", credit_limit_cents=5000)
        assert reload(customer.id).credit_used_cents == 3000
        order_service.update_order_status(order.id, "confirmed")

        cancelled = order_service.cancel_order(order.id, note="customer request")

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        refreshed = reload(customer.id)
        assert refreshed.credit_used_cents == 0
        assert refreshed.total_orders == 0
        assert refreshed.total_spent_cents == 0
        assert cancelled.status_events[-1].note == "customer request"

    def test_wallet_order_is_refunded_to_wallet(self, db_session, place_order):
        order, customer = place_order("wallet", wallet_balance_cents=5000)
        assert reload(customer.id).wallet_balance_cents == 2000

        cancelled = order_service.cancel_order(order.id)

        assert reload(customer.id).wallet_balance_cents == 5000
        assert cancelled.paid_cents == 0
        payment = db_session.query(Payment).filter_by(order_id=order.id).one()
        assert payment.status == "refunded"
        assert payment.refunded_at is not None

    def test_card_order_payment_is_marked_refunded(self, db_session, place_order):
        order, customer = place_order("card")

        order_service.cancel_order(order.id)

        assert db_session.query(Payment).filter_by(order_id=order.id).one().status == "refunded"
        assert reload(customer.id).credit_used_cents == 0

    def test_cancel_twice_fails_without_double_release(self, place_order):
        order, customer = place_order("credit", credit_used_cents=500)
        order_service.cancel_order(order.id)

        with pytest.raises(InvalidStatusTransition):
            order_service.cancel_order(order.id)
        assert reload(customer.id).credit_used_cents == 500


class TestQueries:

    def test_list_orders_filters_and_pages(self, place_order):
        first, customer = place_order()
        second, other = place_order()
        order_service.update_order_status(second.id, "confirmed")

        page = order_service.list_orders(customer_id=customer.id)
        assert [o["id"] for o in page["items"]] == [first.id]

        confirmed = order_service.list_orders(status="confirmed")
        assert [o["id"] for o in confirmed["items"]] == [second.id]

        paged = order_service.list_orders(page=1, per_page=1)
        assert len(paged["items"]) == 1
        assert paged["pagination"]["total"] == 2

    def test_get_order_scoped_to_customer(self, place_order):
        order, customer = place_order()
        _, other = place_order()

        assert order_service.get_order(order.id, customer_id=customer.id).id == order.id
        with pytest.raises(NotFoundError):
            order_service.get_order(order.id, customer_id=other.id)
