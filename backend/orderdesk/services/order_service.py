# Overview: Order status state machine, cancellation with compensation, order queries.

"""
Order Lifecycle

STATE MACHINE:
    pending -> confirmed -> processing -> shipped -> delivered
    pending | confirmed | processing | shipped -> cancelled

    delivered and cancelled are terminal. Any move not in ORDER_TRANSITIONS
    raises InvalidStatusTransition.

Every transition is a compare-and-swap on the current status and appends an
OrderStatusEvent. Cancellation also reverses the order's settlement in the
same transaction: credit is released, wallet payments are refunded to the
wallet, card payments are marked refunded.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Order, OrderStatus, OrderStatusEvent, PaymentMethod
from ..pagination import paginate
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError
from . import customer_service, payment_service
from .concurrency import begin_write, conditional_update, run_with_retry


class InvalidStatusTransition(ValueError):
    """Raised when an order status move is not in the transition table."""

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Cannot change order status from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise ValidationError(f"status must be one of: {allowed}")


def can_transition(from_status, to_status) -> bool:
    return OrderStatus(to_status) in ORDER_TRANSITIONS[OrderStatus(from_status)]


def require_transition(from_status, to_status) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidStatusTransition(OrderStatus(from_status).value, OrderStatus(to_status).value)


def record_status_event(order: Order, from_status: str | None, to_status: str, note: str | None = None) -> None:
    db.session.add(
        OrderStatusEvent(order_id=order.id, from_status=from_status, to_status=to_status, note=note)
    )


def _load_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id, populate_existing=True)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _swap_status(order: Order, to_status: OrderStatus, **extra) -> None:
    stmt = (
        update(Order)
        .where(Order.id == order.id, Order.status == order.status)
        .values(status=to_status.value, version_id=Order.version_id + 1, **extra)
    )
    if not conditional_update(stmt):
        raise ConflictError("Order status changed concurrently; reload and retry")


def _compensate(order: Order) -> None:
    """Reverse the settlement and customer statistics of an order being cancelled."""
    method = order.payment_method
    if method == PaymentMethod.CREDIT.value:
        customer_service.release_credit(order.customer_id, order.total_cents)
    elif method == PaymentMethod.WALLET.value:
        customer_service.credit_wallet(order.customer_id, order.paid_cents)
        payment_service.refund_order_payments(order.id)
    elif method == PaymentMethod.CARD.value:
        payment_service.refund_order_payments(order.id)

    customer_service.record_order_stats(
        order.customer_id,
        orders_delta=-1,
        spent_delta_cents=-order.total_cents,
    )


def _transition_locked(order_id: int, to_status: OrderStatus, note: str | None) -> Order:
    order = _load_order(order_id)
    from_status = order.status
    require_transition(from_status, to_status)

    now = utcnow()
    extra: dict = {}
    if to_status == OrderStatus.DELIVERED:
        extra["delivered_at"] = now
    if to_status == OrderStatus.CANCELLED:
        extra["cancelled_at"] = now
        if order.payment_method != PaymentMethod.CREDIT.value:
            extra["paid_cents"] = 0
        _compensate(order)

    _swap_status(order, to_status, **extra)
    record_status_event(order, from_status, to_status.value, note)
    return order


def update_order_status(order_id: int, new_status, *, note: str | None = None) -> Order:
    """
    Move an order along the state machine. Business rejections
    (InvalidStatusTransition, NotFoundError) are raised without retry.
    """
    to_status = parse_status(new_status)

    def _op() -> Order:
        begin_write()
        try:
            _transition_locked(order_id, to_status, note)
        except (ValueError, LookupError):
            db.session.rollback()
            raise
        db.session.commit()
        current_app.logger.info("Order %s moved to %s", order_id, to_status.value)
        return _load_order(order_id)

    attempts = current_app.config.get("CHECKOUT_RETRY_ATTEMPTS", 5)
    return run_with_retry(_op, attempts=attempts)


def cancel_order(order_id: int, *, note: str | None = None) -> Order:
    return update_order_status(order_id, OrderStatus.CANCELLED, note=note)


def advance_by_number(order_number: str, new_status) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFoundError(f"Order {order_number} not found")
    return update_order_status(order.id, new_status)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int, *, customer_id: int | None = None) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or (customer_id is not None and order.customer_id != customer_id):
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Order)
    if customer_id is not None:
        customer_service.get_customer(customer_id)
        query = query.filter(Order.customer_id == customer_id)
    if status:
        query = query.filter(Order.status == parse_status(status).value)
    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda o: o.to_dict())
