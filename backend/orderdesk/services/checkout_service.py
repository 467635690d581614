# Overview: Checkout; turns the priced cart into an order and settles it by credit, card or wallet.

"""
Checkout

One checkout is one transaction taken under the write lock:

    reconcile free-item claims -> price cart -> settle -> number + create order
    -> copy lines -> bump customer statistics -> empty cart -> commit

Settlement:
- credit: conditional UPDATE credit_used += total WHERE credit_used + total <= limit.
  No row matched means InsufficientCreditError and nothing is written.
- wallet: conditional UPDATE wallet -= total WHERE wallet >= total.
- card:   form validated before the transaction, authorized inside it;
  credit is untouched and paid_cents = total.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import CartItem, FreeItemClaim, Order, OrderItem, OrderStatus, PaymentMethod
from ..validation import ValidationError
from . import customer_service, payment_service
from .cart_service import CartView, log_skipped_discounts, reconciled_view
from .concurrency import begin_write, run_with_retry
from .customer_service import BalanceError
from .document_service import ORDER_DOCUMENT, next_document_number
from .order_service import record_status_event
from .payment_service import PaymentDeclinedError


class InsufficientCreditError(ValueError):
    """Checkout total exceeds the customer's available credit (or wallet balance)."""

    def __init__(self, message: str, *, required_cents: int, available_cents: int, payment_method: str):
        super().__init__(message)
        self.required_cents = required_cents
        self.available_cents = available_cents
        self.payment_method = payment_method

    def to_details(self) -> dict:
        return {
            "required_cents": self.required_cents,
            "available_cents": self.available_cents,
            "payment_method": self.payment_method,
            "alternative_payment_methods": [PaymentMethod.CARD.value],
        }


def _parse_method(value) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        allowed = ", ".join(m.value for m in PaymentMethod)
        raise ValidationError(f"payment_method must be one of: {allowed}")


def _check_cart(view: CartView) -> None:
    # Unavailable lines are left out of paid_lines; report them before emptiness.
    if view.unavailable_item_ids:
        raise ValidationError(
            "Some items are no longer available",
            details={"unavailable_item_ids": view.unavailable_item_ids},
        )
    if not view.paid_lines:
        raise ValidationError("Cart is empty")


def _settle(view: CartView, method: PaymentMethod, card) -> tuple[int, str | None]:
    """Apply the balance effect of the payment. Returns (paid_cents, authorization code)."""
    customer_id = view.customer.id
    total = view.totals.total_cents

    if method == PaymentMethod.CREDIT:
        try:
            customer_service.reserve_credit(customer_id, total)
        except BalanceError:
            customer = customer_service.get_customer(customer_id)
            raise InsufficientCreditError(
                "Insufficient available credit",
                required_cents=total,
                available_cents=customer.available_credit_cents,
                payment_method=method.value,
            )
        return 0, None

    if method == PaymentMethod.WALLET:
        try:
            customer_service.debit_wallet(customer_id, total)
        except BalanceError:
            customer = customer_service.get_customer(customer_id)
            raise InsufficientCreditError(
                "Insufficient wallet balance",
                required_cents=total,
                available_cents=customer.wallet_balance_cents,
                payment_method=method.value,
            )
        return total, None

    return total, payment_service.authorize_card(card, total)


def _create_order(view: CartView, method: PaymentMethod, paid_cents: int, notes: str | None) -> Order:
    totals = view.totals
    order = Order(
        order_number=next_document_number(document_type=ORDER_DOCUMENT),
        customer_id=view.customer.id,
        status=OrderStatus.PENDING.value,
        payment_method=method.value,
        subtotal_cents=totals.subtotal_cents,
        discount_cents=totals.discount_cents,
        tax_cents=totals.tax_cents,
        total_cents=totals.total_cents,
        paid_cents=paid_cents,
        applied_discounts=[a.to_dict() for a in view.evaluation.applied],
        notes=notes,
    )
    db.session.add(order)
    db.session.flush()

    by_product = {item.product_id: item.product for item in view.items}
    for line in view.lines:
        product = by_product[line.product_id]
        order.items.append(
            OrderItem(
                product_id=line.product_id,
                product_name=product.name,
                sku=product.sku,
                unit=product.unit,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
                is_free_item=line.is_free_item,
                source_discount_id=line.source_discount_id,
            )
        )
    record_status_event(order, None, OrderStatus.PENDING.value, "Order placed")
    return order


def _empty_cart(customer_id: int) -> None:
    db.session.query(CartItem).filter(CartItem.customer_id == customer_id).delete(synchronize_session=False)
    db.session.query(FreeItemClaim).filter(FreeItemClaim.customer_id == customer_id).delete(
        synchronize_session=False
    )


def _checkout_locked(customer_id: int, method: PaymentMethod, card, notes: str | None) -> Order:
    view = reconciled_view(customer_id)
    log_skipped_discounts(view)
    _check_cart(view)

    paid_cents, authorization = _settle(view, method, card)
    order = _create_order(view, method, paid_cents, notes)

    if method != PaymentMethod.CREDIT:
        payment_service.record_order_payment(
            customer_id=customer_id,
            order_id=order.id,
            method=method.value,
            amount_cents=paid_cents,
            reference=authorization,
            card_last4=card.last4 if card is not None else None,
        )

    customer_service.record_order_stats(
        customer_id,
        orders_delta=1,
        spent_delta_cents=order.total_cents,
    )
    _empty_cart(customer_id)
    return order


def checkout(customer_id: int, *, payment_method, card=None, notes: str | None = None) -> Order:
    """
    Place an order from the customer's cart.

    Raises ValidationError (empty cart, unavailable items, bad card form),
    InsufficientCreditError, PaymentDeclinedError or NotFoundError; in every
    failure case no order exists and no balance has moved.
    """
    method = _parse_method(payment_method)
    card_details = None
    if method == PaymentMethod.CARD:
        card_details = payment_service.validate_card(card)
    if notes is not None:
        notes = str(notes).strip() or None

    def _op() -> Order:
        begin_write()
        try:
            order = _checkout_locked(customer_id, method, card_details, notes)
        except (ValueError, LookupError, PaymentDeclinedError):
            db.session.rollback()
            raise
        db.session.commit()
        current_app.logger.info(
            "Order %s placed for customer %s (%s, %s cents)",
            order.order_number,
            customer_id,
            method.value,
            order.total_cents,
        )
        return order

    attempts = current_app.config.get("CHECKOUT_RETRY_ATTEMPTS", 5)
    return run_with_retry(_op, attempts=attempts)
