# Overview: Service-layer operations for payments; card form checks, simulated authorization, payment records.

"""
Payment Service

Card payments are format-validated and authorized by a local simulator; no
gateway is contacted. Only the last four digits of a card number and the
authorization code are ever stored.

Payment records:
- type "order":  settlement of an order by card or wallet
- type "reward": quarterly reward paid into the customer's wallet
- type "manual": money an administrator recorded against the account,
                 optionally applied to one order's paid_cents
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import delete, update

from ..extensions import db
from ..models import Customer, Order, OrderStatus, Payment, PaymentMethod, PaymentStatus, PaymentType
from ..pagination import paginate
from ..time_utils import utcnow
from ..validation import MAX_AMOUNT_CENTS, ConflictError, NotFoundError, ValidationError, require_int
from .concurrency import begin_write, conditional_update, run_with_retry
from .document_service import PAYMENT_DOCUMENT, REWARD_DOCUMENT, next_document_number


class PaymentDeclinedError(Exception):
    """Raised when the (simulated) authorizer declines a card."""
    pass


@dataclass(frozen=True)
class CardDetails:
    holder_name: str
    number: str
    expiry_month: int
    expiry_year: int
    cvv: str

    @property
    def last4(self) -> str:
        return self.number[-4:]


_EXPIRY_RE = re.compile(r"^(\d{2})\s*/\s*(\d{2}|\d{4})$")


def luhn_valid(number: str) -> bool:
    total = 0
    for index, char in enumerate(reversed(number)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def validate_card(data, *, now: datetime | None = None) -> CardDetails:
    """
    Format-only validation of a card form.

    Collects every field error and raises one ValidationError with a
    per-field `fields` detail.
    """
    if not isinstance(data, dict):
        raise ValidationError("card details are required")

    errors: dict[str, str] = {}

    holder = str(data.get("holder_name") or "").strip()
    if len(holder) < 2:
        errors["holder_name"] = "Cardholder name is required"

    number = re.sub(r"[\s-]", "", str(data.get("number") or ""))
    if not number.isdigit() or not 12 <= len(number) <= 19:
        errors["number"] = "Card number must be 12 to 19 digits"
    elif not luhn_valid(number):
        errors["number"] = "Card number is invalid"

    month = year = 0
    match = _EXPIRY_RE.match(str(data.get("expiry") or "").strip())
    if not match:
        errors["expiry"] = "Expiry must be MM/YY"
    else:
        month = int(match.group(1))
        year = int(match.group(2))
        if year < 100:
            year += 2000
        now = now or utcnow()
        if not 1 <= month <= 12:
            errors["expiry"] = "Expiry month must be 01 to 12"
        elif (year, month) < (now.year, now.month):
            errors["expiry"] = "Card has expired"

    cvv = str(data.get("cvv") or "").strip()
    if not cvv.isdigit() or len(cvv) not in (3, 4):
        errors["cvv"] = "CVV must be 3 or 4 digits"

    if errors:
        raise ValidationError("Invalid card details", details={"fields": errors})

    return CardDetails(holder_name=holder, number=number, expiry_month=month, expiry_year=year, cvv=cvv)


def authorize_card(card: CardDetails, amount_cents: int) -> str:
    """
    Simulated authorization. Returns an authorization code or raises
    PaymentDeclinedError for configured test numbers.
    """
    declined = current_app.config.get("CARD_DECLINE_PREFIXES", ())
    if any(card.number.startswith(prefix) for prefix in declined):
        raise PaymentDeclinedError("Card was declined")
    if amount_cents < 0:
        raise PaymentDeclinedError("Invalid authorization amount")
    return f"AUTH-{secrets.token_hex(4).upper()}"


# =============================================================================
# PAYMENT RECORDS (no commit; the caller owns the transaction)
# =============================================================================

def record_order_payment(
    *,
    customer_id: int,
    order_id: int,
    method: str,
    amount_cents: int,
    reference: str | None = None,
    card_last4: str | None = None,
) -> Payment:
    payment = Payment(
        payment_number=next_document_number(document_type=PAYMENT_DOCUMENT),
        customer_id=customer_id,
        order_id=order_id,
        payment_type=PaymentType.ORDER.value,
        method=method,
        status=PaymentStatus.COMPLETED.value,
        amount_cents=amount_cents,
        reference=reference,
        card_last4=card_last4,
    )
    db.session.add(payment)
    db.session.flush()
    return payment


def record_reward_payment(*, customer_id: int, amount_cents: int, notes: str | None = None) -> Payment:
    payment = Payment(
        payment_number=next_document_number(document_type=REWARD_DOCUMENT),
        customer_id=customer_id,
        order_id=None,
        payment_type=PaymentType.REWARD.value,
        method=PaymentMethod.WALLET.value,
        status=PaymentStatus.COMPLETED.value,
        amount_cents=amount_cents,
        notes=notes,
    )
    db.session.add(payment)
    db.session.flush()
    return payment


def refund_order_payments(order_id: int) -> list[Payment]:
    """Mark an order's completed payments refunded."""
    payments = (
        db.session.query(Payment)
        .filter(
            Payment.order_id == order_id,
            Payment.payment_type == PaymentType.ORDER.value,
            Payment.status == PaymentStatus.COMPLETED.value,
        )
        .all()
    )
    now = utcnow()
    for payment in payments:
        payment.status = PaymentStatus.REFUNDED.value
        payment.refunded_at = now
    return payments


def list_customer_payments(customer_id: int) -> list[Payment]:
    return (
        db.session.query(Payment)
        .filter(Payment.customer_id == customer_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )


# =============================================================================
# RECORDED PAYMENTS (administration)
# =============================================================================
#
# An administrator records money received against an account, optionally
# against one order. Only completed manual payments count toward the order's
# paid_cents, which stays within [0, total_cents]. Checkout and reward
# payments follow their order or reward and are read-only here.

RECORDABLE_METHODS = ("cash", "bank_transfer", "cheque", "card")


def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id, populate_existing=True)
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def list_payments(
    *,
    customer_id: int | None = None,
    order_id: int | None = None,
    status: str | None = None,
    payment_type: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Payment)
    if customer_id is not None:
        query = query.filter(Payment.customer_id == customer_id)
    if order_id is not None:
        query = query.filter(Payment.order_id == order_id)
    if status:
        query = query.filter(Payment.status == _parse_status(status).value)
    if payment_type:
        if payment_type not in {t.value for t in PaymentType}:
            raise ValidationError(f"Unknown payment_type: {payment_type}", details={"field": "payment_type"})
        query = query.filter(Payment.payment_type == payment_type)
    query = query.order_by(Payment.created_at.desc(), Payment.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda p: p.to_dict(include_refs=True))


def _parse_status(value) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in PaymentStatus)
        raise ValidationError(f"status must be one of: {allowed}", details={"field": "status"})


def _require_manual(payment: Payment) -> None:
    if payment.payment_type != PaymentType.MANUAL.value:
        raise ConflictError(
            f"Payment {payment.payment_number} is a {payment.payment_type} payment; "
            "it changes only through its order or reward"
        )


def _move_paid_amount(order_id: int, delta_cents: int) -> None:
    """Shift an order's paid_cents by delta, never past total_cents or below zero."""
    if delta_cents > 0:
        guard = (
            Order.paid_cents + delta_cents <= Order.total_cents,
            Order.status != OrderStatus.CANCELLED.value,
        )
    else:
        guard = (Order.paid_cents + delta_cents >= 0,)
    stmt = (
        update(Order)
        .where(Order.id == order_id, *guard)
        .values(paid_cents=Order.paid_cents + delta_cents, version_id=Order.version_id + 1)
    )
    if not conditional_update(stmt):
        order = db.session.get(Order, order_id, populate_existing=True)
        if order is not None and order.status == OrderStatus.CANCELLED.value:
            raise ConflictError(f"Order {order.order_number} is cancelled")
        raise ConflictError("Payment exceeds the order's outstanding balance")


def _validate_recorded(payload) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be an object")

    missing = [key for key in ("customer_id", "amount_cents", "method") if payload.get(key) in (None, "")]
    if missing:
        raise ValidationError("Customer, amount and method are required", details={"missing_fields": missing})

    method = str(payload["method"]).strip().lower()
    if method not in RECORDABLE_METHODS:
        raise ValidationError(
            f"method must be one of: {', '.join(RECORDABLE_METHODS)}", details={"field": "method"}
        )

    status = _parse_status(payload.get("status") or PaymentStatus.COMPLETED.value)
    if status not in (PaymentStatus.COMPLETED, PaymentStatus.PENDING):
        raise ValidationError("A new payment is either completed or pending", details={"field": "status"})

    reference = str(payload.get("reference") or "").strip() or None
    if reference and len(reference) > 64:
        raise ValidationError("reference is limited to 64 characters", details={"field": "reference"})

    order_id = payload.get("order_id")
    return {
        "customer_id": require_int(payload["customer_id"], "customer_id", minimum=1),
        "order_id": require_int(order_id, "order_id", minimum=1) if order_id is not None else None,
        "amount_cents": require_int(payload["amount_cents"], "amount_cents", minimum=1, maximum=MAX_AMOUNT_CENTS),
        "method": method,
        "status": status.value,
        "reference": reference,
        "notes": str(payload.get("notes") or "").strip() or None,
    }


def record_payment(payload) -> Payment:
    """
    Record money received from a customer. With an order_id, a completed
    payment raises that order's paid_cents in the same transaction.
    """
    fields = _validate_recorded(payload)

    def _op() -> Payment:
        begin_write()
        try:
            if db.session.get(Customer, fields["customer_id"]) is None:
                raise NotFoundError(f"Customer {fields['customer_id']} not found")
            if fields["order_id"] is not None:
                order = db.session.get(Order, fields["order_id"])
                if order is None or order.customer_id != fields["customer_id"]:
                    raise NotFoundError(f"Order {fields['order_id']} not found for this customer")
                if fields["status"] == PaymentStatus.COMPLETED.value:
                    _move_paid_amount(order.id, fields["amount_cents"])

            payment = Payment(
                payment_number=next_document_number(document_type=PAYMENT_DOCUMENT),
                payment_type=PaymentType.MANUAL.value,
                **fields,
            )
            db.session.add(payment)
            db.session.flush()
        except (ValueError, LookupError):
            db.session.rollback()
            raise
        db.session.commit()
        current_app.logger.info(
            "Payment %s recorded: %s cents by %s", payment.payment_number, payment.amount_cents, payment.method
        )
        return payment

    return run_with_retry(_op)


def update_payment_status(payment_id: int, new_status) -> Payment:
    """
    Change a recorded payment's status. Moving into or out of completed
    adds or removes its amount on the linked order.
    """
    to_status = _parse_status(new_status)

    def _op() -> Payment:
        begin_write()
        try:
            payment = get_payment(payment_id)
            _require_manual(payment)
            from_status = payment.status
            if from_status == to_status.value:
                db.session.rollback()
                return payment

            if payment.order_id is not None:
                was_counted = from_status == PaymentStatus.COMPLETED.value
                now_counted = to_status == PaymentStatus.COMPLETED
                if now_counted and not was_counted:
                    _move_paid_amount(payment.order_id, payment.amount_cents)
                elif was_counted and not now_counted:
                    _move_paid_amount(payment.order_id, -payment.amount_cents)

            changed = conditional_update(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status == from_status)
                .values(
                    status=to_status.value,
                    refunded_at=utcnow() if to_status == PaymentStatus.REFUNDED else None,
                )
            )
            if not changed:
                raise ConflictError("Payment status changed concurrently; reload and retry")
        except (ValueError, LookupError):
            db.session.rollback()
            raise
        db.session.commit()
        current_app.logger.info("Payment %s moved from %s to %s", payment_id, from_status, to_status.value)
        return get_payment(payment_id)

    return run_with_retry(_op)


def delete_payment(payment_id: int) -> dict:
    """Remove a recorded payment, taking a completed amount back off its order."""
    def _op() -> dict:
        begin_write()
        try:
            payment = get_payment(payment_id)
            _require_manual(payment)
            if payment.order_id is not None and payment.status == PaymentStatus.COMPLETED.value:
                _move_paid_amount(payment.order_id, -payment.amount_cents)
            removed = conditional_update(
                delete(Payment).where(Payment.id == payment_id, Payment.status == payment.status)
            )
            if not removed:
                raise ConflictError("Payment status changed concurrently; reload and retry")
            number = payment.payment_number
        except (ValueError, LookupError):
            db.session.rollback()
            raise
        db.session.commit()
        db.session.expunge(payment)
        current_app.logger.info("Payment %s deleted", number)
        return {"id": payment_id, "payment_number": number, "deleted": True}

    return run_with_retry(_op)
