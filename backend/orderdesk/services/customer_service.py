# Overview: Customer storage; atomic credit/wallet balance moves and price-list assignment.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, PriceList, PriceListItem, Product
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_amount_cents,
    validate_payload,
)
from .concurrency import conditional_update


class BalanceError(ValueError):
    """A conditional balance update matched no row (limit or balance exceeded)."""


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "business_name", "contact_name", "email", "phone",
        "price_list_id", "reward_category", "credit_limit_cents", "is_active",
    },
    required_on_create={"business_name"},
)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def create_customer(payload: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    enforce_amount_cents(patch, "credit_limit_cents")
    if patch.get("price_list_id") is not None:
        get_price_list(patch["price_list_id"])

    customer = Customer(**patch)
    db.session.add(customer)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A customer with this email already exists")
    return customer


def _refresh(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id, populate_existing=True)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


# =============================================================================
# BALANCES
#
# Every balance change is a single UPDATE whose WHERE clause carries the
# guard, so the check and the write happen atomically in the database.
# None of these commit; the caller owns the transaction.
# =============================================================================

def reserve_credit(customer_id: int, amount_cents: int) -> Customer:
    """credit_used += amount, only if it stays within credit_limit."""
    if amount_cents < 0:
        raise ValueError("amount_cents must be >= 0")
    stmt = (
        update(Customer)
        .where(
            Customer.id == customer_id,
            Customer.credit_used_cents + amount_cents <= Customer.credit_limit_cents,
        )
        .values(
            credit_used_cents=Customer.credit_used_cents + amount_cents,
            version_id=Customer.version_id + 1,
        )
    )
    if not conditional_update(stmt):
        get_customer(customer_id)
        raise BalanceError("Insufficient available credit")
    return _refresh(customer_id)


def release_credit(customer_id: int, amount_cents: int) -> Customer:
    """credit_used -= amount, never below zero."""
    if amount_cents < 0:
        raise ValueError("amount_cents must be >= 0")
    stmt = (
        update(Customer)
        .where(Customer.id == customer_id, Customer.credit_used_cents >= amount_cents)
        .values(
            credit_used_cents=Customer.credit_used_cents - amount_cents,
            version_id=Customer.version_id + 1,
        )
    )
    if not conditional_update(stmt):
        get_customer(customer_id)
        raise ConflictError("Credit release exceeds credit used")
    return _refresh(customer_id)


def debit_wallet(customer_id: int, amount_cents: int) -> Customer:
    if amount_cents < 0:
        raise ValueError("amount_cents must be >= 0")
    stmt = (
        update(Customer)
        .where(Customer.id == customer_id, Customer.wallet_balance_cents >= amount_cents)
        .values(
            wallet_balance_cents=Customer.wallet_balance_cents - amount_cents,
            version_id=Customer.version_id + 1,
        )
    )
    if not conditional_update(stmt):
        get_customer(customer_id)
        raise BalanceError("Insufficient wallet balance")
    return _refresh(customer_id)


def credit_wallet(customer_id: int, amount_cents: int) -> Customer:
    if amount_cents < 0:
        raise ValueError("amount_cents must be >= 0")
    stmt = (
        update(Customer)
        .where(Customer.id == customer_id)
        .values(
            wallet_balance_cents=Customer.wallet_balance_cents + amount_cents,
            version_id=Customer.version_id + 1,
        )
    )
    if not conditional_update(stmt):
        raise NotFoundError(f"Customer {customer_id} not found")
    return _refresh(customer_id)


def record_order_stats(customer_id: int, *, orders_delta: int, spent_delta_cents: int) -> None:
    stmt = (
        update(Customer)
        .where(
            Customer.id == customer_id,
            Customer.total_orders + orders_delta >= 0,
            Customer.total_spent_cents + spent_delta_cents >= 0,
        )
        .values(
            total_orders=Customer.total_orders + orders_delta,
            total_spent_cents=Customer.total_spent_cents + spent_delta_cents,
            version_id=Customer.version_id + 1,
        )
    )
    if not conditional_update(stmt):
        raise ConflictError("Customer statistics would go negative")


# =============================================================================
# PRICE LISTS
# =============================================================================

PRICE_LIST_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "is_active"},
    required_on_create={"name"},
)


def create_price_list(payload: dict) -> PriceList:
    patch = validate_payload(model=PriceList, payload=payload, policy=PRICE_LIST_POLICY, partial=False)
    price_list = PriceList(**patch)
    db.session.add(price_list)
    db.session.commit()
    return price_list


def get_price_list(price_list_id: int) -> PriceList:
    price_list = db.session.get(PriceList, price_list_id)
    if price_list is None:
        raise NotFoundError(f"Price list {price_list_id} not found")
    return price_list


def set_price_override(price_list_id: int, product_id: int, price_cents) -> PriceListItem:
    """Create or replace the override for (price list, product)."""
    get_price_list(price_list_id)
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")
    if isinstance(price_cents, bool) or not isinstance(price_cents, int):
        raise ValidationError("price_cents must be an integer")
    enforce_amount_cents({"price_cents": price_cents}, "price_cents")

    item = (
        db.session.query(PriceListItem)
        .filter_by(price_list_id=price_list_id, product_id=product_id)
        .first()
    )
    if item is None:
        item = PriceListItem(price_list_id=price_list_id, product_id=product_id, price_cents=price_cents)
        db.session.add(item)
    else:
        item.price_cents = price_cents

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        item = (
            db.session.query(PriceListItem)
            .filter_by(price_list_id=price_list_id, product_id=product_id)
            .one()
        )
        item.price_cents = price_cents
        db.session.commit()
    return item


def assign_price_list(customer_id: int, price_list_id: int | None) -> Customer:
    """Assign (or with None, clear) a customer's price list."""
    if price_list_id is not None:
        get_price_list(price_list_id)
    stmt = (
        update(Customer)
        .where(Customer.id == customer_id)
        .values(price_list_id=price_list_id, version_id=Customer.version_id + 1)
    )
    if not conditional_update(stmt):
        raise NotFoundError(f"Customer {customer_id} not found")
    db.session.commit()
    return _refresh(customer_id)
