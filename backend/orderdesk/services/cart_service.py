# Overview: Cart reads (priced, discounted, totalled on every read) and cart line mutations.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import CartItem, ClaimState, Customer, FreeItemClaim
from ..models.catalog import STOCK_OUT
from ..validation import NotFoundError, ValidationError, require_int
from . import free_item_service
from .concurrency import begin_write, conditional_update, run_with_retry
from .customer_service import get_customer
from .discount_service import DiscountEvaluation, effective_rules, evaluate_discounts
from .pricing_service import PricedLine, get_active_product, resolve_price_for
from .totals_service import CartTotals, compute_totals


MAX_LINE_QUANTITY = 10_000


class CartError(ValidationError):
    """Cart mutation rejected (free line edit, out-of-stock product, ...)."""


@dataclass
class CartView:
    """Snapshot of a priced cart. Never persisted."""
    customer: Customer
    items: list[CartItem]
    lines: list[PricedLine]
    line_dicts: list[dict]
    unavailable_item_ids: list[int]
    evaluation: DiscountEvaluation
    totals: CartTotals

    @property
    def paid_lines(self) -> list[PricedLine]:
        return [line for line in self.lines if not line.is_free_item]

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer.id,
            "items": self.line_dicts,
            "item_count": sum(line.quantity for line in self.lines),
            "applied_discounts": [a.to_dict() for a in self.evaluation.applied],
            "unavailable_item_ids": self.unavailable_item_ids,
            **self.totals.to_dict(),
        }


def _cart_items(customer_id: int) -> list[CartItem]:
    return (
        db.session.query(CartItem)
        .filter(CartItem.customer_id == customer_id)
        .order_by(CartItem.id.asc())
        .populate_existing()
        .all()
    )


def claimed_discount_ids(customer_id: int) -> set[int]:
    rows = (
        db.session.query(FreeItemClaim.discount_id)
        .filter(
            FreeItemClaim.customer_id == customer_id,
            FreeItemClaim.state == ClaimState.CLAIMED.value,
        )
        .all()
    )
    return {discount_id for (discount_id,) in rows}


def evaluate_cart(customer_id: int, *, now: datetime | None = None) -> CartView:
    """
    Price every line at the customer's current price, evaluate effective
    discounts and compute totals. Read-only.

    Lines whose product is inactive or out of stock are reported in
    unavailable_item_ids and left out of discounts and totals.
    """
    customer = get_customer(customer_id)
    items = _cart_items(customer_id)

    lines: list[PricedLine] = []
    line_dicts: list[dict] = []
    unavailable: list[int] = []

    for item in items:
        product = item.product
        data = item.to_dict()
        if product is None or not product.is_active or product.stock_status == STOCK_OUT:
            unavailable.append(item.id)
            data.update({"available": False, "price_changed": False})
            line_dicts.append(data)
            continue

        if item.is_free_item:
            unit_price = 0
            changed = False
        else:
            unit_price = resolve_price_for(customer, product).unit_price_cents
            changed = unit_price != item.unit_price_cents

        lines.append(
            PricedLine(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_cents=unit_price,
                is_free_item=item.is_free_item,
                source_discount_id=item.source_discount_id,
            )
        )
        data.update({
            "added_unit_price_cents": item.unit_price_cents,
            "unit_price_cents": unit_price,
            "line_total_cents": 0 if item.is_free_item else unit_price * item.quantity,
            "price_changed": changed,
            "available": True,
        })
        line_dicts.append(data)

    evaluation = evaluate_discounts(
        lines,
        effective_rules(now),
        claimed_discount_ids=claimed_discount_ids(customer_id),
    )
    totals = compute_totals(
        lines,
        evaluation.discount_cents,
        tax_rate_bps=current_app.config.get("TAX_RATE_BPS", 0),
    )
    return CartView(
        customer=customer,
        items=items,
        lines=lines,
        line_dicts=line_dicts,
        unavailable_item_ids=unavailable,
        evaluation=evaluation,
        totals=totals,
    )


def log_skipped_discounts(view: CartView) -> None:
    for skipped in view.evaluation.skipped:
        current_app.logger.warning(
            "Skipping discount %s for customer %s: %s",
            skipped.discount_id,
            view.customer.id,
            skipped.reason,
        )


def reconciled_view(customer_id: int) -> CartView:
    """
    Evaluate the cart, drop free lines whose claim no longer matches the
    entitlement, and re-evaluate if anything changed. Does not commit.
    """
    view = evaluate_cart(customer_id)
    if free_item_service.reconcile_claims(customer_id, view.evaluation):
        db.session.flush()
        view = evaluate_cart(customer_id)
    return view


def get_cart(customer_id: int) -> CartView:
    def _op() -> CartView:
        view = reconciled_view(customer_id)
        db.session.commit()
        log_skipped_discounts(view)
        return view

    return run_with_retry(_op)


# =============================================================================
# MUTATIONS
# =============================================================================

def _mutate(customer_id: int, work) -> CartView:
    """
    Run one cart mutation under the write lock, reconcile free-item claims
    and commit. Domain errors roll back and propagate.
    """
    def _op() -> CartView:
        begin_write()
        try:
            get_customer(customer_id)
            work()
            db.session.flush()
            view = reconciled_view(customer_id)
        except (ValueError, LookupError):
            db.session.rollback()
            raise
        db.session.commit()
        log_skipped_discounts(view)
        return view

    attempts = current_app.config.get("CHECKOUT_RETRY_ATTEMPTS", 5)
    return run_with_retry(_op, attempts=attempts)


def _get_line(customer_id: int, item_id: int) -> CartItem:
    item = db.session.get(CartItem, item_id)
    if item is None or item.customer_id != customer_id:
        raise NotFoundError(f"Cart item {item_id} not found")
    return item


def add_item(customer_id: int, product_id, quantity=1) -> CartView:
    """Add a paid line, merging into an existing paid line for the product."""
    product_id = require_int(product_id, "product_id", minimum=1)
    quantity = require_int(quantity, "quantity", minimum=1, maximum=MAX_LINE_QUANTITY)

    def work():
        product = get_active_product(product_id)
        if product.stock_status == STOCK_OUT:
            raise CartError(f"{product.name} is out of stock")
        customer = get_customer(customer_id)
        price = resolve_price_for(customer, product).unit_price_cents

        existing = (
            db.session.query(CartItem.id)
            .filter(
                CartItem.customer_id == customer_id,
                CartItem.product_id == product_id,
                CartItem.is_free_item.is_(False),
            )
            .first()
        )
        if existing is None:
            db.session.add(
                CartItem(
                    customer_id=customer_id,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price_cents=price,
                    is_free_item=False,
                )
            )
            return

        stmt = (
            update(CartItem)
            .where(
                CartItem.id == existing.id,
                CartItem.quantity + quantity <= MAX_LINE_QUANTITY,
            )
            .values(
                quantity=CartItem.quantity + quantity,
                unit_price_cents=price,
                version_id=CartItem.version_id + 1,
            )
        )
        if not conditional_update(stmt):
            raise CartError(f"quantity must be <= {MAX_LINE_QUANTITY}")

    return _mutate(customer_id, work)


def set_quantity(customer_id: int, item_id: int, quantity) -> CartView:
    """Set a paid line's quantity; 0 removes the line."""
    quantity = require_int(quantity, "quantity", minimum=0, maximum=MAX_LINE_QUANTITY)

    def work():
        item = _get_line(customer_id, item_id)
        if item.is_free_item:
            raise CartError("Free items cannot be edited; remove them or claim again")
        if quantity == 0:
            db.session.delete(item)
        else:
            item.quantity = quantity

    return _mutate(customer_id, work)


def remove_item(customer_id: int, item_id: int) -> CartView:
    """
    Remove a line. Removing a free line gives back the whole claim: every
    free line of that discount goes and the claim returns to unclaimed.
    """
    def work():
        item = _get_line(customer_id, item_id)
        if item.is_free_item:
            free_item_service.release_claim(customer_id, item.source_discount_id)
        else:
            db.session.delete(item)

    return _mutate(customer_id, work)


def clear_cart(customer_id: int) -> CartView:
    def work():
        db.session.query(CartItem).filter(CartItem.customer_id == customer_id).delete(synchronize_session=False)
        db.session.query(FreeItemClaim).filter(FreeItemClaim.customer_id == customer_id).delete(
            synchronize_session=False
        )
        db.session.expire_all()

    return _mutate(customer_id, work)
