# Overview: Free-item claim tracker for buy_get discounts (unclaimed -> claimed, once per cart).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CartItem, ClaimState, DiscountType, FreeItemClaim
from ..models.catalog import STOCK_OUT
from ..time_utils import utcnow
from ..validation import ConflictError, ValidationError, require_int
from .concurrency import begin_write, conditional_update, run_with_retry
from .discount_service import DiscountEvaluation
from .pricing_service import get_active_product


class AlreadyClaimedError(ConflictError):
    """The discount's free items were already claimed with a different selection."""


def normalize_selection(selections) -> dict[int, int]:
    """
    [{"product_id": 3, "quantity": 1}, ...] -> {3: 1}; duplicates are merged.
    """
    if not isinstance(selections, list) or not selections:
        raise ValidationError("selections must be a non-empty list of {product_id, quantity}")
    merged: dict[int, int] = {}
    for entry in selections:
        if not isinstance(entry, dict):
            raise ValidationError("selections must be a non-empty list of {product_id, quantity}")
        product_id = require_int(entry.get("product_id"), "product_id", minimum=1)
        quantity = require_int(entry.get("quantity", 1), "quantity", minimum=1)
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def free_lines(customer_id: int, discount_id: int) -> list[CartItem]:
    return (
        db.session.query(CartItem)
        .filter(
            CartItem.customer_id == customer_id,
            CartItem.is_free_item.is_(True),
            CartItem.source_discount_id == discount_id,
        )
        .order_by(CartItem.id.asc())
        .all()
    )


def _selection_of(lines: list[CartItem]) -> dict[int, int]:
    selection: dict[int, int] = {}
    for line in lines:
        selection[line.product_id] = selection.get(line.product_id, 0) + line.quantity
    return selection


def _claim_row(customer_id: int, discount_id: int) -> FreeItemClaim:
    claim = (
        db.session.query(FreeItemClaim)
        .filter_by(customer_id=customer_id, discount_id=discount_id)
        .populate_existing()
        .first()
    )
    if claim is not None:
        return claim
    try:
        with db.session.begin_nested():
            claim = FreeItemClaim(
                customer_id=customer_id,
                discount_id=discount_id,
                state=ClaimState.UNCLAIMED.value,
                claimed_quantity=0,
            )
            db.session.add(claim)
    except IntegrityError:
        claim = (
            db.session.query(FreeItemClaim)
            .filter_by(customer_id=customer_id, discount_id=discount_id)
            .one()
        )
    return claim


def _result(discount_id: int, lines: list[CartItem], *, created: bool) -> dict:
    return {
        "discount_id": discount_id,
        "state": ClaimState.CLAIMED.value,
        "created": created,
        "claimed_quantity": sum(line.quantity for line in lines),
        "items": [line.to_dict() for line in lines],
    }


def claim_free_items(customer_id: int, discount_id: int, selections) -> dict:
    """
    Turn the selected products into free cart lines for a buy_get discount.

    The selection must total exactly the discount's free_items_count and use
    only eligible, orderable products. The unclaimed -> claimed move is a
    conditional update, so of two concurrent claims only one adds lines.
    Repeating a successful claim with the same selection is a no-op that
    returns the existing lines; a different selection raises AlreadyClaimedError.
    """
    selection = normalize_selection(selections)

    def _op() -> dict:
        begin_write()
        try:
            result = _claim_locked(customer_id, discount_id, selection)
        except (ValueError, LookupError):
            db.session.rollback()
            raise
        db.session.commit()
        return result

    return run_with_retry(_op)


def _claim_locked(customer_id: int, discount_id: int, selection: dict[int, int]) -> dict:
    from .cart_service import reconciled_view

    view = reconciled_view(customer_id)
    claim = _claim_row(customer_id, discount_id)

    if claim.state == ClaimState.CLAIMED.value:
        existing = free_lines(customer_id, discount_id)
        if _selection_of(existing) == selection:
            return _result(discount_id, existing, created=False)
        raise AlreadyClaimedError("Free items for this discount have already been claimed")

    applied = view.evaluation.get(discount_id)
    if applied is None or applied.discount_type != DiscountType.BUY_GET.value:
        raise ValidationError(
            "This discount does not currently grant free items for the cart",
            details={"discount_id": discount_id, "remaining": 0},
        )

    entitled = applied.free_items_count
    selected = sum(selection.values())
    if selected != entitled:
        raise ValidationError(
            f"Select exactly {entitled} free item(s); {selected} selected",
            details={"free_items_count": entitled, "selected": selected, "remaining": entitled},
        )

    eligible = set(applied.eligible_product_ids) if applied.eligible_product_ids else None
    not_eligible = sorted(pid for pid in selection if eligible is not None and pid not in eligible)
    if not_eligible:
        raise ValidationError(
            "Selected products are not eligible for this discount",
            details={"product_ids": not_eligible, "remaining": entitled},
        )
    for product_id in selection:
        product = get_active_product(product_id)
        if product.stock_status == STOCK_OUT:
            raise ValidationError(
                f"{product.name} is out of stock",
                details={"product_ids": [product_id], "remaining": entitled},
            )

    stmt = (
        update(FreeItemClaim)
        .where(
            FreeItemClaim.id == claim.id,
            FreeItemClaim.state == ClaimState.UNCLAIMED.value,
        )
        .values(
            state=ClaimState.CLAIMED.value,
            claimed_quantity=entitled,
            claimed_at=utcnow(),
        )
    )
    if not conditional_update(stmt):
        raise AlreadyClaimedError("Free items for this discount have already been claimed")

    for product_id, quantity in selection.items():
        db.session.add(
            CartItem(
                customer_id=customer_id,
                product_id=product_id,
                quantity=quantity,
                unit_price_cents=0,
                is_free_item=True,
                source_discount_id=discount_id,
            )
        )
    db.session.flush()
    return _result(discount_id, free_lines(customer_id, discount_id), created=True)


def release_claim(customer_id: int, discount_id: int) -> None:
    """Delete every free line of the discount and return the claim to unclaimed. No commit."""
    (
        db.session.query(CartItem)
        .filter(
            CartItem.customer_id == customer_id,
            CartItem.is_free_item.is_(True),
            CartItem.source_discount_id == discount_id,
        )
        .delete(synchronize_session=False)
    )
    conditional_update(
        update(FreeItemClaim)
        .where(FreeItemClaim.customer_id == customer_id, FreeItemClaim.discount_id == discount_id)
        .values(state=ClaimState.UNCLAIMED.value, claimed_quantity=0, claimed_at=None)
    )
    db.session.expire_all()


def reconcile_claims(customer_id: int, evaluation: DiscountEvaluation) -> list[int]:
    """
    Release claims the cart no longer earns exactly: the discount stopped
    applying, or its free_items_count moved away from the claimed quantity.
    Free lines left without a claimed claim are removed too.

    Returns the discount ids that were released. No commit.
    """
    released: list[int] = []

    claims = (
        db.session.query(FreeItemClaim)
        .filter(
            FreeItemClaim.customer_id == customer_id,
            FreeItemClaim.state == ClaimState.CLAIMED.value,
        )
        .populate_existing()
        .all()
    )
    claimed_ids = set()
    for claim in claims:
        applied = evaluation.get(claim.discount_id)
        if applied is None or applied.free_items_count != claim.claimed_quantity:
            released.append(claim.discount_id)
        else:
            claimed_ids.add(claim.discount_id)

    orphan_ids = {
        discount_id
        for (discount_id,) in (
            db.session.query(CartItem.source_discount_id)
            .filter(CartItem.customer_id == customer_id, CartItem.is_free_item.is_(True))
            .distinct()
            .all()
        )
        if discount_id not in claimed_ids and discount_id not in released
    }

    for discount_id in released + sorted(orphan_ids):
        release_claim(customer_id, discount_id)
    return released + sorted(orphan_ids)
