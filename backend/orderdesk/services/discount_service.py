# Overview: Discount storage, administration and the pure evaluation engine.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Discount, DiscountProduct, DiscountType, Product
from ..money import MAX_PERCENT_BPS, apply_bps, clamp
from ..pagination import paginate
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_amount_cents,
    validate_payload,
)
from .pricing_service import PricedLine
from .totals_service import subtotal_cents


class DiscountConfigError(ValueError):
    """A stored discount cannot be evaluated (malformed configuration)."""


# Applied discounts are reported in this order; ties broken by discount id.
TYPE_ORDER = (
    DiscountType.PERCENTAGE.value,
    DiscountType.FIXED.value,
    DiscountType.BUY_GET.value,
    DiscountType.SPEND_BONUS.value,
)


@dataclass(frozen=True)
class DiscountRule:
    """Immutable snapshot of a Discount used by the evaluator."""
    id: int
    name: str
    discount_type: str
    value: int
    min_quantity: int | None = None
    bonus_quantity: int | None = None
    min_order_amount_cents: int | None = None
    eligible_product_ids: frozenset[int] | None = None

    @classmethod
    def from_model(cls, discount: Discount) -> "DiscountRule":
        ids = discount.eligible_product_ids
        return cls(
            id=discount.id,
            name=discount.name,
            discount_type=discount.discount_type,
            value=discount.value,
            min_quantity=discount.min_quantity,
            bonus_quantity=discount.bonus_quantity,
            min_order_amount_cents=discount.min_order_amount_cents,
            eligible_product_ids=frozenset(ids) if ids else None,
        )

    def applies_to(self, product_id: int) -> bool:
        return self.eligible_product_ids is None or product_id in self.eligible_product_ids


@dataclass(frozen=True)
class AppliedDiscount:
    discount_id: int
    name: str
    discount_type: str
    discount_amount_cents: int
    eligible_subtotal_cents: int
    eligible_quantity: int
    free_items_count: int = 0
    already_claimed: bool = False
    eligible_product_ids: tuple[int, ...] | None = None

    def to_dict(self) -> dict:
        data = {
            "discount_id": self.discount_id,
            "name": self.name,
            "discount_type": self.discount_type,
            "discount_amount_cents": self.discount_amount_cents,
            "eligible_subtotal_cents": self.eligible_subtotal_cents,
            "eligible_product_ids": list(self.eligible_product_ids) if self.eligible_product_ids else None,
        }
        if self.discount_type == DiscountType.BUY_GET.value:
            data["free_items_count"] = self.free_items_count
            data["already_claimed"] = self.already_claimed
        return data


@dataclass(frozen=True)
class SkippedDiscount:
    discount_id: int
    reason: str


@dataclass(frozen=True)
class DiscountEvaluation:
    applied: tuple[AppliedDiscount, ...] = ()
    skipped: tuple[SkippedDiscount, ...] = ()
    discount_cents: int = 0
    by_id: dict = field(default_factory=dict, compare=False, repr=False)

    def get(self, discount_id: int) -> AppliedDiscount | None:
        return self.by_id.get(discount_id)


# =============================================================================
# EVALUATION ENGINE (pure)
# =============================================================================

def check_rule(rule: DiscountRule) -> None:
    """Raise DiscountConfigError if the rule cannot be evaluated."""
    dtype = rule.discount_type
    if dtype not in TYPE_ORDER:
        raise DiscountConfigError(f"unknown discount type {dtype!r}")
    if rule.value is None or rule.value < 0:
        raise DiscountConfigError("value must be >= 0")

    if dtype in (DiscountType.PERCENTAGE.value, DiscountType.SPEND_BONUS.value):
        if rule.value > MAX_PERCENT_BPS:
            raise DiscountConfigError("percentage value exceeds 100%")

    if dtype == DiscountType.BUY_GET.value:
        if not rule.min_quantity or rule.min_quantity < 1:
            raise DiscountConfigError("buy_get requires min_quantity >= 1")
        if not rule.bonus_quantity or rule.bonus_quantity < 1:
            raise DiscountConfigError("buy_get requires bonus_quantity >= 1")

    if dtype == DiscountType.SPEND_BONUS.value and rule.min_order_amount_cents is None:
        raise DiscountConfigError("spend_bonus requires min_order_amount_cents")

    if rule.min_order_amount_cents is not None and rule.min_order_amount_cents < 0:
        raise DiscountConfigError("min_order_amount_cents must be >= 0")


def evaluate_rule(
    rule: DiscountRule,
    lines: Iterable[PricedLine],
    *,
    claimed: bool = False,
) -> AppliedDiscount | None:
    """
    Effect of one discount on the paid lines of a cart, or None when it
    does not apply (no eligible items, threshold not met, no free units).
    """
    check_rule(rule)

    eligible = [line for line in lines if not line.is_free_item and rule.applies_to(line.product_id)]
    if not eligible:
        return None

    eligible_subtotal = sum(line.line_total_cents for line in eligible)
    eligible_quantity = sum(line.quantity for line in eligible)

    if rule.min_order_amount_cents is not None and eligible_subtotal < rule.min_order_amount_cents:
        return None

    amount = 0
    free_items_count = 0
    dtype = rule.discount_type

    if dtype in (DiscountType.PERCENTAGE.value, DiscountType.SPEND_BONUS.value):
        amount = min(apply_bps(eligible_subtotal, rule.value), eligible_subtotal)
    elif dtype == DiscountType.FIXED.value:
        amount = min(rule.value, eligible_subtotal)
    elif dtype == DiscountType.BUY_GET.value:
        free_items_count = (eligible_quantity // rule.min_quantity) * rule.bonus_quantity
        if free_items_count == 0:
            return None

    return AppliedDiscount(
        discount_id=rule.id,
        name=rule.name,
        discount_type=dtype,
        discount_amount_cents=amount,
        eligible_subtotal_cents=eligible_subtotal,
        eligible_quantity=eligible_quantity,
        free_items_count=free_items_count,
        already_claimed=claimed if dtype == DiscountType.BUY_GET.value else False,
        eligible_product_ids=tuple(sorted(rule.eligible_product_ids)) if rule.eligible_product_ids else None,
    )


def evaluate_discounts(
    lines: Iterable[PricedLine],
    rules: Iterable[DiscountRule],
    *,
    claimed_discount_ids: Iterable[int] = (),
) -> DiscountEvaluation:
    """
    Evaluate every effective discount independently and sum the monetary
    effects (all discounts are additive). The sum is clamped to the cart
    subtotal. A malformed rule is reported in `skipped` and has no effect.
    """
    lines = list(lines)
    claimed = set(claimed_discount_ids)

    ordered = sorted(
        rules,
        key=lambda r: (TYPE_ORDER.index(r.discount_type) if r.discount_type in TYPE_ORDER else len(TYPE_ORDER), r.id),
    )

    applied: list[AppliedDiscount] = []
    skipped: list[SkippedDiscount] = []
    for rule in ordered:
        try:
            result = evaluate_rule(rule, lines, claimed=rule.id in claimed)
        except DiscountConfigError as exc:
            skipped.append(SkippedDiscount(discount_id=rule.id, reason=str(exc)))
            continue
        if result is not None:
            applied.append(result)

    total = clamp(sum(a.discount_amount_cents for a in applied), 0, subtotal_cents(lines))
    return DiscountEvaluation(
        applied=tuple(applied),
        skipped=tuple(skipped),
        discount_cents=total,
        by_id={a.discount_id: a for a in applied},
    )


# =============================================================================
# STORAGE
# =============================================================================

def list_effective_discounts(now: datetime | None = None) -> list[Discount]:
    """Discounts with is_active and start_date <= now <= end_date."""
    now = now or utcnow()
    return (
        db.session.query(Discount)
        .filter(
            Discount.is_active.is_(True),
            Discount.start_date <= now,
            Discount.end_date >= now,
        )
        .order_by(Discount.id.asc())
        .all()
    )


def effective_rules(now: datetime | None = None) -> list[DiscountRule]:
    return [DiscountRule.from_model(d) for d in list_effective_discounts(now)]


# =============================================================================
# ADMINISTRATION
# =============================================================================

DISCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "discount_type", "value",
        "min_quantity", "bonus_quantity", "min_order_amount_cents",
        "start_date", "end_date", "is_active", "eligible_product_ids",
    },
    required_on_create={"name", "discount_type", "value", "start_date", "end_date"},
    passthrough_fields={"eligible_product_ids"},
)

DISCOUNT_STATUSES = {"active", "scheduled", "expired", "inactive"}


def _clean_product_ids(raw) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("eligible_product_ids must be a list of product ids")
    ids: list[int] = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("eligible_product_ids must be a list of product ids")
        if value not in ids:
            ids.append(value)
    if ids:
        found = {pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(ids)).all()}
        missing = [pid for pid in ids if pid not in found]
        if missing:
            raise ValidationError("Unknown products", details={"missing_product_ids": missing})
    return ids


def _enforce_discount_rules(discount: Discount) -> None:
    if discount.discount_type not in TYPE_ORDER:
        raise ValidationError(f"discount_type must be one of: {', '.join(TYPE_ORDER)}")
    if discount.start_date > discount.end_date:
        raise ValidationError("start_date must be on or before end_date")

    rule = DiscountRule(
        id=discount.id or 0,
        name=discount.name,
        discount_type=discount.discount_type,
        value=discount.value,
        min_quantity=discount.min_quantity,
        bonus_quantity=discount.bonus_quantity,
        min_order_amount_cents=discount.min_order_amount_cents,
    )
    try:
        check_rule(rule)
    except DiscountConfigError as exc:
        raise ValidationError(str(exc))

    if discount.discount_type == DiscountType.FIXED.value:
        enforce_amount_cents({"value": discount.value}, "value")
    enforce_amount_cents({"min_order_amount_cents": discount.min_order_amount_cents}, "min_order_amount_cents")


def _set_products(discount: Discount, product_ids: list[int]) -> None:
    # Keep surviving links in place; the unit of work inserts before it deletes.
    wanted = set(product_ids)
    existing = {link.product_id for link in discount.product_links}
    for link in list(discount.product_links):
        if link.product_id not in wanted:
            discount.product_links.remove(link)
    for pid in product_ids:
        if pid not in existing:
            discount.product_links.append(DiscountProduct(product_id=pid))


def get_discount(discount_id: int) -> Discount:
    discount = db.session.get(Discount, discount_id)
    if discount is None:
        raise NotFoundError(f"Discount {discount_id} not found")
    return discount


def list_discounts(*, status: str | None = None, page: int | None = None, per_page: int | None = None) -> dict:
    """Admin listing; each row carries its computed status."""
    now = utcnow()
    query = db.session.query(Discount)

    if status is not None:
        if status not in DISCOUNT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(DISCOUNT_STATUSES))}")
        if status == "inactive":
            query = query.filter(Discount.is_active.is_(False))
        else:
            query = query.filter(Discount.is_active.is_(True))
            if status == "active":
                query = query.filter(Discount.start_date <= now, Discount.end_date >= now)
            elif status == "scheduled":
                query = query.filter(Discount.start_date > now)
            else:
                query = query.filter(Discount.end_date < now)

    query = query.order_by(Discount.created_at.desc(), Discount.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda d: d.to_dict(now=now))


def create_discount(payload: dict) -> Discount:
    patch = validate_payload(model=Discount, payload=payload, policy=DISCOUNT_POLICY, partial=False)
    product_ids = _clean_product_ids(patch.pop("eligible_product_ids", None))

    discount = Discount(**patch)
    if discount.is_active is None:
        discount.is_active = True
    if discount.value is None:
        raise ValidationError("value cannot be null")
    _enforce_discount_rules(discount)
    _set_products(discount, product_ids)

    db.session.add(discount)
    db.session.commit()
    return discount


def update_discount(discount_id: int, payload: dict) -> Discount:
    patch = validate_payload(model=Discount, payload=payload, policy=DISCOUNT_POLICY, partial=True)
    discount = get_discount(discount_id)

    product_ids = None
    if "eligible_product_ids" in patch:
        product_ids = _clean_product_ids(patch.pop("eligible_product_ids"))

    for key, value in patch.items():
        setattr(discount, key, value)

    try:
        _enforce_discount_rules(discount)
    except ValidationError:
        db.session.rollback()
        raise

    if product_ids is not None:
        _set_products(discount, product_ids)

    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError("Discount was modified concurrently; reload and retry")
    return discount
