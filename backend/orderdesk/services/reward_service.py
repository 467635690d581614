# Overview: Quarterly cashback rewards; tier administration, calculation and the batch processor.

"""
Quarterly Rewards

    calculate_quarter(q, y)   cartons bought in delivered orders -> tier -> pending CustomerReward
    set_adjustment(id, ...)   manual +/- on pending rows only
    process_quarter(q, y)     pay pending rows into customer wallets

PROCESSING (per record, no batch-wide transaction):
    pending --claim--> processing --pay--> processed
                            |
                            +--failure--> pending (error reported, retry later)

The claim is a conditional UPDATE, so a row is paid by exactly one run even
when runs overlap or are retried. A row stuck in processing (crashed run) is
reclaimable once REWARD_PROCESSING_STALE_SECONDS have passed.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, CustomerReward, Order, OrderItem, OrderStatus, RewardStatus, RewardTier
from ..time_utils import format_quarter_label, quarter_date_range, seconds_ago, utcnow, validate_quarter
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_amount_cents,
    require_int,
    validate_payload,
)
from . import customer_service, payment_service
from .concurrency import begin_write, conditional_update, run_with_retry


def require_period(quarter, year) -> tuple[int, int]:
    quarter = require_int(quarter, "quarter")
    year = require_int(year, "year")
    try:
        validate_quarter(quarter, year)
    except ValueError as exc:
        raise ValidationError(str(exc))
    return quarter, year


def _norm_category(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip().lower()
    return value or None


# =============================================================================
# TIER SELECTION (pure)
# =============================================================================

def select_tier(cartons: int, tiers: Iterable[RewardTier]) -> RewardTier | None:
    """The tier with the highest min_cartons whose range contains cartons, or None."""
    best = None
    for tier in tiers:
        if not tier.contains(cartons):
            continue
        if best is None or tier.min_cartons > best.min_cartons:
            best = tier
    return best


def tiers_for_category(tiers: Iterable[RewardTier], category: str | None) -> list[RewardTier]:
    """
    Tiers that apply to a customer: those tagged with the customer's reward
    category when any exist, otherwise the uncategorised tiers.
    """
    tiers = list(tiers)
    wanted = _norm_category(category)
    if wanted is not None:
        matching = [t for t in tiers if _norm_category(t.category) == wanted]
        if matching:
            return matching
    return [t for t in tiers if _norm_category(t.category) is None]


# =============================================================================
# TIER ADMINISTRATION
# =============================================================================

TIER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "category", "quarter", "year", "min_cartons",
        "max_cartons", "cashback_per_carton_cents", "is_active",
    },
    required_on_create={"name", "quarter", "year", "min_cartons", "cashback_per_carton_cents"},
)


def _ranges_overlap(a_min: int, a_max: int | None, b_min: int, b_max: int | None) -> bool:
    a_hi = a_max if a_max is not None else float("inf")
    b_hi = b_max if b_max is not None else float("inf")
    return a_min <= b_hi and b_min <= a_hi


def _enforce_tier(tier: RewardTier) -> None:
    try:
        validate_quarter(tier.quarter, tier.year)
    except ValueError as exc:
        raise ValidationError(str(exc))
    if tier.min_cartons is None or tier.min_cartons < 0:
        raise ValidationError("min_cartons must be >= 0")
    if tier.max_cartons is not None and tier.max_cartons < tier.min_cartons:
        raise ValidationError("max_cartons must be >= min_cartons")
    enforce_amount_cents({"cashback_per_carton_cents": tier.cashback_per_carton_cents}, "cashback_per_carton_cents")

    siblings = (
        db.session.query(RewardTier)
        .filter(RewardTier.quarter == tier.quarter, RewardTier.year == tier.year)
        .all()
    )
    category = _norm_category(tier.category)
    for other in siblings:
        if other is tier or (tier.id is not None and other.id == tier.id):
            continue
        if _norm_category(other.category) != category:
            continue
        if _ranges_overlap(tier.min_cartons, tier.max_cartons, other.min_cartons, other.max_cartons):
            raise ValidationError(
                f"Carton range overlaps tier '{other.name}'",
                details={"overlapping_tier_id": other.id},
            )


def list_tiers(quarter=None, year=None) -> list[RewardTier]:
    query = db.session.query(RewardTier)
    if quarter is not None or year is not None:
        quarter, year = require_period(quarter, year)
        query = query.filter(RewardTier.quarter == quarter, RewardTier.year == year)
    return query.order_by(
        RewardTier.year.desc(), RewardTier.quarter.desc(), RewardTier.category.asc(), RewardTier.min_cartons.asc()
    ).all()


def get_tier(tier_id: int) -> RewardTier:
    tier = db.session.get(RewardTier, tier_id)
    if tier is None:
        raise NotFoundError(f"Reward tier {tier_id} not found")
    return tier


def create_tier(payload: dict) -> RewardTier:
    patch = validate_payload(model=RewardTier, payload=payload, policy=TIER_POLICY, partial=False)
    tier = RewardTier(**patch)
    if tier.is_active is None:
        tier.is_active = True
    with db.session.no_autoflush:
        _enforce_tier(tier)
    db.session.add(tier)
    db.session.commit()
    return tier


def update_tier(tier_id: int, payload: dict) -> RewardTier:
    patch = validate_payload(model=RewardTier, payload=payload, policy=TIER_POLICY, partial=True)
    tier = get_tier(tier_id)
    with db.session.no_autoflush:
        for key, value in patch.items():
            setattr(tier, key, value)
        try:
            _enforce_tier(tier)
        except ValidationError:
            db.session.rollback()
            raise
    db.session.commit()
    return tier


def delete_tier(tier_id: int) -> None:
    """Delete a tier. Tiers referenced by settled rewards are kept."""
    tier = get_tier(tier_id)
    settled = (
        db.session.query(CustomerReward.id)
        .filter(
            CustomerReward.eligible_tier_id == tier.id,
            CustomerReward.status != RewardStatus.PENDING.value,
        )
        .first()
    )
    if settled is not None:
        raise ConflictError("Tier is referenced by processed rewards")
    (
        db.session.query(CustomerReward)
        .filter(CustomerReward.eligible_tier_id == tier.id)
        .update({CustomerReward.eligible_tier_id: None}, synchronize_session=False)
    )
    db.session.delete(tier)
    db.session.commit()


# =============================================================================
# CALCULATION
# =============================================================================

def cartons_by_customer(quarter: int, year: int) -> dict[int, int]:
    """
    Paid cartons per customer across delivered orders placed in the quarter.
    Free bonus lines are not purchases and are excluded.
    """
    start, end = quarter_date_range(quarter, year)
    rows = (
        db.session.query(Order.customer_id, func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(
            Order.status == OrderStatus.DELIVERED.value,
            Order.created_at >= start,
            Order.created_at < end,
            OrderItem.is_free_item.is_(False),
        )
        .group_by(Order.customer_id)
        .all()
    )
    return {customer_id: int(total) for customer_id, total in rows}


def calculate_quarter(quarter, year) -> list[CustomerReward]:
    """
    Create or refresh the pending reward of every customer with delivered
    purchases in the quarter. Rows already processing or processed are not touched.
    """
    quarter, year = require_period(quarter, year)

    def _op() -> list[CustomerReward]:
        begin_write()
        tiers = (
            db.session.query(RewardTier)
            .filter(
                RewardTier.quarter == quarter,
                RewardTier.year == year,
                RewardTier.is_active.is_(True),
            )
            .all()
        )
        totals = cartons_by_customer(quarter, year)
        customers = {
            c.id: c
            for c in db.session.query(Customer).filter(Customer.id.in_(list(totals))).all()
        } if totals else {}
        existing = {
            r.customer_id: r
            for r in db.session.query(CustomerReward)
            .filter(CustomerReward.quarter == quarter, CustomerReward.year == year)
            .all()
        }

        for customer_id, cartons in sorted(totals.items()):
            customer = customers.get(customer_id)
            if customer is None:
                continue
            tier = select_tier(cartons, tiers_for_category(tiers, customer.reward_category))
            calculated = cartons * tier.cashback_per_carton_cents if tier else 0

            reward = existing.get(customer_id)
            if reward is None:
                reward = CustomerReward(
                    customer_id=customer_id,
                    quarter=quarter,
                    year=year,
                    manual_adjustment_cents=0,
                    status=RewardStatus.PENDING.value,
                )
                db.session.add(reward)
            elif reward.status != RewardStatus.PENDING.value:
                continue
            reward.total_cartons_purchased = cartons
            reward.eligible_tier_id = tier.id if tier else None
            reward.calculated_reward_cents = calculated

        db.session.commit()
        return list_rewards_for_period(quarter, year)

    try:
        return run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Rewards for this quarter are being calculated concurrently; retry")


def list_rewards_for_period(quarter: int, year: int) -> list[CustomerReward]:
    return (
        db.session.query(CustomerReward)
        .filter(CustomerReward.quarter == quarter, CustomerReward.year == year)
        .order_by(CustomerReward.customer_id.asc())
        .all()
    )


def list_rewards(quarter, year, *, recalculate: bool = True) -> list[CustomerReward]:
    if recalculate:
        return calculate_quarter(quarter, year)
    quarter, year = require_period(quarter, year)
    return list_rewards_for_period(quarter, year)


def customer_reward_history(customer_id: int) -> list[CustomerReward]:
    customer_service.get_customer(customer_id)
    return (
        db.session.query(CustomerReward)
        .filter(CustomerReward.customer_id == customer_id)
        .order_by(CustomerReward.year.desc(), CustomerReward.quarter.desc())
        .all()
    )


def get_reward(reward_id: int) -> CustomerReward:
    reward = db.session.get(CustomerReward, reward_id, populate_existing=True)
    if reward is None:
        raise NotFoundError(f"Customer reward {reward_id} not found")
    return reward


def set_adjustment(reward_id: int, manual_adjustment_cents, *, notes: str | None = None) -> CustomerReward:
    """Set the manual adjustment of a pending reward. Other statuses are immutable."""
    amount = require_int(manual_adjustment_cents, "manual_adjustment_cents")
    enforce_amount_cents({"manual_adjustment_cents": amount}, "manual_adjustment_cents", allow_negative=True)
    get_reward(reward_id)

    values = {"manual_adjustment_cents": amount, "updated_at": utcnow()}
    if notes is not None:
        values["notes"] = str(notes).strip() or None

    stmt = (
        update(CustomerReward)
        .where(CustomerReward.id == reward_id, CustomerReward.status == RewardStatus.PENDING.value)
        .values(**values)
    )
    if not conditional_update(stmt):
        db.session.rollback()
        raise ConflictError("Only pending rewards can be adjusted")
    db.session.commit()
    return get_reward(reward_id)


def cancel_reward(reward_id: int, *, notes: str | None = None) -> CustomerReward:
    """pending -> cancelled. A cancelled reward is never paid or recalculated."""
    get_reward(reward_id)
    values = {"status": RewardStatus.CANCELLED.value, "updated_at": utcnow()}
    if notes is not None:
        values["notes"] = str(notes).strip() or None
    stmt = (
        update(CustomerReward)
        .where(CustomerReward.id == reward_id, CustomerReward.status == RewardStatus.PENDING.value)
        .values(**values)
    )
    if not conditional_update(stmt):
        db.session.rollback()
        raise ConflictError("Only pending rewards can be cancelled")
    db.session.commit()
    return get_reward(reward_id)


# =============================================================================
# BATCH PROCESSING
# =============================================================================

def _claimable(stale_before):
    return or_(
        CustomerReward.status == RewardStatus.PENDING.value,
        and_(
            CustomerReward.status == RewardStatus.PROCESSING.value,
            CustomerReward.processing_started_at < stale_before,
        ),
    )


def _claim(reward_id: int, stale_before) -> bool:
    def _op() -> bool:
        stmt = (
            update(CustomerReward)
            .where(CustomerReward.id == reward_id, _claimable(stale_before))
            .values(status=RewardStatus.PROCESSING.value, processing_started_at=utcnow())
        )
        claimed = conditional_update(stmt)
        db.session.commit()
        return claimed

    return run_with_retry(_op)


def _release(reward_id: int) -> None:
    def _op() -> None:
        conditional_update(
            update(CustomerReward)
            .where(CustomerReward.id == reward_id, CustomerReward.status == RewardStatus.PROCESSING.value)
            .values(status=RewardStatus.PENDING.value, processing_started_at=None)
        )
        db.session.commit()

    run_with_retry(_op)


def _pay(reward_id: int, processed_by: str) -> dict:
    """Credit one claimed reward to the wallet. One transaction."""
    def _op() -> dict:
        begin_write()
        reward = get_reward(reward_id)
        amount = reward.final_reward_cents
        label = format_quarter_label(reward.quarter, reward.year)

        payment = payment_service.record_reward_payment(
            customer_id=reward.customer_id,
            amount_cents=amount,
            notes=f"Quarterly reward {label}",
        )
        customer_service.credit_wallet(reward.customer_id, amount)

        done = conditional_update(
            update(CustomerReward)
            .where(CustomerReward.id == reward_id, CustomerReward.status == RewardStatus.PROCESSING.value)
            .values(
                status=RewardStatus.PROCESSED.value,
                payment_id=payment.id,
                processed_at=utcnow(),
                processed_by=processed_by,
                processing_started_at=None,
            )
        )
        if not done:
            raise ConflictError("Reward left processing state during payment")
        result = {"payment_id": payment.id, "payment_number": payment.payment_number, "amount_cents": amount}
        db.session.commit()
        return result

    return run_with_retry(_op)


def process_quarter(quarter, year, *, processed_by: str = "system") -> dict:
    """
    Pay every pending reward of the quarter. Each record is settled in its
    own transaction; a failure is logged, reported and leaves the record
    pending without affecting the others. Re-running never pays a record twice.
    """
    quarter, year = require_period(quarter, year)
    stale_seconds = current_app.config.get("REWARD_PROCESSING_STALE_SECONDS", 900)

    rows = (
        db.session.query(CustomerReward.id, CustomerReward.customer_id, CustomerReward.status)
        .filter(CustomerReward.quarter == quarter, CustomerReward.year == year)
        .order_by(CustomerReward.id.asc())
        .all()
    )

    results: list[dict] = []
    for reward_id, customer_id, status in rows:
        entry = {"reward_id": reward_id, "customer_id": customer_id}

        if status in (RewardStatus.PROCESSED.value, RewardStatus.CANCELLED.value):
            results.append({**entry, "status": "skipped", "reason": f"already {status}"})
            continue

        try:
            claimed = _claim(reward_id, seconds_ago(stale_seconds))
        except Exception as exc:
            # Nothing was claimed, so there is nothing to release.
            db.session.rollback()
            current_app.logger.exception("Could not claim reward %s for customer %s", reward_id, customer_id)
            results.append({**entry, "status": "failed", "error": str(exc) or exc.__class__.__name__})
            continue

        if not claimed:
            results.append({**entry, "status": "skipped", "reason": "claimed by another run"})
            continue

        try:
            final = get_reward(reward_id).final_reward_cents
            if final <= 0:
                _release(reward_id)
                results.append({**entry, "status": "skipped", "reason": "no reward to pay", "amount_cents": final})
                continue
            paid = _pay(reward_id, processed_by)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Reward %s for customer %s failed", reward_id, customer_id)
            try:
                _release(reward_id)
            except Exception:
                current_app.logger.exception("Could not release reward %s; it will be reclaimed when stale", reward_id)
            results.append({**entry, "status": "failed", "error": str(exc) or exc.__class__.__name__})
            continue

        results.append({**entry, "status": "processed", **paid})

    summary = {
        "quarter": quarter,
        "year": year,
        "quarter_label": format_quarter_label(quarter, year),
        "processed": sum(1 for r in results if r["status"] == "processed"),
        "skipped": sum(1 for r in results if r["status"] == "skipped"),
        "failed": sum(1 for r in results if r["status"] == "failed"),
        "total_paid_cents": sum(r.get("amount_cents", 0) for r in results if r["status"] == "processed"),
        "results": results,
    }
    current_app.logger.info(
        "Reward batch %s: processed=%s skipped=%s failed=%s",
        summary["quarter_label"],
        summary["processed"],
        summary["skipped"],
        summary["failed"],
    )
    return summary
