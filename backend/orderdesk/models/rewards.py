from __future__ import annotations

from enum import Enum

from ..extensions import db
from orderdesk.time_utils import to_utc_z, format_quarter_label


class RewardStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    CANCELLED = "cancelled"


class RewardTier(db.Model):
    """
    Quarterly volume bracket: cartons purchased in [min_cartons, max_cartons]
    earn cashback_per_carton_cents per carton. max_cartons NULL = unbounded.

    Ranges of tiers sharing (quarter, year, category) must not overlap; this is
    checked in reward_service because it spans rows.
    """
    __tablename__ = "reward_tiers"
    __table_args__ = (
        db.CheckConstraint("quarter BETWEEN 1 AND 4", name="ck_reward_tiers_quarter"),
        db.CheckConstraint("min_cartons >= 0", name="ck_reward_tiers_min_nonneg"),
        db.CheckConstraint("max_cartons IS NULL OR max_cartons >= min_cartons", name="ck_reward_tiers_range"),
        db.CheckConstraint("cashback_per_carton_cents >= 0", name="ck_reward_tiers_cashback_nonneg"),
        db.Index("ix_reward_tiers_period", "year", "quarter"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    quarter = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    min_cartons = db.Column(db.Integer, nullable=False, default=0)
    max_cartons = db.Column(db.Integer, nullable=True)
    cashback_per_carton_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def contains(self, cartons: int) -> bool:
        if cartons < self.min_cartons:
            return False
        return self.max_cartons is None or cartons <= self.max_cartons

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "quarter": self.quarter,
            "year": self.year,
            "quarter_label": format_quarter_label(self.quarter, self.year),
            "min_cartons": self.min_cartons,
            "max_cartons": self.max_cartons,
            "cashback_per_carton_cents": self.cashback_per_carton_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CustomerReward(db.Model):
    """
    Cashback earned by one customer in one quarter.

    Status path: pending -> processing -> processed. A row is claimed for
    processing with a conditional UPDATE, so concurrent or retried batches
    never credit the same row twice. Processed rows are immutable.
    """
    __tablename__ = "customer_rewards"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "quarter", "year", name="uq_customer_rewards_customer_period"),
        db.CheckConstraint(
            "status IN ('pending', 'processing', 'processed', 'cancelled')",
            name="ck_customer_rewards_status",
        ),
        db.Index("ix_customer_rewards_period_status", "year", "quarter", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    quarter = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)

    total_cartons_purchased = db.Column(db.Integer, nullable=False, default=0)
    eligible_tier_id = db.Column(db.Integer, db.ForeignKey("reward_tiers.id", ondelete="SET NULL"), nullable=True)
    calculated_reward_cents = db.Column(db.Integer, nullable=False, default=0)
    manual_adjustment_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=RewardStatus.PENDING.value)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)
    processing_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("rewards", lazy="dynamic"))
    eligible_tier = db.relationship("RewardTier")

    @property
    def final_reward_cents(self) -> int:
        return (self.calculated_reward_cents or 0) + (self.manual_adjustment_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "business_name": self.customer.business_name if self.customer else None,
            "quarter": self.quarter,
            "year": self.year,
            "quarter_label": format_quarter_label(self.quarter, self.year),
            "total_cartons_purchased": self.total_cartons_purchased,
            "eligible_tier_id": self.eligible_tier_id,
            "tier_name": self.eligible_tier.name if self.eligible_tier else None,
            "calculated_reward_cents": self.calculated_reward_cents,
            "manual_adjustment_cents": self.manual_adjustment_cents,
            "final_reward_cents": self.final_reward_cents,
            "status": self.status,
            "payment_id": self.payment_id,
            "processed_at": to_utc_z(self.processed_at),
            "processed_by": self.processed_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
