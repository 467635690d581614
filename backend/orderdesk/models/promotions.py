from __future__ import annotations

from enum import Enum

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"    # value in basis points of the eligible subtotal
    FIXED = "fixed"              # value in cents
    BUY_GET = "buy_get"          # min_quantity cartons -> bonus_quantity free cartons
    SPEND_BONUS = "spend_bonus"  # value in basis points once min_order_amount_cents is reached


VALID_DISCOUNT_TYPES = {t.value for t in DiscountType}


class Discount(db.Model):
    """
    Promotion definition.

    A discount is *effective* only when is_active and start_date <= now <= end_date.
    Eligible products are listed in discount_products; no rows means the
    discount applies to the whole cart.
    """
    __tablename__ = "discounts"
    __table_args__ = (
        db.CheckConstraint("start_date <= end_date", name="ck_discounts_window"),
        db.Index("ix_discounts_active_window", "is_active", "start_date", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(32), nullable=False)
    value = db.Column(db.Integer, nullable=False, default=0)

    min_quantity = db.Column(db.Integer, nullable=True)
    bonus_quantity = db.Column(db.Integer, nullable=True)
    min_order_amount_cents = db.Column(db.Integer, nullable=True)

    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    product_links = db.relationship(
        "DiscountProduct",
        backref="discount",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def eligible_product_ids(self) -> list[int] | None:
        ids = sorted(link.product_id for link in self.product_links)
        return ids or None

    def is_effective(self, now) -> bool:
        return bool(self.is_active) and self.start_date <= now <= self.end_date

    def computed_status(self, now) -> str:
        if not self.is_active:
            return "inactive"
        if now < self.start_date:
            return "scheduled"
        if now > self.end_date:
            return "expired"
        return "active"

    def to_dict(self, now=None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "value": self.value,
            "min_quantity": self.min_quantity,
            "bonus_quantity": self.bonus_quantity,
            "min_order_amount_cents": self.min_order_amount_cents,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "is_active": self.is_active,
            "eligible_product_ids": self.eligible_product_ids,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if now is not None:
            data["computed_status"] = self.computed_status(now)
        return data


class DiscountProduct(db.Model):
    """Eligible product for a discount (many-to-many link)."""
    __tablename__ = "discount_products"
    __table_args__ = (
        db.UniqueConstraint("discount_id", "product_id", name="uq_discount_products_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
