from __future__ import annotations

from enum import Enum

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class ClaimState(str, Enum):
    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"


class CartItem(db.Model):
    """
    One cart line. The cart itself is the set of lines owned by a customer.

    unit_price_cents is the price resolved when the line was added; reads
    re-resolve and flag drift. Free lines (is_free_item) always carry
    unit_price_cents=0 and the discount that granted them, and are only ever
    written by free_item_service.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_cart_items_price_nonneg"),
        db.CheckConstraint(
            "(NOT is_free_item AND source_discount_id IS NULL) "
            "OR (is_free_item AND source_discount_id IS NOT NULL AND unit_price_cents = 0)",
            name="ck_cart_items_free_line_shape",
        ),
        db.Index("ix_cart_items_customer_product", "customer_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_free_item = db.Column(db.Boolean, nullable=False, default=False)
    source_discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    product = db.relationship("Product", lazy="joined")

    @property
    def line_total_cents(self) -> int:
        if self.is_free_item:
            return 0
        return (self.unit_price_cents or 0) * (self.quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "sku": self.product.sku if self.product else None,
            "unit": self.product.unit if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "is_free_item": self.is_free_item,
            "source_discount_id": self.source_discount_id,
            "created_at": to_utc_z(self.created_at),
        }


class FreeItemClaim(db.Model):
    """
    Claim state of one buy_get discount within one customer's cart.

    The unclaimed -> claimed move is a conditional UPDATE (WHERE state='unclaimed'),
    so only one concurrent claim can win. Reset to unclaimed when the cart no
    longer earns the claimed quantity.
    """
    __tablename__ = "free_item_claims"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "discount_id", name="uq_free_item_claims_customer_discount"),
        db.CheckConstraint("state IN ('unclaimed', 'claimed')", name="ck_free_item_claims_state"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id", ondelete="CASCADE"), nullable=False)

    state = db.Column(db.String(16), nullable=False, default=ClaimState.UNCLAIMED.value)
    claimed_quantity = db.Column(db.Integer, nullable=False, default=0)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "discount_id": self.discount_id,
            "state": self.state,
            "claimed_quantity": self.claimed_quantity,
            "claimed_at": to_utc_z(self.claimed_at),
        }
