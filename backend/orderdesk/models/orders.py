from __future__ import annotations

from enum import Enum

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CREDIT = "credit"
    CARD = "card"
    WALLET = "wallet"


class PaymentType(str, Enum):
    ORDER = "order"
    REWARD = "reward"
    MANUAL = "manual"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


VALID_ORDER_STATUSES = {s.value for s in OrderStatus}
VALID_PAYMENT_METHODS = {m.value for m in PaymentMethod}


class Order(db.Model):
    """
    Placed order.

    Everything but status, paid_cents and the lifecycle timestamps is frozen at
    creation: items are copied into order_items and applied discounts into
    applied_discounts.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("subtotal_cents >= 0", name="ck_orders_subtotal_nonneg"),
        db.CheckConstraint("discount_cents >= 0", name="ck_orders_discount_nonneg"),
        db.CheckConstraint("total_cents >= 0", name="ck_orders_total_nonneg"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        db.Index("ix_orders_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=OrderStatus.PENDING.value)
    payment_method = db.Column(db.String(16), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)

    applied_discounts = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    customer = db.relationship("Customer", backref=db.backref("orders", lazy="dynamic"))
    items = db.relationship("OrderItem", backref="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    status_events = db.relationship(
        "OrderStatusEvent",
        backref="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusEvent.id",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_due_cents": 0 if self.status == OrderStatus.CANCELLED.value else max(self.total_cents - self.paid_cents, 0),
            "applied_discounts": self.applied_discounts or [],
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["status_history"] = [event.to_dict() for event in self.status_events]
        return data


class OrderItem(db.Model):
    """Snapshot of a cart line at checkout."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    unit = db.Column(db.String(32), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    is_free_item = db.Column(db.Boolean, nullable=False, default=False)
    source_discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "unit": self.unit,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "is_free_item": self.is_free_item,
            "source_discount_id": self.source_discount_id,
        }


class OrderStatusEvent(db.Model):
    """Append-only status history for an order."""
    __tablename__ = "order_status_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    note = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Payment(db.Model):
    """
    Money movement record: card/wallet settlement of an order, a reward
    payout into a customer's wallet, or a payment an administrator recorded
    against the account (type "manual").

    Card numbers are never stored; only the last four digits and the
    authorization code.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_payments_amount_nonneg"),
        db.Index("ix_payments_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_number = db.Column(db.String(32), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    payment_type = db.Column(db.String(16), nullable=False, default=PaymentType.ORDER.value)
    method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PaymentStatus.COMPLETED.value)
    amount_cents = db.Column(db.Integer, nullable=False)

    reference = db.Column(db.String(64), nullable=True)
    card_last4 = db.Column(db.String(4), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))
    customer = db.relationship("Customer")

    def to_dict(self, include_refs: bool = False) -> dict:
        data = {
            "id": self.id,
            "payment_number": self.payment_number,
            "customer_id": self.customer_id,
            "order_id": self.order_id,
            "payment_type": self.payment_type,
            "method": self.method,
            "status": self.status,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
            "card_last4": self.card_last4,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "refunded_at": to_utc_z(self.refunded_at),
        }
        if include_refs:
            data["customer_name"] = self.customer.business_name if self.customer else None
            data["order_number"] = self.order.order_number if self.order else None
        return data
