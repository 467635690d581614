from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class Customer(db.Model):
    """
    B2B customer account with a revolving credit line and a wallet.

    CREDIT INVARIANT: 0 <= credit_used_cents <= credit_limit_cents at rest.
    The CHECK constraints below back up the conditional updates in
    customer_service; application code never read-modify-writes these columns.

    wallet_balance_cents receives processed quarterly rewards and can settle
    orders (payment method "wallet").
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("credit_limit_cents >= 0", name="ck_customers_credit_limit_nonneg"),
        db.CheckConstraint("credit_used_cents >= 0", name="ck_customers_credit_used_nonneg"),
        db.CheckConstraint("credit_used_cents <= credit_limit_cents", name="ck_customers_credit_within_limit"),
        db.CheckConstraint("wallet_balance_cents >= 0", name="ck_customers_wallet_nonneg"),
        db.Index("ix_customers_active_name", "is_active", "business_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_name = db.Column(db.String(255), nullable=False)
    contact_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id"), nullable=True, index=True)
    reward_category = db.Column(db.String(64), nullable=True)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_used_cents = db.Column(db.Integer, nullable=False, default=0)
    wallet_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    # Denormalized aggregates (updated at checkout / cancellation)
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    price_list = db.relationship("PriceList", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_credit_cents(self) -> int:
        return (self.credit_limit_cents or 0) - (self.credit_used_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_name": self.business_name,
            "contact_name": self.contact_name,
            "email": self.email,
            "phone": self.phone,
            "price_list_id": self.price_list_id,
            "reward_category": self.reward_category,
            "credit_limit_cents": self.credit_limit_cents,
            "credit_used_cents": self.credit_used_cents,
            "available_credit_cents": self.available_credit_cents,
            "wallet_balance_cents": self.wallet_balance_cents,
            "total_orders": self.total_orders,
            "total_spent_cents": self.total_spent_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
