"""Initial order desk schema: catalog, customers, discounts, carts, orders, payments, rewards

Revision ID: 20261019_orderdesk_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_orderdesk_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*, updated: bool = True):
    cols = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]
    if updated:
        cols.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False)
        )
    return cols


def upgrade():
    # ------------------------------------------------------------------ catalog
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("unit", sa.String(32), nullable=False, server_default="case"),
        sa.Column("units_per_case", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("stock_status", sa.String(16), nullable=False, server_default="in_stock"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("base_price_cents >= 0", name="ck_products_base_price_nonneg"),
        sa.CheckConstraint("units_per_case >= 1", name="ck_products_units_per_case"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_active_name", ["is_active", "name"], unique=False)

    op.create_table(
        "price_lists",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "price_list_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("price_list_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        *_timestamps(updated=False),
        sa.CheckConstraint("price_cents >= 0", name="ck_price_list_items_price_nonneg"),
        sa.ForeignKeyConstraint(["price_list_id"], ["price_lists.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("price_list_id", "product_id", name="uq_price_list_items_list_product"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("price_list_items", schema=None) as batch_op:
        batch_op.create_index("ix_price_list_items_price_list_id", ["price_list_id"], unique=False)
        batch_op.create_index("ix_price_list_items_product_id", ["product_id"], unique=False)

    # ---------------------------------------------------------------- customers
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_name", sa.String(255), nullable=False),
        sa.Column("contact_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("price_list_id", sa.Integer(), nullable=True),
        sa.Column("reward_category", sa.String(64), nullable=True),
        sa.Column("credit_limit_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("credit_used_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("wallet_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_orders", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_spent_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("credit_limit_cents >= 0", name="ck_customers_credit_limit_nonneg"),
        sa.CheckConstraint("credit_used_cents >= 0", name="ck_customers_credit_used_nonneg"),
        sa.CheckConstraint("credit_used_cents <= credit_limit_cents", name="ck_customers_credit_within_limit"),
        sa.CheckConstraint("wallet_balance_cents >= 0", name="ck_customers_wallet_nonneg"),
        sa.ForeignKeyConstraint(["price_list_id"], ["price_lists.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_price_list_id", ["price_list_id"], unique=False)
        batch_op.create_index("ix_customers_is_active", ["is_active"], unique=False)
        batch_op.create_index("ix_customers_active_name", ["is_active", "business_name"], unique=False)

    # ---------------------------------------------------------------- discounts
    op.create_table(
        "discounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_type", sa.String(32), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("min_quantity", sa.Integer(), nullable=True),
        sa.Column("bonus_quantity", sa.Integer(), nullable=True),
        sa.Column("min_order_amount_cents", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("start_date <= end_date", name="ck_discounts_window"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("discounts", schema=None) as batch_op:
        batch_op.create_index("ix_discounts_is_active", ["is_active"], unique=False)
        batch_op.create_index("ix_discounts_active_window", ["is_active", "start_date", "end_date"], unique=False)

    op.create_table(
        "discount_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("discount_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["discount_id"], ["discounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("discount_id", "product_id", name="uq_discount_products_pair"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("discount_products", schema=None) as batch_op:
        batch_op.create_index("ix_discount_products_discount_id", ["discount_id"], unique=False)
        batch_op.create_index("ix_discount_products_product_id", ["product_id"], unique=False)

    # -------------------------------------------------------------------- carts
    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_free_item", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("source_discount_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
        sa.CheckConstraint("unit_price_cents >= 0", name="ck_cart_items_price_nonneg"),
        sa.CheckConstraint(
            "(NOT is_free_item AND source_discount_id IS NULL) "
            "OR (is_free_item AND source_discount_id IS NOT NULL AND unit_price_cents = 0)",
            name="ck_cart_items_free_line_shape",
        ),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["source_discount_id"], ["discounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cart_items", schema=None) as batch_op:
        batch_op.create_index("ix_cart_items_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_cart_items_source_discount_id", ["source_discount_id"], unique=False)
        batch_op.create_index("ix_cart_items_customer_product", ["customer_id", "product_id"], unique=False)

    op.create_table(
        "free_item_claims",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("discount_id", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(16), nullable=False, server_default="unclaimed"),
        sa.Column("claimed_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("state IN ('unclaimed', 'claimed')", name="ck_free_item_claims_state"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["discount_id"], ["discounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_id", "discount_id", name="uq_free_item_claims_customer_discount"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("free_item_claims", schema=None) as batch_op:
        batch_op.create_index("ix_free_item_claims_customer_id", ["customer_id"], unique=False)

    # ------------------------------------------------------------------- orders
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("applied_discounts", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("subtotal_cents >= 0", name="ck_orders_subtotal_nonneg"),
        sa.CheckConstraint("discount_cents >= 0", name="ck_orders_discount_nonneg"),
        sa.CheckConstraint("total_cents >= 0", name="ck_orders_total_nonneg"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_orders_customer_created", ["customer_id", "created_at"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("unit", sa.String(32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("is_free_item", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("source_discount_id", sa.Integer(), nullable=True),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["source_discount_id"], ["discounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index("ix_order_items_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "order_status_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("to_status", sa.String(16), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_status_events", schema=None) as batch_op:
        batch_op.create_index("ix_order_status_events_order_id", ["order_id"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_number", sa.String(32), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("payment_type", sa.String(16), nullable=False, server_default="order"),
        sa.Column("method", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(64), nullable=True),
        sa.Column("card_last4", sa.String(4), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount_cents >= 0", name="ck_payments_amount_nonneg"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_payments_customer_created", ["customer_id", "created_at"], unique=False)

    # ------------------------------------------------------------------ rewards
    op.create_table(
        "reward_tiers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("category", sa.String(64), nullable=True),
        sa.Column("quarter", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("min_cartons", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_cartons", sa.Integer(), nullable=True),
        sa.Column("cashback_per_carton_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("quarter BETWEEN 1 AND 4", name="ck_reward_tiers_quarter"),
        sa.CheckConstraint("min_cartons >= 0", name="ck_reward_tiers_min_nonneg"),
        sa.CheckConstraint("max_cartons IS NULL OR max_cartons >= min_cartons", name="ck_reward_tiers_range"),
        sa.CheckConstraint("cashback_per_carton_cents >= 0", name="ck_reward_tiers_cashback_nonneg"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("reward_tiers", schema=None) as batch_op:
        batch_op.create_index("ix_reward_tiers_period", ["year", "quarter"], unique=False)

    op.create_table(
        "customer_rewards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("quarter", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("total_cartons_purchased", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("eligible_tier_id", sa.Integer(), nullable=True),
        sa.Column("calculated_reward_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("manual_adjustment_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'processed', 'cancelled')",
            name="ck_customer_rewards_status",
        ),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["eligible_tier_id"], ["reward_tiers.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_id", "quarter", "year", name="uq_customer_rewards_customer_period"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customer_rewards", schema=None) as batch_op:
        batch_op.create_index("ix_customer_rewards_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_customer_rewards_period_status", ["year", "quarter", "status"], unique=False)

    # ---------------------------------------------------------------- documents
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", name="uq_document_sequences_type"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("document_sequences")
    op.drop_table("customer_rewards")
    op.drop_table("reward_tiers")
    op.drop_table("payments")
    op.drop_table("order_status_events")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("free_item_claims")
    op.drop_table("cart_items")
    op.drop_table("discount_products")
    op.drop_table("discounts")
    op.drop_table("customers")
    op.drop_table("price_list_items")
    op.drop_table("price_lists")
    op.drop_table("products")
