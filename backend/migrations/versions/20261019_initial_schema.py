"""Initial tabpos schema: catalog, customers, tills, tickets, coupons, rewards

Revision ID: 20261019_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text("(CURRENT_TIMESTAMP)")


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False)


def _updated_at():
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False)


def _version_id():
    return sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1"))


def _cents(name, nullable=False):
    if nullable:
        return sa.Column(name, sa.Integer(), nullable=True)
    return sa.Column(name, sa.Integer(), nullable=False, server_default=sa.text("0"))


def upgrade():
    # ------------------------------------------------------------------
    # Catalog and customers
    # ------------------------------------------------------------------
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sale_price_cents", sa.Integer(), nullable=False),
        _cents("cost_price_cents"),
        sa.Column("track_stock", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("current_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("eligible_for_loyalty", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("earns_cashback", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _version_id(),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_active_name", ["is_active", "name"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("document", sa.String(32), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("loyalty_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _cents("cashback_balance_cents"),
        sa.Column("purchase_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _cents("total_purchases_cents"),
        _cents("total_cashback_earned_cents"),
        _created_at(),
        _updated_at(),
        _version_id(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_customers_email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_active", ["is_active"], unique=False)

    # ------------------------------------------------------------------
    # Registers and till sessions
    # ------------------------------------------------------------------
    op.create_table(
        "registers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("register_number", sa.String(32), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("location", sa.String(128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _version_id(),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("register_number", name="uq_registers_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("registers", schema=None) as batch_op:
        batch_op.create_index("ix_registers_is_active", ["is_active"], unique=False)

    op.create_table(
        "till_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("register_id", sa.Integer(), nullable=False),
        sa.Column("opened_by_user_id", sa.Integer(), nullable=True),
        sa.Column("closed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        _cents("opening_cash_cents"),
        _cents("total_sales_cents"),
        _cents("total_cash_cents"),
        _cents("total_card_cents"),
        _cents("total_pix_cents"),
        _cents("total_other_cents"),
        _cents("counted_cash_cents", nullable=True),
        _cents("expected_cash_cents", nullable=True),
        _cents("variance_cents", nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["register_id"], ["registers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("till_sessions", schema=None) as batch_op:
        batch_op.create_index("ix_till_sessions_register_id", ["register_id"], unique=False)
        batch_op.create_index("ix_till_sessions_status", ["status"], unique=False)
        batch_op.create_index("ix_till_sessions_opened_at", ["opened_at"], unique=False)
        batch_op.create_index("ix_till_sessions_register_status", ["register_id", "status"], unique=False)

    # ------------------------------------------------------------------
    # Coupons and reward configuration
    # ------------------------------------------------------------------
    op.create_table(
        "coupons",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("coupon_type", sa.String(16), nullable=False),
        sa.Column("discount_value", sa.Integer(), nullable=False),
        _cents("min_purchase_cents"),
        _cents("max_discount_cents", nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        _version_id(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_coupons_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("coupons", schema=None) as batch_op:
        batch_op.create_index("ix_coupons_status", ["status"], unique=False)

    op.create_table(
        "loyalty_configs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("points_per_real", sa.Numeric(10, 4), nullable=False, server_default=sa.text("1")),
        _cents("min_purchase_for_points_cents"),
        sa.Column("points_expiration_days", sa.Integer(), nullable=True),
        sa.Column("min_points_to_redeem", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("points_redemption_value", sa.Numeric(10, 4), nullable=False, server_default=sa.text("0.01")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("apply_to_all_products", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _updated_at(),
        _version_id(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "cashback_configs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cashback_percentage", sa.Numeric(5, 2), nullable=False, server_default=sa.text("5")),
        _cents("min_purchase_for_cashback_cents"),
        _cents("max_cashback_per_purchase_cents", nullable=True),
        sa.Column("cashback_expiration_days", sa.Integer(), nullable=True),
        sa.Column("min_cashback_to_use_cents", sa.Integer(), nullable=False, server_default=sa.text("500")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("apply_to_all_products", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _updated_at(),
        _version_id(),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("points_required", sa.Integer(), nullable=False),
        sa.Column("quantity_available", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _updated_at(),
        _version_id(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("loyalty_rewards", schema=None) as batch_op:
        batch_op.create_index("ix_loyalty_rewards_is_active", ["is_active"], unique=False)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------
    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False, server_default="SALE"),
        sa.Column("ticket_number", sa.Integer(), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        sa.Column("till_session_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("table_number", sa.String(16), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        _cents("subtotal_cents"),
        _cents("discount_cents"),
        _cents("item_discount_cents"),
        _cents("ticket_discount_cents"),
        _cents("coupon_discount_cents"),
        _cents("loyalty_discount_cents"),
        _cents("additional_fee_cents"),
        _cents("total_cents"),
        sa.Column("loyalty_points_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _cents("cashback_earned_cents"),
        sa.Column("coupon_id", sa.Integer(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_by_user_id", sa.Integer(), nullable=True),
        sa.Column("closed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column("is_adjusted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("adjustment_reason", sa.String(255), nullable=True),
        sa.Column("adjusted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("adjusted_at", sa.DateTime(timezone=True), nullable=True),
        _version_id(),
        sa.ForeignKeyConstraint(["till_session_id"], ["till_sessions.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_date", "kind", "ticket_number", name="uq_tickets_date_kind_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("tickets", schema=None) as batch_op:
        batch_op.create_index("ix_tickets_kind", ["kind"], unique=False)
        batch_op.create_index("ix_tickets_status", ["status"], unique=False)
        batch_op.create_index("ix_tickets_till_session_id", ["till_session_id"], unique=False)
        batch_op.create_index("ix_tickets_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_tickets_session_status", ["till_session_id", "status"], unique=False)
        batch_op.create_index("ix_tickets_customer_opened", ["customer_id", "opened_at"], unique=False)

    op.create_table(
        "ticket_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        _cents("cost_price_cents"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        _cents("discount_cents"),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("loyalty_points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column("cancelled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("added_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        _version_id(),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ticket_items", schema=None) as batch_op:
        batch_op.create_index("ix_ticket_items_ticket_id", ["ticket_id"], unique=False)
        batch_op.create_index("ix_ticket_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "ticket_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ticket_payments", schema=None) as batch_op:
        batch_op.create_index("ix_ticket_payments_ticket_id", ["ticket_id"], unique=False)
        batch_op.create_index("ix_ticket_payments_payment_method", ["payment_method"], unique=False)

    op.create_table(
        "ticket_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_date", "kind", name="uq_ticket_sequences_date_kind"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ticket_sequences", schema=None) as batch_op:
        batch_op.create_index("ix_ticket_sequences_business_date", ["business_date"], unique=False)

    op.create_table(
        "ticket_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ticket_events", schema=None) as batch_op:
        batch_op.create_index("ix_ticket_events_ticket_id", ["ticket_id"], unique=False)
        batch_op.create_index("ix_ticket_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_ticket_events_ticket_occurred", ["ticket_id", "occurred_at"], unique=False)

    # ------------------------------------------------------------------
    # Ledgers
    # ------------------------------------------------------------------
    op.create_table(
        "coupon_usages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("coupon_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=True),
        sa.Column("discount_applied_cents", sa.Integer(), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("coupon_usages", schema=None) as batch_op:
        batch_op.create_index("ix_coupon_usages_coupon_id", ["coupon_id"], unique=False)
        batch_op.create_index("ix_coupon_usages_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_coupon_usages_ticket_id", ["ticket_id"], unique=False)

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=True),
        sa.Column("reward_id", sa.Integer(), nullable=True),
        sa.Column("source_transaction_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.ForeignKeyConstraint(["reward_id"], ["loyalty_rewards.id"]),
        sa.ForeignKeyConstraint(["source_transaction_id"], ["loyalty_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("loyalty_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_loyalty_transactions_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_loyalty_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_loyalty_transactions_ticket_id", ["ticket_id"], unique=False)
        batch_op.create_index("ix_loyalty_transactions_reward_id", ["reward_id"], unique=False)
        batch_op.create_index("ix_loyalty_transactions_source_transaction_id", ["source_transaction_id"], unique=False)
        batch_op.create_index("ix_loyalty_txns_customer_id", ["customer_id", "id"], unique=False)
        batch_op.create_index("ix_loyalty_txns_type_expires", ["transaction_type", "expires_at"], unique=False)

    op.create_table(
        "cashback_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("balance_after_cents", sa.Integer(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=True),
        sa.Column("source_transaction_id", sa.Integer(), nullable=True),
        sa.Column("counterparty_customer_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["counterparty_customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.ForeignKeyConstraint(["source_transaction_id"], ["cashback_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cashback_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_cashback_transactions_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_cashback_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_cashback_transactions_ticket_id", ["ticket_id"], unique=False)
        batch_op.create_index("ix_cashback_transactions_source_transaction_id", ["source_transaction_id"], unique=False)
        batch_op.create_index("ix_cashback_txns_customer_id", ["customer_id", "id"], unique=False)
        batch_op.create_index("ix_cashback_txns_type_expires", ["transaction_type", "expires_at"], unique=False)


def downgrade():
    for table in (
        "cashback_transactions",
        "loyalty_transactions",
        "coupon_usages",
        "ticket_events",
        "ticket_sequences",
        "ticket_payments",
        "ticket_items",
        "tickets",
        "loyalty_rewards",
        "cashback_configs",
        "loyalty_configs",
        "coupons",
        "till_sessions",
        "registers",
        "customers",
        "products",
    ):
        op.drop_table(table)
