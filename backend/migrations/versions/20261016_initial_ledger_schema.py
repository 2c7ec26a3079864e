"""Initial branch ledger schema

Revision ID: 20261016_initial
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261016_initial"
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text("(CURRENT_TIMESTAMP)")


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("opening_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cash_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_branches_name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_branch_id", ["branch_id"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_session_tokens_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_session_tokens_token_hash", ["token_hash"], unique=True)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("phone", name="uq_customers_phone"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("model", sa.String(255), nullable=False, server_default=""),
        sa.Column("barcode", sa.String(64), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("defective_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("returned_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("exchanged_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="IN_STORE"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonneg"),
        sa.CheckConstraint("defective_quantity >= 0", name="ck_products_defective_nonneg"),
        sa.CheckConstraint("returned_quantity >= 0", name="ck_products_returned_nonneg"),
        sa.CheckConstraint("exchanged_quantity >= 0", name="ck_products_exchanged_nonneg"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "name", "model", name="uq_products_branch_name_model"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_products_barcode", ["barcode"], unique=False)
        batch_op.create_index("ix_products_branch_status", ["branch_id", "status"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(24), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("from_branch_id", sa.Integer(), nullable=False),
        sa.Column("to_branch_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("final_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_type", sa.String(16), nullable=True),
        sa.Column("delivery_method", sa.String(32), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("last_repayment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["from_branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["to_branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.create_index("ix_transactions_type", ["type"], unique=False)
        batch_op.create_index("ix_transactions_status", ["status"], unique=False)
        batch_op.create_index("ix_transactions_from_branch_id", ["from_branch_id"], unique=False)
        batch_op.create_index("ix_transactions_to_branch_id", ["to_branch_id"], unique=False)
        batch_op.create_index("ix_transactions_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_transactions_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_transactions_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_transactions_from_branch_created", ["from_branch_id", "created_at"], unique=False)

    op.create_table(
        "transaction_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("credit_months", sa.Integer(), nullable=True),
        sa.Column("credit_percent_bps", sa.Integer(), nullable=True),
        sa.Column("monthly_payment_cents", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transaction_items", schema=None) as batch_op:
        batch_op.create_index("ix_transaction_items_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_transaction_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "stock_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_history", schema=None) as batch_op:
        batch_op.create_index("ix_stock_history_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_stock_history_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_stock_history_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_stock_history_type", ["type"], unique=False)
        batch_op.create_index("ix_stock_history_created_by_user_id", ["created_by_user_id"], unique=False)
        batch_op.create_index("ix_stock_history_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_stock_history_product_created", ["product_id", "created_at"], unique=False)

    op.create_table(
        "payment_schedules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_cents", sa.Integer(), nullable=False),
        sa.Column("remaining_balance_cents", sa.Integer(), nullable=True),
        sa.Column("paid_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("repayment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_channel", sa.String(16), nullable=True),
        sa.Column("paid_by_user_id", sa.Integer(), nullable=True),
        sa.Column("rating", sa.String(32), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("paid_amount_cents >= 0", name="ck_payment_schedules_paid_nonneg"),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["paid_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id", "month", name="uq_payment_schedules_transaction_month"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payment_schedules", schema=None) as batch_op:
        batch_op.create_index("ix_payment_schedules_transaction_id", ["transaction_id"], unique=False)

    op.create_table(
        "payment_repayments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False, server_default="CASH"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_by_user_id", sa.Integer(), nullable=True),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("cash_posted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("idempotency_key", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["schedule_id"], ["payment_schedules.id"]),
        sa.ForeignKeyConstraint(["paid_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("schedule_id", "idempotency_key", name="uq_payment_repayments_schedule_key"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payment_repayments", schema=None) as batch_op:
        batch_op.create_index("ix_payment_repayments_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_payment_repayments_schedule_id", ["schedule_id"], unique=False)
        batch_op.create_index("ix_payment_repayments_paid_by_user_id", ["paid_by_user_id"], unique=False)
        batch_op.create_index("ix_payment_repayments_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_payment_repayments_branch_paid_at", ["branch_id", "paid_at"], unique=False)

    op.create_table(
        "condition_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.String(16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("cash_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("is_from_sale", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("replacement_product_id", sa.Integer(), nullable=True),
        sa.Column("replacement_quantity", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["replacement_product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("condition_logs", schema=None) as batch_op:
        batch_op.create_index("ix_condition_logs_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_condition_logs_branch_id", ["branch_id"], unique=False)
        batch_op.create_index("ix_condition_logs_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_condition_logs_action_type", ["action_type"], unique=False)
        batch_op.create_index("ix_condition_logs_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_condition_logs_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_condition_logs_branch_created", ["branch_id", "created_at"], unique=False)


def downgrade():
    op.drop_table("condition_logs")
    op.drop_table("payment_repayments")
    op.drop_table("payment_schedules")
    op.drop_table("stock_history")
    op.drop_table("transaction_items")
    op.drop_table("transactions")
    op.drop_table("products")
    op.drop_table("customers")
    op.drop_table("session_tokens")
    op.drop_table("users")
    op.drop_table("branches")
