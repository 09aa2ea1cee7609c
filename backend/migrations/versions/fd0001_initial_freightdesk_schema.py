"""Initial freightdesk schema: users, tokens, orders, dual ledger, balances, insurance

Revision ID: fd0001
Revises:
Create Date: 2026-10-17 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "fd0001"
down_revision = None
branch_labels = None
depends_on = None


ORDER_REFUND = "transaction_type = 'refund' AND reference_id IS NULL"
REFERENCE_REFUND = "transaction_type = 'refund' AND reference_id IS NOT NULL"


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("user_type", sa.String(length=16), nullable=False),
        sa.Column("price_ratio", sa.Numeric(8, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_type_active", "users", ["user_type", "is_active"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"], unique=False)
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(length=64), nullable=False),
        sa.Column("carrier_order_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending_review"),
        sa.Column("carrier_status", sa.String(length=64), nullable=True),
        sa.Column("audit_remark", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("service_type", sa.String(length=16), nullable=True),
        sa.Column("carrier_name", sa.String(length=128), nullable=True),
        sa.Column("tracking_number", sa.String(length=64), nullable=True),
        sa.Column("pro_number", sa.String(length=64), nullable=True),
        sa.Column("has_insurance", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("insurance_certificate_number", sa.String(length=64), nullable=True),
        sa.Column("status_history", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_api_sync", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"], unique=False)
    op.create_index("ix_orders_status", "orders", ["status"], unique=False)
    op.create_index("ix_orders_user_status", "orders", ["user_id", "status"], unique=False)

    op.create_table(
        "transaction_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("prefix", sa.String(length=16), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("prefix", "year", name="uq_transaction_sequences_prefix_year"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "balance_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_id", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_email", sa.String(length=255), nullable=True),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("order_account", sa.String(length=32), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("order_number", sa.String(length=64), nullable=True),
        sa.Column("reference_id", sa.String(length=64), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("base_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("transaction_type", sa.String(length=16), nullable=False),
        sa.Column("is_supervisor_transaction", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.UniqueConstraint("transaction_id", name="uq_balance_transactions_transaction_id"),
        sa.CheckConstraint(
            "transaction_type IN ('debit', 'credit', 'refund', 'adjustment')",
            name="ck_balance_tx_type",
        ),
        sa.CheckConstraint(
            "status IN ('completed', 'pending', 'failed')",
            name="ck_balance_tx_status",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_balance_transactions_user_id", "balance_transactions", ["user_id"], unique=False)
    op.create_index("ix_balance_transactions_order_id", "balance_transactions", ["order_id"], unique=False)
    op.create_index("ix_balance_transactions_reference_id", "balance_transactions", ["reference_id"], unique=False)
    op.create_index("ix_balance_transactions_transaction_type", "balance_transactions", ["transaction_type"], unique=False)
    op.create_index(
        "ix_balance_transactions_is_supervisor_transaction",
        "balance_transactions",
        ["is_supervisor_transaction"],
        unique=False,
    )
    op.create_index("ix_balance_transactions_created_at", "balance_transactions", ["created_at"], unique=False)
    op.create_index(
        "ix_balance_tx_order_type_side",
        "balance_transactions",
        ["order_id", "transaction_type", "is_supervisor_transaction"],
        unique=False,
    )
    op.create_index("ix_balance_tx_user_created", "balance_transactions", ["user_id", "created_at"], unique=False)

    # At most one refund per side per order, and per referenced artifact
    op.create_index(
        "uq_balance_tx_order_refund",
        "balance_transactions",
        ["order_id", "is_supervisor_transaction"],
        unique=True,
        sqlite_where=sa.text(ORDER_REFUND),
        postgresql_where=sa.text(ORDER_REFUND),
    )
    op.create_index(
        "uq_balance_tx_reference_refund",
        "balance_transactions",
        ["reference_id", "is_supervisor_transaction"],
        unique=True,
        sqlite_where=sa.text(REFERENCE_REFUND),
        postgresql_where=sa.text(REFERENCE_REFUND),
    )

    op.create_table(
        "user_balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("current_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("available_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("pending_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("credit_limit", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.UniqueConstraint("user_id", name="uq_user_balances_user_id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "insurance_certificates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("certificate_number", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
        sa.Column("coverage_limit", sa.Numeric(14, 2), nullable=True),
        sa.Column("premium", sa.Numeric(14, 2), nullable=True),
        sa.Column("service_fee", sa.Numeric(14, 2), nullable=True),
        sa.Column("tax", sa.Numeric(14, 2), nullable=True),
        sa.Column("total_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("customer_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("certificate_link", sa.String(length=512), nullable=True),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=8), nullable=True),
        sa.Column("cancellation_additional_info", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.UniqueConstraint("certificate_number", name="uq_insurance_certificates_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_insurance_certificates_user_id", "insurance_certificates", ["user_id"], unique=False)
    op.create_index("ix_insurance_certificates_order_id", "insurance_certificates", ["order_id"], unique=False)


def downgrade():
    op.drop_index("ix_insurance_certificates_order_id", table_name="insurance_certificates")
    op.drop_index("ix_insurance_certificates_user_id", table_name="insurance_certificates")
    op.drop_table("insurance_certificates")

    op.drop_table("user_balances")

    op.drop_index("uq_balance_tx_reference_refund", table_name="balance_transactions")
    op.drop_index("uq_balance_tx_order_refund", table_name="balance_transactions")
    op.drop_index("ix_balance_tx_user_created", table_name="balance_transactions")
    op.drop_index("ix_balance_tx_order_type_side", table_name="balance_transactions")
    op.drop_index("ix_balance_transactions_created_at", table_name="balance_transactions")
    op.drop_index("ix_balance_transactions_is_supervisor_transaction", table_name="balance_transactions")
    op.drop_index("ix_balance_transactions_transaction_type", table_name="balance_transactions")
    op.drop_index("ix_balance_transactions_reference_id", table_name="balance_transactions")
    op.drop_index("ix_balance_transactions_order_id", table_name="balance_transactions")
    op.drop_index("ix_balance_transactions_user_id", table_name="balance_transactions")
    op.drop_table("balance_transactions")

    op.drop_table("transaction_sequences")

    op.drop_index("ix_orders_user_status", table_name="orders")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_table("orders")

    op.drop_index("ix_session_tokens_token_hash", table_name="session_tokens")
    op.drop_index("ix_session_tokens_user_id", table_name="session_tokens")
    op.drop_table("session_tokens")

    op.drop_index("ix_users_type_active", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
