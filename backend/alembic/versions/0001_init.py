"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "profiles" not in existing_tables:
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("full_name", sa.String(), nullable=True),
            sa.Column("avatar_url", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("profiles")
    if "ix_profiles_id" not in idxs:
        op.create_index("ix_profiles_id", "profiles", ["id"])
    if "ix_profiles_email" not in idxs:
        op.create_index("ix_profiles_email", "profiles", ["email"])

    if "credit_accounts" not in existing_tables:
        op.create_table(
            "credit_accounts",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("lifetime_credits", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
        )
    idxs = existing_indexes("credit_accounts")
    if "ix_credit_accounts_user_id" not in idxs:
        op.create_index("ix_credit_accounts_user_id", "credit_accounts", ["user_id"])

    if "credit_transactions" not in existing_tables:
        op.create_table(
            "credit_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(), nullable=False),
            sa.Column("balance_after", sa.Integer(), nullable=False),
            sa.Column("reference_id", sa.String(), nullable=True),
            sa.Column("reference_type", sa.String(), nullable=True),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("credit_transactions")
    if "ix_credit_transactions_id" not in idxs:
        op.create_index("ix_credit_transactions_id", "credit_transactions", ["id"])
    if "ix_credit_transactions_user_id" not in idxs:
        op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"])
    if "ix_credit_transactions_type" not in idxs:
        op.create_index("ix_credit_transactions_type", "credit_transactions", ["type"])
    if "ix_credit_transactions_reference_id" not in idxs:
        op.create_index("ix_credit_transactions_reference_id", "credit_transactions", ["reference_id"])

    if "generations" not in existing_tables:
        op.create_table(
            "generations",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("prompt", sa.Text(), nullable=False),
            sa.Column("aspect_ratio", sa.String(), nullable=True),
            sa.Column("image_size", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("credits_used", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("image_url", sa.String(), nullable=True),
            sa.Column("image_data", sa.Text(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        )
    idxs = existing_indexes("generations")
    if "ix_generations_id" not in idxs:
        op.create_index("ix_generations_id", "generations", ["id"])
    if "ix_generations_user_id" not in idxs:
        op.create_index("ix_generations_user_id", "generations", ["user_id"])
    if "ix_generations_status" not in idxs:
        op.create_index("ix_generations_status", "generations", ["status"])

    if "purchases" not in existing_tables:
        op.create_table(
            "purchases",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("credits_purchased", sa.Integer(), nullable=False),
            sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("currency", sa.String(), nullable=True),
            sa.Column("payment_provider", sa.String(), nullable=True),
            sa.Column("payment_status", sa.String(), nullable=True),
            sa.Column("transaction_id", sa.String(), nullable=True),
            sa.Column("receipt_url", sa.String(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint("transaction_id", name="uq_purchases_transaction_id"),
        )
    idxs = existing_indexes("purchases")
    if "ix_purchases_id" not in idxs:
        op.create_index("ix_purchases_id", "purchases", ["id"])
    if "ix_purchases_user_id" not in idxs:
        op.create_index("ix_purchases_user_id", "purchases", ["user_id"])
    if "ix_purchases_payment_provider" not in idxs:
        op.create_index("ix_purchases_payment_provider", "purchases", ["payment_provider"])
    if "ix_purchases_payment_status" not in idxs:
        op.create_index("ix_purchases_payment_status", "purchases", ["payment_status"])
    if "ix_purchases_transaction_id" not in idxs:
        op.create_index("ix_purchases_transaction_id", "purchases", ["transaction_id"])

    if "credit_packages" not in existing_tables:
        op.create_table(
            "credit_packages",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("credits", sa.Integer(), nullable=False),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            sa.Column("currency", sa.String(), nullable=True),
            sa.Column("is_popular", sa.Boolean(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=True),
            sa.Column("dodo_product_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("credit_packages")
    if "ix_credit_packages_id" not in idxs:
        op.create_index("ix_credit_packages_id", "credit_packages", ["id"])
    if "ix_credit_packages_is_active" not in idxs:
        op.create_index("ix_credit_packages_is_active", "credit_packages", ["is_active"])


def downgrade() -> None:
    op.drop_index("ix_credit_packages_is_active", table_name="credit_packages")
    op.drop_index("ix_credit_packages_id", table_name="credit_packages")
    op.drop_table("credit_packages")

    op.drop_index("ix_purchases_transaction_id", table_name="purchases")
    op.drop_index("ix_purchases_payment_status", table_name="purchases")
    op.drop_index("ix_purchases_payment_provider", table_name="purchases")
    op.drop_index("ix_purchases_user_id", table_name="purchases")
    op.drop_index("ix_purchases_id", table_name="purchases")
    op.drop_table("purchases")

    op.drop_index("ix_generations_status", table_name="generations")
    op.drop_index("ix_generations_user_id", table_name="generations")
    op.drop_index("ix_generations_id", table_name="generations")
    op.drop_table("generations")

    op.drop_index("ix_credit_transactions_reference_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_type", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_user_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")

    op.drop_index("ix_credit_accounts_user_id", table_name="credit_accounts")
    op.drop_table("credit_accounts")

    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_index("ix_profiles_id", table_name="profiles")
    op.drop_table("profiles")
