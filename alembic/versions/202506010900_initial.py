"""initial schema: obligations, allocations, generated transactions

Revision ID: 202506010900
Revises:
Create Date: 2025-06-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202506010900"
down_revision = None
branch_labels = None
depends_on = None


def _kind() -> sa.Enum:
    return sa.Enum("income", "expense", name="entrykind")


def _status() -> sa.Enum:
    return sa.Enum("pending", "paid", name="transactionstatus")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("kind", _kind(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "kind", "name", name="uq_category_user_kind_name"),
    )

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_payment_method_user_name"),
    )

    op.create_table(
        "recurring_obligations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("lineage_id", sa.Integer()),
        sa.Column(
            "supersedes_id",
            sa.Integer(),
            sa.ForeignKey("recurring_obligations.id", ondelete="SET NULL"),
        ),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("kind", _kind(), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("status", _status(), nullable=False, server_default="pending"),
        sa.Column(
            "payment_method_id",
            sa.Integer(),
            sa.ForeignKey("payment_methods.id", ondelete="SET NULL"),
        ),
        sa.Column("active_from_month", sa.String(length=7), nullable=False),
        sa.Column("active_to_month", sa.String(length=7)),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_obligation_amount_positive"),
        sa.CheckConstraint(
            "day_of_month >= 1 AND day_of_month <= 31",
            name="ck_obligation_day_of_month",
        ),
    )
    op.create_index(
        "ix_obligations_user_from_month",
        "recurring_obligations",
        ["user_id", "active_from_month"],
    )
    op.create_index(
        "ix_obligations_user_lineage",
        "recurring_obligations",
        ["user_id", "lineage_id"],
    )

    op.create_table(
        "obligation_allocations",
        sa.Column(
            "obligation_id",
            sa.Integer(),
            sa.ForeignKey("recurring_obligations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "amount_cents > 0", name="ck_obligation_allocation_amount_positive"
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("kind", _kind(), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "payment_method_id",
            sa.Integer(),
            sa.ForeignKey("payment_methods.id", ondelete="SET NULL"),
        ),
        sa.Column("is_fixed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", _status(), nullable=False, server_default="paid"),
        sa.Column("occurred_on", sa.Date(), nullable=False),
        sa.Column("due_on", sa.Date()),
        sa.Column("paid_on", sa.Date()),
        sa.Column("occurred_month", sa.String(length=7), nullable=False),
        sa.Column(
            "source_obligation_id",
            sa.Integer(),
            sa.ForeignKey("recurring_obligations.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "source_obligation_id",
            "occurred_month",
            name="uq_txn_source_obligation_month",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "status = 'paid' OR due_on IS NOT NULL",
            name="ck_transactions_pending_due_on",
        ),
    )
    op.create_index(
        "ix_transactions_user_occurred_on", "transactions", ["user_id", "occurred_on"]
    )
    op.create_index(
        "ix_transactions_user_month", "transactions", ["user_id", "occurred_month"]
    )

    op.create_table(
        "transaction_allocations",
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "amount_cents > 0", name="ck_transaction_allocation_amount_positive"
        ),
    )


def downgrade() -> None:
    op.drop_table("transaction_allocations")
    op.drop_index("ix_transactions_user_month", table_name="transactions")
    op.drop_index("ix_transactions_user_occurred_on", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("obligation_allocations")
    op.drop_index("ix_obligations_user_lineage", table_name="recurring_obligations")
    op.drop_index("ix_obligations_user_from_month", table_name="recurring_obligations")
    op.drop_table("recurring_obligations")
    op.drop_table("payment_methods")
    op.drop_table("categories")
