"""ledger and budget tables

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_owner_occurred", "transactions", ["owner_id", "occurred_at"]
    )
    op.create_index(
        "ix_transactions_owner_type_occurred",
        "transactions",
        ["owner_id", "type", "occurred_at"],
    )
    op.create_index(
        "ix_transactions_owner_category_occurred",
        "transactions",
        ["owner_id", "category", "occurred_at"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_budgets_amount_positive"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_budgets_month_range"),
        sa.UniqueConstraint(
            "owner_id",
            "category",
            "month",
            "year",
            name="uq_budget_owner_category_month",
        ),
    )
    op.create_index("ix_budget_owner_month", "budgets", ["owner_id", "year", "month"])


def downgrade():
    op.drop_index("ix_budget_owner_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_owner_category_occurred", table_name="transactions")
    op.drop_index("ix_transactions_owner_type_occurred", table_name="transactions")
    op.drop_index("ix_transactions_owner_occurred", table_name="transactions")
    op.drop_table("transactions")
