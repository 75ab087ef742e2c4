# ruff: noqa: I001
"""Statement ingestion core tables and seed categories.

Revision ID: 0001_statements_core
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_statements_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


# (name, icon, color) for the labels the rule categorizer can emit.
SEED_CATEGORIES: tuple[tuple[str, str, str], ...] = (
    ("Salary", "Briefcase", "hsl(142, 71%, 45%)"),
    ("Other Income", "MoreHorizontal", "hsl(160, 60%, 45%)"),
    ("Credit Card Payment", "Building", "hsl(221, 83%, 53%)"),
    ("Loan Payment", "Building", "hsl(262, 83%, 58%)"),
    ("Bank Fees", "Building", "hsl(0, 84%, 60%)"),
    ("Transfer", "MoreHorizontal", "hsl(199, 89%, 48%)"),
    ("Groceries", "ShoppingBag", "hsl(25, 95%, 53%)"),
    ("Food & Dining", "UtensilsCrossed", "hsl(38, 92%, 50%)"),
    ("Transportation", "Car", "hsl(48, 96%, 53%)"),
    ("Other", "MoreHorizontal", "hsl(215, 20%, 65%)"),
)


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("icon", sa.Text(), nullable=True),
        sa.Column("color", sa.Text(), nullable=True),
        sa.Column("parent_id", sa.String(36), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.bulk_insert(
        sa.table(
            "categories",
            sa.column("id", sa.String(36)),
            sa.column("name", sa.Text()),
            sa.column("icon", sa.Text()),
            sa.column("color", sa.Text()),
        ),
        [
            {"id": f"seed-{i:04d}", "name": name, "icon": icon, "color": color}
            for i, (name, icon, color) in enumerate(SEED_CATEGORIES)
        ],
    )

    op.create_table(
        "bank_statements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("bank_name", sa.Text(), nullable=False),
        sa.Column("file_url", sa.Text(), nullable=False),
        sa.Column("file_type", sa.String(8), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'ILS'")),
        sa.Column("statement_date_from", sa.Date(), nullable=True),
        sa.Column("statement_date_to", sa.Date(), nullable=True),
        sa.Column(
            "status", sa.String(16), nullable=False, server_default=sa.text("'processing'")
        ),
        sa.Column("total_income", sa.Numeric(18, 2), nullable=True),
        sa.Column("total_expenses", sa.Numeric(18, 2), nullable=True),
        sa.Column("net_cashflow", sa.Numeric(18, 2), nullable=True),
        sa.Column("rows_skipped", sa.Integer(), nullable=True),
        sa.Column("card_number", sa.String(32), nullable=True),
        sa.Column("card_type", sa.Text(), nullable=True),
        sa.Column("statement_date", sa.Date(), nullable=True),
        sa.Column("statement_total", sa.Numeric(18, 2), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.CheckConstraint(
            "status in ('processing','completed','failed')",
            name="ck_bank_statements_status",
        ),
        sa.CheckConstraint("file_type in ('csv','pdf')", name="ck_bank_statements_file_type"),
    )
    op.create_index("ix_bank_statements_user_id", "bank_statements", ["user_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("bank_statement_id", sa.String(36), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=True),
        sa.Column("merchant_name", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("original_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("original_currency", sa.CHAR(3), nullable=False),
        sa.Column("base_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("exchange_rate", sa.Numeric(18, 6), nullable=True),
        sa.Column("fee", sa.Numeric(18, 2), nullable=True),
        sa.Column("transaction_direction", sa.String(8), nullable=False),
        sa.Column(
            "transaction_type", sa.String(8), nullable=False, server_default=sa.text("'regular'")
        ),
        sa.Column("source_bank", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(
            ["bank_statement_id"],
            ["bank_statements.id"],
            name="fk_transactions_bank_statement",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("original_amount >= 0", name="ck_transactions_amount_non_negative"),
        sa.CheckConstraint(
            "transaction_direction in ('income','expense')",
            name="ck_transactions_direction",
        ),
        sa.CheckConstraint(
            "transaction_type in ('regular','refund')",
            name="ck_transactions_type",
        ),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_bank_statement_id", "transactions", ["bank_statement_id"])
    op.create_index("ix_transactions_transaction_date", "transactions", ["transaction_date"])


def downgrade() -> None:
    op.drop_index("ix_transactions_transaction_date", table_name="transactions")
    op.drop_index("ix_transactions_bank_statement_id", table_name="transactions")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_bank_statements_user_id", table_name="bank_statements")
    op.drop_table("bank_statements")
    op.drop_table("categories")
