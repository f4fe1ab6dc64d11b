"""initial schema

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


TRANSACTION_TYPES = ("INCOME", "EXPENSE", "INVESTMENT", "TAX")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "CURRENT", "SAVINGS", "INVESTMENT", "CREDIT_CARD", name="accounttype"
            ),
            nullable=False,
            server_default="CURRENT",
        ),
        sa.Column(
            "opening_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "currency", sa.String(length=20), nullable=False, server_default="RUPEES"
        ),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("color", sa.String(length=9), nullable=False, server_default="#3B82F6"),
        sa.Column("description", sa.String(length=200), nullable=False, server_default=""),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user_default", "accounts", ["user_id", "is_default"])

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=50), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_tag_user_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPES, name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("subcategory", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("merchant", sa.String(length=200), nullable=False, server_default=""),
        sa.Column(
            "status",
            sa.Enum("PENDING", "COMPLETED", "FAILED", name="transactionstatus"),
            nullable=False,
            server_default="COMPLETED",
        ),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "recurring_interval",
            sa.Enum("DAILY", "WEEKLY", "MONTHLY", "YEARLY", name="recurringinterval"),
        ),
        sa.Column("next_recurring_date", sa.DateTime()),
        sa.Column(
            "tax_deductible", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "investment_type",
            sa.Enum(
                "STOCKS",
                "CRYPTO",
                "REAL_ESTATE",
                "BONDS",
                "MUTUAL_FUNDS",
                "OTHER",
                name="investmenttype",
            ),
        ),
        sa.Column(
            "origin_transaction_id", sa.Integer(), sa.ForeignKey("transactions.id")
        ),
        sa.Column("occurrence_date", sa.Date()),
        sa.Column("deleted_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "origin_transaction_id",
            "occurrence_date",
            name="uq_txn_origin_occurrence",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category", "transactions", ["user_id", "category"]
    )
    op.create_index("ix_transactions_user_type", "transactions", ["user_id", "type"])
    op.create_index(
        "ix_transactions_user_recurring", "transactions", ["user_id", "is_recurring"]
    )
    op.create_index("ix_transactions_account", "transactions", ["account_id"])

    op.create_table(
        "transaction_tags",
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            primary_key=True,
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "period",
            sa.Enum("MONTHLY", "YEARLY", name="budgetperiod"),
            nullable=False,
            server_default="MONTHLY",
        ),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer()),
        sa.Column(
            "alerts_enabled", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("alert_threshold", sa.Integer(), nullable=False, server_default="80"),
        sa.Column("last_alert_sent", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
        sa.CheckConstraint(
            "alert_threshold >= 0 AND alert_threshold <= 100",
            name="ck_budget_alert_threshold_range",
        ),
        sa.CheckConstraint(
            "month IS NULL OR (month >= 1 AND month <= 12)",
            name="ck_budget_month_range",
        ),
        sa.UniqueConstraint(
            "user_id",
            "category",
            "year",
            "month",
            "period",
            name="uq_budget_user_category_period",
        ),
    )
    op.create_index(
        "ix_budgets_user_year_month", "budgets", ["user_id", "year", "month"]
    )


def downgrade():
    op.drop_index("ix_budgets_user_year_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("transaction_tags")
    for name in (
        "ix_transactions_account",
        "ix_transactions_user_recurring",
        "ix_transactions_user_type",
        "ix_transactions_user_category",
        "ix_transactions_user_date",
    ):
        op.drop_index(name, table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("tags")
    op.drop_index("ix_accounts_user_default", table_name="accounts")
    op.drop_table("accounts")
