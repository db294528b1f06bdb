"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = ("expense", "income", "transfer")


def _icon_columns():
    return [
        sa.Column("icon_pack", sa.String(length=40)),
        sa.Column("icon_name", sa.String(length=40)),
        sa.Column("icon_color", sa.String(length=9)),
    ]


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.String(length=32), nullable=False),
        sa.Column(
            "type",
            sa.Enum("normal", "splitwise", name="accounttype"),
            nullable=False,
            server_default="normal",
        ),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "is_obsolete", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "current_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        *_icon_columns(),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.String(length=32), nullable=False),
        sa.Column(
            "type", sa.Enum("expense", "income", name="categorytype"), nullable=False
        ),
        sa.Column("expected_monthly_amount_cents", sa.Integer()),
        sa.Column(
            "parent_category_id", sa.Integer(), sa.ForeignKey("categories.id")
        ),
        sa.Column(
            "is_obsolete", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_icon_columns(),
        *_timestamps(),
        sa.CheckConstraint(
            "expected_monthly_amount_cents IS NULL OR expected_monthly_amount_cents > 0",
            name="ck_category_expected_amount_positive",
        ),
    )

    op.create_table(
        "daily_balances",
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), primary_key=True
        ),
        sa.Column("date", sa.Date(), primary_key=True),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "recurring_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPE, name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("receiving_account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("interval", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "interval_unit",
            sa.Enum("day", "week", "month", "year", name="intervalunit"),
            nullable=False,
        ),
        sa.Column("last_occurrence", sa.Date()),
        sa.Column("next_occurrence", sa.Date()),
        sa.Column("finished", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "needs_confirmation",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        *_timestamps(),
        sa.CheckConstraint("interval > 0", name="ck_recurring_interval_positive"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )

    op.create_table(
        "splitwise_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("paid_amount_cents", sa.Integer(), nullable=False),
        sa.Column("personal_amount_cents", sa.Integer(), nullable=False),
        sa.Column("imported", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "ix_splitwise_transactions_updated_at",
        "splitwise_transactions",
        ["updated_at"],
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPE, name="transactiontype"), nullable=False
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("receiving_account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "recurring_transaction_id",
            sa.Integer(),
            sa.ForeignKey("recurring_transactions.id"),
        ),
        sa.Column(
            "splitwise_transaction_id",
            sa.Integer(),
            sa.ForeignKey("splitwise_transactions.id"),
            unique=True,
        ),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "needs_confirmation",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("is_confirmed", sa.Boolean()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_date", "transactions", ["date"])
    op.create_index(
        "ix_transactions_account_date", "transactions", ["account_id", "date"]
    )
    op.create_index(
        "ix_transactions_category_date", "transactions", ["category_id", "date"]
    )

    op.create_table(
        "split_details",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id")),
        sa.Column(
            "recurring_transaction_id",
            sa.Integer(),
            sa.ForeignKey("recurring_transactions.id"),
        ),
        sa.Column(
            "splitwise_transaction_id",
            sa.Integer(),
            sa.ForeignKey("splitwise_transactions.id"),
        ),
        sa.Column("splitwise_user_id", sa.Integer(), nullable=False),
        sa.Column("splitwise_user_name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_split_detail_amount_positive"),
    )

    op.create_table(
        "payment_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("paid_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents > 0", name="ck_payment_request_amount_positive"
        ),
        sa.CheckConstraint("count > 0", name="ck_payment_request_count_positive"),
        sa.CheckConstraint(
            "paid_count >= 0 AND paid_count <= count",
            name="ck_payment_request_paid_count_range",
        ),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("spent_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
    )
    op.create_index(
        "ix_budgets_category_period",
        "budgets",
        ["category_id", "start_date", "end_date"],
    )

    op.create_table(
        "synchronization_times",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("splitwise_last_run", sa.DateTime()),
        sa.Column("splitwise_last_update", sa.DateTime()),
    )


def downgrade():
    op.drop_table("synchronization_times")
    op.drop_index("ix_budgets_category_period", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("payment_requests")
    op.drop_table("split_details")
    op.drop_index("ix_transactions_category_date", table_name="transactions")
    op.drop_index("ix_transactions_account_date", table_name="transactions")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index(
        "ix_splitwise_transactions_updated_at", table_name="splitwise_transactions"
    )
    op.drop_table("splitwise_transactions")
    op.drop_table("recurring_transactions")
    op.drop_table("daily_balances")
    op.drop_table("categories")
    op.drop_table("accounts")
