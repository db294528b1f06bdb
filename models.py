from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AccountType(str, Enum):
    normal = "normal"
    splitwise = "splitwise"


class CategoryType(str, Enum):
    expense = "expense"
    income = "income"


class TransactionType(str, Enum):
    expense = "expense"
    income = "income"
    transfer = "transfer"


class IntervalUnit(str, Enum):
    day = "day"
    week = "week"
    month = "month"
    year = "year"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType), nullable=False, default=AccountType.normal
    )
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_obsolete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    current_balance_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    icon_pack: Mapped[Optional[str]] = mapped_column(String(40))
    icon_name: Mapped[Optional[str]] = mapped_column(String(40))
    icon_color: Mapped[Optional[str]] = mapped_column(String(9))

    daily_balances: Mapped[list["DailyBalance"]] = relationship(
        "DailyBalance",
        back_populates="account",
        order_by="DailyBalance.date",
        cascade="all, delete-orphan",
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType), nullable=False)
    expected_monthly_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    parent_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id")
    )
    is_obsolete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    icon_pack: Mapped[Optional[str]] = mapped_column(String(40))
    icon_name: Mapped[Optional[str]] = mapped_column(String(40))
    icon_color: Mapped[Optional[str]] = mapped_column(String(9))

    parent_category: Mapped[Optional["Category"]] = relationship(
        "Category", remote_side=[id], back_populates="children"
    )
    children: Mapped[list["Category"]] = relationship(
        "Category", back_populates="parent_category", order_by="Category.description"
    )

    __table_args__ = (
        CheckConstraint(
            "expected_monthly_amount_cents IS NULL OR expected_monthly_amount_cents > 0",
            name="ck_category_expected_amount_positive",
        ),
    )


class DailyBalance(Base):
    __tablename__ = "daily_balances"

    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), primary_key=True
    )
    date: Mapped[date] = mapped_column(Date, primary_key=True)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    account: Mapped["Account"] = relationship(
        "Account", back_populates="daily_balances"
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    receiving_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    recurring_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_transactions.id")
    )
    splitwise_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("splitwise_transactions.id"), unique=True
    )
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    needs_confirmation: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    is_confirmed: Mapped[Optional[bool]] = mapped_column(Boolean)

    account: Mapped["Account"] = relationship("Account", foreign_keys=[account_id])
    receiving_account: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[receiving_account_id]
    )
    category: Mapped[Optional["Category"]] = relationship("Category")
    recurring_transaction: Mapped[Optional["RecurringTransaction"]] = relationship(
        "RecurringTransaction", back_populates="instances"
    )
    splitwise_transaction: Mapped[Optional["SplitwiseTransaction"]] = relationship(
        "SplitwiseTransaction", back_populates="transaction"
    )
    split_details: Mapped[list["SplitDetail"]] = relationship(
        "SplitDetail",
        back_populates="transaction",
        cascade="all, delete-orphan",
    )
    payment_requests: Mapped[list["PaymentRequest"]] = relationship(
        "PaymentRequest",
        back_populates="transaction",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_transactions_date", "date"),
        Index("ix_transactions_account_date", "account_id", "date"),
        Index("ix_transactions_category_date", "category_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )

    @property
    def personal_amount_cents(self) -> int:
        """Part of the amount carried by the owner of the account.

        Payment requests are settled outside Splitwise, so they are subtracted
        from the Splitwise share as well.
        """
        requested = sum(
            request.amount_cents * request.count for request in self.payment_requests
        )
        if self.splitwise_transaction is not None:
            return self.splitwise_transaction.personal_amount_cents - requested
        if self.type != TransactionType.expense:
            return self.amount_cents
        shared = sum(detail.amount_cents for detail in self.split_details)
        return self.amount_cents - shared - requested

    @property
    def imported_from_splitwise(self) -> bool:
        # Locally split transactions carry their own split details.
        return self.splitwise_transaction is not None and not self.split_details


class RecurringTransaction(Base, TimestampMixin):
    __tablename__ = "recurring_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    receiving_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    interval_unit: Mapped[IntervalUnit] = mapped_column(
        SAEnum(IntervalUnit), nullable=False
    )
    last_occurrence: Mapped[Optional[date]] = mapped_column(Date)
    next_occurrence: Mapped[Optional[date]] = mapped_column(Date)
    finished: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    needs_confirmation: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    account: Mapped["Account"] = relationship("Account", foreign_keys=[account_id])
    receiving_account: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[receiving_account_id]
    )
    category: Mapped[Optional["Category"]] = relationship("Category")
    instances: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="recurring_transaction", order_by="Transaction.date"
    )
    split_details: Mapped[list["SplitDetail"]] = relationship(
        "SplitDetail",
        back_populates="recurring_transaction",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("interval > 0", name="ck_recurring_interval_positive"),
        CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    spent_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        Index("ix_budgets_category_period", "category_id", "start_date", "end_date"),
    )


class SplitwiseTransaction(Base):
    __tablename__ = "splitwise_transactions"

    # Identifier of the expense in Splitwise.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    paid_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    personal_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    imported: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    transaction: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", back_populates="splitwise_transaction", uselist=False
    )
    split_details: Mapped[list["SplitDetail"]] = relationship(
        "SplitDetail",
        back_populates="splitwise_transaction",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("ix_splitwise_transactions_updated_at", "updated_at"),)

    @property
    def owed_by_others_cents(self) -> int:
        return max(0, self.paid_amount_cents - self.personal_amount_cents)

    @property
    def owed_to_others_cents(self) -> int:
        return max(0, self.personal_amount_cents - self.paid_amount_cents)

    @property
    def importable(self) -> bool:
        return not self.imported and not self.is_deleted


class SplitDetail(Base):
    __tablename__ = "split_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )
    recurring_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_transactions.id")
    )
    splitwise_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("splitwise_transactions.id")
    )
    splitwise_user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    splitwise_user_name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", back_populates="split_details"
    )
    recurring_transaction: Mapped[Optional["RecurringTransaction"]] = relationship(
        "RecurringTransaction", back_populates="split_details"
    )
    splitwise_transaction: Mapped[Optional["SplitwiseTransaction"]] = relationship(
        "SplitwiseTransaction", back_populates="split_details"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_split_detail_amount_positive"),
    )


class PaymentRequest(Base, TimestampMixin):
    __tablename__ = "payment_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    paid_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    transaction: Mapped["Transaction"] = relationship(
        "Transaction", back_populates="payment_requests"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_payment_request_amount_positive"),
        CheckConstraint("count > 0", name="ck_payment_request_count_positive"),
        CheckConstraint(
            "paid_count >= 0 AND paid_count <= count",
            name="ck_payment_request_paid_count_range",
        ),
    )

    @property
    def completed(self) -> bool:
        return self.paid_count >= self.count


class SynchronizationTime(Base):
    __tablename__ = "synchronization_times"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    splitwise_last_run: Mapped[Optional[datetime]] = mapped_column(DateTime)
    # Latest `updated_at` seen from Splitwise; the next import fetches newer changes.
    splitwise_last_update: Mapped[Optional[datetime]] = mapped_column(DateTime)
