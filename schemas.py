from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AccountType, CategoryType, IntervalUnit, TransactionType


class AccountIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=32)
    type: AccountType = AccountType.normal
    is_default: bool = False
    icon_pack: Optional[str] = Field(default=None, max_length=40)
    icon_name: Optional[str] = Field(default=None, max_length=40)
    icon_color: Optional[str] = Field(default=None, max_length=9)


class AccountUpdate(BaseModel):
    description: str = Field(..., min_length=1, max_length=32)
    is_default: bool = False
    icon_pack: Optional[str] = Field(default=None, max_length=40)
    icon_name: Optional[str] = Field(default=None, max_length=40)
    icon_color: Optional[str] = Field(default=None, max_length=9)


class CategoryIn(BaseModel):
    description: str = Field(..., min_length=3, max_length=32)
    type: CategoryType
    expected_monthly_amount_cents: Optional[int] = Field(default=None, gt=0)
    parent_category_id: Optional[int] = None
    icon_pack: Optional[str] = Field(default=None, max_length=40)
    icon_name: Optional[str] = Field(default=None, max_length=40)
    icon_color: Optional[str] = Field(default=None, max_length=9)


class SplitIn(BaseModel):
    user_id: int
    amount_cents: int = Field(..., gt=0)


class PaymentRequestIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=120)
    count: int = Field(default=1, gt=0)


class TransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    date: date
    amount_cents: int = Field(..., gt=0)
    account_id: int
    category_id: Optional[int] = None
    receiving_account_id: Optional[int] = None
    needs_confirmation: bool = False
    payment_requests: list[PaymentRequestIn] = Field(default_factory=list)
    splits: list[SplitIn] = Field(default_factory=list)


class ConfirmIn(BaseModel):
    date: date
    amount_cents: int = Field(..., gt=0)


class RecurringTransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    start_date: date
    end_date: Optional[date] = None
    amount_cents: int = Field(..., gt=0)
    account_id: int
    category_id: Optional[int] = None
    receiving_account_id: Optional[int] = None
    interval: int = Field(default=1, gt=0)
    interval_unit: IntervalUnit
    needs_confirmation: bool = False
    splits: list[SplitIn] = Field(default_factory=list)


class BudgetIn(BaseModel):
    category_id: int
    amount_cents: int = Field(..., gt=0)
    start_date: date
    end_date: date


class CompleteImportIn(BaseModel):
    category_id: int
    account_id: Optional[int] = None


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    type: AccountType
    is_default: bool
    is_obsolete: bool
    current_balance_cents: int
    icon_pack: Optional[str] = None
    icon_name: Optional[str] = None
    icon_color: Optional[str] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    type: CategoryType
    expected_monthly_amount_cents: Optional[int] = None
    parent_category_id: Optional[int] = None
    is_obsolete: bool
    icon_pack: Optional[str] = None
    icon_name: Optional[str] = None
    icon_color: Optional[str] = None
    children: list["CategoryOut"] = Field(default_factory=list)


class SplitDetailOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    splitwise_user_id: int
    splitwise_user_name: str
    amount_cents: int


class PaymentRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount_cents: int
    name: str
    count: int
    paid_count: int
    completed: bool


class SplitwiseTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    date: date
    is_deleted: bool
    updated_at: datetime
    paid_amount_cents: int
    personal_amount_cents: int
    owed_by_others_cents: int
    owed_to_others_cents: int
    imported: bool
    importable: bool
    split_details: list[SplitDetailOut] = Field(default_factory=list)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    type: TransactionType
    date: date
    amount_cents: int
    personal_amount_cents: int
    account_id: int
    receiving_account_id: Optional[int] = None
    category_id: Optional[int] = None
    recurring_transaction_id: Optional[int] = None
    splitwise_transaction_id: Optional[int] = None
    processed: bool
    needs_confirmation: bool
    is_confirmed: Optional[bool] = None
    split_details: list[SplitDetailOut] = Field(default_factory=list)
    payment_requests: list[PaymentRequestOut] = Field(default_factory=list)


class RecurringTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    type: TransactionType
    amount_cents: int
    account_id: int
    receiving_account_id: Optional[int] = None
    category_id: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    interval: int
    interval_unit: IntervalUnit
    last_occurrence: Optional[date] = None
    next_occurrence: Optional[date] = None
    finished: bool
    needs_confirmation: bool
    split_details: list[SplitDetailOut] = Field(default_factory=list)


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    amount_cents: int
    spent_cents: int
    start_date: date
    end_date: date


class DailyBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    balance_cents: int
