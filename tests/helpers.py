from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import Base, build_engine, session_factory
from models import AccountType, CategoryType, DailyBalance
from schemas import AccountIn, CategoryIn
from services import AccountService, CategoryService
from splitwise import Split, SplitwiseExpense, SplitwiseUser


TODAY = date(2024, 3, 15)


def make_session() -> Session:
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return session_factory(engine)()


def make_account(
    session: Session,
    description: str = "Checking",
    type: AccountType = AccountType.normal,
    is_default: bool = False,
):
    return AccountService(session, TODAY).create(
        AccountIn(description=description, type=type, is_default=is_default)
    )


def make_category(
    session: Session,
    description: str,
    type: CategoryType = CategoryType.expense,
    parent_id: Optional[int] = None,
):
    return CategoryService(session).create(
        CategoryIn(description=description, type=type, parent_category_id=parent_id)
    )


def balances(session: Session, account_id: int) -> list[tuple[date, int]]:
    stmt = (
        select(DailyBalance)
        .where(DailyBalance.account_id == account_id)
        .order_by(DailyBalance.date)
    )
    return [(entry.date, entry.balance_cents) for entry in session.scalars(stmt)]


class FakeSplitwiseClient:
    """In-memory stand-in for the Splitwise API."""

    def __init__(self, users: Optional[list[SplitwiseUser]] = None) -> None:
        self.users = users or [
            SplitwiseUser(id=1, first_name="Alice", last_name="Smith"),
            SplitwiseUser(id=2, first_name="Bob"),
        ]
        self.expenses: dict[int, SplitwiseExpense] = {}
        self.deleted: list[int] = []
        self.requested_after: list[datetime] = []
        self._next_id = 1000
        self._clock = datetime(2024, 1, 1, 12, 0)

    def _tick(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    def add_expense(
        self,
        expense_id: Optional[int] = None,
        *,
        description: str = "Dinner",
        expense_date: date = TODAY,
        paid_cents: int = 0,
        personal_cents: int = 0,
        is_deleted: bool = False,
        splits: tuple[Split, ...] = (),
    ) -> SplitwiseExpense:
        if expense_id is None:
            expense_id = self._next_id
            self._next_id += 1
        expense = SplitwiseExpense(
            id=expense_id,
            description=description,
            date=expense_date,
            is_deleted=is_deleted,
            updated_at=self._tick(),
            paid_amount_cents=paid_cents,
            personal_amount_cents=personal_cents,
            splits=splits,
        )
        self.expenses[expense_id] = expense
        return expense

    def update_expense(self, expense_id: int, **changes) -> SplitwiseExpense:
        expense = replace(self.expenses[expense_id], updated_at=self._tick(), **changes)
        self.expenses[expense_id] = expense
        return expense

    def get_expenses(self, updated_after: datetime) -> list[SplitwiseExpense]:
        self.requested_after.append(updated_after)
        return sorted(
            (e for e in self.expenses.values() if e.updated_at > updated_after),
            key=lambda e: e.updated_at,
        )

    def get_users(self) -> list[SplitwiseUser]:
        return list(self.users)

    def create_expense(
        self,
        amount_cents: int,
        description: str,
        expense_date: date,
        splits: list[Split],
    ) -> SplitwiseExpense:
        return self.add_expense(
            description=description,
            expense_date=expense_date,
            paid_cents=amount_cents,
            personal_cents=amount_cents - sum(split.amount_cents for split in splits),
            splits=tuple(splits),
        )

    def delete_expense(self, expense_id: int) -> None:
        self.update_expense(expense_id, is_deleted=True)
        self.deleted.append(expense_id)
