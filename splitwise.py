from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Protocol


class SplitwiseUnavailable(RuntimeError):
    pass


@dataclass(frozen=True)
class SplitwiseUser:
    id: int
    first_name: str
    last_name: Optional[str] = None

    @property
    def name(self) -> str:
        if self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name


@dataclass(frozen=True)
class Split:
    user_id: int
    user_name: str
    amount_cents: int


@dataclass(frozen=True)
class SplitwiseExpense:
    """An expense as seen from the perspective of the account owner."""

    id: int
    description: str
    date: date
    is_deleted: bool
    updated_at: datetime
    paid_amount_cents: int
    personal_amount_cents: int
    splits: tuple[Split, ...] = field(default_factory=tuple)

    @property
    def has_share(self) -> bool:
        return self.paid_amount_cents > 0 or self.personal_amount_cents > 0


class SplitwiseClient(Protocol):
    def get_expenses(self, updated_after: datetime) -> list[SplitwiseExpense]:
        """Expenses changed strictly after ``updated_after``, deleted ones included."""
        ...

    def get_users(self) -> list[SplitwiseUser]:
        ...

    def create_expense(
        self,
        amount_cents: int,
        description: str,
        expense_date: date,
        splits: list[Split],
    ) -> SplitwiseExpense:
        """Create an expense paid in full by the owner and split with ``splits``."""
        ...

    def delete_expense(self, expense_id: int) -> None:
        ...


def require_client(client: Optional[SplitwiseClient]) -> SplitwiseClient:
    if client is None:
        raise SplitwiseUnavailable("Splitwise is not configured")
    return client


class ImportState(str, Enum):
    not_running = "not_running"
    running = "running"


class ImportResult(str, Enum):
    completed = "completed"
    already_running = "already_running"
