import functools
import logging
import threading
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import DoesNotExist, IsObsolete
from models import (
    Account,
    AccountType,
    Budget,
    Category,
    DailyBalance,
    RecurringTransaction,
    SplitDetail,
    SplitwiseTransaction,
    Transaction,
    TransactionType,
)
from recurrence import create_occurrence, local_today
from splitwise import Split, SplitwiseClient, require_client


logger = logging.getLogger(__name__)

# Every change to balances, budgets or processed flags happens under this lock.
processing_lock = threading.RLock()


def serialized(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        with processing_lock:
            return func(*args, **kwargs)

    return wrapper


class TransactionProcessor:
    """Applies and reverts the monetary effects of transactions.

    A processed transaction has changed the daily balances (and the current
    balance) of its accounts and the spent amount of the budgets covering its
    category and date. Reverting undoes exactly that, so callers revert before
    changing any field the effect depends on and process again afterwards.
    """

    def __init__(
        self,
        session: Session,
        splitwise: Optional[SplitwiseClient] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.splitwise = splitwise
        self.today = today or local_today()
        self.horizon = self.today + timedelta(
            days=get_settings().recurring_horizon_days
        )

    def needs_processing(self, txn: Transaction) -> bool:
        if txn.date > self.today:
            return False
        return not txn.needs_confirmation or bool(txn.is_confirmed)

    def process_if_needed(self, txn: Transaction) -> bool:
        if txn.processed or not self.needs_processing(txn):
            return False
        self.process(txn)
        return True

    def revert_if_processed(self, txn: Transaction, only_internally: bool = False) -> bool:
        if not txn.processed:
            return False
        self.revert(txn, only_internally=only_internally)
        return True

    def process(self, txn: Transaction) -> None:
        if txn.processed:
            raise ValueError("Transaction is already processed")
        self._verify(txn)
        if txn.split_details and txn.splitwise_transaction is None:
            self._create_splitwise_expense(txn)
        self._apply(txn, 1)
        txn.processed = True

    def revert(self, txn: Transaction, only_internally: bool = False) -> None:
        if not txn.processed:
            raise ValueError("Transaction is not processed")
        self._apply(txn, -1)
        txn.processed = False

        splitwise_transaction = txn.splitwise_transaction
        if splitwise_transaction is not None and not only_internally:
            require_client(self.splitwise).delete_expense(splitwise_transaction.id)
            splitwise_transaction.is_deleted = True
            splitwise_transaction.imported = False
            txn.splitwise_transaction = None
            logger.info(
                f"splitwise_expense_deleted: id={splitwise_transaction.id} "
                f"transaction={txn.id}"
            )

    def change_category(self, txn: Transaction, new_category_id: int) -> None:
        if txn.processed:
            personal_amount = txn.personal_amount_cents
            self._mutate_budgets(txn.category_id, txn.date, -personal_amount)
            self._mutate_budgets(new_category_id, txn.date, personal_amount)
        txn.category_id = new_category_id
        txn.category = self.session.get(Category, new_category_id)

    def move_category(self, category: Category, new_parent: Optional[Category]) -> int:
        """Re-parent ``category``, moving the budget effects of its processed expenses.

        The effects are taken off the budgets of the old parent before the move
        and applied to those of the new parent after it.
        """
        stmt = select(Transaction).where(
            Transaction.category_id == category.id,
            Transaction.processed.is_(True),
        )
        moved = self.session.scalars(stmt).all()
        for txn in moved:
            self._mutate_budgets(category.id, txn.date, -txn.personal_amount_cents)
        category.parent_category = new_parent
        self.session.flush()
        for txn in moved:
            self._mutate_budgets(category.id, txn.date, txn.personal_amount_cents)
        if moved:
            logger.info(
                f"category_moved: id={category.id} "
                f"parent={new_parent.id if new_parent else None} transactions={len(moved)}"
            )
        return len(moved)

    def process_recurring(self, recurring: RecurringTransaction) -> int:
        """Create the instances up to the horizon and process the due ones."""
        created = 0
        while (
            not recurring.finished
            and recurring.next_occurrence is not None
            and recurring.next_occurrence <= self.horizon
        ):
            if created == 0:
                self._verify_not_obsolete(
                    recurring.account_id,
                    recurring.receiving_account_id,
                    recurring.category_id,
                )
            instance = create_occurrence(recurring)
            self.session.add(instance)
            self.session.flush()
            self.process_if_needed(instance)
            created += 1
        return created

    def process_all(self) -> dict[str, int]:
        with processing_lock:
            stmt = (
                select(Transaction)
                .where(
                    Transaction.processed.is_(False),
                    Transaction.date <= self.today,
                )
                .order_by(Transaction.date, Transaction.id)
            )
            processed = 0
            for txn in self.session.scalars(stmt).all():
                if self.process_if_needed(txn):
                    processed += 1

            stmt = (
                select(RecurringTransaction)
                .where(RecurringTransaction.finished.is_(False))
                .order_by(RecurringTransaction.id)
            )
            created = 0
            for recurring in self.session.scalars(stmt).all():
                created += self.process_recurring(recurring)

            self.session.commit()
        logger.info(f"process_all: processed={processed} instances_created={created}")
        return {"processed": processed, "instances_created": created}

    def splitwise_account(self) -> Account:
        account = self.session.scalar(
            select(Account).where(
                Account.type == AccountType.splitwise,
                Account.is_obsolete.is_(False),
            )
        )
        if account is None:
            raise DoesNotExist("Splitwise account not found")
        return account

    def _apply(self, txn: Transaction, sign: int) -> None:
        amount = txn.amount_cents * sign
        if txn.type == TransactionType.expense:
            self._mutate_balance(txn.account_id, txn.date, -amount)
            self._mutate_budgets(
                txn.category_id, txn.date, txn.personal_amount_cents * sign
            )
            splitwise_transaction = txn.splitwise_transaction
            if splitwise_transaction is not None:
                difference = (
                    splitwise_transaction.owed_by_others_cents
                    - splitwise_transaction.owed_to_others_cents
                )
                if difference:
                    self._mutate_balance(
                        self.splitwise_account().id, txn.date, difference * sign
                    )
        elif txn.type == TransactionType.income:
            self._mutate_balance(txn.account_id, txn.date, amount)
        else:
            self._mutate_balance(txn.account_id, txn.date, -amount)
            self._mutate_balance(txn.receiving_account_id, txn.date, amount)

    def _balance_entries_to_edit(
        self, account_id: int, on_date: date
    ) -> list[DailyBalance]:
        stmt = (
            select(DailyBalance)
            .where(DailyBalance.account_id == account_id, DailyBalance.date >= on_date)
            .order_by(DailyBalance.date)
        )
        entries = list(self.session.scalars(stmt).all())
        if entries and entries[0].date == on_date:
            return entries

        previous = self.session.scalar(
            select(DailyBalance)
            .where(DailyBalance.account_id == account_id, DailyBalance.date < on_date)
            .order_by(DailyBalance.date.desc())
            .limit(1)
        )
        entry = DailyBalance(
            account_id=account_id,
            date=on_date,
            balance_cents=previous.balance_cents if previous else 0,
        )
        self.session.add(entry)
        self.session.flush()
        return [entry] + entries

    def _mutate_balance(self, account_id: int, on_date: date, delta: int) -> None:
        if delta == 0:
            return
        for entry in self._balance_entries_to_edit(account_id, on_date):
            entry.balance_cents += delta
        account = self.session.get(Account, account_id)
        account.current_balance_cents += delta

    def _mutate_budgets(
        self, category_id: Optional[int], on_date: date, delta: int
    ) -> None:
        if category_id is None or delta == 0:
            return
        category = self.session.get(Category, category_id)
        category_ids = [category.id]
        if category.parent_category_id is not None:
            category_ids.append(category.parent_category_id)
        stmt = select(Budget).where(
            Budget.category_id.in_(category_ids),
            Budget.start_date <= on_date,
            Budget.end_date >= on_date,
        )
        for budget in self.session.scalars(stmt).all():
            budget.spent_cents += delta

    def _verify(self, txn: Transaction) -> None:
        self._verify_not_obsolete(
            txn.account_id, txn.receiving_account_id, txn.category_id
        )
        if txn.split_details and txn.splitwise_transaction is None:
            client = require_client(self.splitwise)
            known = {user.id for user in client.get_users()}
            for detail in txn.split_details:
                if detail.splitwise_user_id not in known:
                    raise ValueError(
                        f"Splitwise user {detail.splitwise_user_id} does not exist"
                    )

    def _verify_not_obsolete(
        self,
        account_id: int,
        receiving_account_id: Optional[int],
        category_id: Optional[int],
    ) -> None:
        for acc_id in (account_id, receiving_account_id):
            if acc_id is None:
                continue
            account = self.session.get(Account, acc_id)
            if account is None:
                raise DoesNotExist("Account not found")
            if account.is_obsolete:
                raise IsObsolete(f'Account "{account.description}" is obsolete')
        if category_id is not None:
            category = self.session.get(Category, category_id)
            if category is None:
                raise DoesNotExist("Category not found")
            if category.is_obsolete:
                raise IsObsolete(f'Category "{category.description}" is obsolete')

    def _create_splitwise_expense(self, txn: Transaction) -> None:
        client = require_client(self.splitwise)
        expense = client.create_expense(
            txn.amount_cents,
            txn.description,
            txn.date,
            [
                Split(
                    user_id=detail.splitwise_user_id,
                    user_name=detail.splitwise_user_name,
                    amount_cents=detail.amount_cents,
                )
                for detail in txn.split_details
            ],
        )
        splitwise_transaction = SplitwiseTransaction(
            id=expense.id,
            description=expense.description,
            date=expense.date,
            is_deleted=False,
            updated_at=expense.updated_at,
            paid_amount_cents=expense.paid_amount_cents,
            personal_amount_cents=expense.personal_amount_cents,
            imported=True,
            split_details=[
                SplitDetail(
                    splitwise_user_id=split.user_id,
                    splitwise_user_name=split.user_name,
                    amount_cents=split.amount_cents,
                )
                for split in expense.splits
            ],
        )
        self.session.add(splitwise_transaction)
        txn.splitwise_transaction = splitwise_transaction
        self.session.flush()
        logger.info(
            f"splitwise_expense_created: id={expense.id} transaction={txn.id}"
        )
