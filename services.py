from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload

from rapidfuzz.distance import Levenshtein

from errors import DoesNotExist, IsObsolete
from models import (
    Account,
    AccountType,
    Budget,
    Category,
    CategoryType,
    DailyBalance,
    PaymentRequest,
    RecurringTransaction,
    SplitDetail,
    SplitwiseTransaction,
    SynchronizationTime,
    Transaction,
    TransactionType,
)
from periods import Period
from processor import TransactionProcessor, processing_lock, serialized
from recurrence import local_today, reschedule, schedule_from
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    CategoryIn,
    RecurringTransactionIn,
    SplitIn,
    TransactionIn,
)
from splitwise import (
    ImportResult,
    ImportState,
    SplitwiseClient,
    SplitwiseExpense,
    SplitwiseUser,
    require_client,
)


logger = logging.getLogger(__name__)

_import_lock = threading.Lock()

# Watermark used before the first import.
SPLITWISE_EPOCH = datetime(1970, 1, 1)


def _active(entity: Union[Account, Category], name: str) -> None:
    if entity.is_obsolete:
        raise IsObsolete(f'{name} "{entity.description}" is obsolete')


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    query: Optional[str] = None
    start: Optional[date] = None
    end: Optional[date] = None


class AccountService:
    def __init__(self, session: Session, today: Optional[date] = None) -> None:
        self.session = session
        self.today = today or local_today()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise DoesNotExist("Account not found")
        return account

    def list_all(self, include_obsolete: bool = False) -> list[Account]:
        stmt = select(Account).order_by(Account.is_default.desc(), Account.description)
        if not include_obsolete:
            stmt = stmt.where(Account.is_obsolete.is_(False))
        return self.session.scalars(stmt).all()

    def _ensure_unique(self, description: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Account.id).where(
            Account.is_obsolete.is_(False),
            func.lower(Account.description) == description.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError(
                f'An active account with description "{description}" already exists'
            )

    def _ensure_single_splitwise(self, exclude_id: Optional[int] = None) -> None:
        stmt = select(Account.id).where(
            Account.is_obsolete.is_(False), Account.type == AccountType.splitwise
        )
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("An active Splitwise account already exists")

    def _clear_default(self, exclude_id: Optional[int] = None) -> None:
        stmt = select(Account).where(Account.is_default.is_(True))
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        for account in self.session.scalars(stmt).all():
            account.is_default = False

    @serialized
    def create(self, data: AccountIn) -> Account:
        description = data.description.strip()
        self._ensure_unique(description)
        if data.type == AccountType.splitwise:
            self._ensure_single_splitwise()
        if data.is_default:
            self._clear_default()

        account = Account(
            description=description,
            type=data.type,
            is_default=data.is_default,
            is_obsolete=False,
            current_balance_cents=0,
            icon_pack=data.icon_pack,
            icon_name=data.icon_name,
            icon_color=data.icon_color,
        )
        account.daily_balances.append(DailyBalance(date=self.today, balance_cents=0))
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    @serialized
    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        description = data.description.strip()
        if account.is_obsolete and data.is_default:
            raise ValueError("An obsolete account cannot be the default account")
        if not account.is_obsolete:
            self._ensure_unique(description, exclude_id=account.id)
        if data.is_default:
            self._clear_default(exclude_id=account.id)

        account.description = description
        account.is_default = data.is_default
        account.icon_pack = data.icon_pack
        account.icon_name = data.icon_name
        account.icon_color = data.icon_color
        self.session.commit()
        self.session.refresh(account)
        return account

    @serialized
    def set_obsolete(self, account_id: int, obsolete: bool) -> Account:
        account = self.get(account_id)
        if obsolete:
            account.is_default = False
        elif account.is_obsolete:
            self._ensure_unique(account.description, exclude_id=account.id)
            if account.type == AccountType.splitwise:
                self._ensure_single_splitwise(exclude_id=account.id)
        account.is_obsolete = obsolete
        self.session.commit()
        self.session.refresh(account)
        return account


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise DoesNotExist("Category not found")
        return category

    def list_all(
        self,
        include_obsolete: bool = False,
        type: Optional[CategoryType] = None,
        group: bool = False,
    ) -> list[Category]:
        """Categories by description; ``group`` returns only the roots."""
        stmt = select(Category).order_by(Category.description)
        if not include_obsolete:
            stmt = stmt.where(Category.is_obsolete.is_(False))
        if type is not None:
            stmt = stmt.where(Category.type == type)
        if group:
            stmt = stmt.where(Category.parent_category_id.is_(None))
        return self.session.scalars(stmt).all()

    def _validate_placement(
        self,
        description: str,
        type: CategoryType,
        parent_category_id: Optional[int],
        category: Optional[Category] = None,
    ) -> Optional[Category]:
        exclude_id = category.id if category is not None else None
        if parent_category_id is None:
            stmt = select(Category.id).where(
                Category.parent_category_id.is_(None),
                Category.is_obsolete.is_(False),
                Category.type == type,
                func.lower(Category.description) == description.lower(),
            )
            if exclude_id is not None:
                stmt = stmt.where(Category.id != exclude_id)
            if self.session.scalar(stmt):
                raise ValueError(
                    f'An active category with description "{description}" already exists'
                )
            return None

        parent = self.get(parent_category_id)
        if parent.id == exclude_id:
            raise ValueError("A category cannot be its own parent")
        if parent.is_obsolete:
            raise ValueError(f'Parent category "{parent.description}" is obsolete')
        if parent.type != type:
            raise ValueError("Parent category has a different category type")
        if parent.parent_category_id is not None:
            raise ValueError("Categories can only be nested one level deep")
        if category is not None and category.children:
            raise ValueError("A category with children cannot have a parent")
        if parent.description.lower() == description.lower():
            raise ValueError(
                f'The same description as parent "{parent.description}" is not allowed'
            )
        for child in parent.children:
            if (
                child.id != exclude_id
                and not child.is_obsolete
                and child.description.lower() == description.lower()
            ):
                raise ValueError(
                    f'An active category with description "{description}" '
                    f'already exists under "{parent.description}"'
                )
        return parent

    @serialized
    def create(self, data: CategoryIn) -> Category:
        description = data.description.strip()
        parent = self._validate_placement(
            description, data.type, data.parent_category_id
        )
        category = Category(
            description=description,
            type=data.type,
            expected_monthly_amount_cents=data.expected_monthly_amount_cents,
            parent_category=parent,
            is_obsolete=False,
            icon_pack=data.icon_pack,
            icon_name=data.icon_name,
            icon_color=data.icon_color,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    @serialized
    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        description = data.description.strip()
        if data.type != category.type:
            in_use = self.session.scalar(
                select(Transaction.id).where(Transaction.category_id == category.id)
            )
            if in_use or category.children:
                raise ValueError(
                    "The type of a category with children or transactions cannot change"
                )
        parent = self._validate_placement(
            description, data.type, data.parent_category_id, category
        )
        category.description = description
        category.type = data.type
        category.expected_monthly_amount_cents = data.expected_monthly_amount_cents
        if (parent.id if parent else None) != category.parent_category_id:
            TransactionProcessor(self.session).move_category(category, parent)
        category.icon_pack = data.icon_pack
        category.icon_name = data.icon_name
        category.icon_color = data.icon_color
        self.session.commit()
        self.session.refresh(category)
        return category

    @serialized
    def set_obsolete(self, category_id: int, obsolete: bool) -> Category:
        category = self.get(category_id)
        parent = category.parent_category
        if obsolete:
            self._set_children_obsolete(category)
        elif category.is_obsolete:
            if parent is not None and parent.is_obsolete:
                raise ValueError("Parent category is obsolete")
            if parent is not None and parent.description.lower() == category.description.lower():
                raise ValueError(
                    f'The same description as parent "{parent.description}" is not allowed'
                )
            stmt = select(Category.id).where(
                Category.id != category.id,
                Category.type == category.type,
                Category.is_obsolete.is_(False),
                func.lower(Category.description) == category.description.lower(),
            )
            if parent is None:
                stmt = stmt.where(Category.parent_category_id.is_(None))
            else:
                stmt = stmt.where(Category.parent_category_id == parent.id)
            if self.session.scalar(stmt):
                raise ValueError(
                    f'An active category with description "{category.description}" '
                    "already exists"
                )
        category.is_obsolete = obsolete
        self.session.commit()
        self.session.refresh(category)
        return category

    def _set_children_obsolete(self, category: Category) -> None:
        for child in category.children:
            child.is_obsolete = True
            self._set_children_obsolete(child)


class _TemplateValidator:
    """Shared checks for transactions and recurring transactions."""

    def __init__(self, session: Session, splitwise: Optional[SplitwiseClient]) -> None:
        self.session = session
        self.splitwise = splitwise

    def account(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise DoesNotExist("Account not found")
        _active(account, "Account")
        return account

    def category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise DoesNotExist("Category not found")
        _active(category, "Category")
        return category

    def resolve_type(
        self,
        account_id: int,
        category_id: Optional[int],
        receiving_account_id: Optional[int],
    ) -> TransactionType:
        account = self.account(account_id)
        if receiving_account_id is not None:
            if category_id is not None:
                raise ValueError("A transfer cannot have a category")
            receiver = self.account(receiving_account_id)
            if receiver.id == account.id:
                raise ValueError("Sender account can not be the same as receiver account")
            return TransactionType.transfer
        if category_id is None:
            raise ValueError("A category is required for an expense or income")
        category = self.category(category_id)
        return TransactionType(category.type.value)

    def split_details(
        self,
        transaction_type: TransactionType,
        amount_cents: int,
        splits: list[SplitIn],
        requested_cents: int = 0,
    ) -> list[SplitDetail]:
        if not splits:
            if requested_cents > amount_cents:
                raise ValueError("Payment requests exceed the amount of the transaction")
            return []
        if transaction_type != TransactionType.expense:
            raise ValueError("Only expenses can be split")
        if len({split.user_id for split in splits}) != len(splits):
            raise ValueError("A Splitwise user can only be used once in a split")
        shared = sum(split.amount_cents for split in splits)
        if shared + requested_cents > amount_cents:
            raise ValueError("Splits exceed the amount of the transaction")
        if self.session.scalar(
            select(Account.id).where(
                Account.type == AccountType.splitwise, Account.is_obsolete.is_(False)
            )
        ) is None:
            raise ValueError("Splitting a transaction requires a Splitwise account")

        users: dict[int, SplitwiseUser] = {
            user.id: user for user in require_client(self.splitwise).get_users()
        }
        details = []
        for split in splits:
            user = users.get(split.user_id)
            if user is None:
                raise ValueError(f"Splitwise user {split.user_id} does not exist")
            details.append(
                SplitDetail(
                    splitwise_user_id=user.id,
                    splitwise_user_name=user.name,
                    amount_cents=split.amount_cents,
                )
            )
        return details


class TransactionService:
    def __init__(
        self,
        session: Session,
        splitwise: Optional[SplitwiseClient] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.splitwise = splitwise
        self.today = today or local_today()
        self.validator = _TemplateValidator(session, splitwise)

    def _processor(self) -> TransactionProcessor:
        return TransactionProcessor(self.session, self.splitwise, self.today)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise DoesNotExist("Transaction not found")
        return txn

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = select(Transaction).options(
            joinedload(Transaction.category), joinedload(Transaction.account)
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.account_id:
            stmt = stmt.where(
                or_(
                    Transaction.account_id == filters.account_id,
                    Transaction.receiving_account_id == filters.account_id,
                )
            )
        if filters.category_id:
            child_ids = select(Category.id).where(
                Category.parent_category_id == filters.category_id
            )
            stmt = stmt.where(
                or_(
                    Transaction.category_id == filters.category_id,
                    Transaction.category_id.in_(child_ids),
                )
            )
        if filters.query:
            stmt = stmt.where(Transaction.description.ilike(f"%{filters.query}%"))
        if filters.start:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Transaction.date <= filters.end)
        stmt = (
            stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return self.session.scalars(stmt).unique().all()

    def _payment_requests(
        self, data: TransactionIn, transaction_type: TransactionType
    ) -> int:
        if data.payment_requests and transaction_type != TransactionType.expense:
            raise ValueError("Payment requests can only be added to expenses")
        return sum(request.amount_cents * request.count for request in data.payment_requests)

    @serialized
    def create(self, data: TransactionIn) -> Transaction:
        transaction_type = self.validator.resolve_type(
            data.account_id, data.category_id, data.receiving_account_id
        )
        requested = self._payment_requests(data, transaction_type)
        split_details = self.validator.split_details(
            transaction_type, data.amount_cents, data.splits, requested
        )
        txn = Transaction(
            description=data.description.strip(),
            type=transaction_type,
            date=data.date,
            amount_cents=data.amount_cents,
            account_id=data.account_id,
            receiving_account_id=data.receiving_account_id,
            category_id=data.category_id,
            processed=False,
            needs_confirmation=data.needs_confirmation,
            is_confirmed=False if data.needs_confirmation else None,
            split_details=split_details,
            payment_requests=[
                PaymentRequest(
                    amount_cents=request.amount_cents,
                    name=request.name.strip(),
                    count=request.count,
                    paid_count=0,
                )
                for request in data.payment_requests
            ],
        )
        self.session.add(txn)
        self.session.flush()
        self._processor().process_if_needed(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    @serialized
    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        if txn.imported_from_splitwise:
            raise ValueError(
                "Transactions imported from Splitwise can only have their category changed"
            )
        transaction_type = self.validator.resolve_type(
            data.account_id, data.category_id, data.receiving_account_id
        )
        if transaction_type != txn.type:
            raise ValueError("Changing the type of a transaction is not possible")
        requested = self._payment_requests(data, transaction_type)
        split_details = self.validator.split_details(
            transaction_type, data.amount_cents, data.splits, requested
        )

        processor = self._processor()
        processor.revert_if_processed(txn)

        paid_counts = {request.name: request.paid_count for request in txn.payment_requests}
        txn.description = data.description.strip()
        txn.date = data.date
        txn.amount_cents = data.amount_cents
        txn.account_id = data.account_id
        txn.receiving_account_id = data.receiving_account_id
        txn.category_id = data.category_id
        if data.needs_confirmation != txn.needs_confirmation:
            txn.is_confirmed = False if data.needs_confirmation else None
        txn.needs_confirmation = data.needs_confirmation
        txn.split_details = split_details
        txn.payment_requests = [
            PaymentRequest(
                amount_cents=request.amount_cents,
                name=request.name.strip(),
                count=request.count,
                paid_count=min(paid_counts.get(request.name.strip(), 0), request.count),
            )
            for request in data.payment_requests
        ]
        self.session.flush()

        processor.process_if_needed(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    @serialized
    def update_category(self, transaction_id: int, category_id: int) -> Transaction:
        txn = self.get(transaction_id)
        if txn.type == TransactionType.transfer:
            raise ValueError("A transfer cannot have a category")
        category = self.validator.category(category_id)
        if category.type.value != txn.type.value:
            raise ValueError("Category type does not match the transaction type")
        self._processor().change_category(txn, category.id)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    @serialized
    def confirm(self, transaction_id: int, on_date: date, amount_cents: int) -> Transaction:
        txn = self.get(transaction_id)
        if not txn.needs_confirmation:
            raise ValueError("Transaction does not need to be confirmed")
        if txn.is_confirmed:
            raise ValueError("Transaction is already confirmed")
        shared = txn.amount_cents - txn.personal_amount_cents
        if shared > amount_cents:
            raise ValueError("Splits exceed the amount of the transaction")

        txn.date = on_date
        txn.amount_cents = amount_cents
        txn.is_confirmed = True
        self._processor().process_if_needed(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    @serialized
    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        splitwise_transaction = txn.splitwise_transaction
        if txn.imported_from_splitwise:
            # The expense stays in Splitwise and becomes importable again.
            self._processor().revert_if_processed(txn, only_internally=True)
            splitwise_transaction.imported = False
            txn.splitwise_transaction = None
        else:
            self._processor().revert_if_processed(txn)
        txn.recurring_transaction = None
        self.session.delete(txn)
        self.session.commit()

    def _payment_request(self, transaction_id: int, request_id: int) -> PaymentRequest:
        request = self.session.get(PaymentRequest, request_id)
        if not request or request.transaction_id != transaction_id:
            raise DoesNotExist("Payment request not found")
        return request

    def fulfill_payment_request(
        self, transaction_id: int, request_id: int
    ) -> PaymentRequest:
        request = self._payment_request(transaction_id, request_id)
        if request.completed:
            raise ValueError("Payment request is already completed")
        request.paid_count += 1
        self.session.commit()
        self.session.refresh(request)
        return request

    def revert_payment_request(
        self, transaction_id: int, request_id: int
    ) -> PaymentRequest:
        request = self._payment_request(transaction_id, request_id)
        if request.paid_count == 0:
            raise ValueError("Payment request has no payments to revert")
        request.paid_count -= 1
        self.session.commit()
        self.session.refresh(request)
        return request

    def process_all(self) -> dict[str, int]:
        return self._processor().process_all()


class RecurringTransactionService:
    def __init__(
        self,
        session: Session,
        splitwise: Optional[SplitwiseClient] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.splitwise = splitwise
        self.today = today or local_today()
        self.validator = _TemplateValidator(session, splitwise)

    def _processor(self) -> TransactionProcessor:
        return TransactionProcessor(self.session, self.splitwise, self.today)

    def get(self, recurring_id: int) -> RecurringTransaction:
        recurring = self.session.get(RecurringTransaction, recurring_id)
        if not recurring:
            raise DoesNotExist("Recurring transaction not found")
        return recurring

    def list(
        self,
        type: Optional[TransactionType] = None,
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
        include_finished: bool = True,
    ) -> list[RecurringTransaction]:
        stmt = select(RecurringTransaction).order_by(
            RecurringTransaction.finished,
            RecurringTransaction.next_occurrence,
            RecurringTransaction.description,
        )
        if type:
            stmt = stmt.where(RecurringTransaction.type == type)
        if account_id:
            stmt = stmt.where(
                or_(
                    RecurringTransaction.account_id == account_id,
                    RecurringTransaction.receiving_account_id == account_id,
                )
            )
        if category_id:
            stmt = stmt.where(RecurringTransaction.category_id == category_id)
        if not include_finished:
            stmt = stmt.where(RecurringTransaction.finished.is_(False))
        return self.session.scalars(stmt).all()

    def _validate(self, data: RecurringTransactionIn) -> tuple[TransactionType, list[SplitDetail]]:
        if data.end_date is not None and data.start_date >= data.end_date:
            raise ValueError("Start date must be before end date")
        transaction_type = self.validator.resolve_type(
            data.account_id, data.category_id, data.receiving_account_id
        )
        split_details = self.validator.split_details(
            transaction_type, data.amount_cents, data.splits
        )
        return transaction_type, split_details

    @serialized
    def create(self, data: RecurringTransactionIn) -> RecurringTransaction:
        transaction_type, split_details = self._validate(data)
        recurring = RecurringTransaction(
            description=data.description.strip(),
            type=transaction_type,
            amount_cents=data.amount_cents,
            account_id=data.account_id,
            receiving_account_id=data.receiving_account_id,
            category_id=data.category_id,
            start_date=data.start_date,
            end_date=data.end_date,
            interval=data.interval,
            interval_unit=data.interval_unit,
            needs_confirmation=data.needs_confirmation,
            split_details=split_details,
            finished=False,
        )
        schedule_from(recurring, data.start_date)
        self.session.add(recurring)
        self.session.flush()
        created = self._processor().process_recurring(recurring)
        self.session.commit()
        self.session.refresh(recurring)
        logger.info(f"recurring_created: id={recurring.id} instances={created}")
        return recurring

    @serialized
    def update(
        self,
        recurring_id: int,
        data: RecurringTransactionIn,
        update_instances: bool = False,
    ) -> RecurringTransaction:
        recurring = self.get(recurring_id)
        transaction_type, split_details = self._validate(data)
        if transaction_type != recurring.type:
            raise ValueError("Changing the type of a transaction is not possible")
        if not update_instances and data.start_date != recurring.start_date:
            raise ValueError(
                "Updating the start date of a recurring transaction requires "
                "updating its instances"
            )

        processor = self._processor()
        if update_instances:
            for instance in list(recurring.instances):
                processor.revert_if_processed(instance)
                instance.recurring_transaction = None
                self.session.delete(instance)
            self.session.flush()
            recurring.last_occurrence = None

        recurring.description = data.description.strip()
        recurring.amount_cents = data.amount_cents
        recurring.account_id = data.account_id
        recurring.receiving_account_id = data.receiving_account_id
        recurring.category_id = data.category_id
        recurring.start_date = data.start_date
        recurring.end_date = data.end_date
        recurring.interval = data.interval
        recurring.interval_unit = data.interval_unit
        recurring.needs_confirmation = data.needs_confirmation
        recurring.split_details = split_details
        reschedule(recurring)
        self.session.flush()

        processor.process_recurring(recurring)
        self.session.commit()
        self.session.refresh(recurring)
        return recurring

    @serialized
    def delete(self, recurring_id: int, delete_instances: bool = False) -> None:
        recurring = self.get(recurring_id)
        processor = self._processor()
        for instance in list(recurring.instances):
            instance.recurring_transaction = None
            if delete_instances:
                processor.revert_if_processed(instance)
                self.session.delete(instance)
        self.session.delete(recurring)
        self.session.commit()


def order_budgets(budgets: list[Budget]) -> list[Budget]:
    """Budgets on root categories first, each followed by its children's budgets."""

    def by_amount(budget: Budget) -> tuple[int, int]:
        return (-budget.amount_cents, budget.id)

    roots = sorted(
        (b for b in budgets if b.category.parent_category_id is None), key=by_amount
    )
    children = sorted(
        (b for b in budgets if b.category.parent_category_id is not None),
        key=by_amount,
    )
    ordered: list[Budget] = []
    placed: set[int] = set()
    for root in roots:
        ordered.append(root)
        for child in children:
            if (
                child.category.parent_category_id == root.category_id
                and child.id not in placed
            ):
                ordered.append(child)
                placed.add(child.id)
    ordered.extend(child for child in children if child.id not in placed)
    return ordered


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget:
            raise DoesNotExist("Budget not found")
        return budget

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .join(Budget.category)
            .options(joinedload(Budget.category))
            .where(Category.is_obsolete.is_(False))
        )
        return order_budgets(self.session.scalars(stmt).all())

    def list_by_filter(
        self,
        category_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .join(Budget.category)
            .options(joinedload(Budget.category))
            .where(Category.is_obsolete.is_(False))
        )
        if category_id is not None:
            stmt = stmt.where(Budget.category_id == category_id)
        if start is not None and end is not None:
            stmt = stmt.where(Budget.start_date <= end, Budget.end_date >= start)
        return order_budgets(self.session.scalars(stmt).all())

    def running(self, on_date: date) -> list[Budget]:
        return self.list_by_filter(start=on_date, end=on_date)

    def _category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise DoesNotExist("Category not found")
        if category.is_obsolete:
            raise IsObsolete(
                "Category is obsolete. No budgets can be created for obsolete categories"
            )
        if category.type != CategoryType.expense:
            raise ValueError("Budgets can only be created for expense categories")
        return category

    def spent_between(self, category: Category, start: date, end: date) -> int:
        category_ids = [category.id] + [child.id for child in category.children]
        stmt = select(Transaction).where(
            Transaction.processed.is_(True),
            Transaction.type == TransactionType.expense,
            Transaction.category_id.in_(category_ids),
            Transaction.date >= start,
            Transaction.date <= end,
        )
        return sum(txn.personal_amount_cents for txn in self.session.scalars(stmt).all())

    @serialized
    def create(self, data: BudgetIn) -> Budget:
        if data.start_date >= data.end_date:
            raise ValueError("Start date must be before end date")
        category = self._category(data.category_id)
        budget = Budget(
            category=category,
            amount_cents=data.amount_cents,
            spent_cents=self.spent_between(category, data.start_date, data.end_date),
            start_date=data.start_date,
            end_date=data.end_date,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    @serialized
    def update(self, budget_id: int, data: BudgetIn) -> Budget:
        budget = self.get(budget_id)
        if data.start_date >= data.end_date:
            raise ValueError("Start date must be before end date")
        if budget.category.is_obsolete:
            raise IsObsolete(
                "The budget cannot be updated since it is linked to an obsolete category"
            )
        category = self._category(data.category_id)
        budget.category = category
        budget.amount_cents = data.amount_cents
        budget.start_date = data.start_date
        budget.end_date = data.end_date
        budget.spent_cents = self.spent_between(category, data.start_date, data.end_date)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    @serialized
    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()


class SplitwiseService:
    def __init__(
        self,
        session: Session,
        splitwise: Optional[SplitwiseClient] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.splitwise = splitwise
        self.today = today or local_today()

    def _processor(self) -> TransactionProcessor:
        return TransactionProcessor(self.session, self.splitwise, self.today)

    def get(self, splitwise_id: int) -> SplitwiseTransaction:
        splitwise_transaction = self.session.get(SplitwiseTransaction, splitwise_id)
        if not splitwise_transaction:
            raise DoesNotExist("Splitwise transaction not found")
        return splitwise_transaction

    def list(self, only_importable: bool = False) -> list[SplitwiseTransaction]:
        stmt = select(SplitwiseTransaction).order_by(
            SplitwiseTransaction.date, SplitwiseTransaction.id
        )
        if only_importable:
            stmt = stmt.where(
                SplitwiseTransaction.imported.is_(False),
                SplitwiseTransaction.is_deleted.is_(False),
            )
        return self.session.scalars(stmt).all()

    def users(self) -> list[SplitwiseUser]:
        return sorted(
            require_client(self.splitwise).get_users(), key=lambda user: user.name
        )

    def suggest_category(self, splitwise_id: int) -> Optional[Category]:
        """Category of the processed expense whose description is closest."""
        splitwise_transaction = self.get(splitwise_id)
        target = splitwise_transaction.description.strip().lower()
        stmt = (
            select(Transaction)
            .join(Transaction.category)
            .where(
                Transaction.type == TransactionType.expense,
                Category.is_obsolete.is_(False),
            )
            .order_by(Transaction.date.desc())
            .limit(500)
        )
        best_distance: Optional[int] = None
        best: Optional[Category] = None
        for txn in self.session.scalars(stmt).all():
            dist = int(Levenshtein.distance(target, txn.description.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = txn.category
        if best_distance is not None and best_distance <= max(2, len(target) // 5):
            return best
        return None

    @serialized
    def complete_transaction_import(
        self,
        splitwise_id: int,
        category_id: int,
        account_id: Optional[int] = None,
    ) -> Transaction:
        splitwise_transaction = self.get(splitwise_id)
        if splitwise_transaction.imported:
            raise ValueError("Splitwise transaction is already imported")
        if splitwise_transaction.is_deleted:
            raise ValueError("Splitwise transaction is deleted")

        category = self.session.get(Category, category_id)
        if not category:
            raise DoesNotExist("Category not found")
        _active(category, "Category")
        if category.type != CategoryType.expense:
            raise ValueError("Splitwise transactions can only be imported as expenses")

        processor = self._processor()
        if splitwise_transaction.paid_amount_cents > 0:
            if account_id is None:
                raise ValueError(
                    "An account has to be specified because an amount was paid"
                )
            account = self.session.get(Account, account_id)
            if not account:
                raise DoesNotExist("Account not found")
            _active(account, "Account")
            if account.type == AccountType.splitwise:
                raise ValueError("A paid amount cannot be paid from the Splitwise account")
        else:
            account = processor.splitwise_account()

        txn = Transaction(
            description=splitwise_transaction.description,
            type=TransactionType.expense,
            date=splitwise_transaction.date,
            amount_cents=splitwise_transaction.paid_amount_cents,
            account_id=account.id,
            category_id=category.id,
            processed=False,
            needs_confirmation=False,
            is_confirmed=None,
        )
        txn.splitwise_transaction = splitwise_transaction
        splitwise_transaction.imported = True
        self.session.add(txn)
        self.session.flush()
        processor.process_if_needed(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"splitwise_import_completed: id={splitwise_id} transaction={txn.id}"
        )
        return txn

    def _synchronization(self) -> SynchronizationTime:
        sync = self.session.scalar(select(SynchronizationTime).limit(1))
        if sync is None:
            sync = SynchronizationTime()
            self.session.add(sync)
        return sync

    def importer_information(self) -> dict[str, object]:
        sync = self.session.scalar(select(SynchronizationTime).limit(1))
        return {
            "last_run": sync.splitwise_last_run if sync else None,
            "state": ImportState.running if _import_lock.locked() else ImportState.not_running,
        }

    def import_from_splitwise(self) -> ImportResult:
        client = require_client(self.splitwise)
        if not _import_lock.acquire(blocking=False):
            logger.info("splitwise_import: already running")
            return ImportResult.already_running
        try:
            with processing_lock:
                sync = self._synchronization()
                counts = self._import(client, sync)
                sync.splitwise_last_run = datetime.utcnow()
                self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            _import_lock.release()
        logger.info(
            "splitwise_import: "
            + " ".join(f"{key}={value}" for key, value in counts.items())
        )
        return ImportResult.completed

    def _import(self, client: SplitwiseClient, sync: SynchronizationTime) -> dict[str, int]:
        watermark = sync.splitwise_last_update or SPLITWISE_EPOCH
        expenses = client.get_expenses(watermark)
        if expenses:
            # Skipped and dropped expenses count too, so they are not fetched again.
            sync.splitwise_last_update = max(
                watermark, max(expense.updated_at for expense in expenses)
            )
        processor = self._processor()
        counts = {"fetched": len(expenses), "new": 0, "updated": 0, "removed": 0}

        for expense in expenses:
            existing = self.session.get(SplitwiseTransaction, expense.id)
            if existing is None:
                if expense.is_deleted or not expense.has_share:
                    continue
                splitwise_transaction = SplitwiseTransaction(id=expense.id, imported=False)
                self._copy_expense(splitwise_transaction, expense)
                self.session.add(splitwise_transaction)
                counts["new"] += 1
                continue

            txn = existing.transaction
            if txn is not None:
                processor.revert_if_processed(txn, only_internally=True)

            if expense.is_deleted or not expense.has_share:
                if txn is not None:
                    existing.transaction = None
                    self.session.delete(txn)
                if expense.is_deleted:
                    existing.is_deleted = True
                    existing.imported = False
                    existing.updated_at = expense.updated_at
                else:
                    self.session.delete(existing)
                counts["removed"] += 1
                continue

            paid_state_changed = (existing.paid_amount_cents > 0) != (
                expense.paid_amount_cents > 0
            )
            self._copy_expense(existing, expense)
            counts["updated"] += 1
            if txn is None:
                continue
            if paid_state_changed:
                # The paying account is unknown now; the user completes the import again.
                existing.transaction = None
                existing.imported = False
                self.session.delete(txn)
                continue

            txn.description = existing.description
            txn.date = existing.date
            txn.amount_cents = existing.paid_amount_cents
            self.session.flush()
            processor.process_if_needed(txn)

        self.session.flush()
        return counts

    def _copy_expense(
        self, splitwise_transaction: SplitwiseTransaction, expense: SplitwiseExpense
    ) -> None:
        splitwise_transaction.description = expense.description
        splitwise_transaction.date = expense.date
        splitwise_transaction.is_deleted = expense.is_deleted
        splitwise_transaction.updated_at = expense.updated_at
        splitwise_transaction.paid_amount_cents = expense.paid_amount_cents
        splitwise_transaction.personal_amount_cents = expense.personal_amount_cents
        splitwise_transaction.split_details = [
            SplitDetail(
                splitwise_user_id=split.user_id,
                splitwise_user_name=split.user_name,
                amount_cents=split.amount_cents,
            )
            for split in expense.splits
        ]


class ReportService:
    def __init__(self, session: Session, today: Optional[date] = None) -> None:
        self.session = session
        self.today = today or local_today()

    def daily_balances(
        self, account_id: int, start: date, end: date
    ) -> list[tuple[date, int]]:
        """Balance of an account at the end of every day between start and end."""
        if start > end:
            raise ValueError("Start date must be before end date")
        previous = self.session.scalar(
            select(DailyBalance)
            .where(DailyBalance.account_id == account_id, DailyBalance.date <= start)
            .order_by(DailyBalance.date.desc())
            .limit(1)
        )
        balance = previous.balance_cents if previous else 0
        stmt = select(DailyBalance).where(
            DailyBalance.account_id == account_id,
            DailyBalance.date > start,
            DailyBalance.date <= end,
        )
        changes = {entry.date: entry.balance_cents for entry in self.session.scalars(stmt)}

        series = []
        day = start
        while day <= end:
            balance = changes.get(day, balance)
            series.append((day, balance))
            day += timedelta(days=1)
        return series

    def net_worth_series(self, start: date, end: date) -> list[tuple[date, int]]:
        accounts = AccountService(self.session, self.today).list_all()
        totals: dict[date, int] = {}
        for account in accounts:
            for day, balance in self.daily_balances(account.id, start, end):
                totals[day] = totals.get(day, 0) + balance
        if not accounts:
            return [
                (start + timedelta(days=offset), 0)
                for offset in range((end - start).days + 1)
            ]
        return sorted(totals.items())

    def current_date(self) -> dict[str, object]:
        accounts = AccountService(self.session, self.today).list_all()
        latest = self.session.scalars(
            select(Transaction)
            .where(Transaction.processed.is_(True))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(5)
        ).all()
        upcoming = self.session.scalars(
            select(Transaction)
            .where(Transaction.processed.is_(False), Transaction.date > self.today)
            .order_by(Transaction.date, Transaction.id)
            .limit(5)
        ).all()
        unconfirmed = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.needs_confirmation.is_(True),
                Transaction.is_confirmed.is_(False),
            )
            .order_by(Transaction.date, Transaction.id)
        ).all()
        return {
            "accounts": accounts,
            "net_worth_cents": sum(account.current_balance_cents for account in accounts),
            "latest_transactions": latest,
            "upcoming_transactions": upcoming,
            "unconfirmed_transactions": unconfirmed,
            "budgets": BudgetService(self.session).running(self.today),
            "historical_balance": self.net_worth_series(
                self.today - timedelta(weeks=12), self.today
            ),
        }

    def account_report(self, account_id: int, period: Period) -> dict[str, object]:
        account = AccountService(self.session, self.today).get(account_id)
        return {
            "account": account,
            "daily_balances": self.daily_balances(account.id, period.start, period.end),
        }

    def period_report(self, period: Period) -> dict[str, object]:
        if period.start > period.end:
            raise ValueError("Start date must be before end date")
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.processed.is_(True),
                Transaction.type != TransactionType.transfer,
                Transaction.date >= period.start,
                Transaction.date <= period.end,
            )
        )
        income = 0
        expense = 0
        by_category: dict[int, dict[str, object]] = {}
        for txn in self.session.scalars(stmt).unique().all():
            amount = txn.personal_amount_cents
            if txn.type == TransactionType.income:
                income += amount
            else:
                expense += amount
            root = txn.category.parent_category or txn.category
            entry = by_category.setdefault(
                root.id,
                {
                    "category_id": root.id,
                    "description": root.description,
                    "type": root.type,
                    "total_cents": 0,
                },
            )
            entry["total_cents"] += amount
        return {
            "start": period.start,
            "end": period.end,
            "income_cents": income,
            "expense_cents": expense,
            "net_cents": income - expense,
            "categories": sorted(
                by_category.values(), key=lambda item: -int(item["total_cents"])
            ),
            "net_worth": self.net_worth_series(period.start, period.end),
        }
