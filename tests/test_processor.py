from datetime import timedelta

import pytest
from sqlalchemy import select

from errors import IsObsolete
from models import CategoryType, Transaction, TransactionType
from processor import TransactionProcessor
from schemas import BudgetIn, PaymentRequestIn, SplitIn, TransactionIn
from services import (
    AccountService,
    BudgetService,
    TransactionFilters,
    TransactionService,
)

from helpers import TODAY, balances, make_account, make_category, make_session


def _txn(account_id, category_id=None, **overrides) -> TransactionIn:
    values = dict(
        description="Groceries",
        date=TODAY,
        amount_cents=1_000,
        account_id=account_id,
        category_id=category_id,
    )
    values.update(overrides)
    return TransactionIn(**values)


def test_new_account_starts_with_zero_balance_today() -> None:
    session = make_session()
    account = make_account(session)

    assert account.current_balance_cents == 0
    assert balances(session, account.id) == [(TODAY, 0)]


def test_income_is_added_to_the_balance_of_its_date() -> None:
    session = make_session()
    account = make_account(session)
    salary = make_category(session, "Salary", CategoryType.income)

    txn = TransactionService(session, today=TODAY).create(
        _txn(account.id, salary.id, description="Salary", amount_cents=10_000)
    )

    assert txn.processed is True
    assert account.current_balance_cents == 10_000
    assert balances(session, account.id) == [(TODAY, 10_000)]


def test_transactions_in_the_past_adjust_every_later_entry() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    salary = make_category(session, "Salary", CategoryType.income)
    service = TransactionService(session, today=TODAY)

    service.create(
        _txn(account.id, food.id, date=TODAY - timedelta(days=10), amount_cents=2_500)
    )
    assert balances(session, account.id) == [
        (TODAY - timedelta(days=10), -2_500),
        (TODAY, -2_500),
    ]

    service.create(
        _txn(account.id, salary.id, date=TODAY - timedelta(days=5), amount_cents=1_000)
    )
    assert balances(session, account.id) == [
        (TODAY - timedelta(days=10), -2_500),
        (TODAY - timedelta(days=5), -1_500),
        (TODAY, -1_500),
    ]
    assert account.current_balance_cents == -1_500


def test_transfer_moves_money_between_accounts() -> None:
    session = make_session()
    checking = make_account(session, "Checking")
    savings = make_account(session, "Savings")
    salary = make_category(session, "Salary", CategoryType.income)
    service = TransactionService(session, today=TODAY)

    service.create(_txn(checking.id, salary.id, amount_cents=5_000))
    transfer = service.create(
        _txn(checking.id, receiving_account_id=savings.id, amount_cents=2_000)
    )

    assert transfer.type.value == "transfer"
    assert checking.current_balance_cents == 3_000
    assert savings.current_balance_cents == 2_000


def test_transfer_to_same_account_is_rejected() -> None:
    session = make_session()
    checking = make_account(session)

    with pytest.raises(ValueError, match="same as receiver"):
        TransactionService(session, today=TODAY).create(
            _txn(checking.id, receiving_account_id=checking.id)
        )


def test_future_transaction_is_processed_once_its_date_arrives() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    future = TODAY + timedelta(days=3)

    txn = TransactionService(session, today=TODAY).create(
        _txn(account.id, food.id, date=future, amount_cents=700)
    )
    assert txn.processed is False
    assert account.current_balance_cents == 0

    result = TransactionProcessor(session, today=TODAY + timedelta(days=2)).process_all()
    assert result["processed"] == 0
    assert txn.processed is False

    result = TransactionProcessor(session, today=future).process_all()
    assert result["processed"] == 1
    assert txn.processed is True
    assert balances(session, account.id) == [(TODAY, 0), (future, -700)]

    # Processing again does not apply the effect twice.
    TransactionProcessor(session, today=future).process_all()
    assert account.current_balance_cents == -700


def test_transaction_needing_confirmation_waits_for_it() -> None:
    session = make_session()
    account = make_account(session)
    rent = make_category(session, "Rent")
    service = TransactionService(session, today=TODAY)

    txn = service.create(_txn(account.id, rent.id, needs_confirmation=True))
    assert txn.processed is False
    assert txn.is_confirmed is False

    TransactionProcessor(session, today=TODAY).process_all()
    assert txn.processed is False

    service.confirm(txn.id, TODAY, 1_200)
    assert txn.is_confirmed is True
    assert txn.processed is True
    assert account.current_balance_cents == -1_200

    with pytest.raises(ValueError, match="already confirmed"):
        service.confirm(txn.id, TODAY, 1_200)


def test_update_reverts_and_applies_again() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    service = TransactionService(session, today=TODAY)

    txn = service.create(_txn(account.id, food.id, amount_cents=1_000))
    service.update(
        txn.id,
        _txn(
            account.id,
            food.id,
            date=TODAY - timedelta(days=2),
            amount_cents=1_500,
        ),
    )

    assert txn.processed is True
    assert account.current_balance_cents == -1_500
    assert balances(session, account.id) == [
        (TODAY - timedelta(days=2), -1_500),
        (TODAY, -1_500),
    ]


def test_update_cannot_change_the_type() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    salary = make_category(session, "Salary", CategoryType.income)
    service = TransactionService(session, today=TODAY)

    txn = service.create(_txn(account.id, food.id))
    with pytest.raises(ValueError, match="Changing the type"):
        service.update(txn.id, _txn(account.id, salary.id))


def test_delete_reverts_balances_and_budgets() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    budget = BudgetService(session).create(
        BudgetIn(
            category_id=food.id,
            amount_cents=10_000,
            start_date=TODAY.replace(day=1),
            end_date=TODAY.replace(day=31),
        )
    )
    service = TransactionService(session, today=TODAY)

    txn = service.create(_txn(account.id, food.id, amount_cents=2_000))
    assert budget.spent_cents == 2_000

    service.delete(txn.id)
    assert account.current_balance_cents == 0
    assert budget.spent_cents == 0
    assert balances(session, account.id) == [(TODAY, 0)]


def test_budgets_follow_category_parent_and_period() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    groceries = make_category(session, "Groceries", parent_id=food.id)
    transport = make_category(session, "Transport")
    budgets = BudgetService(session)

    def budget(category_id, start, end):
        return budgets.create(
            BudgetIn(
                category_id=category_id,
                amount_cents=50_000,
                start_date=start,
                end_date=end,
            )
        )

    on_food = budget(food.id, TODAY - timedelta(days=5), TODAY + timedelta(days=5))
    on_groceries = budget(
        groceries.id, TODAY - timedelta(days=5), TODAY + timedelta(days=5)
    )
    later = budget(groceries.id, TODAY + timedelta(days=10), TODAY + timedelta(days=20))
    on_transport = budget(
        transport.id, TODAY - timedelta(days=5), TODAY + timedelta(days=5)
    )

    service = TransactionService(session, today=TODAY)
    txn = service.create(
        _txn(
            account.id,
            groceries.id,
            amount_cents=3_000,
            payment_requests=[PaymentRequestIn(amount_cents=1_000, name="Bob")],
        )
    )

    assert txn.personal_amount_cents == 2_000
    assert account.current_balance_cents == -3_000
    assert on_food.spent_cents == 2_000
    assert on_groceries.spent_cents == 2_000
    assert later.spent_cents == 0
    assert on_transport.spent_cents == 0

    service.update_category(txn.id, transport.id)
    assert on_food.spent_cents == 0
    assert on_groceries.spent_cents == 0
    assert on_transport.spent_cents == 2_000
    assert account.current_balance_cents == -3_000


def test_payment_requests_can_be_fulfilled_and_reverted() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    service = TransactionService(session, today=TODAY)

    txn = service.create(
        _txn(
            account.id,
            food.id,
            amount_cents=3_000,
            payment_requests=[PaymentRequestIn(amount_cents=500, name="Team", count=2)],
        )
    )
    request = txn.payment_requests[0]

    service.fulfill_payment_request(txn.id, request.id)
    service.fulfill_payment_request(txn.id, request.id)
    assert request.completed is True
    with pytest.raises(ValueError, match="already completed"):
        service.fulfill_payment_request(txn.id, request.id)

    service.revert_payment_request(txn.id, request.id)
    assert request.paid_count == 1
    assert request.completed is False


def test_payment_requests_cannot_exceed_the_amount() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")

    with pytest.raises(ValueError, match="exceed"):
        TransactionService(session, today=TODAY).create(
            _txn(
                account.id,
                food.id,
                amount_cents=1_000,
                payment_requests=[PaymentRequestIn(amount_cents=600, name="A", count=2)],
            )
        )


def test_obsolete_account_cannot_receive_transactions() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    AccountService(session, TODAY).set_obsolete(account.id, True)

    with pytest.raises(IsObsolete):
        TransactionService(session, today=TODAY).create(_txn(account.id, food.id))


def test_processing_an_obsolete_category_is_refused() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    txn = TransactionService(session, today=TODAY).create(
        _txn(account.id, food.id, date=TODAY + timedelta(days=1))
    )
    food.is_obsolete = True
    session.commit()

    with pytest.raises(IsObsolete):
        TransactionProcessor(session, today=TODAY + timedelta(days=1)).process(txn)


def test_splitwise_account_is_needed_for_splits() -> None:
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")

    with pytest.raises(ValueError, match="requires a Splitwise account"):
        TransactionService(session, today=TODAY).create(
            _txn(
                account.id,
                food.id,
                splits=[SplitIn(user_id=1, amount_cents=500)],
            )
        )
    assert account.current_balance_cents == 0
    assert session.scalars(select(Transaction)).all() == []


def test_list_filters_and_pages_transactions() -> None:
    session = make_session()
    checking = make_account(session, "Checking")
    savings = make_account(session, "Savings")
    food = make_category(session, "Food")
    groceries = make_category(session, "Groceries", parent_id=food.id)
    salary = make_category(session, "Salary", CategoryType.income)
    service = TransactionService(session, today=TODAY)

    weekly = service.create(
        _txn(
            checking.id,
            groceries.id,
            description="Weekly groceries",
            date=TODAY - timedelta(days=10),
        )
    )
    restaurant = service.create(
        _txn(
            checking.id,
            food.id,
            description="Restaurant",
            date=TODAY - timedelta(days=5),
        )
    )
    pay = service.create(
        _txn(
            checking.id,
            salary.id,
            description="Salary March",
            date=TODAY - timedelta(days=2),
        )
    )
    saving = service.create(
        _txn(checking.id, description="Saving", receiving_account_id=savings.id)
    )
    top_up = service.create(_txn(checking.id, groceries.id, description="GROCERIES top-up"))

    def ids(**filters):
        limit = filters.pop("limit", 50)
        offset = filters.pop("offset", 0)
        found = service.list(TransactionFilters(**filters), limit=limit, offset=offset)
        return [txn.id for txn in found]

    assert ids() == [top_up.id, saving.id, pay.id, restaurant.id, weekly.id]
    # A parent category includes the transactions of its children.
    assert ids(category_id=food.id) == [top_up.id, restaurant.id, weekly.id]
    assert ids(category_id=groceries.id) == [top_up.id, weekly.id]
    assert ids(query="groceries") == [top_up.id, weekly.id]
    assert ids(start=TODAY - timedelta(days=5), end=TODAY - timedelta(days=2)) == [
        pay.id,
        restaurant.id,
    ]
    assert ids(type=TransactionType.income) == [pay.id]
    assert ids(account_id=savings.id) == [saving.id]
    assert ids(type=TransactionType.expense, query="top") == [top_up.id]

    assert ids(limit=2) == [top_up.id, saving.id]
    assert ids(limit=2, offset=2) == [pay.id, restaurant.id]
    assert ids(limit=2, offset=4) == [weekly.id]
