from datetime import date, timedelta

import pytest

from errors import IsObsolete
from models import CategoryType
from schemas import BudgetIn, CategoryIn, TransactionIn
from services import BudgetService, CategoryService, TransactionService

from helpers import TODAY, make_account, make_category, make_session


MARCH = dict(start_date=date(2024, 3, 1), end_date=date(2024, 3, 31))


def _spend(session, account_id, category_id, amount_cents, on_date=TODAY):
    return TransactionService(session, today=TODAY).create(
        TransactionIn(
            description="Spending",
            date=on_date,
            amount_cents=amount_cents,
            account_id=account_id,
            category_id=category_id,
        )
    )


def test_spent_is_computed_from_existing_transactions():
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    groceries = make_category(session, "Groceries", parent_id=food.id)
    _spend(session, account.id, food.id, 1_000)
    _spend(session, account.id, groceries.id, 500)
    _spend(session, account.id, groceries.id, 700, on_date=date(2024, 2, 28))
    # Not processed yet, so not spent yet.
    _spend(session, account.id, food.id, 900, on_date=TODAY + timedelta(days=3))

    service = BudgetService(session)
    budget = service.create(BudgetIn(category_id=food.id, amount_cents=5_000, **MARCH))
    assert budget.spent_cents == 1_500

    service.update(
        budget.id,
        BudgetIn(
            category_id=groceries.id,
            amount_cents=5_000,
            start_date=date(2024, 2, 1),
            end_date=date(2024, 3, 31),
        ),
    )
    assert budget.spent_cents == 1_200


def test_budget_ordering_groups_children_under_roots():
    session = make_session()
    food = make_category(session, "Food")
    snacks = make_category(session, "Snacks", parent_id=food.id)
    groceries = make_category(session, "Groceries", parent_id=food.id)
    transport = make_category(session, "Transport")
    service = BudgetService(session)

    for category, amount in (
        (groceries, 300),
        (food, 500),
        (snacks, 400),
        (transport, 800),
    ):
        service.create(BudgetIn(category_id=category.id, amount_cents=amount, **MARCH))

    ordered = service.list_all()
    assert [b.category.description for b in ordered] == [
        "Transport",
        "Food",
        "Snacks",
        "Groceries",
    ]


def test_children_without_root_budget_come_last():
    session = make_session()
    food = make_category(session, "Food")
    snacks = make_category(session, "Snacks", parent_id=food.id)
    transport = make_category(session, "Transport")
    service = BudgetService(session)
    service.create(BudgetIn(category_id=snacks.id, amount_cents=900, **MARCH))
    service.create(BudgetIn(category_id=transport.id, amount_cents=100, **MARCH))

    assert [b.category.description for b in service.list_all()] == [
        "Transport",
        "Snacks",
    ]


def test_running_budgets_and_filters():
    session = make_session()
    food = make_category(session, "Food")
    service = BudgetService(session)
    march = service.create(BudgetIn(category_id=food.id, amount_cents=500, **MARCH))
    service.create(
        BudgetIn(
            category_id=food.id,
            amount_cents=500,
            start_date=date(2024, 4, 1),
            end_date=date(2024, 4, 30),
        )
    )

    assert service.running(TODAY) == [march]
    assert len(service.list_by_filter(category_id=food.id)) == 2


def test_only_active_expense_categories_have_budgets():
    session = make_session()
    salary = make_category(session, "Salary", CategoryType.income)
    food = make_category(session, "Food")
    service = BudgetService(session)

    with pytest.raises(ValueError, match="expense categories"):
        service.create(BudgetIn(category_id=salary.id, amount_cents=500, **MARCH))

    budget = service.create(BudgetIn(category_id=food.id, amount_cents=500, **MARCH))
    CategoryService(session).set_obsolete(food.id, True)

    with pytest.raises(IsObsolete):
        service.create(BudgetIn(category_id=food.id, amount_cents=500, **MARCH))
    with pytest.raises(IsObsolete):
        service.update(budget.id, BudgetIn(category_id=food.id, amount_cents=600, **MARCH))
    assert service.list_all() == []


def test_start_must_be_before_end():
    session = make_session()
    food = make_category(session, "Food")

    with pytest.raises(ValueError, match="before end date"):
        BudgetService(session).create(
            BudgetIn(
                category_id=food.id,
                amount_cents=500,
                start_date=TODAY,
                end_date=TODAY,
            )
        )


def test_moving_a_category_moves_its_spending_to_the_new_parent():
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    other = make_category(session, "Other")
    groceries = make_category(session, "Groceries", parent_id=food.id)
    service = BudgetService(session)
    food_budget = service.create(BudgetIn(category_id=food.id, amount_cents=5_000, **MARCH))
    other_budget = service.create(BudgetIn(category_id=other.id, amount_cents=5_000, **MARCH))
    groceries_budget = service.create(
        BudgetIn(category_id=groceries.id, amount_cents=5_000, **MARCH)
    )
    txn = _spend(session, account.id, groceries.id, 1_000)
    assert food_budget.spent_cents == 1_000

    CategoryService(session).update(
        groceries.id,
        CategoryIn(
            description="Groceries",
            type=CategoryType.expense,
            parent_category_id=other.id,
        ),
    )
    assert (food_budget.spent_cents, other_budget.spent_cents) == (0, 1_000)
    assert groceries_budget.spent_cents == 1_000

    TransactionService(session, today=TODAY).delete(txn.id)
    assert (food_budget.spent_cents, other_budget.spent_cents) == (0, 0)
    assert groceries_budget.spent_cents == 0


def test_moving_a_category_to_the_root_leaves_the_old_parent():
    session = make_session()
    account = make_account(session)
    food = make_category(session, "Food")
    snacks = make_category(session, "Snacks", parent_id=food.id)
    food_budget = BudgetService(session).create(
        BudgetIn(category_id=food.id, amount_cents=5_000, **MARCH)
    )
    _spend(session, account.id, snacks.id, 400)

    CategoryService(session).update(
        snacks.id, CategoryIn(description="Snacks", type=CategoryType.expense)
    )

    assert snacks.parent_category is None
    assert food_budget.spent_cents == 0
