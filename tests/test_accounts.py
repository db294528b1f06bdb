import pytest

from errors import DoesNotExist
from models import AccountType
from schemas import AccountUpdate
from services import AccountService

from helpers import TODAY, make_account, make_session


def test_only_one_default_account():
    session = make_session()
    checking = make_account(session, "Checking", is_default=True)
    savings = make_account(session, "Savings", is_default=True)

    assert savings.is_default is True
    assert checking.is_default is False

    AccountService(session, TODAY).update(
        checking.id, AccountUpdate(description="Checking", is_default=True)
    )
    assert checking.is_default is True
    assert savings.is_default is False


def test_active_descriptions_are_unique_ignoring_case():
    session = make_session()
    checking = make_account(session, "Checking")

    with pytest.raises(ValueError, match="already exists"):
        make_account(session, "checking ")

    AccountService(session, TODAY).set_obsolete(checking.id, True)
    replacement = make_account(session, "Checking")

    with pytest.raises(ValueError, match="already exists"):
        AccountService(session, TODAY).set_obsolete(checking.id, False)
    assert replacement.is_obsolete is False


def test_single_active_splitwise_account():
    session = make_session()
    splitwise = make_account(session, "Splitwise", AccountType.splitwise)

    with pytest.raises(ValueError, match="Splitwise account already exists"):
        make_account(session, "Splitwise 2", AccountType.splitwise)

    AccountService(session, TODAY).set_obsolete(splitwise.id, True)
    make_account(session, "Splitwise 2", AccountType.splitwise)


def test_obsolete_account_loses_default_flag():
    session = make_session()
    service = AccountService(session, TODAY)
    checking = make_account(session, "Checking", is_default=True)

    service.set_obsolete(checking.id, True)
    assert checking.is_default is False
    assert service.list_all() == []
    assert service.list_all(include_obsolete=True) == [checking]

    with pytest.raises(ValueError, match="cannot be the default"):
        service.update(checking.id, AccountUpdate(description="Checking", is_default=True))


def test_list_puts_default_first():
    session = make_session()
    make_account(session, "Brokerage")
    cash = make_account(session, "Cash", is_default=True)

    assert [a.description for a in AccountService(session, TODAY).list_all()] == [
        cash.description,
        "Brokerage",
    ]


def test_missing_account():
    session = make_session()
    with pytest.raises(DoesNotExist):
        AccountService(session, TODAY).get(42)
