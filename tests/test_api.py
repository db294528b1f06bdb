import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from database import Base, build_engine, session_factory
from main import app, get_db

from helpers import FakeSplitwiseClient


@pytest.fixture()
def client():
    engine = build_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    TestingSession = session_factory(engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.splitwise = None
    # Not used as a context manager so the scheduler does not start.
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.splitwise = None


def _setup(client):
    account = client.post("/accounts", json={"description": "Checking"}).json()
    category = client.post(
        "/categories", json={"description": "Food", "type": "expense"}
    ).json()
    return account, category


def test_create_and_list_transactions(client):
    account, category = _setup(client)

    resp = client.post(
        "/transactions",
        json={
            "description": "Groceries",
            "date": "2024-03-15",
            "amount_cents": 1250,
            "account_id": account["id"],
            "category_id": category["id"],
        },
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["type"] == "expense"
    assert body["processed"] is True

    listing = client.get("/transactions", params={"q": "groc"}).json()
    assert [item["id"] for item in listing["items"]] == [body["id"]]
    assert listing["has_more"] is False

    account = client.get(f"/accounts/{account['id']}").json()
    assert account["current_balance_cents"] == -1250


def test_errors_map_to_status_codes(client):
    account, category = _setup(client)

    assert client.get("/transactions/999").status_code == 404

    resp = client.post(
        "/transactions",
        json={
            "description": "Transfer",
            "date": "2024-03-15",
            "amount_cents": 100,
            "account_id": account["id"],
            "receiving_account_id": account["id"],
        },
    )
    assert resp.status_code == 400
    assert "same as receiver" in resp.json()["detail"]

    # Amounts are never negative; the type carries the direction.
    resp = client.post(
        "/transactions",
        json={
            "description": "Refund",
            "date": "2024-03-15",
            "amount_cents": -100,
            "account_id": account["id"],
            "category_id": category["id"],
        },
    )
    assert resp.status_code == 422


def test_budgets_endpoint(client):
    _account, category = _setup(client)

    resp = client.post(
        "/budgets",
        json={
            "category_id": category["id"],
            "amount_cents": 30000,
            "start_date": "2024-03-01",
            "end_date": "2024-03-31",
        },
    )
    assert resp.status_code == 201
    assert resp.json()["spent_cents"] == 0
    assert len(client.get("/budgets").json()) == 1

    resp = client.post(
        "/budgets",
        json={
            "category_id": category["id"],
            "amount_cents": 30000,
            "start_date": "2024-03-31",
            "end_date": "2024-03-01",
        },
    )
    assert resp.status_code == 400


def test_splitwise_without_client_is_unavailable(client):
    assert client.post("/splitwise/import").status_code == 503
    info = client.get("/splitwise/importer").json()
    assert info == {"last_run": None, "state": "not_running"}


def test_splitwise_import_with_client(client):
    fake = FakeSplitwiseClient()
    fake.add_expense(paid_cents=0, personal_cents=900)
    app.state.splitwise = fake

    resp = client.post("/splitwise/import")
    assert resp.json() == {"result": "completed"}

    importable = client.get(
        "/splitwise/transactions", params={"only_importable": True}
    ).json()
    assert len(importable) == 1
    assert [u["name"] for u in client.get("/splitwise/users").json()] == [
        "Alice Smith",
        "Bob",
    ]


def test_period_report(client):
    resp = client.get(
        "/reports/period",
        params={"period": "custom", "start": "2024-03-01", "end": "2024-03-31"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["income_cents"] == 0
    assert len(body["net_worth"]) == 31

    resp = client.get(
        "/reports/period",
        params={"period": "custom", "start": "2024-03-31", "end": "2024-03-01"},
    )
    assert resp.status_code == 400
