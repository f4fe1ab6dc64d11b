import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from insights import InsightGenerator, NullInsightClient
from main import app, get_db, get_insight_generator


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    generator = InsightGenerator(NullInsightClient())
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_insight_generator] = lambda: generator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _account(client: TestClient, headers=None) -> dict:
    response = client.post(
        "/api/accounts", json={"name": "Main", "balance": 100}, headers=headers
    )
    assert response.status_code == 201
    return response.json()["data"]


def _transaction(client: TestClient, account_id: int, headers=None, **overrides):
    payload = {
        "type": "expense",
        "amount": 25.5,
        "description": "Groceries",
        "category": "Food",
        "account_id": account_id,
        "date": "2025-03-10T12:00:00Z",
    }
    payload.update(overrides)
    return client.post("/api/transactions", json=payload, headers=headers)


def test_health(client: TestClient) -> None:
    body = client.get("/health").json()
    assert body["success"] is True
    assert "timestamp" in body


def test_transaction_lifecycle_moves_balance(client: TestClient) -> None:
    account = _account(client)
    assert account["balance"] == 100.0

    created = _transaction(client, account["id"])
    assert created.status_code == 201
    txn = created.json()["data"]
    assert txn["type"] == "EXPENSE"
    assert txn["category"] == "food"
    assert txn["amount_cents"] == 2_550
    assert txn["account"]["name"] == "Main"

    detail = client.get(f"/api/accounts/{account['id']}").json()["data"]
    assert detail["balance_cents"] == 7_450
    assert [t["id"] for t in detail["transactions"]] == [txn["id"]]

    assert client.delete(f"/api/transactions/{txn['id']}").status_code == 200
    second = client.delete(f"/api/transactions/{txn['id']}")
    assert second.status_code == 404
    assert second.json() == {"success": False, "message": "Transaction not found"}

    detail = client.get(f"/api/accounts/{account['id']}").json()["data"]
    assert detail["balance_cents"] == 10_000


def test_validation_errors_map_to_400(client: TestClient) -> None:
    account = _account(client)
    missing = client.post("/api/transactions", json={"amount": 5})
    assert missing.status_code == 400
    assert missing.json()["message"].startswith("Missing required fields")

    zero = _transaction(client, account["id"], amount=0)
    assert zero.status_code == 400
    assert zero.json()["success"] is False

    bad_query = client.get("/api/transactions", params={"type": "TRANSFER"})
    assert bad_query.status_code == 400

    bad_date = client.get("/api/transactions", params={"start_date": "yesterday"})
    assert bad_date.status_code == 400

    bad_body = client.post("/api/budgets", json={"category": "food"})
    assert bad_body.status_code == 400
    assert "amount" in bad_body.json()["message"]


def test_other_users_see_not_found(client: TestClient) -> None:
    account = _account(client)
    txn = _transaction(client, account["id"]).json()["data"]

    other = {"X-User-Id": "2"}
    assert client.get(f"/api/transactions/{txn['id']}", headers=other).status_code == 404
    assert client.get(f"/api/accounts/{account['id']}", headers=other).status_code == 404

    theirs = _account(client, headers=other)
    mine = _transaction(client, account["id"]).json()["data"]
    foreign = _transaction(client, theirs["id"], headers=other)
    assert foreign.status_code == 201

    response = client.post(
        "/api/transactions/bulk-delete",
        json={"transaction_ids": [mine["id"], foreign.json()["data"]["id"]]},
    )
    assert response.status_code == 403
    assert response.json()["message"] == "Some transactions do not belong to you"


def test_list_envelope_and_stats(client: TestClient) -> None:
    account = _account(client)
    _transaction(client, account["id"])
    _transaction(client, account["id"], type="INCOME", amount=500, category="Salary")

    listing = client.get("/api/transactions", params={"limit": 1}).json()
    assert listing["success"] is True
    assert listing["count"] == 1
    assert listing["total"] == 2
    assert listing["pagination"] == {"page": 1, "limit": 1, "pages": 2}

    filtered = client.get(
        "/api/transactions",
        params={"start_date": "2025-03-10", "end_date": "2025-03-10", "category": "FOOD"},
    ).json()
    assert filtered["total"] == 1

    stats = client.get("/api/transactions/stats").json()["data"]
    assert stats["net_cents"] == 50_000 - 2_550

    categories = client.get("/api/transactions/categories").json()
    assert categories["data"][0]["category"] == "food"


def test_budget_upsert_status_codes_and_alerts(client: TestClient) -> None:
    created = client.post(
        "/api/budgets",
        json={"amount": 1000, "category": "Food", "year": 2025, "month": 3},
    )
    assert created.status_code == 201
    updated = client.post(
        "/api/budgets",
        json={"amount": 800, "category": "food", "year": 2025, "month": 3},
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["id"] == created.json()["data"]["id"]

    budgets = client.get("/api/budgets", params={"year": 2025}).json()
    assert budgets["count"] == 1
    assert budgets["data"][0]["status"] == "HEALTHY"
    assert budgets["data"][0]["amount"] == 800.0

    assert client.get("/api/budgets/alerts").json()["data"] == []
    assert client.delete("/api/budgets/999").status_code == 404


def test_set_default_and_reconcile(client: TestClient) -> None:
    first = _account(client)
    second = _account(client)
    response = client.put(f"/api/accounts/{second['id']}/default")
    assert response.json()["data"]["is_default"] is True

    accounts = client.get("/api/accounts").json()["data"]
    assert [a["is_default"] for a in accounts].count(True) == 1
    assert accounts[0]["id"] == second["id"]

    report = client.post(f"/api/accounts/{first['id']}/reconcile").json()["data"]
    assert report["drift_cents"] == 0


def test_ai_endpoints_fall_back_without_a_client(client: TestClient) -> None:
    insights = client.post("/api/ai/insights", json={"period": "month"})
    assert insights.status_code == 200
    assert len(insights.json()["data"]["insights"]) == 3

    bad_period = client.post("/api/ai/insights", json={"period": "week"})
    assert bad_period.status_code == 400

    invest = client.post(
        "/api/ai/investment-suggestions",
        json={"risk_tolerance": "CONSERVATIVE", "investment_amount": 1000},
    ).json()["data"]
    assert [s["amount"] for s in invest["suggestions"]] == [600.0, 300.0, 100.0]

    tips = client.get("/api/ai/tax-tips").json()["data"]
    assert len(tips["tips"]) == 4

    assert client.get("/api/ai/test").status_code == 503
