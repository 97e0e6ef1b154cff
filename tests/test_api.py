from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import CredentialValidator
from database import Base
from main import app, get_db, get_validator


@pytest.fixture
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

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_validator] = lambda: CredentialValidator("test-secret")
    yield TestClient(app)
    app.dependency_overrides.clear()


def _login(client: TestClient, email: str) -> dict[str, str]:
    resp = client.post(
        "/auth/register", json={"email": email, "password": "secret123"}
    )
    assert resp.status_code == 201
    resp = client.post("/auth/login", json={"email": email, "password": "secret123"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def test_expense_lifecycle_over_http(client: TestClient) -> None:
    ann = _login(client, "ann@example.com")

    resp = client.post("/category", json={"name": "Food"}, headers=ann)
    assert resp.status_code == 201
    food_id = resp.json()["id"]
    assert resp.json()["name"] == "food"

    resp = client.post(
        "/expense",
        json={"title": "Lunch", "amount": "30.00", "date": "2024-01-05", "category_id": food_id},
        headers=ann,
    )
    assert resp.status_code == 201
    body = resp.json()
    assert Decimal(str(body["amount"])) == Decimal("30.00")
    assert body["user"]["email"] == "ann@example.com"
    assert body["category"]["name"] == "food"
    expense_id = body["id"]

    resp = client.get(
        "/expense",
        params={"start_date": "2024-01-01", "end_date": "2024-01-31"},
        headers=ann,
    )
    assert resp.status_code == 200
    assert resp.json()["total"] == 1
    assert resp.json()["total_pages"] == 1

    resp = client.patch(f"/expense/{expense_id}", json={"title": "Dinner"}, headers=ann)
    assert resp.status_code == 200
    assert resp.json()["title"] == "Dinner"

    resp = client.get(
        "/expense/report",
        params={"start_date": "2024-01-01", "end_date": "2024-01-31"},
        headers=ann,
    )
    assert resp.status_code == 200
    [row] = resp.json()
    assert row["category_id"] == food_id
    assert Decimal(str(row["total_amount"])) == Decimal("30.00")

    resp = client.delete(f"/expense/{expense_id}", headers=ann)
    assert resp.status_code == 200
    assert resp.json() == {"message": f"Expense with ID {expense_id} has been soft deleted"}
    assert client.delete(f"/expense/{expense_id}", headers=ann).status_code == 404


def test_error_statuses(client: TestClient) -> None:
    ann = _login(client, "ann@example.com")
    bob = _login(client, "bob@example.com")
    food_id = client.post("/category", json={"name": "food"}, headers=ann).json()["id"]
    expense_id = client.post(
        "/expense",
        json={"title": "Lunch", "amount": "12.00", "date": "2024-01-05", "category_id": food_id},
        headers=ann,
    ).json()["id"]

    resp = client.get("/expense")
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"
    assert client.get("/expense", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.get(f"/expense/{expense_id}", headers=bob).status_code == 404
    assert client.patch(
        f"/expense/{expense_id}", json={"category_id": 9999}, headers=ann
    ).status_code == 404
    assert client.get(
        "/expense/report",
        params={"start_date": "2020-01-01", "end_date": "2020-12-31"},
        headers=ann,
    ).status_code == 404
    assert client.post("/category", json={"name": "FOOD"}, headers=ann).status_code == 409
    assert client.post(
        "/auth/register", json={"email": "ann@example.com", "password": "secret123"}
    ).status_code == 409
    assert client.post(
        "/expense",
        json={"title": "Bad", "amount": "-1", "date": "2024-01-05", "category_id": food_id},
        headers=ann,
    ).status_code == 422


def test_missing_signing_secret_is_a_server_error(client: TestClient) -> None:
    ann = _login(client, "ann@example.com")
    app.dependency_overrides[get_validator] = lambda: CredentialValidator(None)

    resp = client.get("/expense", headers=ann)

    assert resp.status_code == 500
