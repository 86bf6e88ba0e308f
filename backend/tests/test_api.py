"""
Test Module: test_api.py
Description: End-to-end tests for the REST API using FastAPI's TestClient
against an in-memory database.

Author: Finance Tracker Team
"""

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from database import get_db
from main import app, chat_rate_limiter
from models import Transaction
from schemas import ChatResponse
from services.user_service import ADMIN_EMAIL, ADMIN_PASSWORD, UserService


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    chat_rate_limiter.hits.clear()
    # No context manager: skip the lifespan so the real database is untouched
    yield TestClient(app)
    app.dependency_overrides.clear()


def register_and_login(client, email="bob@example.com", password="hunter22"):
    response = client.post("/auth/register", json={"name": "Bob", "email": email, "password": password})
    assert response.status_code == 201
    token = client.post("/auth/login", json={"email": email, "password": password}).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(client):
    return register_and_login(client)


@pytest.fixture
def admin_headers(client, session_factory):
    db = session_factory()
    try:
        UserService(db).initialize_admin()
    finally:
        db.close()
    token = client.post(
        "/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    ).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def add_transaction(client, headers, **overrides):
    payload = {
        "type": "expense",
        "amount": 50,
        "description": "Groceries",
        "category": "Food & Dining",
        "date": "2026-10-10T12:00:00",
    }
    payload.update(overrides)
    response = client.post("/transactions", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()


class TestSystem:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "connected"}

    def test_metrics(self, client):
        assert client.get("/metrics").status_code == 200


class TestAuth:

    def test_register_hides_password(self, client):
        response = client.post(
            "/auth/register", json={"name": "Bob", "email": "bob@example.com", "password": "hunter22"}
        )

        body = response.json()
        assert response.status_code == 201
        assert body["role"] == "user"
        assert "password" not in body

    def test_duplicate_registration(self, client):
        register_and_login(client)

        response = client.post(
            "/auth/register", json={"name": "Bob", "email": "bob@example.com", "password": "hunter22"}
        )

        assert response.status_code == 409

    def test_bad_login(self, client):
        register_and_login(client)

        response = client.post("/auth/login", json={"email": "bob@example.com", "password": "wrong"})

        assert response.status_code == 401

    def test_protected_route_needs_token(self, client):
        assert client.get("/transactions").status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/transactions", headers={"Authorization": "Bearer nonsense"})

        assert response.status_code == 401

    def test_me(self, client, auth_headers):
        assert client.get("/me", headers=auth_headers).json()["email"] == "bob@example.com"

    def test_update_me_requires_current_password(self, client, auth_headers):
        response = client.put("/me", json={"current_password": "wrong", "name": "Rob"}, headers=auth_headers)

        assert response.status_code == 400

    def test_update_me(self, client, auth_headers):
        response = client.put(
            "/me", json={"current_password": "hunter22", "name": "Rob"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Rob"


class TestTransactions:

    def test_create_and_list(self, client, auth_headers):
        created = add_transaction(client, auth_headers)

        listed = client.get("/transactions", headers=auth_headers).json()

        assert [t["id"] for t in listed] == [created["id"]]
        assert listed[0]["category"] == "Food & Dining"

    def test_rejects_non_positive_amount(self, client, auth_headers):
        response = client.post(
            "/transactions",
            json={"type": "expense", "amount": 0, "description": "x", "category": "y"},
            headers=auth_headers,
        )

        assert response.status_code == 422

    def test_update(self, client, auth_headers):
        created = add_transaction(client, auth_headers)

        response = client.put(
            f"/transactions/{created['id']}",
            json={"type": "expense", "amount": 75, "description": "Big shop", "category": "Shopping"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["amount"] == 75
        assert response.json()["date"] == created["date"]

    def test_delete(self, client, auth_headers):
        created = add_transaction(client, auth_headers)

        response = client.delete(f"/transactions/{created['id']}", headers=auth_headers)

        assert response.status_code == 200
        assert client.get("/transactions", headers=auth_headers).json() == []

    def test_cannot_touch_other_users_transactions(self, client, auth_headers):
        created = add_transaction(client, auth_headers)
        other = register_and_login(client, email="eve@example.com")

        assert client.delete(f"/transactions/{created['id']}", headers=other).status_code == 404
        assert len(client.get("/transactions", headers=auth_headers).json()) == 1

    def test_stats(self, client, auth_headers):
        add_transaction(client, auth_headers, type="income", amount=1000, category="Salary")
        add_transaction(client, auth_headers, amount=250)

        stats = client.get("/transactions/stats", headers=auth_headers).json()

        assert stats == {"total_income": 1000, "total_expenses": 250, "savings": 750}

    def test_export(self, client, auth_headers):
        add_transaction(client, auth_headers)

        response = client.get("/transactions/export", headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        assert response.text.splitlines()[1] == "expense,50.0,Groceries,Food & Dining,2026-10-10"

    def test_import(self, client, auth_headers):
        content = b"type,amount,description,category,date\nincome,300,Gig,Freelancing/Side Hustles,2026-10-01\n"

        response = client.post(
            "/transactions/import",
            files={"file": ("data.csv", content, "text/csv")},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"imported": 1}
        assert client.get("/transactions", headers=auth_headers).json()[0]["description"] == "Gig"

    def test_import_rejects_invalid_rows(self, client, auth_headers):
        content = b"type,amount,description,category,date\nexpense,abc,x,y,2026-10-01\n"

        response = client.post(
            "/transactions/import",
            files={"file": ("data.csv", content, "text/csv")},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert "Row 2" in response.json()["detail"]

    def test_import_rejects_non_csv(self, client, auth_headers):
        response = client.post(
            "/transactions/import",
            files={"file": ("data.txt", b"hello", "text/plain")},
            headers=auth_headers,
        )

        assert response.status_code == 400

    def test_categories(self, client):
        body = client.get("/categories").json()

        assert "Salary" in body["income"]
        assert "Housing" in body["expense"]


class TestChat:

    def test_add_returns_action_and_transaction(self, client, auth_headers):
        response = client.post(
            "/chat", json={"message": "Add expense of $50 for groceries"}, headers=auth_headers
        )

        body = response.json()
        assert response.status_code == 200
        assert body["action"] == "add"
        assert body["data"]["amount"] == 50
        assert body["data"]["category"] == "Food & Dining"
        assert len(client.get("/transactions", headers=auth_headers).json()) == 1

    def test_delete_last(self, client, auth_headers):
        add_transaction(client, auth_headers, description="Older")
        newest = add_transaction(client, auth_headers, description="Newer")

        body = client.post(
            "/chat", json={"message": "Delete last transaction"}, headers=auth_headers
        ).json()

        assert body["action"] == "delete"
        assert body["data"] == {"id": newest["id"]}
        remaining = client.get("/transactions", headers=auth_headers).json()
        assert [t["description"] for t in remaining] == ["Older"]

    def test_query_has_no_action(self, client, auth_headers):
        body = client.post(
            "/chat", json={"message": "What's my balance?"}, headers=auth_headers
        ).json()

        assert "balance" in body["text"].lower()
        assert "action" not in body
        assert "data" not in body

    def test_empty_message_rejected(self, client, auth_headers):
        assert client.post("/chat", json={"message": ""}, headers=auth_headers).status_code == 422

    def test_rate_limit(self, client, auth_headers):
        for _ in range(chat_rate_limiter.limit):
            assert client.post("/chat", json={"message": "help"}, headers=auth_headers).status_code == 200

        response = client.post("/chat", json={"message": "help"}, headers=auth_headers)

        assert response.status_code == 429

    def test_response_action_is_add_or_delete_only(self):
        with pytest.raises(ValidationError):
            ChatResponse(text="ok", action="update")

    def test_prompts(self, client, auth_headers):
        prompts = client.get("/chat/prompts", headers=auth_headers).json()["prompts"]

        assert "Delete last transaction" in prompts


class TestAdmin:

    def test_regular_user_is_forbidden(self, client, auth_headers):
        assert client.get("/admin/users", headers=auth_headers).status_code == 403

    def test_list_users(self, client, admin_headers):
        register_and_login(client)

        users = client.get("/admin/users", headers=admin_headers).json()

        assert [u["email"] for u in users] == ["bob@example.com"]

    def test_user_transactions(self, client, admin_headers, auth_headers):
        add_transaction(client, auth_headers, type="income", amount=500, category="Salary")
        add_transaction(client, auth_headers, amount=120, category="Housing")
        bob_id = client.get("/me", headers=auth_headers).json()["id"]

        body = client.get(f"/admin/users/{bob_id}/transactions", headers=admin_headers).json()

        assert body["total_transactions"] == 2
        assert body["balance"] == 380
        assert body["income_categories"] == {"Salary": 500}
        assert body["expense_categories"] == {"Housing": 120}

    def test_delete_user(self, client, admin_headers, auth_headers):
        add_transaction(client, auth_headers)
        bob_id = client.get("/me", headers=auth_headers).json()["id"]

        assert client.delete(f"/admin/users/{bob_id}", headers=admin_headers).status_code == 200
        assert client.get("/admin/users", headers=admin_headers).json() == []

    def test_cannot_delete_admin(self, client, admin_headers):
        admin_id = client.get("/me", headers=admin_headers).json()["id"]

        assert client.delete(f"/admin/users/{admin_id}", headers=admin_headers).status_code == 400

    def test_deleted_users_token_cannot_write(self, client, admin_headers, auth_headers, session_factory):
        bob_id = client.get("/me", headers=auth_headers).json()["id"]
        client.delete(f"/admin/users/{bob_id}", headers=admin_headers)

        chat = client.post("/chat", json={"message": "Add expense of $50 for groceries"}, headers=auth_headers)
        direct = client.post(
            "/transactions",
            json={"type": "expense", "amount": 5, "description": "x", "category": "y"},
            headers=auth_headers,
        )

        assert chat.status_code == 401
        assert direct.status_code == 401
        db = session_factory()
        try:
            assert db.query(Transaction).count() == 0
        finally:
            db.close()
