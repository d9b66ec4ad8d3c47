import importlib
import os
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from models import utcnow


@pytest.fixture
def client(tmp_path, request):
    # Create a unique per-test DB and ensure api picks it up at import time
    db_file = str(tmp_path / f"api_test_{request.node.name}.db")
    os.environ["LIBRARY_DB_FILE"] = db_file

    import api as api_module
    # Reload api so its module-level storage uses the test-specific DB
    importlib.reload(api_module)

    test_client = TestClient(api_module.app)
    try:
        yield test_client
    finally:
        os.environ.pop("LIBRARY_DB_FILE", None)


def _login(client, name, email, password="secret123"):
    """Register an account and return bearer headers for it."""
    response = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    # Drop the login cookie so each request is authenticated by its own headers
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['token']}"}


def _due(days=7):
    return (utcnow() + timedelta(days=days)).isoformat()


@pytest.fixture
def admin(client):
    return _login(client, "Henry Admin", "admin@example.com")


@pytest.fixture
def book_id(client, admin):
    response = client.post("/api/admin/books", headers=admin,
                           json={"title": "Dom Casmurro", "author": "Machado de Assis", "quantity": 1})
    assert response.status_code == 201
    return response.json()["id"]


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_register_and_login(client):
    first = client.post("/api/auth/register",
                        json={"name": "Henry Admin", "email": "admin@example.com", "password": "secret123"})
    second = client.post("/api/auth/register",
                         json={"name": "Maria Reader", "email": "maria@example.com", "password": "secret123"})
    assert first.json()["is_admin"] is True
    assert second.json()["is_admin"] is False
    assert "password" not in second.json() and "password_hash" not in second.json()

    duplicate = client.post("/api/auth/register",
                            json={"name": "Maria Again", "email": "maria@example.com", "password": "secret123"})
    assert duplicate.status_code == 400

    bad_email = client.post("/api/auth/register", json={"name": "Nobody", "email": "nope", "password": "secret123"})
    assert bad_email.status_code == 422

    wrong = client.post("/api/auth/login", json={"email": "maria@example.com", "password": "bad-password"})
    assert wrong.status_code == 401

    ok = client.post("/api/auth/login", json={"email": "maria@example.com", "password": "secret123"})
    assert ok.status_code == 200
    assert ok.json()["token"]
    assert "jwt" in ok.cookies


def test_login_cookie_authenticates_requests(client):
    client.post("/api/auth/register",
                json={"name": "Maria Reader", "email": "maria@example.com", "password": "secret123"})
    client.post("/api/auth/login", json={"email": "maria@example.com", "password": "secret123"})

    response = client.get("/api/users/me")
    assert response.status_code == 200
    assert response.json()["email"] == "maria@example.com"

    refreshed = client.get("/api/auth/refresh")
    assert refreshed.status_code == 200
    assert refreshed.json()["token"]


def test_token_in_query_string(client):
    headers = _login(client, "Maria Reader", "maria@example.com")
    token = headers["Authorization"].split(" ", 1)[1]
    assert client.get(f"/api/users/me?token={token}").status_code == 200


def test_loans_require_authentication(client):
    assert client.get("/api/loans").status_code == 401
    assert client.get("/api/loans", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_admin_routes_require_admin(client, admin):
    reader = _login(client, "Maria Reader", "maria@example.com")
    payload = {"title": "Iracema", "author": "Jose de Alencar", "quantity": 2}
    assert client.post("/api/admin/books", headers=reader, json=payload).status_code == 403
    assert client.get("/api/admin/users", headers=reader).status_code == 403
    assert client.post("/api/admin/books", json=payload).status_code == 401


def test_public_book_listing(client, book_id):
    listing = client.get("/api/books")
    assert listing.status_code == 200
    assert [b["id"] for b in listing.json()] == [book_id]

    book = client.get(f"/api/books/{book_id}").json()
    assert book["quantity"] == 1
    assert book["available"] == 1
    assert client.get("/api/books/999").status_code == 404


def test_loan_lifecycle(client, admin, book_id):
    alice = _login(client, "Alice Reader", "alice@example.com")
    bob = _login(client, "Bob Reader", "bob@example.com")

    created = client.post("/api/loans", headers=alice, json={"book_id": book_id, "return_date": _due()})
    assert created.status_code == 201
    loan = created.json()
    assert loan["book_title"] == "Dom Casmurro"
    assert loan["user_name"] == "Alice Reader"
    assert loan["is_returned"] is False
    assert loan["returned_at"] is None
    assert client.get(f"/api/books/{book_id}").json()["available"] == 0

    refused = client.post("/api/loans", headers=bob, json={"book_id": book_id, "return_date": _due()})
    assert refused.status_code == 400

    assert client.get(f"/api/loans/{loan['id']}", headers=bob).status_code == 400
    assert client.get(f"/api/loans/{loan['id']}", headers=admin).status_code == 400
    assert client.get(f"/api/loans/{loan['id']}", headers=alice).status_code == 200

    returned = client.put(f"/api/loans/{loan['id']}/return", headers=alice)
    assert returned.status_code == 200
    body = returned.json()
    assert body["message"] == "Book returned successfully"
    assert body["loan"]["is_returned"] is True
    assert body["loan"]["returned_at"] is not None
    assert client.get(f"/api/books/{book_id}").json()["available"] == 1

    again = client.put(f"/api/loans/{loan['id']}/return", headers=alice)
    assert again.status_code == 400

    mine = client.get("/api/loans", headers=alice).json()
    assert [l["id"] for l in mine] == [loan["id"]]
    assert client.get("/api/loans", headers=bob).json() == []


def test_loan_validation_and_missing_resources(client, book_id):
    alice = _login(client, "Alice Reader", "alice@example.com")

    past = client.post("/api/loans", headers=alice, json={"book_id": book_id, "return_date": _due(-1)})
    assert past.status_code == 400
    assert client.get(f"/api/books/{book_id}").json()["available"] == 1

    assert client.post("/api/loans", headers=alice, json={"book_id": 999, "return_date": _due()}).status_code == 404
    assert client.post("/api/loans", headers=alice, json={"book_id": book_id}).status_code == 422
    assert client.get("/api/loans/999", headers=alice).status_code == 404
    assert client.put("/api/loans/999/return", headers=alice).status_code == 404


def test_admin_manages_books(client, admin, book_id):
    updated = client.put(f"/api/admin/books/{book_id}", headers=admin, json={"quantity": 3, "title": "Dom Casmurro (ed. 2)"})
    assert updated.status_code == 200
    assert updated.json()["quantity"] == 3
    assert updated.json()["available"] == 3
    assert updated.json()["title"] == "Dom Casmurro (ed. 2)"

    assert client.put(f"/api/admin/books/{book_id}", headers=admin, json={"quantity": 0}).status_code == 422
    assert client.put("/api/admin/books/999", headers=admin, json={"title": "x"}).status_code == 404

    assert client.delete(f"/api/admin/books/{book_id}", headers=admin).status_code == 200
    assert client.delete(f"/api/admin/books/{book_id}", headers=admin).status_code == 404


def test_admin_manages_users(client, admin):
    _login(client, "Maria Reader", "maria@example.com")
    listing = client.get("/api/admin/users", headers=admin).json()
    maria = next(u for u in listing if u["email"] == "maria@example.com")

    promoted = client.put(f"/api/admin/users/{maria['id']}/promote", headers=admin)
    assert promoted.status_code == 200
    assert promoted.json()["user"]["is_admin"] is True

    renamed = client.put(f"/api/admin/users/{maria['id']}", headers=admin, json={"name": "Maria Souza"})
    assert renamed.json()["name"] == "Maria Souza"

    assert client.delete(f"/api/admin/users/{maria['id']}", headers=admin).status_code == 200
    assert client.get(f"/api/admin/users/{maria['id']}", headers=admin).status_code == 404


def test_update_me(client):
    headers = _login(client, "Maria Reader", "maria@example.com")
    response = client.put("/api/users/me", headers=headers, json={"name": "Maria Souza", "password": "newsecret"})
    assert response.status_code == 200
    assert response.json()["name"] == "Maria Souza"

    relogin = client.post("/api/auth/login", json={"email": "maria@example.com", "password": "newsecret"})
    assert relogin.status_code == 200


def test_records_with_loan_history_cannot_be_deleted(client, admin, book_id):
    alice = _login(client, "Alice Reader", "alice@example.com")
    alice_id = client.get("/api/users/me", headers=alice).json()["id"]
    loan = client.post("/api/loans", headers=alice, json={"book_id": book_id, "return_date": _due()}).json()
    client.put(f"/api/loans/{loan['id']}/return", headers=alice)

    book_delete = client.delete(f"/api/admin/books/{book_id}", headers=admin)
    assert book_delete.status_code == 400
    assert "loan history" in book_delete.json()["detail"]

    user_delete = client.delete(f"/api/admin/users/{alice_id}", headers=admin)
    assert user_delete.status_code == 400
    assert "loan history" in user_delete.json()["detail"]

    assert client.get(f"/api/books/{book_id}").status_code == 200
    assert client.get(f"/api/admin/users/{alice_id}", headers=admin).status_code == 200


def test_blank_name_is_rejected(client):
    response = client.post("/api/auth/register",
                           json={"name": "     ", "email": "blank@example.com", "password": "secret123"})
    assert response.status_code == 400
    headers = _login(client, "Maria Reader", "maria@example.com")
    assert client.put("/api/users/me", headers=headers, json={"name": "    "}).status_code == 400
    assert client.get("/api/users/me", headers=headers).json()["name"] == "Maria Reader"
