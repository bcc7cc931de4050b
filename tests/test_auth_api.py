from conftest import PASSWORD, Seeder

API = "/api/v1/auth"


def test_register_login_me_logout(client):
    resp = client.post(
        f"{API}/register",
        json={"name": "Nia", "email": "nia@example.com", "password": "s3cret!"},
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["user"]["role"] == "STUDENT"

    login = client.post(f"{API}/login", json={"email": "nia@example.com", "password": "s3cret!"})
    assert login.status_code == 200
    assert login.json()["access_token"]
    assert "access_token" in login.cookies

    me = client.get(f"{API}/me")
    assert me.status_code == 200
    assert me.json()["email"] == "nia@example.com"
    assert "password" not in me.json()

    client.get(f"{API}/logout")
    client.cookies.clear()
    assert client.get(f"{API}/me").status_code == 401


def test_duplicate_email(client, seed):
    seed.user("Dup")
    resp = client.post(
        f"{API}/register", json={"name": "Dup", "email": "dup@example.com", "password": "abcdef"}
    )
    assert resp.status_code == 409


def test_wrong_password_and_suspended_account(client, seed):
    seed.user("Kim")
    seed.user("Lou", status="SUSPENDED")

    wrong = client.post(f"{API}/login", json={"email": "kim@example.com", "password": "nope"})
    assert wrong.status_code == 401

    suspended = client.post(f"{API}/login", json={"email": "lou@example.com", "password": PASSWORD})
    assert suspended.status_code == 403


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Request-ID"] == "abc123"
    assert client.get("/health").headers["X-Request-ID"]


def test_error_body_carries_request_id(client):
    resp = client.get(f"{API}/me", headers={"X-Request-ID": "req-42"})
    assert resp.status_code == 401
    body = resp.json()
    assert body["request_id"] == "req-42"
    assert body["error_code"] == "UNAUTHORIZED"
    assert body["errors"] == []


def test_unexpected_failure_is_structured_500(settings, monkeypatch):
    from fastapi.testclient import TestClient

    from app.main import create_app
    from app.services.shares.doubts import DoubtService

    async def broken(self, doubt_id):
        raise RuntimeError("store is down")

    monkeypatch.setattr(DoubtService, "get_thread", broken)
    with TestClient(create_app(settings), raise_server_exceptions=False) as c:
        seed = Seeder(c)
        headers = {**seed.headers(seed.user("Ivy")), "X-Request-ID": "req-500"}
        resp = c.get("/api/v1/doubts/1", headers=headers)

    assert resp.status_code == 500
    assert resp.json() == {
        "success": False,
        "status": 500,
        "error_code": "INTERNAL_ERROR",
        "message": "Internal server error",
        "errors": [],
        "request_id": "req-500",
    }
