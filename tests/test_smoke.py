import pytest

from app.wellness import create_app

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, login


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_api_health_checks_database(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json == {"ok": True, "database": "ok"}


def test_anonymous_is_unauthorized(client):
    r = client.get("/api/auth/user")
    assert r.status_code == 401
    assert r.json["message"] == "Authentication required"


def test_unknown_api_route_is_json_404(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert "message" in r.json


def test_csrf_enforced_when_enabled(app):
    app.config["CSRF_ENABLED"] = True
    c = app.test_client()

    # Login is exempt: it runs before a session exists.
    assert login(c, ADMIN_EMAIL, ADMIN_PASSWORD).status_code == 200

    r = c.post("/api/tasks", json={"title": "Stretch"})
    assert r.status_code == 400
    assert r.json["message"] == "CSRF token missing or invalid."

    token = c.get("/api/auth/csrf").json["csrfToken"]
    r = c.post("/api/tasks", json={"title": "Stretch"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 201


def test_production_refuses_sqlite(app):
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app({"ENV": "production", "SECRET_KEY": "strong", "QR_SECRET": "strong"})
