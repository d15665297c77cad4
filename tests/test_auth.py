from app.wellness.db import session_scope
from app.wellness.models import PasswordResetToken

from conftest import OWNER_EMAIL, OWNER_PASSWORD, login


def _signup_payload(**overrides):
    payload = {
        "email": "Hello@Globex.test",
        "password": "globex-pass-1",
        "confirmPassword": "globex-pass-1",
        "companyName": "Globex",
        "contactPersonName": "Hank Scorpio",
        "phone": "5559876543",
    }
    payload.update(overrides)
    return payload


def test_signup_creates_user_and_company(client):
    r = client.post("/api/auth/signup", json=_signup_payload())
    assert r.status_code == 201
    assert r.json["success"] is True

    r = login(client, "hello@globex.test", "globex-pass-1")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "hello@globex.test"
    assert r.json["user"]["isAdmin"] is False

    me = client.get("/api/auth/user").json
    assert me["hasCompany"] is True
    assert me["firstName"] == "Hank"
    assert me["lastName"] == "Scorpio"

    companies = client.get("/api/companies").json
    globex = next(c for c in companies if c["name"] == "Globex")
    assert globex["id"] == me["companyId"]
    assert globex["totalPoints"] == 0


def test_signup_validation_errors(client):
    r = client.post("/api/auth/signup", json=_signup_payload(confirmPassword="different", phone="123"))
    assert r.status_code == 400
    assert "Passwords don't match" in r.json["errors"]
    assert "Valid phone number is required" in r.json["errors"]


def test_signup_duplicate_email(client):
    r = client.post("/api/auth/signup", json=_signup_payload(email=OWNER_EMAIL))
    assert r.status_code == 400
    assert r.json["message"] == "Email already registered"


def test_login_wrong_password(client):
    r = login(client, OWNER_EMAIL, "nope-nope-nope")
    assert r.status_code == 401
    assert r.json["message"] == "Invalid email or password"


def test_login_rate_limited_after_five_attempts(client):
    for _ in range(5):
        assert login(client, OWNER_EMAIL, "wrong-password").status_code == 401
    r = login(client, OWNER_EMAIL, OWNER_PASSWORD)
    assert r.status_code == 429


def test_logout_clears_session(company_client):
    assert company_client.get("/api/auth/user").status_code == 200
    r = company_client.post("/api/auth/logout")
    assert r.status_code == 200
    assert company_client.get("/api/auth/user").status_code == 401


def test_password_reset_flow(app, client, outbox):
    r = client.post("/api/auth/password-reset-request", json={"email": OWNER_EMAIL})
    assert r.status_code == 200
    assert len(outbox) == 1
    assert outbox[0]["To"] == OWNER_EMAIL

    with session_scope(app) as s:
        token = s.query(PasswordResetToken).one().token
    assert f"http://wellness.test/reset-password?token={token}" in outbox[0].get_body(("plain",)).get_content()

    r = client.post("/api/auth/password-reset-confirm", json={"token": token, "newPassword": "brand-new-pass"})
    assert r.status_code == 200
    assert login(client, OWNER_EMAIL, "brand-new-pass").status_code == 200

    # Tokens are single use.
    r = client.post("/api/auth/password-reset-confirm", json={"token": token, "newPassword": "another-pass-9"})
    assert r.status_code == 400
    assert r.json["message"] == "Invalid or expired reset token"


def test_password_reset_unknown_email_is_silent(client, outbox):
    r = client.post("/api/auth/password-reset-request", json={"email": "ghost@nowhere.test"})
    assert r.status_code == 200
    assert "If an account with that email exists" in r.json["message"]
    assert outbox == []


def test_password_reset_rejects_short_password(client):
    r = client.post("/api/auth/password-reset-confirm", json={"token": "x", "newPassword": "short"})
    assert r.status_code == 400
