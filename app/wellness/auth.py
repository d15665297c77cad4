from __future__ import annotations

import secrets
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.wellness.audit import record_event
from app.wellness.db import db_session
from app.wellness.errors import ApiError, bad_request, validation_failed
from app.wellness.mail import MailError, send_password_reset_email
from app.wellness.models import PasswordResetToken, User
from app.wellness.rbac import ensure_role, require_login
from app.wellness.security import ensure_csrf_token
from app.wellness.utils import clean_str, is_valid_email, json_payload

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_RESET_TOKEN_TTL = timedelta(hours=1)
MIN_PASSWORD_LENGTH = 8

_RESET_SENT_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def reset_rate_limits() -> None:
    _login_attempts.clear()


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz", "/api/health")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def validate_signup_payload(payload: dict) -> list[str]:
    errors = []
    email = clean_str(payload.get("email"))
    password = payload.get("password") or ""
    if not is_valid_email(email):
        errors.append("Invalid email address")
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append("Password must be at least 8 characters")
    if password != (payload.get("confirmPassword") or ""):
        errors.append("Passwords don't match")
    if len(clean_str(payload.get("companyName")) or "") < 2:
        errors.append("Company name is required")
    if len(clean_str(payload.get("contactPersonName")) or "") < 2:
        errors.append("Contact person name is required")
    if len(clean_str(payload.get("phone")) or "") < 10:
        errors.append("Valid phone number is required")
    return errors


def _split_name(full_name: str) -> tuple[str, str]:
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


@bp.get("/api/auth/csrf")
def csrf_token():
    return jsonify({"csrfToken": ensure_csrf_token()})


@bp.post("/api/auth/signup")
def signup():
    from app.wellness.modules.companies.service import create_company

    payload = json_payload()
    errors = validate_signup_payload(payload)
    if errors:
        raise validation_failed(errors)

    s = db_session()
    email = clean_str(payload.get("email")).lower()
    if s.query(User).filter(User.email == email).one_or_none():
        raise bad_request("Email already registered")

    contact_name = clean_str(payload.get("contactPersonName"))
    first, last = _split_name(contact_name)
    now = datetime.utcnow()
    user = User(
        email=email,
        password_hash=hash_password(payload["password"]),
        first_name=first,
        last_name=last,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    user.roles.append(ensure_role(s, "company"))
    s.add(user)
    s.flush()

    create_company(
        s,
        {
            "name": payload.get("companyName"),
            "contactPersonName": contact_name,
            "email": email,
            "phone": payload.get("phone"),
        },
        owner=user,
    )
    record_event(s, actor=user, action="auth.signup", entity_type="User", entity_id=str(user.id))
    s.commit()
    current_app.logger.info("Company account created email=%s", email)
    return jsonify({"success": True, "message": "Account created successfully"}), 201


@bp.post("/api/auth/login")
def login():
    payload = json_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if not is_valid_email(email) or not password:
        raise bad_request("Email and password are required")

    if _check_rate_limit(ip):
        raise ApiError(429, "Too many login attempts. Please wait 5 minutes.")

    _record_attempt(ip)

    s = db_session()
    try:
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not user.password_hash or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            raise ApiError(401, "Invalid email or password")

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
    except ApiError:
        raise
    except Exception:
        current_app.logger.exception("Login crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise
    return jsonify({"success": True, "message": "Login successful", "user": user.to_dict()})


@bp.post("/api/logout")
@bp.post("/api/auth/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return jsonify({"success": True, "message": "Logged out successfully"})


@bp.post("/api/auth/password-reset-request")
def password_reset_request():
    payload = json_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    if not is_valid_email(email):
        raise bad_request("Invalid email address")

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    # Same answer whether or not the account exists.
    if not user or not user.is_active:
        return jsonify({"success": True, "message": _RESET_SENT_MESSAGE})

    token = PasswordResetToken(
        user_id=user.id,
        token=secrets.token_urlsafe(32),
        expires_at=datetime.utcnow() + _RESET_TOKEN_TTL,
        used=False,
    )
    s.add(token)
    record_event(s, actor=user, action="auth.password_reset_requested", entity_type="User", entity_id=str(user.id))
    s.commit()

    reset_url = f"{current_app.config['PUBLIC_BASE_URL']}/reset-password?token={token.token}"
    try:
        send_password_reset_email(user.email, user.display_name, reset_url)
    except MailError:
        current_app.logger.exception("Failed to send password reset email to %s", user.email)
    return jsonify({"success": True, "message": _RESET_SENT_MESSAGE})


@bp.post("/api/auth/password-reset-confirm")
def password_reset_confirm():
    payload = json_payload()
    raw_token = clean_str(payload.get("token"))
    new_password = payload.get("newPassword") or ""
    if not raw_token:
        raise bad_request("Reset token is required")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise bad_request("Password must be at least 8 characters")

    s = db_session()
    token = s.query(PasswordResetToken).filter(PasswordResetToken.token == raw_token).one_or_none()
    if not token or not token.is_usable():
        raise bad_request("Invalid or expired reset token")

    user = s.get(User, token.user_id)
    if not user:
        raise bad_request("User not found")

    user.password_hash = hash_password(new_password)
    user.updated_at = datetime.utcnow()
    token.used = True
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify(
        {
            "success": True,
            "message": "Password has been reset successfully. You can now log in with your new password.",
        }
    )


@bp.get("/api/auth/user")
@require_login
def me():
    from app.wellness.modules.companies.service import company_for_user

    user: User = g.current_user
    company = company_for_user(db_session(), user)
    body = user.to_dict()
    body.update({"hasCompany": company is not None, "companyId": company.id if company else None})
    return jsonify(body)
