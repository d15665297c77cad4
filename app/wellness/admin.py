from __future__ import annotations

from datetime import date, datetime, time, timedelta

from flask import Blueprint, current_app, g, jsonify, request

from app.wellness.audit import record_event
from app.wellness.auth import MIN_PASSWORD_LENGTH, hash_password
from app.wellness.db import db_session
from app.wellness.errors import bad_request, not_found, validation_failed
from app.wellness.mail import MailError, send_admin_welcome_email, send_company_removal_email
from app.wellness.models import AuditEvent, Role, User
from app.wellness.modules.companies.models import Company
from app.wellness.modules.tasks.models import TaskProof
from app.wellness.rbac import ensure_role, require_permission
from app.wellness.utils import clean_str, is_valid_email, json_payload, parse_int, require_fields

bp = Blueprint("admin", __name__)

AUDIT_DEFAULT_LIMIT = 200
AUDIT_MAX_LIMIT = 500


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _user_summary(user: User | None) -> dict | None:
    if user is None:
        return None
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
    }


# ---------- Companies ----------
@bp.get("/companies")
@require_permission("companies.manage")
def companies_list():
    s = db_session()
    companies = s.query(Company).order_by(Company.name.asc()).all()
    rows = []
    for company in companies:
        row = company.to_dict()
        row["user"] = _user_summary(company.user)
        rows.append(row)
    return jsonify(rows)


@bp.patch("/companies/<int:company_id>/password")
@require_permission("companies.manage")
def companies_password(company_id: int):
    payload = json_payload()
    password = payload.get("password") or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise bad_request("Password must be at least 8 characters")

    s = db_session()
    company = s.get(Company, company_id)
    if not company or not company.user_id:
        raise not_found("Company")
    user = s.get(User, company.user_id)
    if not user:
        raise not_found("User")

    user.password_hash = hash_password(password)
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=g.current_user,
        action="company.password_reset",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"company_id": company.id},
    )
    s.commit()
    return jsonify({"success": True, "message": "Password updated successfully"})


@bp.delete("/companies/<int:company_id>")
@require_permission("companies.manage")
def companies_delete(company_id: int):
    """
    Remove a company with its proofs and its owner account.
    The removal notice is best-effort: a mail failure is logged only.
    """
    s = db_session()
    company = s.get(Company, company_id)
    if not company:
        raise not_found("Company")

    company_name, company_email = company.name, company.email
    owner = s.get(User, company.user_id) if company.user_id else None

    proofs_deleted = s.query(TaskProof).filter(TaskProof.company_id == company.id).delete(synchronize_session=False)
    s.delete(company)
    users_deleted = 0
    # Never remove an administrator account along with a company.
    if owner is not None and not owner.is_admin:
        s.delete(owner)
        users_deleted = 1

    deleted = {"proofs": proofs_deleted, "company": 1, "users": users_deleted}
    record_event(
        s,
        actor=g.current_user,
        action="company.delete",
        entity_type="Company",
        entity_id=str(company_id),
        metadata={"name": company_name, "email": company_email, "deleted": deleted},
    )
    s.commit()
    current_app.logger.info("Company removed id=%s deleted=%s", company_id, deleted)

    try:
        send_company_removal_email(company_email, company_name, deleted)
    except MailError as e:
        current_app.logger.warning("Failed to send company removal notification to %s: %s", company_email, e)

    return jsonify(
        {
            "success": True,
            "message": f"Company {company_name} removed successfully",
            "deletedData": deleted,
        }
    )


# ---------- Administrators ----------
@bp.get("/admins")
@require_permission("admins.manage")
def admins_list():
    s = db_session()
    admins = (
        s.query(User)
        .join(User.roles)
        .filter(Role.key == "admin")
        .order_by(User.created_at.asc(), User.id.asc())
        .all()
    )
    return jsonify(
        [
            {
                "id": u.id,
                "email": u.email,
                "firstName": u.first_name,
                "lastName": u.last_name,
                "createdAt": u.created_at.isoformat() if u.created_at else None,
                "updatedAt": u.updated_at.isoformat() if u.updated_at else None,
            }
            for u in admins
        ]
    )


@bp.post("/admins")
@require_permission("admins.manage")
def admins_create():
    payload = json_payload()
    errors = require_fields(
        payload,
        {"email": "Email", "firstName": "First name", "lastName": "Last name", "password": "Password"},
    )
    if errors:
        raise validation_failed(["All fields are required"] + errors)
    email = clean_str(payload.get("email")).lower()
    password = payload.get("password") or ""
    if not is_valid_email(email):
        raise bad_request("Invalid email address")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise bad_request("Password must be at least 8 characters")

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        raise bad_request("Email already registered")

    now = datetime.utcnow()
    admin = User(
        email=email,
        password_hash=hash_password(password),
        first_name=clean_str(payload.get("firstName")),
        last_name=clean_str(payload.get("lastName")),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    admin.roles.append(ensure_role(s, "admin"))
    s.add(admin)
    s.flush()
    record_event(
        s,
        actor=g.current_user,
        action="admin.create",
        entity_type="User",
        entity_id=str(admin.id),
        metadata={"email": email},
    )
    s.commit()

    try:
        send_admin_welcome_email(email, admin.display_name, password)
    except MailError as e:
        current_app.logger.warning("Failed to send welcome email to %s: %s", email, e)

    return (
        jsonify(
            {
                "success": True,
                "message": "Administrator created successfully",
                "admin": _user_summary(admin),
            }
        ),
        201,
    )


# ---------- Audit ----------
@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Most recent audit events, newest first. Filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    - limit (default 200, capped at 500)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")
    limit = parse_int(request.args.get("limit"), default=AUDIT_DEFAULT_LIMIT)
    limit = max(1, min(limit, AUDIT_MAX_LIMIT))

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
    return jsonify([e.to_dict() for e in events])
