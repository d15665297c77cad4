from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.wellness.db import db_session
from app.wellness.errors import ApiError, not_found
from app.wellness.modules.companies.models import Company
from app.wellness.modules.companies.service import (
    company_for_user,
    create_company,
    leaderboard,
    update_company,
)
from app.wellness.rbac import require_login, user_has_permission
from app.wellness.utils import json_payload

bp = Blueprint("companies", __name__)


@bp.get("/api/companies")
@require_login
def companies_list():
    s = db_session()
    companies = s.query(Company).order_by(Company.name.asc()).all()
    return jsonify([c.to_dict() for c in companies])


@bp.get("/api/companies/<int:company_id>")
@require_login
def companies_detail(company_id: int):
    company = db_session().get(Company, company_id)
    if not company:
        raise not_found("Company")
    return jsonify(company.to_dict())


@bp.post("/api/companies")
@require_login
def companies_create():
    s = db_session()
    company = create_company(s, json_payload(), owner=g.current_user)
    s.commit()
    return jsonify(company.to_dict()), 201


@bp.patch("/api/companies/<int:company_id>")
@require_login
def companies_update(company_id: int):
    s = db_session()
    company = s.get(Company, company_id)
    if not company:
        raise not_found("Company")
    if company.user_id != g.current_user.id:
        raise ApiError(403, "You can only update your own company")
    update_company(s, company, json_payload(), g.current_user)
    s.commit()
    return jsonify(company.to_dict())


@bp.get("/api/companies/<int:company_id>/proofs")
@require_login
def companies_proofs(company_id: int):
    from app.wellness.modules.tasks.models import TaskProof

    s = db_session()
    company = s.get(Company, company_id)
    if not company:
        raise not_found("Company")
    user = g.current_user
    own = company_for_user(s, user)
    if not user_has_permission(user, "proofs.review") and (own is None or own.id != company.id):
        raise ApiError(403, "Access denied")
    proofs = (
        s.query(TaskProof)
        .filter(TaskProof.company_id == company.id)
        .order_by(TaskProof.submitted_at.desc(), TaskProof.id.desc())
        .all()
    )
    return jsonify([p.to_dict() for p in proofs])


@bp.get("/api/leaderboard")
@require_login
def leaderboard_view():
    return jsonify(leaderboard(db_session()))
