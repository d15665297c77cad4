from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.wellness.db import db_session
from app.wellness.errors import bad_request, not_found
from app.wellness.modules.companies.service import company_for_user
from app.wellness.modules.tasks.models import Task, TaskProof
from app.wellness.modules.tasks.service import (
    create_task,
    delete_task,
    proof_detail,
    review_proof,
    submit_proof,
    update_task,
)
from app.wellness.rbac import require_login, require_permission, user_has_permission
from app.wellness.utils import json_payload

bp = Blueprint("tasks", __name__)


# ---------- Tasks ----------
@bp.get("/api/tasks")
@require_login
def tasks_list():
    s = db_session()
    user = g.current_user
    if not user_has_permission(user, "tasks.manage") and company_for_user(s, user) is None:
        raise bad_request("Company profile required to view tasks")
    tasks = s.query(Task).order_by(Task.date.desc(), Task.id.desc()).all()
    return jsonify([t.to_dict() for t in tasks])


@bp.get("/api/tasks/<int:task_id>")
@require_login
def tasks_detail(task_id: int):
    task = db_session().get(Task, task_id)
    if not task:
        raise not_found("Task")
    return jsonify(task.to_dict())


@bp.post("/api/tasks")
@require_permission("tasks.manage")
def tasks_create():
    s = db_session()
    task = create_task(s, json_payload(), g.current_user)
    s.commit()
    return jsonify(task.to_dict()), 201


@bp.patch("/api/tasks/<int:task_id>")
@require_permission("tasks.manage")
def tasks_update(task_id: int):
    s = db_session()
    task = s.get(Task, task_id)
    if not task:
        raise not_found("Task")
    update_task(s, task, json_payload(), g.current_user)
    s.commit()
    return jsonify(task.to_dict())


@bp.delete("/api/tasks/<int:task_id>")
@require_permission("tasks.manage")
def tasks_delete(task_id: int):
    s = db_session()
    task = s.get(Task, task_id)
    if not task:
        raise not_found("Task")
    delete_task(s, task, g.current_user)
    s.commit()
    return "", 204


# ---------- Proofs ----------
@bp.get("/api/proofs")
@require_permission("proofs.review")
def proofs_list():
    s = db_session()
    proofs = s.query(TaskProof).order_by(TaskProof.submitted_at.desc(), TaskProof.id.desc()).all()
    return jsonify([p.to_dict() for p in proofs])


@bp.get("/api/proofs/pending")
@require_permission("proofs.review")
def proofs_pending():
    s = db_session()
    proofs = (
        s.query(TaskProof)
        .filter(TaskProof.status == "pending")
        .order_by(TaskProof.submitted_at.asc(), TaskProof.id.asc())
        .all()
    )
    return jsonify([proof_detail(p) for p in proofs])


@bp.get("/api/proofs/<int:proof_id>")
@require_permission("proofs.review")
def proofs_detail(proof_id: int):
    proof = db_session().get(TaskProof, proof_id)
    if not proof:
        raise not_found("Proof")
    return jsonify(proof_detail(proof))


@bp.post("/api/proofs")
@require_permission("company.portal")
def proofs_submit():
    s = db_session()
    company = company_for_user(s, g.current_user)
    if company is None:
        raise bad_request("Company profile required")
    proof = submit_proof(s, company, json_payload(), g.current_user)
    s.commit()
    return jsonify(proof.to_dict()), 201


@bp.patch("/api/proofs/<int:proof_id>/review")
@require_permission("proofs.review")
def proofs_review(proof_id: int):
    s = db_session()
    proof = review_proof(s, proof_id, json_payload(), g.current_user)
    s.commit()
    return jsonify(proof.to_dict())
