from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from flask import current_app
from sqlalchemy import update

from app.wellness.audit import record_event
from app.wellness.errors import bad_request, not_found, validation_failed
from app.wellness.modules.companies.models import Company
from app.wellness.modules.tasks.models import PROOF_CONTENT_TYPES, Task, TaskProof
from app.wellness.storage import storage_from_config
from app.wellness.utils import clean_str, parse_datetime, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.wellness.models import User

logger = logging.getLogger(__name__)

REVIEW_STATUSES = ("approved", "rejected")


# ---------- Tasks ----------
def validate_task_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate task creation/update payload. Returns list of errors."""
    errors = []
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Title is required")
    for key, label in (("pointsReward", "Points reward"), ("caloriesBurned", "Calories burned")):
        if key in payload and payload.get(key) is not None:
            value = parse_int(payload.get(key))
            if value is None or value < 0:
                errors.append(f"{label} must be a non-negative integer")
    if payload.get("date") and parse_datetime(payload.get("date")) is None:
        errors.append("Date must be an ISO-8601 date")
    return errors


def create_task(s: "Session", payload: dict, user: "User") -> Task:
    errors = validate_task_payload(payload)
    if errors:
        raise validation_failed(errors)
    now = datetime.utcnow()
    task = Task(
        title=clean_str(payload.get("title")),
        description=clean_str(payload.get("description")),
        video_url=clean_str(payload.get("videoUrl")),
        points_reward=parse_int(payload.get("pointsReward"), default=10),
        calories_burned=parse_int(payload.get("caloriesBurned"), default=50),
        date=parse_datetime(payload.get("date")) or now,
        created_at=now,
    )
    s.add(task)
    s.flush()
    record_event(
        s,
        actor=user,
        action="task.create",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"title": task.title, "points_reward": task.points_reward},
    )
    return task


def update_task(s: "Session", task: Task, payload: dict, user: "User") -> Task:
    errors = validate_task_payload(payload, partial=True)
    if errors:
        raise validation_failed(errors)

    changes = {}
    fields = {
        "title": ("title", clean_str),
        "description": ("description", clean_str),
        "videoUrl": ("video_url", clean_str),
        "pointsReward": ("points_reward", parse_int),
        "caloriesBurned": ("calories_burned", parse_int),
        "date": ("date", parse_datetime),
    }
    for key, (attr, parse) in fields.items():
        if key not in payload:
            continue
        new_value = parse(payload.get(key))
        if new_value is None and attr in ("title", "points_reward", "calories_burned", "date"):
            continue
        old_value = getattr(task, attr)
        if new_value != old_value:
            changes[key] = {"old": old_value, "new": new_value}
            setattr(task, attr, new_value)

    if changes:
        record_event(
            s,
            actor=user,
            action="task.update",
            entity_type="Task",
            entity_id=str(task.id),
            metadata={"changes": changes},
        )
    return task


def delete_task(s: "Session", task: Task, user: "User") -> None:
    has_proofs = s.query(TaskProof.id).filter(TaskProof.task_id == task.id).first() is not None
    if has_proofs:
        raise bad_request("Cannot delete a task that has proof submissions")
    record_event(
        s,
        actor=user,
        action="task.delete",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"title": task.title},
    )
    s.delete(task)


# ---------- Proofs ----------
def _normalize_urls(urls: list) -> list[str]:
    storage = storage_from_config(current_app.config)
    return [storage.normalize_key(str(u).strip()) for u in urls]


def validate_proof_payload(payload: dict, *, min_urls: int, max_urls: int) -> list[str]:
    errors = []
    if parse_int(payload.get("taskId")) is None:
        errors.append("Task is required")
    content_type = clean_str(payload.get("contentType"))
    if content_type not in PROOF_CONTENT_TYPES:
        errors.append(f"Content type must be one of: {', '.join(PROOF_CONTENT_TYPES)}")
    urls = payload.get("contentUrls")
    if not isinstance(urls, list) or not all(isinstance(u, str) and u.strip() for u in urls):
        errors.append("contentUrls must be a list of URLs")
    elif len(urls) < min_urls:
        errors.append(f"At least {min_urls} photos or videos are required")
    elif len(urls) > max_urls:
        errors.append(f"No more than {max_urls} photos or videos are allowed")
    return errors


def submit_proof(s: "Session", company: Company, payload: dict, user: "User") -> TaskProof:
    cfg = current_app.config
    errors = validate_proof_payload(
        payload,
        min_urls=int(cfg.get("PROOF_MIN_CONTENT_URLS") or 6),
        max_urls=int(cfg.get("PROOF_MAX_CONTENT_URLS") or 20),
    )
    if errors:
        raise validation_failed(errors)

    task = s.get(Task, parse_int(payload.get("taskId")))
    if not task:
        raise not_found("Task")

    existing = (
        s.query(TaskProof)
        .filter(
            TaskProof.company_id == company.id,
            TaskProof.task_id == task.id,
            TaskProof.status.in_(("pending", "approved")),
        )
        .first()
    )
    if existing is not None:
        if existing.status == "pending":
            raise bad_request("You have already submitted a proof for this task. It's currently pending review.")
        raise bad_request("This task has already been completed and approved.")

    proof = TaskProof(
        task_id=task.id,
        company_id=company.id,
        content_urls=_normalize_urls(payload["contentUrls"]),
        content_type=clean_str(payload.get("contentType")),
        status="pending",
        submitted_at=datetime.utcnow(),
    )
    s.add(proof)
    s.flush()
    record_event(
        s,
        actor=user,
        action="proof.submit",
        entity_type="TaskProof",
        entity_id=str(proof.id),
        metadata={"task_id": task.id, "company_id": company.id, "files": len(proof.content_urls)},
    )
    logger.info("Proof submitted proof_id=%s task_id=%s company_id=%s", proof.id, task.id, company.id)
    return proof


def _adjust_company_totals(s: "Session", company_id: int, *, points: int, calories: int) -> None:
    s.execute(
        update(Company)
        .where(Company.id == company_id)
        .values(
            total_points=Company.total_points + points,
            total_calories_burned=Company.total_calories_burned + calories,
            updated_at=datetime.utcnow(),
        )
    )


def review_proof(s: "Session", proof_id: int, payload: dict, reviewer: "User") -> TaskProof:
    """
    Approve or reject a proof.

    Totals move only on a status transition: non-approved -> approved adds
    the task's points and calories, approved -> rejected takes them back.
    The proof row is locked for the rest of the transaction.
    """
    status = clean_str(payload.get("status"))
    if status not in REVIEW_STATUSES:
        raise bad_request(f"Status must be one of: {', '.join(REVIEW_STATUSES)}")

    proof = s.query(TaskProof).filter(TaskProof.id == proof_id).with_for_update().one_or_none()
    if not proof:
        raise not_found("Proof")

    previous = proof.status
    task = s.get(Task, proof.task_id)
    if task:
        if previous != "approved" and status == "approved":
            _adjust_company_totals(s, proof.company_id, points=task.points_reward or 0, calories=task.calories_burned or 0)
        elif previous == "approved" and status == "rejected":
            _adjust_company_totals(
                s, proof.company_id, points=-(task.points_reward or 0), calories=-(task.calories_burned or 0)
            )

    proof.status = status
    if "adminNotes" in payload:
        proof.admin_notes = clean_str(payload.get("adminNotes"))
    proof.reviewed_at = datetime.utcnow()
    proof.reviewed_by_user_id = reviewer.id

    record_event(
        s,
        actor=reviewer,
        action="proof.review",
        entity_type="TaskProof",
        entity_id=str(proof.id),
        reason=proof.admin_notes,
        metadata={"from": previous, "to": status, "company_id": proof.company_id},
    )
    return proof


def proof_detail(proof: TaskProof) -> dict:
    body = proof.to_dict()
    body["task"] = proof.task.to_dict() if proof.task else None
    body["company"] = proof.company.to_dict() if proof.company else None
    return body
