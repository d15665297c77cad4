"""Tasks, proof submission and the review state machine."""
from werkzeug.security import generate_password_hash

from app.wellness.db import session_scope
from app.wellness.models import User
from app.wellness.rbac import ensure_role

from conftest import login


def _urls(n, prefix="/objects/uploads/proof"):
    return [f"{prefix}/{i}.jpg" for i in range(n)]


def _create_task(admin_client, **overrides):
    payload = {"title": "Lunch walk", "pointsReward": 15, "caloriesBurned": 120}
    payload.update(overrides)
    r = admin_client.post("/api/tasks", json=payload)
    assert r.status_code == 201
    return r.json["id"]


def _submit(company_client, task_id, n=6):
    return company_client.post(
        "/api/proofs",
        json={"taskId": task_id, "contentType": "image", "contentUrls": _urls(n)},
    )


def _company_totals(company_client, acme_id):
    body = company_client.get(f"/api/companies/{acme_id}").json
    return body["totalPoints"], body["totalCaloriesBurned"]


def test_task_crud_requires_admin(admin_client, company_client):
    r = company_client.post("/api/tasks", json={"title": "Sneaky"})
    assert r.status_code == 403
    assert r.json["message"] == "Admin access required"

    task_id = _create_task(admin_client)
    r = admin_client.patch(f"/api/tasks/{task_id}", json={"pointsReward": 25})
    assert r.status_code == 200
    assert r.json["pointsReward"] == 25
    assert r.json["title"] == "Lunch walk"

    tasks = company_client.get("/api/tasks").json
    assert [t["id"] for t in tasks] == [task_id]

    assert admin_client.delete(f"/api/tasks/{task_id}").status_code == 204
    assert admin_client.get(f"/api/tasks/{task_id}").status_code == 404


def test_task_validation(admin_client):
    r = admin_client.post("/api/tasks", json={"title": "", "pointsReward": -1})
    assert r.status_code == 400
    assert "Title is required" in r.json["errors"]


def test_tasks_need_a_company_profile(app):
    with session_scope(app) as s:
        u = User(email="lonely@nowhere.test", password_hash=generate_password_hash("lonely-pass-1"), is_active=True)
        u.roles.append(ensure_role(s, "company"))
        s.add(u)
    c = app.test_client()
    assert login(c, "lonely@nowhere.test", "lonely-pass-1").status_code == 200
    r = c.get("/api/tasks")
    assert r.status_code == 400
    assert r.json["message"] == "Company profile required to view tasks"


def test_proof_needs_enough_files(admin_client, company_client):
    task_id = _create_task(admin_client)
    r = _submit(company_client, task_id, n=5)
    assert r.status_code == 400
    assert r.json["message"] == "At least 6 photos or videos are required"

    r = _submit(company_client, task_id, n=21)
    assert r.status_code == 400


def test_proof_urls_are_stored_as_object_keys(admin_client, company_client):
    task_id = _create_task(admin_client)
    r = _submit(company_client, task_id)
    assert r.status_code == 201
    assert r.json["status"] == "pending"
    assert r.json["contentUrls"][0] == "uploads/proof/0.jpg"


def test_duplicate_submission_refused(admin_client, company_client):
    task_id = _create_task(admin_client)
    assert _submit(company_client, task_id).status_code == 201
    r = _submit(company_client, task_id)
    assert r.status_code == 400
    assert "pending review" in r.json["message"]


def test_review_awards_points_once(admin_client, company_client, acme_id):
    task_id = _create_task(admin_client)
    proof_id = _submit(company_client, task_id).json["id"]

    pending = admin_client.get("/api/proofs/pending").json
    assert [p["id"] for p in pending] == [proof_id]
    assert pending[0]["task"]["title"] == "Lunch walk"
    assert pending[0]["company"]["name"] == "Acme"

    r = admin_client.patch(f"/api/proofs/{proof_id}/review", json={"status": "approved", "adminNotes": "Nice"})
    assert r.status_code == 200
    assert r.json["status"] == "approved"
    assert r.json["adminNotes"] == "Nice"
    assert _company_totals(company_client, acme_id) == (15, 120)

    # Re-approving must not award again.
    admin_client.patch(f"/api/proofs/{proof_id}/review", json={"status": "approved"})
    assert _company_totals(company_client, acme_id) == (15, 120)

    r = _submit(company_client, task_id)
    assert r.status_code == 400
    assert r.json["message"] == "This task has already been completed and approved."

    assert admin_client.get("/api/proofs/pending").json == []


def test_rejecting_an_approved_proof_takes_points_back(admin_client, company_client, acme_id):
    task_id = _create_task(admin_client)
    proof_id = _submit(company_client, task_id).json["id"]
    admin_client.patch(f"/api/proofs/{proof_id}/review", json={"status": "approved"})
    admin_client.patch(f"/api/proofs/{proof_id}/review", json={"status": "rejected"})
    assert _company_totals(company_client, acme_id) == (0, 0)

    # A rejected proof can be replaced.
    assert _submit(company_client, task_id).status_code == 201


def test_rejecting_a_pending_proof_changes_nothing(admin_client, company_client, acme_id):
    task_id = _create_task(admin_client)
    proof_id = _submit(company_client, task_id).json["id"]
    r = admin_client.patch(f"/api/proofs/{proof_id}/review", json={"status": "rejected"})
    assert r.status_code == 200
    assert _company_totals(company_client, acme_id) == (0, 0)


def test_review_rejects_unknown_status(admin_client, company_client):
    task_id = _create_task(admin_client)
    proof_id = _submit(company_client, task_id).json["id"]
    r = admin_client.patch(f"/api/proofs/{proof_id}/review", json={"status": "maybe"})
    assert r.status_code == 400
    assert admin_client.patch("/api/proofs/9999/review", json={"status": "approved"}).status_code == 404


def test_task_with_proofs_cannot_be_deleted(admin_client, company_client):
    task_id = _create_task(admin_client)
    _submit(company_client, task_id)
    r = admin_client.delete(f"/api/tasks/{task_id}")
    assert r.status_code == 400
    assert r.json["message"] == "Cannot delete a task that has proof submissions"


def test_company_cannot_review(admin_client, company_client):
    task_id = _create_task(admin_client)
    proof_id = _submit(company_client, task_id).json["id"]
    r = company_client.patch(f"/api/proofs/{proof_id}/review", json={"status": "approved"})
    assert r.status_code == 403
    assert company_client.get("/api/proofs").status_code == 403
