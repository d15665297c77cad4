from app.wellness.db import session_scope
from app.wellness.modules.companies.models import Company


def _add_company(app, name, email, points, calories):
    with session_scope(app) as s:
        c = Company(
            name=name,
            contact_person_name="Someone Else",
            email=email,
            phone="5550001111",
            total_points=points,
            total_calories_burned=calories,
        )
        s.add(c)
        s.flush()
        return c.id


def test_leaderboard_orders_by_points_then_calories(app, company_client):
    _add_company(app, "Initech", "hr@initech.test", 50, 100)
    _add_company(app, "Hooli", "hr@hooli.test", 50, 400)
    _add_company(app, "Umbrella", "hr@umbrella.test", 80, 10)

    r = company_client.get("/api/leaderboard")
    assert r.status_code == 200
    rows = r.json
    assert [row["name"] for row in rows] == ["Umbrella", "Hooli", "Initech", "Acme"]
    assert [row["rank"] for row in rows] == [1, 2, 3, 4]
    assert rows[1]["points"] == 50
    assert rows[1]["caloriesBurned"] == 400
    assert rows[0]["brandingColor"] == "#211100"


def test_leaderboard_requires_login(client):
    assert client.get("/api/leaderboard").status_code == 401


def test_owner_can_update_own_company(company_client, acme_id):
    r = company_client.patch(
        f"/api/companies/{acme_id}",
        json={"teamSize": 12, "brandingColor": "#0055ff", "logoUrl": "/objects/uploads/logo.png"},
    )
    assert r.status_code == 200
    assert r.json["teamSize"] == 12
    assert r.json["brandingColor"] == "#0055ff"
    assert r.json["name"] == "Acme"


def test_update_rejects_bad_color(company_client, acme_id):
    r = company_client.patch(f"/api/companies/{acme_id}", json={"brandingColor": "blue"})
    assert r.status_code == 400


def test_cannot_update_someone_elses_company(app, company_client):
    other_id = _add_company(app, "Hooli", "hr@hooli.test", 0, 0)
    r = company_client.patch(f"/api/companies/{other_id}", json={"name": "Pwned"})
    assert r.status_code == 403
    assert r.json["message"] == "You can only update your own company"


def test_company_proofs_visible_to_owner_and_admin_only(app, company_client, admin_client, acme_id):
    other_id = _add_company(app, "Hooli", "hr@hooli.test", 0, 0)

    assert company_client.get(f"/api/companies/{acme_id}/proofs").status_code == 200
    assert company_client.get(f"/api/companies/{other_id}/proofs").status_code == 403
    assert admin_client.get(f"/api/companies/{other_id}/proofs").status_code == 200


def test_second_company_for_same_user_refused(company_client):
    r = company_client.post(
        "/api/companies",
        json={
            "name": "Acme Two",
            "contactPersonName": "Olive Owner",
            "email": "two@acme.test",
            "phone": "5551234567",
        },
    )
    assert r.status_code == 400
    assert r.json["message"] == "User already has a company profile"


def test_company_detail_not_found(company_client):
    assert company_client.get("/api/companies/9999").status_code == 404
