import json

import pytest

from app.wellness.modules.events import qr

from conftest import OWNER_EMAIL

QR_SECRET = "test-qr-secret"


def _registrant(**overrides):
    payload = {
        "firstName": "Jamie",
        "lastName": "Doe",
        "email": "Jamie.Doe@Example.com",
        "phone": "5551112222",
        "companyName": "Acme",
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def event_id(admin_client):
    r = admin_client.post(
        "/api/events",
        json={"title": "Wellness Summit", "eventDate": "2026-11-20T09:00:00Z", "shortCode": "summit-2026"},
    )
    assert r.status_code == 201
    return r.json["id"]


def _register(client, event_ref, **overrides):
    return client.post(f"/api/events/{event_ref}/register", json=_registrant(**overrides))


def _approve(admin_client, event_id, registration_id):
    return admin_client.patch(
        f"/api/events/{event_id}/registrations/{registration_id}", json={"status": "approved"}
    )


def _approved_registration(client, admin_client, event_id):
    registration_id = _register(client, event_id).json["id"]
    body = _approve(admin_client, event_id, registration_id).json
    return body, json.loads(body["qrCodePayload"])


# ---------- Events ----------
def test_event_create_and_lookup(client, event_id):
    r = client.get("/api/events")
    assert [e["id"] for e in r.json] == [event_id]
    assert r.json[0]["eventDate"] == "2026-11-20T09:00:00"

    r = client.get("/api/events/by-code/SUMMIT-2026")
    assert r.status_code == 200
    assert r.json["id"] == event_id
    assert client.get("/api/events/by-code/nope").status_code == 404


def test_event_short_code_rules(admin_client, event_id):
    r = admin_client.post("/api/events", json={"title": "Again", "eventDate": "2026-12-01", "shortCode": "Summit-2026"})
    assert r.status_code == 400
    assert r.json["message"] == "Short code is already in use"

    r = admin_client.post("/api/events", json={"title": "Bad", "eventDate": "2026-12-01", "shortCode": "a--b"})
    assert r.status_code == 400
    assert r.json["message"] == "Short code cannot have consecutive hyphens or underscores"


def test_event_management_is_admin_only(company_client):
    r = company_client.post("/api/events", json={"title": "Mine", "eventDate": "2026-12-01"})
    assert r.status_code == 403


def test_inactive_events_hidden_and_closed(client, admin_client, event_id):
    r = admin_client.patch(f"/api/events/{event_id}", json={"isActive": False})
    assert r.status_code == 200
    assert r.json["isActive"] is False
    assert client.get("/api/events").json == []

    r = _register(client, event_id)
    assert r.status_code == 400
    assert r.json["message"] == "Registration for this event is closed"


# ---------- Registrations ----------
def test_register_by_code_and_duplicate(client, admin_client, event_id):
    r = _register(client, "summit-2026")
    assert r.status_code == 201
    assert r.json["status"] == "pending"
    assert r.json["email"] == "jamie.doe@example.com"
    assert r.json["checkedIn"] is False

    r = _register(client, event_id, email="JAMIE.DOE@example.com")
    assert r.status_code == 400
    assert r.json["message"] == "This email is already registered for this event"

    rows = admin_client.get(f"/api/events/{event_id}/registrations").json
    assert len(rows) == 1


def test_register_validation(client, event_id):
    r = _register(client, event_id, email="not-an-email", phone="")
    assert r.status_code == 400
    assert "Phone is required" in r.json["errors"]
    assert "Invalid email address" in r.json["errors"]
    assert _register(client, "no-such-event").status_code == 404


def test_approve_issues_qr_and_emails(client, admin_client, event_id, outbox):
    registration_id = _register(client, event_id).json["id"]
    r = _approve(admin_client, event_id, registration_id)
    assert r.status_code == 200
    body = r.json
    assert body["status"] == "approved"
    assert body["emailSent"] is True
    assert body["qrCode"].startswith("data:image/png;base64,")
    assert body["approvedAt"] is not None

    payload = json.loads(body["qrCodePayload"])
    assert payload["attendeeId"] == registration_id
    assert payload["eventId"] == event_id
    qr.verify_token(payload["token"], secret=QR_SECRET, attendee_id=registration_id, event_id=event_id)

    assert len(outbox) == 1
    msg = outbox[0]
    assert msg["To"] == "jamie.doe@example.com"
    assert msg["Subject"] == "Your Registration for Wellness Summit is Approved!"
    assert "cid:qrcode" in msg.get_body(("html",)).get_content()


def test_approval_uses_event_email_when_complete(client, admin_client, event_id, outbox):
    admin_client.patch(
        f"/api/events/{event_id}",
        json={"emailSubject": "See you at the summit", "emailBodyText": "Bring water."},
    )
    _approved_registration(client, admin_client, event_id)
    assert outbox[0]["Subject"] == "See you at the summit"

    # Only a subject, no body: fall back to the default template.
    admin_client.patch(f"/api/events/{event_id}", json={"emailBodyText": ""})
    registration_id = _register(client, event_id, email="second@example.com").json["id"]
    _approve(admin_client, event_id, registration_id)
    assert outbox[1]["Subject"] == "Your Registration for Wellness Summit is Approved!"


def test_reject_sends_nothing(client, admin_client, event_id, outbox):
    registration_id = _register(client, event_id).json["id"]
    r = admin_client.patch(f"/api/events/{event_id}/registrations/{registration_id}", json={"status": "rejected"})
    assert r.status_code == 200
    assert r.json["status"] == "rejected"
    assert "emailSent" not in r.json
    assert outbox == []

    r = admin_client.patch(f"/api/events/{event_id}/registrations/{registration_id}", json={"status": "pending"})
    assert r.status_code == 400


def test_resend_requires_approval(client, admin_client, event_id, outbox):
    registration_id = _register(client, event_id).json["id"]
    r = admin_client.post(f"/api/events/{event_id}/registrations/{registration_id}/resend")
    assert r.status_code == 400
    assert r.json["message"] == "Registration must be approved first"

    _approve(admin_client, event_id, registration_id)
    r = admin_client.post(f"/api/events/{event_id}/registrations/{registration_id}/resend")
    assert r.status_code == 200
    assert r.json["message"] == "Email resent successfully"
    assert len(outbox) == 2


def test_approval_survives_mail_failure(client, admin_client, event_id, failing_mail, outbox):
    registration_id = _register(client, event_id).json["id"]
    r = _approve(admin_client, event_id, registration_id)
    assert r.status_code == 200
    assert r.json["status"] == "approved"
    assert r.json["emailSent"] is False
    assert r.json["qrCode"].startswith("data:image/png;base64,")
    assert outbox == []

    registrations = admin_client.get(f"/api/events/{event_id}/registrations").json
    assert [(reg["id"], reg["status"]) for reg in registrations] == [(registration_id, "approved")]


def test_resend_reports_mail_failure(client, admin_client, event_id, failing_mail):
    registration_id = _register(client, event_id).json["id"]
    _approve(admin_client, event_id, registration_id)
    r = admin_client.post(f"/api/events/{event_id}/registrations/{registration_id}/resend")
    assert r.status_code == 500
    assert r.json["message"] == "Failed to resend email"


def test_company_sees_its_own_registrations(client, company_client, event_id):
    _register(client, event_id, email=OWNER_EMAIL)

    r = company_client.get(f"/api/events/{event_id}/my-registration")
    assert r.status_code == 200
    assert r.json["email"] == OWNER_EMAIL

    rows = company_client.get("/api/company/registrations").json
    assert [row["eventId"] for row in rows] == [event_id]


def test_my_registration_missing(company_client, event_id):
    assert company_client.get(f"/api/events/{event_id}/my-registration").status_code == 404


# ---------- QR check-in (staff scanner) ----------
def test_qr_checkin_once(client, admin_client, event_id):
    _, payload = _approved_registration(client, admin_client, event_id)

    r = admin_client.post("/api/registrations/qr-checkin", json=payload)
    assert r.status_code == 200
    assert r.json["checkedIn"] is True
    assert r.json["checkedInAt"] is not None
    assert r.json["message"] == "Attendee successfully checked in"

    r = admin_client.post("/api/registrations/qr-checkin", json=payload)
    assert r.status_code == 400
    assert r.json["message"] == "Attendee already checked in"


def test_qr_checkin_rejects_tampered_token(client, admin_client, event_id):
    _, payload = _approved_registration(client, admin_client, event_id)
    payload["token"] = payload["token"][:-1] + ("0" if payload["token"][-1] != "0" else "1")
    r = admin_client.post("/api/registrations/qr-checkin", json=payload)
    assert r.status_code == 401
    assert r.json["message"] == "Invalid or expired QR code"


def test_qr_checkin_missing_fields(admin_client):
    r = admin_client.post("/api/registrations/qr-checkin", json={"attendeeId": 1})
    assert r.status_code == 400
    assert r.json["message"] == "Missing required QR code data"


def test_qr_checkin_not_approved(client, admin_client, event_id):
    registration_id = _register(client, event_id).json["id"]
    token = qr.generate_token(registration_id, event_id, secret=QR_SECRET)
    r = admin_client.post(
        "/api/registrations/qr-checkin",
        json={"attendeeId": registration_id, "eventId": event_id, "token": token},
    )
    assert r.status_code == 400
    assert r.json["message"] == "Registration is not approved"


def test_qr_checkin_is_staff_only(client, admin_client, company_client, event_id):
    _, payload = _approved_registration(client, admin_client, event_id)
    assert company_client.post("/api/registrations/qr-checkin", json=payload).status_code == 403


# ---------- Check-in page (attendee scans their own code) ----------
def test_checkin_page_flow(client, admin_client, event_id):
    _, payload = _approved_registration(client, admin_client, event_id)

    r = client.get(f"/checkin/{payload['token']}")
    assert r.status_code == 200
    assert b"Check-in Successful!" in r.data
    assert b"Hello Jamie Doe!" in r.data

    r = client.get(f"/checkin/{payload['token']}")
    assert r.status_code == 200
    assert b"Already Checked In" in r.data


def test_checkin_page_errors(client, event_id):
    r = client.get("/checkin/garbage")
    assert r.status_code == 400
    assert b"Invalid QR Code" in r.data

    forged = qr.generate_token(1, event_id, secret="wrong-secret")
    assert client.get(f"/checkin/{forged}").status_code == 401

    unknown = qr.generate_token(999, event_id, secret=QR_SECRET)
    r = client.get(f"/checkin/{unknown}")
    assert r.status_code == 404
    assert b"Registration Not Found" in r.data


def test_checkin_page_pending_registration(client, event_id):
    registration_id = _register(client, event_id).json["id"]
    token = qr.generate_token(registration_id, event_id, secret=QR_SECRET)
    r = client.get(f"/checkin/{token}")
    assert r.status_code == 400
    assert b"Registration Not Approved" in r.data
