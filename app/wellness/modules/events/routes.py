from __future__ import annotations

from flask import Blueprint, g, jsonify, render_template

from app.wellness.db import db_session
from app.wellness.errors import bad_request, not_found
from app.wellness.modules.companies.service import company_for_user
from app.wellness.modules.events.models import Event, EventRegistration
from app.wellness.modules.events.service import (
    checkin_by_token,
    create_event,
    get_event_by_id_or_code,
    get_event_by_short_code,
    qr_checkin,
    register_for_event,
    registrations_for_email,
    resend_registration_email,
    review_registration,
    update_event,
)
from app.wellness.rbac import require_login, require_permission
from app.wellness.utils import clean_str, json_payload

bp = Blueprint("events", __name__)


def _get_event(event_id: int) -> Event:
    event = db_session().get(Event, event_id)
    if not event:
        raise not_found("Event")
    return event


def _get_registration(event: Event, registration_id: int) -> EventRegistration:
    registration = db_session().get(EventRegistration, registration_id)
    if not registration or registration.event_id != event.id:
        raise not_found("Registration")
    return registration


# ---------- Events (public reads) ----------
@bp.get("/api/events")
def events_list():
    s = db_session()
    events = s.query(Event).filter(Event.is_active.is_(True)).order_by(Event.event_date.asc(), Event.id.asc()).all()
    return jsonify([e.to_dict() for e in events])


@bp.get("/api/events/<int:event_id>")
def events_detail(event_id: int):
    return jsonify(_get_event(event_id).to_dict())


@bp.get("/api/events/by-code/<short_code>")
def events_by_code(short_code: str):
    event = get_event_by_short_code(db_session(), short_code)
    if not event:
        raise not_found("Event")
    return jsonify(event.to_dict())


# ---------- Events (admin) ----------
@bp.post("/api/events")
@require_permission("events.manage")
def events_create():
    s = db_session()
    event = create_event(s, json_payload(), g.current_user)
    s.commit()
    return jsonify(event.to_dict()), 201


@bp.patch("/api/events/<int:event_id>")
@require_permission("events.manage")
def events_update(event_id: int):
    s = db_session()
    event = _get_event(event_id)
    update_event(s, event, json_payload(), g.current_user)
    s.commit()
    return jsonify(event.to_dict())


# ---------- Registrations ----------
@bp.post("/api/events/<id_or_code>/register")
def register(id_or_code: str):
    s = db_session()
    event = get_event_by_id_or_code(s, id_or_code)
    if not event:
        raise not_found("Event")
    registration = register_for_event(s, event, json_payload())
    s.commit()
    return jsonify(registration.to_dict()), 201


@bp.get("/api/events/<int:event_id>/registrations")
@require_permission("events.manage")
def registrations_list(event_id: int):
    s = db_session()
    event = _get_event(event_id)
    registrations = (
        s.query(EventRegistration)
        .filter(EventRegistration.event_id == event.id)
        .order_by(EventRegistration.registered_at.desc(), EventRegistration.id.desc())
        .all()
    )
    return jsonify([r.to_dict() for r in registrations])


@bp.get("/api/events/<int:event_id>/my-registration")
@require_login
def my_registration(event_id: int):
    event = _get_event(event_id)
    email = (g.current_user.email or "").lower()
    match = next((r for r in event.registrations if (r.email or "").lower() == email), None)
    if not match:
        raise not_found("Registration")
    return jsonify(match.to_dict())


@bp.get("/api/company/registrations")
@require_permission("company.portal")
def company_registrations():
    s = db_session()
    company = company_for_user(s, g.current_user)
    if company is None:
        raise bad_request("Company profile required")
    return jsonify([r.to_dict() for r in registrations_for_email(s, company.email)])


@bp.patch("/api/events/<int:event_id>/registrations/<int:registration_id>")
@require_permission("events.manage")
def registrations_review(event_id: int, registration_id: int):
    s = db_session()
    event = _get_event(event_id)
    registration = _get_registration(event, registration_id)
    payload = json_payload()
    registration, email_sent = review_registration(s, event, registration, clean_str(payload.get("status")), g.current_user)
    s.commit()
    body = registration.to_dict()
    if email_sent is not None:
        body["emailSent"] = email_sent
    return jsonify(body)


@bp.post("/api/events/<int:event_id>/registrations/<int:registration_id>/resend")
@require_permission("events.manage")
def registrations_resend(event_id: int, registration_id: int):
    s = db_session()
    event = _get_event(event_id)
    registration = _get_registration(event, registration_id)
    resend_registration_email(s, event, registration, g.current_user)
    return jsonify({"message": "Email resent successfully"})


# ---------- Check-in ----------
@bp.post("/api/registrations/qr-checkin")
@require_permission("registrations.checkin")
def registrations_qr_checkin():
    s = db_session()
    registration = qr_checkin(s, json_payload(), g.current_user)
    s.commit()
    body = registration.to_dict()
    body["message"] = "Attendee successfully checked in"
    return jsonify(body)


@bp.get("/checkin/<path:token>")
def public_checkin(token: str):
    s = db_session()
    result = checkin_by_token(s, token)
    s.commit()
    return render_template("checkin/result.html", result=result), result.status
