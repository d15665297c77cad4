from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from flask import current_app
from sqlalchemy import func

from app.wellness.audit import record_event
from app.wellness.errors import ApiError, bad_request, not_found, validation_failed
from app.wellness.mail import MailError, OutgoingEmail, registration_approved_template, send_email
from app.wellness.modules.companies.models import DEFAULT_BRANDING_COLOR
from app.wellness.modules.events import qr
from app.wellness.modules.events.models import Event, EventRegistration
from app.wellness.utils import clean_str, is_valid_email, parse_datetime, parse_int, require_fields, validate_short_code

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.wellness.models import User

logger = logging.getLogger(__name__)

REGISTRATION_REVIEW_STATUSES = ("approved", "rejected")


# ---------- Events ----------
def get_event_by_id_or_code(s: "Session", id_or_code: str) -> Event | None:
    event = None
    event_id = parse_int(id_or_code)
    if event_id is not None:
        event = s.get(Event, event_id)
    if event is None:
        event = get_event_by_short_code(s, id_or_code)
    return event


def get_event_by_short_code(s: "Session", short_code: str) -> Event | None:
    code = (short_code or "").strip()
    if not code:
        return None
    return s.query(Event).filter(func.lower(Event.short_code) == code.lower()).one_or_none()


def _short_code_taken(s: "Session", code: str, *, exclude_id: int | None = None) -> bool:
    q = s.query(Event.id).filter(func.lower(Event.short_code) == code.lower())
    if exclude_id is not None:
        q = q.filter(Event.id != exclude_id)
    return q.first() is not None


def validate_event_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate event creation/update payload. Returns list of errors."""
    errors = []
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Title is required")
    if not partial or "eventDate" in payload:
        if parse_datetime(payload.get("eventDate")) is None:
            errors.append("Event date is required (ISO-8601)")
    if "shortCode" in payload:
        _, error = validate_short_code(payload.get("shortCode"))
        if error:
            errors.append(error)
    return errors


def create_event(s: "Session", payload: dict, user: "User") -> Event:
    errors = validate_event_payload(payload)
    if errors:
        raise validation_failed(errors)
    short_code, _ = validate_short_code(payload.get("shortCode"))
    if short_code and _short_code_taken(s, short_code):
        raise bad_request("Short code is already in use")

    event = Event(
        title=clean_str(payload.get("title")),
        description=clean_str(payload.get("description")),
        event_date=parse_datetime(payload.get("eventDate")),
        branding_color=clean_str(payload.get("brandingColor")) or DEFAULT_BRANDING_COLOR,
        is_active=bool(payload.get("isActive", True)),
        short_code=short_code,
        email_subject=clean_str(payload.get("emailSubject")),
        email_body_text=clean_str(payload.get("emailBodyText")),
        created_at=datetime.utcnow(),
    )
    s.add(event)
    s.flush()
    record_event(
        s,
        actor=user,
        action="event.create",
        entity_type="Event",
        entity_id=str(event.id),
        metadata={"title": event.title, "short_code": event.short_code},
    )
    return event


def update_event(s: "Session", event: Event, payload: dict, user: "User") -> Event:
    errors = validate_event_payload(payload, partial=True)
    if errors:
        raise validation_failed(errors)

    changes = {}

    def _set(attr: str, value) -> None:
        old = getattr(event, attr)
        if value != old:
            changes[attr] = {"old": old, "new": value}
            setattr(event, attr, value)

    if "title" in payload:
        _set("title", clean_str(payload.get("title")))
    if "description" in payload:
        _set("description", clean_str(payload.get("description")))
    if "eventDate" in payload:
        _set("event_date", parse_datetime(payload.get("eventDate")))
    if "brandingColor" in payload:
        _set("branding_color", clean_str(payload.get("brandingColor")) or DEFAULT_BRANDING_COLOR)
    if "isActive" in payload:
        _set("is_active", bool(payload.get("isActive")))
    if "emailSubject" in payload:
        _set("email_subject", clean_str(payload.get("emailSubject")))
    if "emailBodyText" in payload:
        _set("email_body_text", clean_str(payload.get("emailBodyText")))
    if "shortCode" in payload:
        short_code, _ = validate_short_code(payload.get("shortCode"))
        if short_code and _short_code_taken(s, short_code, exclude_id=event.id):
            raise bad_request("Short code is already in use")
        _set("short_code", short_code)

    if changes:
        record_event(
            s,
            actor=user,
            action="event.update",
            entity_type="Event",
            entity_id=str(event.id),
            metadata={"changes": changes},
        )
    return event


# ---------- Registrations ----------
def validate_registration_payload(payload: dict) -> list[str]:
    errors = require_fields(
        payload,
        {"firstName": "First name", "lastName": "Last name", "email": "Email", "phone": "Phone"},
    )
    email = clean_str(payload.get("email"))
    if email and not is_valid_email(email):
        errors.append("Invalid email address")
    return errors


def register_for_event(s: "Session", event: Event, payload: dict) -> EventRegistration:
    if not event.is_active:
        raise bad_request("Registration for this event is closed")
    errors = validate_registration_payload(payload)
    if errors:
        raise validation_failed(errors)

    email = clean_str(payload.get("email")).lower()
    duplicate = (
        s.query(EventRegistration.id)
        .filter(EventRegistration.event_id == event.id, func.lower(EventRegistration.email) == email)
        .first()
    )
    if duplicate is not None:
        raise bad_request("This email is already registered for this event")

    registration = EventRegistration(
        event_id=event.id,
        first_name=clean_str(payload.get("firstName")),
        last_name=clean_str(payload.get("lastName")),
        email=email,
        phone=clean_str(payload.get("phone")),
        company_name=clean_str(payload.get("companyName")),
        status="pending",
        checked_in=False,
        registered_at=datetime.utcnow(),
    )
    s.add(registration)
    s.flush()
    record_event(
        s,
        actor=None,
        action="registration.create",
        entity_type="EventRegistration",
        entity_id=str(registration.id),
        metadata={"event_id": event.id, "email": email},
    )
    return registration


def registrations_for_email(s: "Session", email: str) -> list[EventRegistration]:
    return (
        s.query(EventRegistration)
        .filter(func.lower(EventRegistration.email) == (email or "").lower())
        .order_by(EventRegistration.registered_at.desc(), EventRegistration.id.desc())
        .all()
    )


def _issue_qr(registration: EventRegistration, event: Event) -> str:
    """Issue a fresh token, render the QR and store both on the registration."""
    issued_ms = qr.current_millis()
    token = qr.generate_token(registration.id, event.id, secret=current_app.config["QR_SECRET"], now_ms=issued_ms)
    payload = qr.build_payload(registration.id, event.id, token, issued_ms)
    data_url = qr.render_qr_data_url(payload)
    registration.qr_code = data_url
    registration.qr_code_payload = json.dumps(payload)
    registration.qr_code_issued_at = datetime.utcfromtimestamp(issued_ms / 1000)
    return data_url


def _approval_email(registration: EventRegistration, event: Event, qr_data_url: str) -> OutgoingEmail:
    # The event's own subject/body win only when both are filled in.
    if (event.email_subject or "").strip() and (event.email_body_text or "").strip():
        subject, text = event.email_subject, event.email_body_text
    else:
        subject, text = registration_approved_template(event.title, registration.full_name)
    return OutgoingEmail(to=registration.email, subject=subject, text=text, qr_code_data_url=qr_data_url)


def review_registration(
    s: "Session", event: Event, registration: EventRegistration, status: str | None, user: "User"
) -> tuple[EventRegistration, bool | None]:
    """
    Approve or reject a registration. Returns (registration, email_sent);
    email_sent is None for rejections.
    """
    if status not in REGISTRATION_REVIEW_STATUSES:
        raise bad_request("Invalid status")
    previous = registration.status

    if status == "rejected":
        registration.status = "rejected"
        record_event(
            s,
            actor=user,
            action="registration.reject",
            entity_type="EventRegistration",
            entity_id=str(registration.id),
            metadata={"event_id": event.id, "from": previous},
        )
        return registration, None

    qr_data_url = _issue_qr(registration, event)
    registration.status = "approved"
    registration.approved_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="registration.approve",
        entity_type="EventRegistration",
        entity_id=str(registration.id),
        metadata={"event_id": event.id, "from": previous},
    )
    s.commit()

    email_sent = False
    try:
        send_email(_approval_email(registration, event, qr_data_url))
        email_sent = True
        logger.info("QR code email sent to %s (registration_id=%s)", registration.email, registration.id)
    except MailError as e:
        logger.warning("Failed to send QR code email to %s: %s", registration.email, e)
    return registration, email_sent


def resend_registration_email(s: "Session", event: Event, registration: EventRegistration, user: "User") -> None:
    if registration.status != "approved":
        raise bad_request("Registration must be approved first")
    qr_data_url = _issue_qr(registration, event)
    record_event(
        s,
        actor=user,
        action="registration.resend",
        entity_type="EventRegistration",
        entity_id=str(registration.id),
        metadata={"event_id": event.id},
    )
    s.commit()
    try:
        send_email(_approval_email(registration, event, qr_data_url))
    except MailError as e:
        logger.error("Failed to resend QR code email to %s: %s", registration.email, e)
        raise ApiError(500, "Failed to resend email") from e


# ---------- Check-in ----------
def _check_in(s: "Session", registration: EventRegistration, actor: "User | None") -> EventRegistration:
    registration.checked_in = True
    registration.checked_in_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="registration.checkin",
        entity_type="EventRegistration",
        entity_id=str(registration.id),
        metadata={"event_id": registration.event_id},
    )
    return registration


def qr_checkin(s: "Session", payload: dict, user: "User") -> EventRegistration:
    attendee_id = payload.get("attendeeId")
    event_id = payload.get("eventId")
    token = clean_str(payload.get("token"))
    if attendee_id in (None, "") or event_id in (None, "") or not token:
        raise bad_request("Missing required QR code data")

    try:
        qr.verify_token(
            token,
            secret=current_app.config["QR_SECRET"],
            attendee_id=attendee_id,
            event_id=event_id,
            max_age_days=int(current_app.config.get("QR_TOKEN_MAX_AGE_DAYS") or qr.DEFAULT_MAX_AGE_DAYS),
        )
    except qr.QRTokenError as e:
        logger.info("QR check-in refused attendee_id=%s: %s", attendee_id, e)
        raise ApiError(401, "Invalid or expired QR code") from e

    registration = (
        s.query(EventRegistration)
        .filter(EventRegistration.id == parse_int(attendee_id))
        .with_for_update()
        .one_or_none()
    )
    if not registration:
        raise not_found("Registration")
    if str(registration.event_id) != str(event_id):
        raise bad_request("QR code does not match registration event")
    if registration.status != "approved":
        raise bad_request("Registration is not approved")
    if registration.checked_in:
        raise bad_request("Attendee already checked in")
    return _check_in(s, registration, user)


@dataclass(frozen=True)
class CheckinPageResult:
    """Outcome of a /checkin/<token> visit, rendered as an HTML page."""

    status: int
    title: str
    message: str
    registration: EventRegistration | None = None
    ok: bool = False


def checkin_by_token(s: "Session", token: str) -> CheckinPageResult:
    try:
        parsed = qr.verify_token(
            token,
            secret=current_app.config["QR_SECRET"],
            max_age_days=int(current_app.config.get("QR_TOKEN_MAX_AGE_DAYS") or qr.DEFAULT_MAX_AGE_DAYS),
        )
    except qr.QRTokenExpired:
        return CheckinPageResult(
            401,
            "Invalid or Expired QR Code",
            "This QR code is invalid or has expired. Please contact the event organizers for a new QR code.",
        )
    except qr.QRTokenError:
        try:
            qr.parse_token(token)
        except qr.QRTokenError:
            return CheckinPageResult(400, "Invalid QR Code", "This QR code is not valid. Please contact the event organizers.")
        return CheckinPageResult(
            401,
            "Invalid or Expired QR Code",
            "This QR code is invalid or has expired. Please contact the event organizers for a new QR code.",
        )

    registration = (
        s.query(EventRegistration)
        .filter(EventRegistration.id == parse_int(parsed.attendee_id))
        .with_for_update()
        .one_or_none()
    )
    if not registration or str(registration.event_id) != parsed.event_id:
        return CheckinPageResult(
            404, "Registration Not Found", "This registration could not be found. Please contact the event organizers."
        )
    if registration.status != "approved":
        return CheckinPageResult(
            400, "Registration Not Approved", "This registration has not been approved. Please contact the event organizers."
        )
    if registration.checked_in:
        return CheckinPageResult(
            200, "Already Checked In", "You have already been checked in for this event.", registration, ok=True
        )
    _check_in(s, registration, None)
    return CheckinPageResult(
        200, "Check-in Successful!", "You have been successfully checked in for the event.", registration, ok=True
    )
