from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.wellness.audit import record_event
from app.wellness.errors import bad_request, validation_failed
from app.wellness.modules.companies.models import DEFAULT_BRANDING_COLOR, Company
from app.wellness.utils import clean_str, is_valid_email, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.wellness.models import User


_HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

# payload key -> model attribute
_EDITABLE_FIELDS = {
    "name": "name",
    "contactPersonName": "contact_person_name",
    "email": "email",
    "phone": "phone",
    "teamSize": "team_size",
    "logoUrl": "logo_url",
    "brandingColor": "branding_color",
    "dailyGoal": "daily_goal",
}
_INT_FIELDS = {"teamSize", "dailyGoal"}


def validate_company_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate company create/update payload. Returns list of errors."""
    errors = []
    if not partial or "name" in payload:
        if len(clean_str(payload.get("name")) or "") < 2:
            errors.append("Company name is required")
    if not partial or "contactPersonName" in payload:
        if len(clean_str(payload.get("contactPersonName")) or "") < 2:
            errors.append("Contact person name is required")
    if not partial or "email" in payload:
        if not is_valid_email(clean_str(payload.get("email"))):
            errors.append("Invalid email address")
    if not partial or "phone" in payload:
        if len(clean_str(payload.get("phone")) or "") < 10:
            errors.append("Valid phone number is required")
    for key in _INT_FIELDS:
        if key in payload and payload.get(key) is not None:
            value = parse_int(payload.get(key))
            if value is None or value < 1:
                errors.append(f"{key} must be a positive integer")
    color = clean_str(payload.get("brandingColor"))
    if color and not _HEX_COLOR_RE.match(color):
        errors.append("Branding color must be a hex color like #211100")
    return errors


def company_for_user(s: "Session", user: "User | None") -> Company | None:
    if user is None:
        return None
    return s.query(Company).filter(Company.user_id == user.id).one_or_none()


def _email_taken(s: "Session", email: str, *, exclude_id: int | None = None) -> bool:
    q = s.query(Company.id).filter(func.lower(Company.email) == email.lower())
    if exclude_id is not None:
        q = q.filter(Company.id != exclude_id)
    return q.first() is not None


def create_company(s: "Session", payload: dict, *, owner: "User") -> Company:
    errors = validate_company_payload(payload)
    if errors:
        raise validation_failed(errors)
    if company_for_user(s, owner) is not None:
        raise bad_request("User already has a company profile")

    email = clean_str(payload.get("email")).lower()
    if _email_taken(s, email):
        raise bad_request("A company with this email already exists")

    now = datetime.utcnow()
    company = Company(
        name=clean_str(payload.get("name")),
        contact_person_name=clean_str(payload.get("contactPersonName")),
        email=email,
        phone=clean_str(payload.get("phone")),
        team_size=parse_int(payload.get("teamSize"), default=1),
        logo_url=clean_str(payload.get("logoUrl")),
        branding_color=clean_str(payload.get("brandingColor")) or DEFAULT_BRANDING_COLOR,
        daily_goal=parse_int(payload.get("dailyGoal"), default=100),
        total_points=0,
        total_calories_burned=0,
        user_id=owner.id,
        created_at=now,
        updated_at=now,
    )
    s.add(company)
    s.flush()

    record_event(
        s,
        actor=owner,
        action="company.create",
        entity_type="Company",
        entity_id=str(company.id),
        metadata={"name": company.name, "email": company.email},
    )
    return company


def update_company(s: "Session", company: Company, payload: dict, user: "User") -> Company:
    """Partial update; only keys present in the payload are touched."""
    errors = validate_company_payload(payload, partial=True)
    if errors:
        raise validation_failed(errors)

    changes = {}
    for key, attr in _EDITABLE_FIELDS.items():
        if key not in payload:
            continue
        if key in _INT_FIELDS:
            new_value = parse_int(payload.get(key), default=getattr(company, attr))
        else:
            new_value = clean_str(payload.get(key))
        if key == "email" and new_value:
            new_value = new_value.lower()
            if _email_taken(s, new_value, exclude_id=company.id):
                raise bad_request("A company with this email already exists")
        if key == "brandingColor" and not new_value:
            new_value = DEFAULT_BRANDING_COLOR
        old_value = getattr(company, attr)
        if new_value != old_value:
            changes[key] = {"old": old_value, "new": new_value}
            setattr(company, attr, new_value)

    if changes:
        company.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="company.update",
            entity_type="Company",
            entity_id=str(company.id),
            metadata={"changes": changes},
        )
    return company


def leaderboard(s: "Session") -> list[dict]:
    companies = (
        s.query(Company)
        .order_by(
            Company.total_points.desc(),
            Company.total_calories_burned.desc(),
            Company.name.asc(),
        )
        .all()
    )
    return [
        {
            "id": company.id,
            "name": company.name,
            "points": company.total_points or 0,
            "caloriesBurned": company.total_calories_burned or 0,
            "logoUrl": company.logo_url,
            "brandingColor": company.branding_color,
            "rank": rank,
        }
        for rank, company in enumerate(companies, start=1)
    ]
