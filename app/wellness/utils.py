from __future__ import annotations

import re
import secrets
import string
from datetime import datetime, timezone

from flask import request

from app.wellness.errors import bad_request

_SHORT_CODE_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def json_payload() -> dict:
    """Request body as a dict (JSON preferred, form data as a fallback)."""
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict() if request.form else {}
    if not isinstance(data, dict):
        raise bad_request("Request body must be a JSON object")
    return data


def clean_str(value) -> str | None:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def parse_int(value, *, default: int | None = None) -> int | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_datetime(value) -> datetime | None:
    """Accept ISO-8601 strings (with or without a trailing Z) or datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1]
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    # Stored naive (UTC).
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.replace(tzinfo=None)


def validate_short_code(short_code: str | None, *, optional: bool = True) -> tuple[str | None, str | None]:
    """
    Validate and clean a short code.
    Returns (cleaned_value, error); cleaned_value is None for an empty optional code.
    """
    cleaned = (short_code or "").strip()
    if not cleaned:
        if optional:
            return None, None
        return None, "Short code is required"
    if len(cleaned) < 3:
        return None, "Short code must be at least 3 characters long"
    if len(cleaned) > 50:
        return None, "Short code must be no more than 50 characters long"
    if not _SHORT_CODE_RE.match(cleaned):
        return None, "Short code can only contain letters, numbers, hyphens, and underscores"
    if re.search(r"[-_]{2,}", cleaned):
        return None, "Short code cannot have consecutive hyphens or underscores"
    if cleaned[0] in "-_" or cleaned[-1] in "-_":
        return None, "Short code cannot start or end with hyphens or underscores"
    return cleaned, None


def generate_short_code(length: int = 6) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def is_valid_email(email: str | None) -> bool:
    return bool(email and _EMAIL_RE.match(email.strip()))


def require_fields(payload: dict, fields: dict[str, str]) -> list[str]:
    """`fields` maps payload key -> human label."""
    errors = []
    for key, label in fields.items():
        if not clean_str(payload.get(key)):
            errors.append(f"{label} is required")
    return errors
