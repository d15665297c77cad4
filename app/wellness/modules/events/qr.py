"""
Signed check-in tokens and QR images.

Token layout: "<attendee_id>:<event_id>:<nonce>:<issued_ms>.<hex hmac-sha256>",
the HMAC taken over everything left of the dot with QR_SECRET.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import io
import json
import logging
import secrets
import time
from dataclasses import dataclass

import qrcode
from qrcode.constants import ERROR_CORRECT_M

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 7
# Tolerated clock skew for tokens stamped slightly in the future.
_FUTURE_SKEW_MS = 5 * 60 * 1000
_QR_TARGET_WIDTH = 300
_QR_MARGIN = 2


class QRTokenError(ValueError):
    pass


class QRTokenExpired(QRTokenError):
    pass


@dataclass(frozen=True)
class QRToken:
    attendee_id: str
    event_id: str
    nonce: str
    issued_ms: int
    signature: str

    @property
    def data(self) -> str:
        return f"{self.attendee_id}:{self.event_id}:{self.nonce}:{self.issued_ms}"

    def __str__(self) -> str:
        return f"{self.data}.{self.signature}"


def _sign(secret: str, data: str) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).hexdigest()


def current_millis() -> int:
    return int(time.time() * 1000)


def generate_token(attendee_id, event_id, *, secret: str, now_ms: int | None = None) -> str:
    nonce = secrets.token_hex(16)
    issued = now_ms if now_ms is not None else current_millis()
    data = f"{attendee_id}:{event_id}:{nonce}:{issued}"
    return f"{data}.{_sign(secret, data)}"


def parse_token(token: str) -> QRToken:
    data, sep, signature = (token or "").strip().rpartition(".")
    if not sep or not data or not signature:
        raise QRTokenError("Malformed token")
    parts = data.split(":")
    if len(parts) != 4 or not all(parts):
        raise QRTokenError("Token is missing required information")
    attendee_id, event_id, nonce, issued_raw = parts
    try:
        issued_ms = int(issued_raw)
    except ValueError as e:
        raise QRTokenError("Malformed token timestamp") from e
    return QRToken(
        attendee_id=attendee_id,
        event_id=event_id,
        nonce=nonce,
        issued_ms=issued_ms,
        signature=signature,
    )


def verify_token(
    token: str,
    *,
    secret: str,
    attendee_id=None,
    event_id=None,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    now_ms: int | None = None,
) -> QRToken:
    """
    Parse and verify a token. Raises QRTokenError (or QRTokenExpired) when the
    signature, the expected ids or the age check fails.
    """
    parsed = parse_token(token)
    expected = _sign(secret, parsed.data)
    if not hmac.compare_digest(expected, parsed.signature.lower()):
        raise QRTokenError("Invalid token signature")
    if attendee_id is not None and str(attendee_id) != parsed.attendee_id:
        raise QRTokenError("Token does not match attendee")
    if event_id is not None and str(event_id) != parsed.event_id:
        raise QRTokenError("Token does not match event")

    now = now_ms if now_ms is not None else current_millis()
    if parsed.issued_ms > now + _FUTURE_SKEW_MS:
        raise QRTokenError("Token issued in the future")
    if now - parsed.issued_ms > max_age_days * 24 * 60 * 60 * 1000:
        raise QRTokenExpired("Token expired")
    return parsed


def build_payload(attendee_id: int, event_id: int, token: str, issued_ms: int) -> dict:
    return {
        "attendeeId": attendee_id,
        "eventId": event_id,
        "token": token,
        "issuedAt": issued_ms,
    }


def render_qr_data_url(payload: dict) -> str:
    """Encode the JSON payload as a PNG QR code data URL."""
    data = json.dumps(payload, separators=(",", ":"))
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, border=_QR_MARGIN)
    qr.add_data(data)
    qr.make(fit=True)
    modules = qr.modules_count + 2 * _QR_MARGIN
    qr.box_size = max(1, _QR_TARGET_WIDTH // modules)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
