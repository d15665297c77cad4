"""
Outbound email.

Backends (MAIL_BACKEND):
- smtp:    deliver through SMTP_HOST/SMTP_PORT (STARTTLS when SMTP_USE_TLS).
- console: log the message and drop it (default when SMTP_HOST is unset).
- memory:  append to app.extensions["mail_outbox"] (tests).
"""
from __future__ import annotations

import base64
import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage

from flask import current_app

logger = logging.getLogger(__name__)

SIGNATURE = "FDDK Team"


class MailError(RuntimeError):
    pass


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    text: str
    html: str | None = None
    qr_code_data_url: str | None = None
    attachments: list[tuple[str, str, bytes]] = field(default_factory=list)  # (filename, mime, data)


def _decode_data_url(data_url: str) -> tuple[str, bytes]:
    header, _, payload = data_url.partition(",")
    if not header.startswith("data:") or ";base64" not in header:
        raise MailError("Unsupported data URL")
    mime = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    return mime, base64.b64decode(payload)


def build_message(mail: OutgoingEmail, *, sender: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = mail.subject
    msg["From"] = sender
    msg["To"] = mail.to
    msg.set_content(mail.text)

    html = mail.html or "<p>" + mail.text.replace("\n", "<br/>") + "</p>"
    if mail.qr_code_data_url:
        html += (
            '<div style="margin-top: 20px; text-align: center;">'
            "<h3>Your Event QR Code</h3>"
            '<img src="cid:qrcode" alt="QR Code" style="max-width: 300px;" />'
            '<p style="margin-top: 10px; font-size: 12px; color: #666;">'
            "Present this QR code at the event for check-in</p></div>"
        )
    msg.add_alternative(html, subtype="html")

    if mail.qr_code_data_url:
        mime, data = _decode_data_url(mail.qr_code_data_url)
        maintype, _, subtype = mime.partition("/")
        html_part = msg.get_payload()[-1]
        html_part.add_related(data, maintype=maintype, subtype=subtype or "png", cid="<qrcode>", filename="qrcode.png")

    for filename, mime, data in mail.attachments:
        maintype, _, subtype = mime.partition("/")
        msg.add_attachment(data, maintype=maintype, subtype=subtype or "octet-stream", filename=filename)
    return msg


def send_email(mail: OutgoingEmail) -> None:
    """Send (or record) one email. Raises MailError on delivery failure."""
    cfg = current_app.config
    backend = (cfg.get("MAIL_BACKEND") or "console").lower()
    sender = cfg.get("MAIL_FROM") or "no-reply@localhost"
    msg = build_message(mail, sender=sender)

    if backend == "memory":
        current_app.extensions.setdefault("mail_outbox", []).append(msg)
        logger.info("EMAIL queued (memory) to=%s subject=%s", mail.to, mail.subject)
        return

    if backend == "console":
        logger.info(
            "EMAIL (console) to=%s subject=%s has_qr=%s",
            mail.to,
            mail.subject,
            bool(mail.qr_code_data_url),
        )
        logger.debug("EMAIL body:\n%s", mail.text)
        return

    host = cfg.get("SMTP_HOST")
    if not host:
        raise MailError("SMTP not configured")
    try:
        with smtplib.SMTP(host, int(cfg.get("SMTP_PORT") or 587), timeout=10) as smtp:
            if cfg.get("SMTP_USE_TLS"):
                smtp.starttls()
            if cfg.get("SMTP_USER"):
                smtp.login(cfg["SMTP_USER"], cfg.get("SMTP_PASSWORD") or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise MailError(f"Failed to send email to {mail.to}: {e}") from e
    logger.info("EMAIL sent to=%s subject=%s", mail.to, mail.subject)


def registration_approved_template(event_title: str, attendee_name: str) -> tuple[str, str]:
    subject = f"Your Registration for {event_title} is Approved!"
    text = (
        f"Dear {attendee_name},\n\n"
        f"Your registration for {event_title} has been approved!\n\n"
        "Please find your QR code below. You'll need to present this at the event for check-in.\n\n"
        "We look forward to seeing you!\n\n"
        f"Best regards,\n{SIGNATURE}"
    )
    return subject, text


def send_admin_welcome_email(to: str, name: str, temporary_password: str) -> None:
    text = (
        "Welcome to FDDK Admin Portal\n\n"
        f"Hi {name},\n\n"
        "An administrator account has been created for you.\n\n"
        "Your Login Credentials:\n"
        f"Email: {to}\n"
        f"Temporary Password: {temporary_password}\n\n"
        "Important: Please change your password after your first login for security purposes.\n\n"
        f"Best regards,\n{SIGNATURE}"
    )
    send_email(OutgoingEmail(to=to, subject="Welcome to FDDK Admin Portal", text=text))


def send_password_reset_email(to: str, name: str, reset_url: str) -> None:
    text = (
        f"Hi {name},\n\n"
        "We received a request to reset your password. Use the link below to choose a new one:\n\n"
        f"{reset_url}\n\n"
        "This link expires in 1 hour. If you did not request a reset, you can ignore this email.\n\n"
        f"Best regards,\n{SIGNATURE}"
    )
    send_email(OutgoingEmail(to=to, subject="Reset your password", text=text))


def send_company_removal_email(to: str, company_name: str, deleted: dict[str, int]) -> None:
    text = (
        f"Hello {company_name},\n\n"
        "Your company account has been removed from the FDDK Corporate Wellness platform.\n\n"
        f"Removed proofs: {deleted.get('proofs', 0)}\n"
        f"Removed users: {deleted.get('users', 0)}\n\n"
        "If you believe this was a mistake, please contact the organisers.\n\n"
        f"Best regards,\n{SIGNATURE}"
    )
    send_email(OutgoingEmail(to=to, subject="Your company account has been removed", text=text))
