from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.wellness.modules.companies.models import DEFAULT_BRANDING_COLOR
from app.wellness.models import Base

REGISTRATION_STATUSES = ("pending", "approved", "rejected")


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    branding_color: Mapped[str] = mapped_column(String(16), nullable=False, default=DEFAULT_BRANDING_COLOR)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    short_code: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True)

    # Custom approval email; used only when both are non-blank.
    email_subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_body_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    registrations: Mapped[list["EventRegistration"]] = relationship(
        "EventRegistration",
        back_populates="event",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "eventDate": self.event_date.isoformat() if self.event_date else None,
            "brandingColor": self.branding_color,
            "isActive": self.is_active,
            "shortCode": self.short_code,
            "emailSubject": self.email_subject,
            "emailBodyText": self.email_body_text,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class EventRegistration(Base):
    __tablename__ = "event_registrations"
    __table_args__ = (
        Index("idx_event_registrations_event", "event_id"),
        Index("idx_event_registrations_email", "email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)

    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str] = mapped_column(String(64), nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)  # data:image/png;base64,...
    qr_code_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_code_issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    checked_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    event: Mapped["Event"] = relationship("Event", back_populates="registrations")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "eventId": self.event_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "companyName": self.company_name,
            "status": self.status,
            "qrCode": self.qr_code,
            "qrCodePayload": self.qr_code_payload,
            "qrCodeIssuedAt": self.qr_code_issued_at.isoformat() if self.qr_code_issued_at else None,
            "checkedIn": self.checked_in,
            "checkedInAt": self.checked_in_at.isoformat() if self.checked_in_at else None,
            "registeredAt": self.registered_at.isoformat() if self.registered_at else None,
            "approvedAt": self.approved_at.isoformat() if self.approved_at else None,
        }
