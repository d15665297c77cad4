from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.wellness.models import Base

if TYPE_CHECKING:
    from app.wellness.models import User


DEFAULT_BRANDING_COLOR = "#211100"


class Company(Base):
    __tablename__ = "companies"
    __table_args__ = (
        Index("idx_companies_points", "total_points"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_person_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    phone: Mapped[str] = mapped_column(String(64), nullable=False)
    team_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    logo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    branding_color: Mapped[str] = mapped_column(String(16), nullable=False, default=DEFAULT_BRANDING_COLOR)

    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_calories_burned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    daily_goal: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User | None"] = relationship("User", lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contactPersonName": self.contact_person_name,
            "email": self.email,
            "phone": self.phone,
            "teamSize": self.team_size,
            "logoUrl": self.logo_url,
            "brandingColor": self.branding_color,
            "totalPoints": self.total_points or 0,
            "totalCaloriesBurned": self.total_calories_burned or 0,
            "dailyGoal": self.daily_goal,
            "userId": self.user_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
