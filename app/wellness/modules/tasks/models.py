from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.wellness.models import Base, JSONType

if TYPE_CHECKING:
    from app.wellness.modules.companies.models import Company


PROOF_STATUSES = ("pending", "approved", "rejected")
PROOF_CONTENT_TYPES = ("image", "video")


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    video_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    calories_burned: Mapped[int] = mapped_column(Integer, nullable=False, default=50)

    date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    proofs: Mapped[list["TaskProof"]] = relationship("TaskProof", back_populates="task", lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "videoUrl": self.video_url,
            "pointsReward": self.points_reward,
            "caloriesBurned": self.calories_burned,
            "date": self.date.isoformat() if self.date else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class TaskProof(Base):
    __tablename__ = "task_proofs"
    __table_args__ = (
        Index("idx_task_proofs_company", "company_id"),
        Index("idx_task_proofs_task", "task_id"),
        Index("idx_task_proofs_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id", ondelete="RESTRICT"), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    content_urls: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)  # image | video
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    task: Mapped["Task"] = relationship("Task", back_populates="proofs")
    company: Mapped["Company"] = relationship("Company", lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "companyId": self.company_id,
            "contentUrls": list(self.content_urls or []),
            "contentType": self.content_type,
            "status": self.status,
            "adminNotes": self.admin_notes,
            "submittedAt": self.submitted_at.isoformat() if self.submitted_at else None,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewedByUserId": self.reviewed_by_user_id,
        }
