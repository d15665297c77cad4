from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.wellness.models import Base, JSONType


class PollSubject(Base):
    __tablename__ = "poll_subjects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    short_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_poll_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    polls: Mapped[list["Poll"]] = relationship(
        "Poll",
        back_populates="subject",
        cascade="all, delete-orphan",
        order_by="Poll.order_index",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "shortCode": self.short_code,
            "currentPollIndex": self.current_poll_index,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class Poll(Base):
    __tablename__ = "polls"
    __table_args__ = (
        UniqueConstraint("subject_id", "order_index", name="uq_polls_subject_order"),
        Index("idx_polls_subject", "subject_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subject_id: Mapped[int] = mapped_column(ForeignKey("poll_subjects.id", ondelete="CASCADE"), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)  # [{"id": "1", "text": "..."}]
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    subject: Mapped["PollSubject"] = relationship("PollSubject", back_populates="polls")
    votes: Mapped[list["PollVote"]] = relationship(
        "PollVote",
        back_populates="poll",
        cascade="all, delete-orphan",
        lazy="select",
    )

    @property
    def option_ids(self) -> list[str]:
        return [str(o.get("id")) for o in self.options or []]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subjectId": self.subject_id,
            "question": self.question,
            "options": list(self.options or []),
            "orderIndex": self.order_index,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class PollVote(Base):
    __tablename__ = "poll_votes"
    __table_args__ = (
        UniqueConstraint("poll_id", "session_id", name="uq_poll_votes_poll_session"),
        Index("idx_poll_votes_poll", "poll_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    poll_id: Mapped[int] = mapped_column(ForeignKey("polls.id", ondelete="CASCADE"), nullable=False)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    option_id: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    poll: Mapped["Poll"] = relationship("Poll", back_populates="votes")
