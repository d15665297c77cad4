from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.wellness.audit import record_event
from app.wellness.errors import ApiError, bad_request, not_found, validation_failed
from app.wellness.modules.polls.models import Poll, PollSubject, PollVote
from app.wellness.utils import clean_str, generate_short_code, parse_int, validate_short_code

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.wellness.models import User

logger = logging.getLogger(__name__)

MIN_OPTIONS = 2
MAX_OPTIONS = 4
_SHORT_CODE_ATTEMPTS = 10


# ---------- Subjects ----------
def get_subject_by_code(s: "Session", short_code: str) -> PollSubject | None:
    code = (short_code or "").strip()
    if not code:
        return None
    return s.query(PollSubject).filter(func.lower(PollSubject.short_code) == code.lower()).one_or_none()


def _unique_short_code(s: "Session") -> str:
    for _ in range(_SHORT_CODE_ATTEMPTS):
        code = generate_short_code()
        if get_subject_by_code(s, code) is None:
            return code
    raise ApiError(500, "Could not allocate a short code")


def create_subject(s: "Session", payload: dict, user: "User") -> PollSubject:
    errors = []
    title = clean_str(payload.get("title"))
    if not title:
        errors.append("Title is required")
    short_code, error = validate_short_code(payload.get("shortCode"))
    if error:
        errors.append(error)
    if errors:
        raise validation_failed(errors)

    if short_code:
        if get_subject_by_code(s, short_code) is not None:
            raise bad_request("Short code is already in use")
    else:
        short_code = _unique_short_code(s)

    subject = PollSubject(
        title=title,
        description=clean_str(payload.get("description")),
        short_code=short_code,
        current_poll_index=0,
        created_at=datetime.utcnow(),
    )
    s.add(subject)
    s.flush()
    record_event(
        s,
        actor=user,
        action="poll_subject.create",
        entity_type="PollSubject",
        entity_id=str(subject.id),
        metadata={"title": subject.title, "short_code": subject.short_code},
    )
    return subject


def delete_subject(s: "Session", subject: PollSubject, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="poll_subject.delete",
        entity_type="PollSubject",
        entity_id=str(subject.id),
        metadata={"title": subject.title, "polls": len(subject.polls)},
    )
    s.delete(subject)


def set_current_poll(s: "Session", subject: PollSubject, index, user: "User") -> PollSubject:
    new_index = parse_int(index)
    if new_index is None or new_index < 0:
        raise bad_request("currentPollIndex must be a non-negative integer")
    if not any(p.order_index == new_index for p in subject.polls):
        raise bad_request("No poll at that index")
    previous = subject.current_poll_index
    subject.current_poll_index = new_index
    record_event(
        s,
        actor=user,
        action="poll_subject.current_poll",
        entity_type="PollSubject",
        entity_id=str(subject.id),
        metadata={"from": previous, "to": new_index},
    )
    return subject


# ---------- Polls ----------
def validate_poll_payload(payload: dict) -> list[str]:
    """Validate poll creation payload. Returns list of errors."""
    errors = []
    if parse_int(payload.get("subjectId")) is None:
        errors.append("Subject is required")
    if not clean_str(payload.get("question")):
        errors.append("Question is required")
    options = payload.get("options")
    if not isinstance(options, list) or not (MIN_OPTIONS <= len(options) <= MAX_OPTIONS):
        errors.append(f"Polls need between {MIN_OPTIONS} and {MAX_OPTIONS} options")
        return errors
    ids = []
    for opt in options:
        if not isinstance(opt, dict) or clean_str(opt.get("id")) is None or clean_str(opt.get("text")) is None:
            errors.append("Each option needs an id and text")
            return errors
        ids.append(str(opt["id"]).strip())
    if len(set(ids)) != len(ids):
        errors.append("Option ids must be unique")
    if "orderIndex" in payload and payload.get("orderIndex") is not None:
        order_index = parse_int(payload.get("orderIndex"))
        if order_index is None or order_index < 0:
            errors.append("orderIndex must be a non-negative integer")
    return errors


def create_poll(s: "Session", payload: dict, user: "User") -> Poll:
    errors = validate_poll_payload(payload)
    if errors:
        raise validation_failed(errors)
    subject = s.get(PollSubject, parse_int(payload.get("subjectId")))
    if not subject:
        raise not_found("Subject")

    order_index = parse_int(payload.get("orderIndex"))
    if order_index is None:
        highest = s.query(func.max(Poll.order_index)).filter(Poll.subject_id == subject.id).scalar()
        order_index = 0 if highest is None else highest + 1
    elif any(p.order_index == order_index for p in subject.polls):
        raise bad_request("A poll already uses that orderIndex")

    poll = Poll(
        subject_id=subject.id,
        question=clean_str(payload.get("question")),
        options=[{"id": str(o["id"]).strip(), "text": str(o["text"]).strip()} for o in payload["options"]],
        order_index=order_index,
        created_at=datetime.utcnow(),
    )
    s.add(poll)
    try:
        s.flush()
    except IntegrityError as e:
        s.rollback()
        raise bad_request("A poll already uses that orderIndex") from e
    record_event(
        s,
        actor=user,
        action="poll.create",
        entity_type="Poll",
        entity_id=str(poll.id),
        metadata={"subject_id": subject.id, "order_index": order_index},
    )
    return poll


def delete_poll(s: "Session", poll: Poll, user: "User") -> PollSubject | None:
    """
    Delete a poll. When it was the subject's current poll, the subject moves to
    the lowest remaining orderIndex (0 when none remain) and is returned so the
    caller can announce the change.
    """
    subject = poll.subject
    moved = subject is not None and subject.current_poll_index == poll.order_index
    if moved:
        remaining = [p.order_index for p in subject.polls if p.id != poll.id]
        subject.current_poll_index = min(remaining) if remaining else 0
    record_event(
        s,
        actor=user,
        action="poll.delete",
        entity_type="Poll",
        entity_id=str(poll.id),
        metadata={"subject_id": poll.subject_id, "question": poll.question},
    )
    s.delete(poll)
    return subject if moved else None


# ---------- Votes ----------
def vote_counts(s: "Session", poll: Poll) -> dict[str, int]:
    """Counts per option id, zero for options nobody picked."""
    counts = {option_id: 0 for option_id in poll.option_ids}
    rows = (
        s.query(PollVote.option_id, func.count(PollVote.id))
        .filter(PollVote.poll_id == poll.id)
        .group_by(PollVote.option_id)
        .all()
    )
    for option_id, count in rows:
        counts[str(option_id)] = int(count)
    return counts


def cast_vote(s: "Session", payload: dict) -> tuple[PollVote, Poll]:
    poll_id = parse_int(payload.get("pollId"))
    session_id = clean_str(payload.get("sessionId"))
    option_id = clean_str(payload.get("optionId"))
    if poll_id is None or not session_id or not option_id:
        raise bad_request("pollId, sessionId and optionId are required")

    poll = s.get(Poll, poll_id)
    if not poll:
        raise not_found("Poll")
    if option_id not in poll.option_ids:
        raise bad_request("Invalid option")

    vote = PollVote(poll_id=poll.id, session_id=session_id, option_id=option_id, created_at=datetime.utcnow())
    s.add(vote)
    try:
        s.flush()
    except IntegrityError as e:
        s.rollback()
        raise ApiError(409, "You have already voted on this poll") from e
    return vote, poll
