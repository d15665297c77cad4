from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify

from app.wellness.db import db_session
from app.wellness.errors import not_found
from app.wellness.modules.polls.models import Poll, PollSubject
from app.wellness.modules.polls.service import (
    cast_vote,
    create_poll,
    create_subject,
    delete_poll,
    delete_subject,
    get_subject_by_code,
    set_current_poll,
    vote_counts,
)
from app.wellness.rbac import require_permission
from app.wellness.realtime import broadcast_current_poll_change, broadcast_vote_update
from app.wellness.utils import json_payload

logger = logging.getLogger(__name__)

bp = Blueprint("polls", __name__)


def _get_subject(subject_id: int) -> PollSubject:
    subject = db_session().get(PollSubject, subject_id)
    if not subject:
        raise not_found("Subject")
    return subject


def _get_poll(poll_id: int) -> Poll:
    poll = db_session().get(Poll, poll_id)
    if not poll:
        raise not_found("Poll")
    return poll


# ---------- Subjects ----------
@bp.get("/api/subjects")
@require_permission("polls.manage")
def subjects_list():
    s = db_session()
    subjects = s.query(PollSubject).order_by(PollSubject.created_at.desc(), PollSubject.id.desc()).all()
    return jsonify([sub.to_dict() for sub in subjects])


@bp.post("/api/subjects")
@require_permission("polls.manage")
def subjects_create():
    s = db_session()
    subject = create_subject(s, json_payload(), g.current_user)
    s.commit()
    return jsonify(subject.to_dict()), 201


@bp.get("/api/subjects/<int:subject_id>")
def subjects_detail(subject_id: int):
    return jsonify(_get_subject(subject_id).to_dict())


@bp.get("/api/subjects/code/<short_code>")
def subjects_by_code(short_code: str):
    subject = get_subject_by_code(db_session(), short_code)
    if not subject:
        raise not_found("Subject")
    return jsonify(subject.to_dict())


@bp.delete("/api/subjects/<int:subject_id>")
@require_permission("polls.manage")
def subjects_delete(subject_id: int):
    s = db_session()
    delete_subject(s, _get_subject(subject_id), g.current_user)
    s.commit()
    return "", 204


@bp.patch("/api/subjects/<int:subject_id>/current-poll")
@require_permission("polls.manage")
def subjects_current_poll(subject_id: int):
    s = db_session()
    subject = _get_subject(subject_id)
    set_current_poll(s, subject, json_payload().get("currentPollIndex"), g.current_user)
    s.commit()
    broadcast_current_poll_change(subject.id, subject.current_poll_index)
    return jsonify(subject.to_dict())


@bp.get("/api/subjects/<int:subject_id>/polls")
def subjects_polls(subject_id: int):
    subject = _get_subject(subject_id)
    return jsonify([p.to_dict() for p in subject.polls])


# ---------- Polls ----------
@bp.post("/api/polls")
@require_permission("polls.manage")
def polls_create():
    s = db_session()
    poll = create_poll(s, json_payload(), g.current_user)
    s.commit()
    return jsonify(poll.to_dict()), 201


@bp.delete("/api/polls/<int:poll_id>")
@require_permission("polls.manage")
def polls_delete(poll_id: int):
    s = db_session()
    moved = delete_poll(s, _get_poll(poll_id), g.current_user)
    s.commit()
    if moved is not None:
        broadcast_current_poll_change(moved.id, moved.current_poll_index)
    return "", 204


@bp.get("/api/polls/<int:poll_id>/votes")
def polls_votes(poll_id: int):
    return jsonify(vote_counts(db_session(), _get_poll(poll_id)))


# ---------- Votes ----------
@bp.post("/api/votes")
def cast_vote_view():
    s = db_session()
    vote, poll = cast_vote(s, json_payload())
    s.commit()
    counts = vote_counts(s, poll)
    broadcast_vote_update(poll.subject_id, poll.id, counts)
    logger.debug("Vote recorded poll_id=%s option_id=%s", poll.id, vote.option_id)
    return jsonify({"id": vote.id, "pollId": poll.id, "optionId": vote.option_id, "voteCounts": counts}), 201
