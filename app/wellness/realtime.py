"""
Live poll dashboard push channel.

Plain WebSocket at /ws/polls carrying JSON text frames:

    client -> {"type": "subscribe", "subjectId": 1}
              {"type": "unsubscribe", "subjectId": 1}
    server -> {"type": "subscribed", "subjectId": 1}
              {"type": "voteUpdate", "subjectId", "pollId", "voteCounts", "timestamp"}
              {"type": "currentPollChange", "subjectId", "currentPollIndex", "timestamp"}

Subscriptions live in process memory (one PollHub per app) and are dropped
when the connection closes.
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone

from flask import Blueprint, Flask, Response, current_app, request
import simple_websocket
from simple_websocket import ConnectionClosed

from app.wellness.errors import bad_request

logger = logging.getLogger(__name__)

SOCKET_PATH = "/ws/polls"

bp = Blueprint("realtime", __name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class PollHub:
    """Subject id -> open sockets. Keys are strings so 1 and "1" share a room."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._rooms: dict[str, set] = {}

    def subscribe(self, subject_id, ws) -> None:
        with self._lock:
            self._rooms.setdefault(str(subject_id), set()).add(ws)

    def unsubscribe(self, subject_id, ws) -> None:
        with self._lock:
            room = self._rooms.get(str(subject_id))
            if room is not None:
                room.discard(ws)
                if not room:
                    del self._rooms[str(subject_id)]

    def drop(self, ws) -> None:
        """Forget a socket in every room."""
        with self._lock:
            for key in list(self._rooms):
                self._rooms[key].discard(ws)
                if not self._rooms[key]:
                    del self._rooms[key]

    def subscribers(self, subject_id) -> list:
        with self._lock:
            return list(self._rooms.get(str(subject_id), ()))

    def broadcast(self, subject_id, message: dict) -> int:
        frame = json.dumps(message)
        delivered = 0
        stale = []
        with self._send_lock:
            for ws in self.subscribers(subject_id):
                if not ws.connected:
                    stale.append(ws)
                    continue
                try:
                    ws.send(frame)
                    delivered += 1
                except (ConnectionClosed, OSError) as e:
                    logger.info("Dropping dead poll socket for subject=%s: %s", subject_id, e)
                    stale.append(ws)
        for ws in stale:
            self.drop(ws)
        return delivered


def handle_message(hub: PollHub, ws, raw) -> None:
    """Apply one client frame. Anything unrecognised is logged and ignored."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-JSON poll socket frame")
        return
    if not isinstance(data, dict):
        return
    kind = data.get("type")
    subject_id = data.get("subjectId")
    if subject_id in (None, ""):
        logger.debug("Poll socket frame without subjectId: %s", kind)
        return

    if kind == "subscribe":
        hub.subscribe(subject_id, ws)
        ws.send(json.dumps({"type": "subscribed", "subjectId": subject_id}))
    elif kind == "unsubscribe":
        hub.unsubscribe(subject_id, ws)
        ws.send(json.dumps({"type": "unsubscribed", "subjectId": subject_id}))
    else:
        logger.debug("Unknown poll socket frame type: %s", kind)


def serve_connection(hub: PollHub, ws) -> None:
    """Read frames until the peer goes away, then forget the socket."""
    try:
        while True:
            handle_message(hub, ws, ws.receive())
    except ConnectionClosed:
        logger.info("Poll socket disconnected")
    finally:
        hub.drop(ws)


class _UpgradedResponse(Response):
    """The socket now belongs to the WebSocket; nothing goes back through WSGI."""

    def __init__(self, mode: str) -> None:
        super().__init__()
        self._mode = mode

    def __call__(self, environ, start_response):
        if self._mode == "gunicorn":
            raise StopIteration()
        if self._mode == "werkzeug":
            # The dev server treats this as a dropped connection and moves on.
            raise ConnectionError()
        return []


@bp.get(SOCKET_PATH)
def poll_socket():
    if (request.headers.get("Upgrade") or "").lower() != "websocket":
        raise bad_request("Expected a WebSocket upgrade")
    try:
        ws = simple_websocket.Server.accept(
            request.environ, ping_interval=current_app.config.get("WS_PING_INTERVAL") or None
        )
    except simple_websocket.ConnectionError as e:
        logger.warning("WebSocket handshake failed: %s", e)
        raise bad_request("WebSocket handshake failed") from e
    logger.info("Poll socket connected from %s", request.remote_addr)
    hub: PollHub = current_app.extensions["poll_hub"]
    try:
        serve_connection(hub, ws)
    finally:
        if ws.connected:
            ws.close()
    return _UpgradedResponse(ws.mode)


def init_realtime(app: Flask) -> PollHub:
    hub = PollHub()
    app.extensions["poll_hub"] = hub
    app.register_blueprint(bp)
    return hub


def broadcast_vote_update(subject_id: int, poll_id: int, vote_counts: dict[str, int]) -> None:
    current_app.extensions["poll_hub"].broadcast(
        subject_id,
        {
            "type": "voteUpdate",
            "subjectId": subject_id,
            "pollId": poll_id,
            "voteCounts": vote_counts,
            "timestamp": _timestamp(),
        },
    )


def broadcast_current_poll_change(subject_id: int, current_poll_index: int) -> None:
    current_app.extensions["poll_hub"].broadcast(
        subject_id,
        {
            "type": "currentPollChange",
            "subjectId": subject_id,
            "currentPollIndex": current_poll_index,
            "timestamp": _timestamp(),
        },
    )
