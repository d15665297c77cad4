import json
import threading
import time

import pytest
from simple_websocket import Client, ConnectionClosed
from werkzeug.serving import make_server

from app.wellness.realtime import handle_message, serve_connection

OPTIONS = [{"id": "a", "text": "Yoga"}, {"id": "b", "text": "Running"}, {"id": "c", "text": "Cycling"}]


@pytest.fixture()
def subject(admin_client):
    r = admin_client.post("/api/subjects", json={"title": "Friday Pulse", "shortCode": "pulse"})
    assert r.status_code == 201
    return r.json


def _create_poll(admin_client, subject_id, **overrides):
    payload = {"subjectId": subject_id, "question": "Favourite workout?", "options": OPTIONS}
    payload.update(overrides)
    return admin_client.post("/api/polls", json=payload)


def _vote(client, poll_id, session_id="browser-1", option_id="a"):
    return client.post("/api/votes", json={"pollId": poll_id, "sessionId": session_id, "optionId": option_id})


class FakeSocket:
    """Stands in for a simple_websocket connection: scripted input, recorded output."""

    def __init__(self, incoming=(), broken=False):
        self.incoming = list(incoming)
        self.sent = []
        self.broken = broken
        self.connected = True

    def receive(self, timeout=None):
        if not self.incoming:
            self.connected = False
            raise ConnectionClosed()
        return self.incoming.pop(0)

    def send(self, data):
        if self.broken:
            raise ConnectionClosed()
        self.sent.append(json.loads(data))

    def frames(self, kind):
        return [f for f in self.sent if f["type"] == kind]


def _hub(app):
    return app.extensions["poll_hub"]


def _subscribe(app, subject_id):
    ws = FakeSocket()
    handle_message(_hub(app), ws, json.dumps({"type": "subscribe", "subjectId": subject_id}))
    return ws


# ---------- Subjects ----------
def test_subject_gets_generated_short_code(admin_client):
    r = admin_client.post("/api/subjects", json={"title": "No code"})
    assert r.status_code == 201
    assert len(r.json["shortCode"]) == 6
    assert r.json["currentPollIndex"] == 0


def test_subject_lookup_by_code(client, subject):
    r = client.get("/api/subjects/code/PULSE")
    assert r.status_code == 200
    assert r.json["id"] == subject["id"]
    assert client.get("/api/subjects/code/missing").status_code == 404


def test_subject_validation(admin_client, subject):
    assert admin_client.post("/api/subjects", json={"title": ""}).status_code == 400
    r = admin_client.post("/api/subjects", json={"title": "Dup", "shortCode": "Pulse"})
    assert r.status_code == 400
    assert r.json["message"] == "Short code is already in use"


def test_subject_management_is_admin_only(company_client):
    assert company_client.post("/api/subjects", json={"title": "Mine"}).status_code == 403
    assert company_client.get("/api/subjects").status_code == 403


# ---------- Polls ----------
def test_poll_order_index_defaults_to_next_slot(admin_client, client, subject):
    first = _create_poll(admin_client, subject["id"]).json
    second = _create_poll(admin_client, subject["id"], question="Best time?").json
    assert first["orderIndex"] == 0
    assert second["orderIndex"] == 1

    polls = client.get(f"/api/subjects/{subject['id']}/polls").json
    assert [p["question"] for p in polls] == ["Favourite workout?", "Best time?"]


@pytest.mark.parametrize(
    "options",
    [
        [{"id": "a", "text": "Only one"}],
        [{"id": str(i), "text": f"Option {i}"} for i in range(5)],
        [{"id": "a", "text": "Same"}, {"id": "a", "text": "Same again"}],
        [{"id": "a"}, {"id": "b", "text": "Missing text above"}],
    ],
)
def test_poll_option_rules(admin_client, subject, options):
    assert _create_poll(admin_client, subject["id"], options=options).status_code == 400


def test_poll_for_unknown_subject(admin_client):
    assert _create_poll(admin_client, 9999).status_code == 404


def test_current_poll_must_exist(admin_client, subject):
    _create_poll(admin_client, subject["id"])
    _create_poll(admin_client, subject["id"])

    r = admin_client.patch(f"/api/subjects/{subject['id']}/current-poll", json={"currentPollIndex": 1})
    assert r.status_code == 200
    assert r.json["currentPollIndex"] == 1

    r = admin_client.patch(f"/api/subjects/{subject['id']}/current-poll", json={"currentPollIndex": 5})
    assert r.status_code == 400
    r = admin_client.patch(f"/api/subjects/{subject['id']}/current-poll", json={"currentPollIndex": -1})
    assert r.status_code == 400


# ---------- Votes ----------
def test_vote_counts_include_every_option(client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    assert client.get(f"/api/polls/{poll_id}/votes").json == {"a": 0, "b": 0, "c": 0}

    r = _vote(client, poll_id, "browser-1", "a")
    assert r.status_code == 201
    assert r.json["voteCounts"] == {"a": 1, "b": 0, "c": 0}
    _vote(client, poll_id, "browser-2", "c")
    _vote(client, poll_id, "browser-3", "a")

    assert client.get(f"/api/polls/{poll_id}/votes").json == {"a": 2, "b": 0, "c": 1}


def test_one_vote_per_session(client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    assert _vote(client, poll_id, "browser-1", "a").status_code == 201
    r = _vote(client, poll_id, "browser-1", "b")
    assert r.status_code == 409
    assert r.json["message"] == "You have already voted on this poll"
    assert client.get(f"/api/polls/{poll_id}/votes").json == {"a": 1, "b": 0, "c": 0}


def test_vote_validation(client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    assert _vote(client, poll_id, option_id="z").status_code == 400
    assert _vote(client, 9999).status_code == 404
    r = client.post("/api/votes", json={"pollId": poll_id})
    assert r.status_code == 400
    assert r.json["message"] == "pollId, sessionId and optionId are required"


def test_deleting_subject_removes_polls(client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    _vote(client, poll_id)
    assert admin_client.delete(f"/api/subjects/{subject['id']}").status_code == 204
    assert client.get(f"/api/polls/{poll_id}/votes").status_code == 404
    assert client.get(f"/api/subjects/{subject['id']}").status_code == 404


def test_delete_poll(client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    assert admin_client.delete(f"/api/polls/{poll_id}").status_code == 204
    assert client.get(f"/api/polls/{poll_id}/votes").status_code == 404


def test_explicit_order_index_must_be_free(admin_client, client, subject):
    assert _create_poll(admin_client, subject["id"], orderIndex=3).status_code == 201
    r = _create_poll(admin_client, subject["id"], question="Clash?", orderIndex=3)
    assert r.status_code == 400
    assert r.json["message"] == "A poll already uses that orderIndex"
    assert [p["orderIndex"] for p in client.get(f"/api/subjects/{subject['id']}/polls").json] == [3]

    other = admin_client.post("/api/subjects", json={"title": "Other"}).json
    assert _create_poll(admin_client, other["id"], orderIndex=3).status_code == 201


def test_deleting_current_poll_moves_subject_to_remaining_poll(app, client, admin_client, subject):
    first = _create_poll(admin_client, subject["id"]).json
    _create_poll(admin_client, subject["id"], orderIndex=4)
    _create_poll(admin_client, subject["id"], orderIndex=2)
    assert client.get(f"/api/subjects/{subject['id']}").json["currentPollIndex"] == 0
    ws = _subscribe(app, subject["id"])

    assert admin_client.delete(f"/api/polls/{first['id']}").status_code == 204
    assert client.get(f"/api/subjects/{subject['id']}").json["currentPollIndex"] == 2
    assert [f["currentPollIndex"] for f in ws.frames("currentPollChange")] == [2]


def test_deleting_last_poll_resets_current_index(client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"], orderIndex=5).json["id"]
    admin_client.patch(f"/api/subjects/{subject['id']}/current-poll", json={"currentPollIndex": 5})
    assert admin_client.delete(f"/api/polls/{poll_id}").status_code == 204
    assert client.get(f"/api/subjects/{subject['id']}").json["currentPollIndex"] == 0


def test_deleting_other_poll_keeps_current_index(app, client, admin_client, subject):
    _create_poll(admin_client, subject["id"])
    second = _create_poll(admin_client, subject["id"]).json
    ws = _subscribe(app, subject["id"])

    assert admin_client.delete(f"/api/polls/{second['id']}").status_code == 204
    assert client.get(f"/api/subjects/{subject['id']}").json["currentPollIndex"] == 0
    assert ws.frames("currentPollChange") == []


# ---------- Live dashboard ----------
def test_socket_endpoint_requires_upgrade(client):
    r = client.get("/ws/polls")
    assert r.status_code == 400
    assert r.json["message"] == "Expected a WebSocket upgrade"


def test_subscribe_is_acknowledged(app, subject):
    ws = _subscribe(app, subject["id"])
    assert ws.sent == [{"type": "subscribed", "subjectId": subject["id"]}]
    assert _hub(app).subscribers(subject["id"]) == [ws]


def test_dashboard_receives_vote_updates(app, client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    ws = _subscribe(app, subject["id"])

    _vote(client, poll_id, "browser-1", "b")
    updates = ws.frames("voteUpdate")
    assert len(updates) == 1
    assert updates[0]["subjectId"] == subject["id"]
    assert updates[0]["pollId"] == poll_id
    assert updates[0]["voteCounts"] == {"a": 0, "b": 1, "c": 0}
    assert "timestamp" in updates[0]


def test_dashboard_receives_current_poll_changes(app, admin_client, subject):
    _create_poll(admin_client, subject["id"])
    _create_poll(admin_client, subject["id"])
    ws = _subscribe(app, subject["id"])

    admin_client.patch(f"/api/subjects/{subject['id']}/current-poll", json={"currentPollIndex": 1})
    changes = ws.frames("currentPollChange")
    assert [c["currentPollIndex"] for c in changes] == [1]
    assert changes[0]["subjectId"] == subject["id"]


def test_other_subjects_are_not_broadcast(app, client, admin_client, subject):
    other = admin_client.post("/api/subjects", json={"title": "Other"}).json
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    ws = _subscribe(app, other["id"])

    _vote(client, poll_id)
    assert ws.frames("voteUpdate") == []


def test_unsubscribe_stops_updates(app, client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    ws = _subscribe(app, subject["id"])
    handle_message(_hub(app), ws, json.dumps({"type": "unsubscribe", "subjectId": subject["id"]}))
    assert ws.frames("unsubscribed") == [{"type": "unsubscribed", "subjectId": subject["id"]}]

    _vote(client, poll_id)
    assert ws.frames("voteUpdate") == []


@pytest.mark.parametrize(
    "raw",
    ["not json", "[1, 2]", json.dumps({"type": "subscribe"}), json.dumps({"type": "dance", "subjectId": 1})],
)
def test_unusable_frames_are_ignored(app, raw):
    ws = FakeSocket()
    handle_message(_hub(app), ws, raw)
    assert ws.sent == []
    assert _hub(app).subscribers(1) == []


def test_closed_connection_leaves_every_subject(app):
    ws = FakeSocket(
        incoming=[
            json.dumps({"type": "subscribe", "subjectId": 1}),
            json.dumps({"type": "subscribe", "subjectId": 2}),
        ]
    )
    serve_connection(_hub(app), ws)
    assert len(ws.frames("subscribed")) == 2
    assert _hub(app).subscribers(1) == []
    assert _hub(app).subscribers(2) == []


def test_dead_socket_is_dropped_on_broadcast(app, client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    live = _subscribe(app, subject["id"])
    dead = FakeSocket(broken=True)
    _hub(app).subscribe(subject["id"], dead)
    closed = FakeSocket()
    closed.connected = False
    _hub(app).subscribe(subject["id"], closed)

    assert _vote(client, poll_id).status_code == 201
    assert len(live.frames("voteUpdate")) == 1
    assert closed.sent == []
    assert _hub(app).subscribers(subject["id"]) == [live]


def test_websocket_round_trip_over_http(app, client, admin_client, subject):
    poll_id = _create_poll(admin_client, subject["id"]).json["id"]
    server = make_server("127.0.0.1", 0, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        ws = Client.connect(f"ws://127.0.0.1:{server.server_port}/ws/polls")
        ws.send(json.dumps({"type": "subscribe", "subjectId": subject["id"]}))
        assert json.loads(ws.receive(timeout=5)) == {"type": "subscribed", "subjectId": subject["id"]}

        _vote(client, poll_id, "browser-9", "c")
        update = json.loads(ws.receive(timeout=5))
        assert update["type"] == "voteUpdate"
        assert update["voteCounts"] == {"a": 0, "b": 0, "c": 1}

        ws.close()
        deadline = time.time() + 5
        while _hub(app).subscribers(subject["id"]) and time.time() < deadline:
            time.sleep(0.05)
        assert _hub(app).subscribers(subject["id"]) == []
    finally:
        server.shutdown()
        server.server_close()
