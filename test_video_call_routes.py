# test_video_call_routes.py - REST routes and the signaling socket through the app

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from auth import get_jwt_manager
from main import create_app


@pytest.fixture
def client(meeting_store):
    app = create_app(meeting_store=meeting_store)
    with TestClient(app) as test_client:
        yield test_client


def issue_token(user_id, name, role="user"):
    return get_jwt_manager().create_access_token(user_id, name, role)


def bearer(user_id, name, role="user"):
    return {"Authorization": f"Bearer {issue_token(user_id, name, role)}"}


# =============================================================================
# REST
# =============================================================================

def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["active_rooms"] == 0
    assert body["active_participants"] == 0


def test_call_token_for_attendee(client):
    response = client.get("/api/video-calls/m1/token", headers=bearer("bob", "Bob"))

    assert response.status_code == 200
    token = response.json()["call_token"]
    assert token["room_id"] == "meeting_m1"
    assert token["meeting_title"] == "Investor pitch"
    assert token["user_name"] == "Bob"
    assert token["is_organizer"] is False


def test_call_token_for_organizer(client):
    response = client.get("/api/video-calls/m1/token", headers=bearer("alice", "Alice"))

    assert response.json()["call_token"]["is_organizer"] is True


def test_call_token_for_stranger_is_forbidden(client):
    response = client.get("/api/video-calls/m1/token", headers=bearer("mallory", "Mallory"))

    assert response.status_code == 403
    assert response.json()["detail"] == "You are not authorized to join this meeting"


def test_call_token_for_unknown_meeting(client):
    response = client.get("/api/video-calls/nope/token", headers=bearer("alice", "Alice"))

    assert response.status_code == 404
    assert response.json()["detail"] == "Meeting not found"


def test_routes_require_a_valid_token(client):
    missing = client.get("/api/video-calls/m1/token")
    forged = client.get("/api/video-calls/m1/token", headers={"Authorization": "Bearer not-a-jwt"})

    assert missing.status_code == 401
    assert missing.json()["detail"] == "Not authorized, no token"
    assert missing.headers["www-authenticate"] == "Bearer"
    assert forged.status_code == 401
    assert forged.json()["detail"] == "Not authorized, token failed"


def test_stats_are_limited_to_privileged_roles(client):
    denied = client.get("/api/video-calls/stats", headers=bearer("bob", "Bob", "user"))
    allowed = client.get("/api/video-calls/stats", headers=bearer("bob", "Bob", "investor"))

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json() == {"total_rooms": 0, "total_participants": 0, "rooms": []}


def test_only_the_organizer_can_end_the_call(client, meeting_store):
    denied = client.post("/api/video-calls/m1/end", headers=bearer("bob", "Bob"))
    assert denied.status_code == 403
    assert meeting_store.status_updates == []

    ended = client.post("/api/video-calls/m1/end", headers=bearer("alice", "Alice"))
    assert ended.status_code == 200
    assert ended.json()["disconnected"] == 0
    assert meeting_store.meetings["m1"].status == "completed"


def test_end_unknown_meeting(client):
    response = client.post("/api/video-calls/nope/end", headers=bearer("alice", "Alice"))

    assert response.status_code == 404


# =============================================================================
# WEBSOCKET
# =============================================================================

def test_socket_without_valid_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/video-call?token=bogus") as websocket:
            websocket.receive_json()

    assert exc_info.value.code == 1008


def test_socket_reports_bad_events_to_the_sender(client):
    token = issue_token("bob", "Bob")
    with client.websocket_connect(f"/ws/video-call?token={token}") as websocket:
        assert websocket.receive_json()["type"] == "connected"

        websocket.send_text("not json")
        assert websocket.receive_json()["code"] == "VALIDATION_ERROR"

        websocket.send_json({"type": "join-room", "meetingId": "m2", "userId": "erin"})
        assert websocket.receive_json()["code"] == "AUTHZ_ERROR"

        websocket.send_json({"type": "join-room", "meetingId": "nope"})
        assert websocket.receive_json()["code"] == "NOT_FOUND"

        websocket.send_json({"type": "toggle-audio"})
        assert websocket.receive_json()["code"] == "VALIDATION_ERROR"

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["type"] == "pong"


def test_two_clients_join_chat_and_get_ended(client, meeting_store):
    organizer = issue_token("alice", "Alice", "entrepreneur")
    attendee = issue_token("bob", "Bob", "investor")

    with client.websocket_connect(f"/ws/video-call?token={organizer}") as alice:
        alice_id = alice.receive_json()["connectionId"]
        alice.send_json({"type": "join-room", "meetingId": "m1"})
        assert alice.receive_json()["type"] == "room-joined"

        with client.websocket_connect(f"/ws/video-call?token={attendee}") as bob:
            bob_id = bob.receive_json()["connectionId"]
            bob.send_json({"type": "join-room", "meetingId": "m1"})

            joined = bob.receive_json()
            assert joined["type"] == "room-joined"
            assert {p["connectionId"] for p in joined["participants"]} == {alice_id, bob_id}

            notice = alice.receive_json()
            assert notice["type"] == "user-joined"
            assert notice["connectionId"] == bob_id

            bob.send_json({"type": "offer", "targetConnectionId": alice_id, "payload": {"sdp": "v=0"}})
            offer = alice.receive_json()
            assert offer == {"type": "offer", "fromConnectionId": bob_id, "payload": {"sdp": "v=0"}}

            bob.send_json({"type": "chat-message", "message": "hello"})
            assert bob.receive_json()["message"] == "hello"
            assert alice.receive_json()["message"] == "hello"

            stats = client.get("/api/video-calls/stats", headers={"Authorization": f"Bearer {organizer}"})
            assert stats.json()["total_participants"] == 2

            ended = client.post("/api/video-calls/m1/end", headers={"Authorization": f"Bearer {organizer}"})
            assert ended.json()["disconnected"] == 2

            assert alice.receive_json()["type"] == "call-ended"
            assert bob.receive_json()["type"] == "call-ended"

    assert meeting_store.meetings["m1"].status == "completed"
    assert client.get("/health").json()["active_rooms"] == 0
