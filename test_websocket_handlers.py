# test_websocket_handlers.py - Client event dispatch

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import open_connection
from error_handler import AuthorizationError, ValidationError
from models import JoinRoomEvent
from websocket_handlers import handle_client_event, send_error

pytestmark = pytest.mark.asyncio

ALICE = {"user_id": "alice", "name": "Alice Organizer", "role": "entrepreneur"}
BOB = {"user_id": "bob", "name": "Bob Attendee", "role": "investor"}


async def test_join_room_replies_with_room_snapshot(coordinator):
    cid, ws = await open_connection(coordinator)

    await handle_client_event(coordinator, cid, ALICE, {"type": "join-room", "meetingId": "m1"})

    [joined] = ws.events("room-joined")
    assert joined["roomId"] == "meeting_m1"
    assert joined["meetingTitle"] == "Investor pitch"
    assert joined["participants"][0]["userName"] == "Alice Organizer"
    assert joined["chatMessages"] == []


async def test_join_room_for_someone_else_is_forbidden(coordinator):
    cid, _ = await open_connection(coordinator)

    with pytest.raises(AuthorizationError):
        await handle_client_event(coordinator, cid, BOB, {
            "type": "join-room", "meetingId": "m1", "userId": "alice"
        })

    assert coordinator.room_count == 0


async def test_join_room_without_meeting_id_is_invalid(coordinator):
    cid, _ = await open_connection(coordinator)

    with pytest.raises(PydanticValidationError):
        await handle_client_event(coordinator, cid, ALICE, {"type": "join-room"})


async def test_signal_events_are_relayed(coordinator):
    a, _ = await open_connection(coordinator)
    b, ws_b = await open_connection(coordinator)
    await handle_client_event(coordinator, a, ALICE, {"type": "join-room", "meetingId": "m1"})
    await handle_client_event(coordinator, b, BOB, {"type": "join-room", "meetingId": "m1"})

    await handle_client_event(coordinator, a, ALICE, {
        "type": "ice-candidate", "targetConnectionId": b, "payload": {"candidate": "candidate:1"}
    })

    assert ws_b.events("ice-candidate") == [
        {"type": "ice-candidate", "fromConnectionId": a, "payload": {"candidate": "candidate:1"}}
    ]


async def test_media_and_chat_events(coordinator):
    a, ws_a = await open_connection(coordinator)
    b, ws_b = await open_connection(coordinator)
    await handle_client_event(coordinator, a, ALICE, {"type": "join-room", "meetingId": "m1"})
    await handle_client_event(coordinator, b, BOB, {"type": "join-room", "meetingId": "m1"})

    await handle_client_event(coordinator, b, BOB, {"type": "toggle-video", "enabled": False})
    await handle_client_event(coordinator, b, BOB, {"type": "chat-message", "message": "  hi all "})

    assert ws_a.events("participant-video-toggle")[0]["enabled"] is False
    assert ws_a.events("chat-message")[0]["message"] == "hi all"
    assert ws_b.events("chat-message")[0]["userName"] == "Bob Attendee"


async def test_leave_room_event(coordinator, meeting_store):
    cid, _ = await open_connection(coordinator)
    await handle_client_event(coordinator, cid, ALICE, {"type": "join-room", "meetingId": "m1"})

    await handle_client_event(coordinator, cid, ALICE, {"type": "leave-room"})

    assert coordinator.room_count == 0
    assert meeting_store.meetings["m1"].status == "completed"


async def test_ping_gets_pong(coordinator):
    cid, ws = await open_connection(coordinator)

    await handle_client_event(coordinator, cid, ALICE, {"type": "ping"})

    assert len(ws.events("pong")) == 1


async def test_unknown_event_type_is_rejected(coordinator):
    cid, _ = await open_connection(coordinator)

    with pytest.raises(ValidationError) as exc_info:
        await handle_client_event(coordinator, cid, ALICE, {"type": "start-recording"})

    assert exc_info.value.field == "type"


async def test_errors_go_to_the_failing_caller_only(coordinator):
    a, ws_a = await open_connection(coordinator)
    b, ws_b = await open_connection(coordinator)

    await send_error(coordinator, a, ValidationError("Message cannot be empty"))

    assert ws_a.events("error") == [
        {"type": "error", "code": "VALIDATION_ERROR", "message": "Message cannot be empty"}
    ]
    assert ws_b.events("error") == []


async def test_join_event_trims_and_validates_fields():
    event = JoinRoomEvent(**{"type": "join-room", "meetingId": " m1 ", "userName": "   "})

    assert event.meeting_id == "m1"
    assert event.user_name is None

    with pytest.raises(PydanticValidationError):
        JoinRoomEvent(**{"meetingId": "   "})
