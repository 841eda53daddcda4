# conftest.py - Shared fakes and fixtures for the video call test suite

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from database import IMeetingRepository, Meeting, MeetingAccess
from room_coordinator import RoomCoordinator


class FakeWebSocket:
    """Records what the coordinator sends to one client"""

    def __init__(self, fail_sends: bool = False):
        self.accepted = False
        self.closed = False
        self.close_code: Optional[int] = None
        self.fail_sends = fail_sends
        self.sent: List[Dict[str, Any]] = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, data: str):
        if self.fail_sends:
            raise RuntimeError("connection reset by peer")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = ""):
        self.closed = True
        self.close_code = code

    def events(self, event_type: str) -> List[Dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == event_type]


class FakeMeetingStore(IMeetingRepository):
    """In-memory Meeting collaborator that remembers every write"""

    def __init__(self, lookup_delay: float = 0):
        self.meetings: Dict[str, Meeting] = {}
        self.status_updates: List[tuple] = []
        self.notes: List[tuple] = []
        self.lookup_delay = lookup_delay
        self.fail_statuses: set = set()

    def add(self, meeting_id: str, organizer_id: str, attendee_ids: List[str], title: str = "Weekly sync"):
        self.meetings[meeting_id] = Meeting(
            meeting_id=meeting_id,
            title=title,
            organizer_id=organizer_id,
            attendee_ids=list(attendee_ids)
        )

    async def find_meeting_with_participants(self, meeting_id: str) -> Optional[MeetingAccess]:
        await asyncio.sleep(self.lookup_delay)
        meeting = self.meetings.get(meeting_id)
        if meeting is None:
            return None
        return MeetingAccess(
            meeting_id=meeting.meeting_id,
            organizer_id=meeting.organizer_id,
            title=meeting.title,
            attendee_ids=list(meeting.attendee_ids)
        )

    async def set_status(self, meeting_id: str, status: str) -> bool:
        await asyncio.sleep(0)
        if status in self.fail_statuses:
            raise ConnectionError("meeting store unavailable")
        self.status_updates.append((meeting_id, status))
        if meeting_id not in self.meetings:
            return False
        self.meetings[meeting_id].status = status
        return True

    async def append_completion_note(self, meeting_id: str, text: str) -> bool:
        await asyncio.sleep(0)
        self.notes.append((meeting_id, text))
        meeting = self.meetings.get(meeting_id)
        if meeting is None:
            return False
        meeting.notes = f"{meeting.notes}\n{text}" if meeting.notes else text
        return True


@pytest.fixture
def meeting_store():
    store = FakeMeetingStore()
    store.add("m1", organizer_id="alice", attendee_ids=["bob", "carol", "dave"], title="Investor pitch")
    store.add("m2", organizer_id="erin", attendee_ids=["bob"], title="Design review")
    return store


@pytest.fixture
def coordinator(meeting_store):
    return RoomCoordinator(meeting_store)


async def open_connection(coordinator: RoomCoordinator, fail_sends: bool = False):
    websocket = FakeWebSocket(fail_sends=fail_sends)
    connection_id = await coordinator.connect(websocket)
    return connection_id, websocket
