# room_coordinator.py - Video call room state and WebRTC signaling relay

import asyncio
import json
import logging
import uuid
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from fastapi import WebSocket

from config_manager import get_config
from database import IMeetingRepository
from error_handler import (
    AuthorizationError, NotFoundError, TargetUnavailableError, ValidationError
)
from models import (
    CallStats, MeetingStatus, ParticipantStats, RoomStats, SignalKind
)

logger = logging.getLogger(__name__)

@dataclass
class PeerConnection:
    """A live transport session"""
    websocket: WebSocket
    connection_id: str
    connected_at: datetime
    last_seen: datetime

@dataclass
class Participant:
    """One connection's presence and media state inside a room"""
    connection_id: str
    user_id: str
    user_name: str
    is_organizer: bool
    joined_at: datetime = field(default_factory=datetime.now)
    audio: bool = True
    video: bool = True
    is_screen_sharing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connectionId": self.connection_id,
            "userId": self.user_id,
            "userName": self.user_name,
            "isOrganizer": self.is_organizer,
            "audio": self.audio,
            "video": self.video,
            "isScreenSharing": self.is_screen_sharing
        }

@dataclass
class ChatMessage:
    id: str
    user_id: str
    user_name: str
    message: str
    timestamp: datetime
    is_organizer: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "userName": self.user_name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "isOrganizer": self.is_organizer
        }

@dataclass
class Room:
    """Live call state for one meeting; exists only while it has participants"""
    room_id: str
    meeting_id: str
    meeting_title: str
    chat_messages: Deque[ChatMessage]
    created_at: datetime = field(default_factory=datetime.now)
    is_recording: bool = False
    message_count: int = 0
    participants: Dict[str, Participant] = field(default_factory=dict)

@dataclass
class JoinResult:
    room_id: str
    meeting_title: str
    participants: List[Dict[str, Any]]
    chat_messages: List[Dict[str, Any]]
    created_room: bool = False

    def to_event(self) -> Dict[str, Any]:
        return {
            "type": "room-joined",
            "roomId": self.room_id,
            "meetingTitle": self.meeting_title,
            "participants": self.participants,
            "chatMessages": self.chat_messages
        }

class RoomCoordinator:
    """Owns every live room, the connection -> room index and the event relay.

    All mutations of one room run under that room's lock, so join, leave,
    media toggles and chat appends on the same room are applied one at a
    time, including the meeting-record writes made on room creation and
    teardown. Rooms never share a lock. Read-only snapshots take no lock:
    state is only mutated between awaits, so a synchronous reader always sees
    a consistent room.
    """

    def __init__(
        self,
        meeting_store: IMeetingRepository,
        chat_retention: int = 100,
        recent_chat_limit: int = 50,
        strict_relay: bool = False
    ):
        self._meetings = meeting_store
        self.chat_retention = chat_retention
        self.recent_chat_limit = recent_chat_limit
        self.strict_relay = strict_relay

        self._connections: Dict[str, PeerConnection] = {}
        self._rooms: Dict[str, Room] = {}
        self._connection_rooms: Dict[str, str] = {}  # connection_id -> room_id

        self._room_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)

        logger.info("RoomCoordinator initialized")

    @staticmethod
    def room_id_for(meeting_id: str) -> str:
        return f"meeting_{meeting_id}"

    @asynccontextmanager
    async def _room_lock(self, room_id: str):
        """Serialize work on one room; the lock is dropped once the room is gone and unused"""
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = self._room_locks[room_id] = asyncio.Lock()
        self._lock_users[room_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[room_id] -= 1
            if self._lock_users[room_id] == 0:
                del self._lock_users[room_id]
                if room_id not in self._rooms:
                    self._room_locks.pop(room_id, None)

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a transport session and hand back its connection id"""
        await websocket.accept()

        connection_id = uuid.uuid4().hex
        now = datetime.now()
        self._connections[connection_id] = PeerConnection(
            websocket=websocket,
            connection_id=connection_id,
            connected_at=now,
            last_seen=now
        )
        await self.send_to_connection(connection_id, {"type": "connected", "connectionId": connection_id})

        logger.info(f"Connection {connection_id} opened")
        return connection_id

    async def disconnect(self, connection_id: str):
        """Transport closed: forget the connection and run the leave cleanup"""
        if self._connections.pop(connection_id, None) is not None:
            logger.info(f"Connection {connection_id} closed")
        await self.leave(connection_id)

    def touch(self, connection_id: str):
        connection = self._connections.get(connection_id)
        if connection:
            connection.last_seen = datetime.now()

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def room_of(self, connection_id: str) -> Optional[str]:
        return self._connection_rooms.get(connection_id)

    def get_participant(self, connection_id: str) -> Optional[Participant]:
        """Copy of a participant's current state"""
        room = self._rooms.get(self._connection_rooms.get(connection_id, ""))
        if room is None or connection_id not in room.participants:
            return None
        return replace(room.participants[connection_id])

    def get_chat_history(self, meeting_id: str) -> List[Dict[str, Any]]:
        room = self._rooms.get(self.room_id_for(meeting_id))
        return [message.to_dict() for message in room.chat_messages] if room else []

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def participant_count(self) -> int:
        return len(self._connection_rooms)

    async def send_to_connection(self, connection_id: str, message: Dict[str, Any]) -> bool:
        """Deliver one event; a dead peer only costs its own delivery"""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False

        try:
            await connection.websocket.send_text(json.dumps(message, default=str))
            return True
        except Exception as e:
            logger.warning(f"Error sending {message.get('type')} to connection {connection_id}: {e}")
            return False

    async def _broadcast(self, room: Room, message: Dict[str, Any], exclude: Optional[str] = None) -> int:
        targets = [cid for cid in room.participants if cid != exclude]
        results = await asyncio.gather(*(self.send_to_connection(cid, message) for cid in targets))
        return sum(results)

    async def _close(self, connection_id: str, code: int = 1000, reason: str = ""):
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return

        try:
            await connection.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Connection {connection_id} was already closed: {e}")

    async def _persist(self, meeting_id: str, description: str, update: Awaitable[bool]) -> bool:
        """Meeting-record writes never block room cleanup"""
        try:
            updated = await update
        except Exception as e:
            logger.error(f"Failed to {description} for meeting {meeting_id}: {e}")
            return False

        if not updated:
            logger.warning(f"Meeting {meeting_id} not updated ({description})")
        return bool(updated)

    # =========================================================================
    # ROOM MEMBERSHIP
    # =========================================================================

    def _snapshot(self, room: Room, created_room: bool = False) -> JoinResult:
        recent = list(room.chat_messages)[-self.recent_chat_limit:] if self.recent_chat_limit else []
        return JoinResult(
            room_id=room.room_id,
            meeting_title=room.meeting_title,
            participants=[p.to_dict() for p in room.participants.values()],
            chat_messages=[message.to_dict() for message in recent],
            created_room=created_room
        )

    async def join(self, connection_id: str, meeting_id: str, user_id: str, user_name: str) -> JoinResult:
        """Admit an organizer or attendee to the meeting's room, creating it if needed"""
        if not user_id:
            raise ValidationError("userId is required", field="userId")

        meeting = await self._meetings.find_meeting_with_participants(meeting_id)
        if meeting is None:
            raise NotFoundError("Meeting not found", resource="meeting")
        if not meeting.can_join(user_id):
            raise AuthorizationError("You are not authorized to join this meeting")

        room_id = self.room_id_for(meeting_id)
        is_organizer = meeting.is_organizer(user_id)

        current_room = self._connection_rooms.get(connection_id)
        if current_room is not None and current_room != room_id:
            await self.leave(connection_id)

        async with self._room_lock(room_id):
            room = self._rooms.get(room_id)

            existing = room.participants.get(connection_id) if room else None
            if existing is not None:
                # Repeated join-room for the same meeting: refresh identity, keep media state
                existing.user_id = user_id
                existing.user_name = user_name or user_id
                existing.is_organizer = is_organizer
                logger.info(f"{existing.user_name} re-sent join for room {room_id}")
                return self._snapshot(room)

            if room is None:
                await self._persist(
                    meeting_id, "mark call ongoing",
                    self._meetings.set_status(meeting_id, MeetingStatus.ONGOING.value)
                )

            if connection_id not in self._connections:
                if room is None:
                    await self._persist(
                        meeting_id, "revert call status",
                        self._meetings.set_status(meeting_id, MeetingStatus.COMPLETED.value)
                    )
                raise NotFoundError("Connection closed before joining", resource="connection")

            created_room = room is None
            if created_room:
                room = Room(
                    room_id=room_id,
                    meeting_id=meeting_id,
                    meeting_title=meeting.title,
                    chat_messages=deque(maxlen=self.chat_retention)
                )
                self._rooms[room_id] = room
                logger.info(f"Room {room_id} created for meeting '{meeting.title}'")

            participant = Participant(
                connection_id=connection_id,
                user_id=user_id,
                user_name=user_name or user_id,
                is_organizer=is_organizer
            )
            room.participants[connection_id] = participant
            self._connection_rooms[connection_id] = room_id

            result = self._snapshot(room, created_room=created_room)

            await self._broadcast(room, {
                "type": "user-joined",
                "connectionId": connection_id,
                "userId": user_id,
                "userName": participant.user_name,
                "isOrganizer": is_organizer
            }, exclude=connection_id)

        logger.info(f"{participant.user_name} joined room {room_id} ({len(result.participants)} participants)")
        return result

    async def leave(self, connection_id: str) -> bool:
        """Remove the connection from its room; tearing the room down if it empties.

        Safe to call any number of times and for connections that never joined.
        """
        room_id = self._connection_rooms.get(connection_id)
        if room_id is None:
            return False

        async with self._room_lock(room_id):
            room = self._rooms.get(room_id)
            if room is None or connection_id not in room.participants:
                if self._connection_rooms.get(connection_id) == room_id:
                    del self._connection_rooms[connection_id]
                return False

            participant = room.participants.pop(connection_id)
            del self._connection_rooms[connection_id]

            await self._broadcast(room, {
                "type": "user-left",
                "connectionId": connection_id,
                "userName": participant.user_name
            })
            logger.info(f"{participant.user_name} left room {room_id}")

            if not room.participants:
                del self._rooms[room_id]
                # Meeting writes stay under the lock so a racing rejoin orders its "ongoing" after "completed"
                await self._complete_meeting(room)

        return True

    async def _complete_meeting(self, room: Room):
        if room.message_count:
            plural = "" if room.message_count == 1 else "s"
            note = f"Meeting completed with {room.message_count} chat message{plural}"
        else:
            note = "Meeting completed"

        await self._persist(
            room.meeting_id, "mark call completed",
            self._meetings.set_status(room.meeting_id, MeetingStatus.COMPLETED.value)
        )
        await self._persist(
            room.meeting_id, "append completion note",
            self._meetings.append_completion_note(room.meeting_id, note)
        )
        logger.info(f"Meeting {room.meeting_id} completed and room {room.room_id} cleaned up")

    async def end_call(self, meeting_id: str, ended_by: str) -> int:
        """Organizer ends the call: notify, force-close and drop the room at once"""
        room_id = self.room_id_for(meeting_id)

        async with self._room_lock(room_id):
            # Held across the meeting writes below, longer than the in-memory work needs, to keep status writes ordered
            room = self._rooms.pop(room_id, None)
            connection_ids = list(room.participants) if room else []
            for cid in connection_ids:
                self._connection_rooms.pop(cid, None)

            if room:
                await self._broadcast(room, {
                    "type": "call-ended",
                    "message": "The call has been ended by the organizer",
                    "endedBy": ended_by
                })
                await asyncio.gather(*(
                    self._close(cid, code=1000, reason="Call ended") for cid in connection_ids
                ))
                logger.info(f"Call in room {room_id} ended by {ended_by}, {len(connection_ids)} connections closed")

            await self._persist(
                meeting_id, "mark call completed",
                self._meetings.set_status(meeting_id, MeetingStatus.COMPLETED.value)
            )
            await self._persist(
                meeting_id, "append end-of-call note",
                self._meetings.append_completion_note(
                    meeting_id, f"Call ended by organizer at {datetime.now().isoformat()}"
                )
            )

        return len(connection_ids)

    # =========================================================================
    # SIGNALING RELAY
    # =========================================================================

    def _target_connection(self, target_connection_id: str) -> PeerConnection:
        connection = self._connections.get(target_connection_id)
        if connection is None:
            raise TargetUnavailableError(target_connection_id)
        return connection

    async def relay_signal(self, connection_id: str, kind: str, target_connection_id: str, payload: Dict[str, Any]) -> bool:
        """Forward an offer/answer/ICE candidate to exactly one peer"""
        try:
            signal = SignalKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown signal type: {kind}", field="type")

        if not target_connection_id or not isinstance(payload, dict):
            raise ValidationError("Malformed signaling payload", field="payload")

        try:
            self._target_connection(target_connection_id)
        except TargetUnavailableError:
            # Racy by nature: the target may have left while this was in flight
            logger.debug(f"Dropping {signal.value} from {connection_id}: target {target_connection_id} gone")
            return False

        if self.strict_relay:
            sender_room = self._connection_rooms.get(connection_id)
            if sender_room is None or sender_room != self._connection_rooms.get(target_connection_id):
                logger.warning(f"Dropping cross-room {signal.value} from {connection_id} to {target_connection_id}")
                return False

        return await self.send_to_connection(target_connection_id, {
            "type": signal.value,
            "fromConnectionId": connection_id,
            "payload": payload
        })

    # =========================================================================
    # MEDIA STATE AND CHAT
    # =========================================================================

    async def _update_participant(
        self,
        connection_id: str,
        attribute: str,
        value: bool,
        build_event: Callable[[Participant], Dict[str, Any]]
    ) -> bool:
        room_id = self._connection_rooms.get(connection_id)
        if room_id is None:
            return False

        async with self._room_lock(room_id):
            room = self._rooms.get(room_id)
            participant = room.participants.get(connection_id) if room else None
            if participant is None:
                return False

            setattr(participant, attribute, value)
            await self._broadcast(room, build_event(participant), exclude=connection_id)

        return True

    async def toggle_audio(self, connection_id: str, enabled: bool) -> bool:
        updated = await self._update_participant(
            connection_id, "audio", enabled,
            lambda p: {"type": "participant-audio-toggle", "connectionId": p.connection_id, "enabled": enabled}
        )
        if updated:
            logger.debug(f"Connection {connection_id} {'unmuted' if enabled else 'muted'}")
        return updated

    async def toggle_video(self, connection_id: str, enabled: bool) -> bool:
        updated = await self._update_participant(
            connection_id, "video", enabled,
            lambda p: {"type": "participant-video-toggle", "connectionId": p.connection_id, "enabled": enabled}
        )
        if updated:
            logger.debug(f"Connection {connection_id} turned video {'on' if enabled else 'off'}")
        return updated

    async def start_screen_share(self, connection_id: str) -> bool:
        return await self._update_participant(
            connection_id, "is_screen_sharing", True,
            lambda p: {"type": "screen-share-started", "connectionId": p.connection_id, "userName": p.user_name}
        )

    async def stop_screen_share(self, connection_id: str) -> bool:
        return await self._update_participant(
            connection_id, "is_screen_sharing", False,
            lambda p: {"type": "screen-share-stopped", "connectionId": p.connection_id}
        )

    async def send_chat_message(self, connection_id: str, text: str) -> Optional[ChatMessage]:
        """Append to the room log and echo to every participant, sender included"""
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message cannot be empty", field="message")
        text = text.strip()

        room_id = self._connection_rooms.get(connection_id)
        if room_id is None:
            return None

        async with self._room_lock(room_id):
            room = self._rooms.get(room_id)
            participant = room.participants.get(connection_id) if room else None
            if participant is None:
                return None

            chat_message = ChatMessage(
                id=str(uuid.uuid4()),
                user_id=participant.user_id,
                user_name=participant.user_name,
                message=text,
                timestamp=datetime.now(),
                is_organizer=participant.is_organizer
            )
            room.chat_messages.append(chat_message)
            room.message_count += 1

            await self._broadcast(room, {"type": "chat-message", **chat_message.to_dict()})

        return chat_message

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    def get_stats(self) -> CallStats:
        """Snapshot of every live room; never mutates state"""
        now = datetime.now()
        rooms = [
            RoomStats(
                room_id=room.room_id,
                meeting_id=room.meeting_id,
                meeting_title=room.meeting_title,
                participant_count=len(room.participants),
                start_time=room.created_at,
                duration_seconds=(now - room.created_at).total_seconds(),
                is_recording=room.is_recording,
                participants=[
                    ParticipantStats(
                        connection_id=p.connection_id,
                        user_name=p.user_name,
                        joined_at=p.joined_at,
                        audio=p.audio,
                        video=p.video,
                        is_screen_sharing=p.is_screen_sharing
                    )
                    for p in room.participants.values()
                ]
            )
            for room in self._rooms.values()
        ]

        return CallStats(
            total_rooms=len(self._rooms),
            total_participants=len(self._connection_rooms),
            rooms=rooms
        )

    async def sweep_idle_connections(self, max_idle_seconds: float) -> List[str]:
        """Close connections that have sent nothing for max_idle_seconds"""
        cutoff = datetime.now() - timedelta(seconds=max_idle_seconds)
        idle = [cid for cid, conn in self._connections.items() if conn.last_seen < cutoff]

        for connection_id in idle:
            logger.info(f"Evicting idle connection {connection_id}")
            await self._close(connection_id, code=1001, reason="Idle timeout")
            await self.leave(connection_id)

        return idle

# Global coordinator instance (initialized in main.py lifespan)
coordinator: Optional[RoomCoordinator] = None

def init_coordinator(meeting_store: IMeetingRepository) -> RoomCoordinator:
    """Create the coordinator from the video_call config section"""
    global coordinator
    config = get_config()
    coordinator = RoomCoordinator(
        meeting_store,
        chat_retention=config.get('video_call.chat_retention', 100),
        recent_chat_limit=config.get('video_call.recent_chat_limit', 50),
        strict_relay=config.get('video_call.strict_relay', False)
    )
    return coordinator

def get_coordinator() -> RoomCoordinator:
    """Get coordinator instance"""
    if coordinator is None:
        raise RuntimeError("Room coordinator not initialized")
    return coordinator
