# models.py - Pydantic models for video call events and responses

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

# =============================================================================
# ENUMS
# =============================================================================

class MeetingStatus(str, Enum):
    SCHEDULED = "scheduled"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class SignalKind(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"

# =============================================================================
# CLIENT -> SERVER EVENTS
# =============================================================================

class JoinRoomEvent(BaseModel):
    """join-room payload; user fields fall back to the authenticated user"""
    meeting_id: str = Field(..., alias="meetingId", min_length=1, max_length=64)
    user_id: Optional[str] = Field(None, alias="userId", max_length=64)
    user_name: Optional[str] = Field(None, alias="userName", max_length=100)

    @field_validator('meeting_id')
    @classmethod
    def validate_meeting_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Meeting ID cannot be empty')
        return v

    @field_validator('user_name')
    @classmethod
    def validate_user_name(cls, v):
        if v is None:
            return v
        v = v.strip()
        return v or None

class SignalEvent(BaseModel):
    """offer / answer / ice-candidate payload"""
    target_connection_id: str = Field(..., alias="targetConnectionId", min_length=1, max_length=64)
    payload: Dict[str, Any]

class MediaToggleEvent(BaseModel):
    """toggle-audio / toggle-video payload"""
    enabled: bool

class ChatMessageEvent(BaseModel):
    """chat-message payload"""
    message: str = Field(..., max_length=1000)

# =============================================================================
# REST RESPONSES
# =============================================================================

class CallToken(BaseModel):
    """Details a client needs before opening the signaling socket"""
    meeting_id: str
    room_id: str
    user_id: str
    user_name: str
    is_organizer: bool
    meeting_title: str
    expires_at: datetime

class CallTokenResponse(BaseModel):
    message: str = "Video call token generated"
    call_token: CallToken
    socket_url: str

class EndCallResponse(BaseModel):
    message: str = "Video call ended successfully"
    meeting_id: str
    disconnected: int

class ParticipantStats(BaseModel):
    connection_id: str
    user_name: str
    joined_at: datetime
    audio: bool
    video: bool
    is_screen_sharing: bool

class RoomStats(BaseModel):
    room_id: str
    meeting_id: str
    meeting_title: str
    participant_count: int
    start_time: datetime
    duration_seconds: float
    is_recording: bool
    participants: List[ParticipantStats] = Field(default_factory=list)

class CallStats(BaseModel):
    total_rooms: int
    total_participants: int
    rooms: List[RoomStats] = Field(default_factory=list)
