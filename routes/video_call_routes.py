# routes/video_call_routes.py - Video call REST routes

from datetime import datetime, timedelta
from fastapi import APIRouter, Depends, Request
import logging

from auth import check_stats_access, get_current_user
from config_manager import get_config
from database import IMeetingRepository, MeetingAccess
from error_handler import AuthorizationError, NotFoundError
from models import CallStats, CallToken, CallTokenResponse, EndCallResponse
from room_coordinator import RoomCoordinator, get_coordinator

config = get_config()
logger = logging.getLogger(__name__)
router = APIRouter()

def get_meeting_store(request: Request) -> IMeetingRepository:
    return request.app.state.meeting_store

async def load_meeting(meeting_store: IMeetingRepository, meeting_id: str) -> MeetingAccess:
    meeting = await meeting_store.find_meeting_with_participants(meeting_id)
    if meeting is None:
        raise NotFoundError("Meeting not found", resource="meeting")
    return meeting

# =============================================================================
# VIDEO CALLS
# =============================================================================

@router.get("/video-calls/stats", response_model=CallStats)
async def get_active_call_stats(
    current_user: dict = Depends(check_stats_access),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """Live rooms and participants (privileged roles only)"""
    return coordinator.get_stats()

@router.get("/video-calls/{meeting_id}/token", response_model=CallTokenResponse)
async def get_video_call_token(
    meeting_id: str,
    current_user: dict = Depends(get_current_user),
    meeting_store: IMeetingRepository = Depends(get_meeting_store)
):
    """Everything a client needs before opening the signaling socket"""
    meeting = await load_meeting(meeting_store, meeting_id)
    if not meeting.can_join(current_user["user_id"]):
        raise AuthorizationError("You are not authorized to join this meeting")

    ttl_hours = config.get('video_call.call_token_ttl_hours', 24)
    call_token = CallToken(
        meeting_id=meeting.meeting_id,
        room_id=RoomCoordinator.room_id_for(meeting.meeting_id),
        user_id=current_user["user_id"],
        user_name=current_user["name"],
        is_organizer=meeting.is_organizer(current_user["user_id"]),
        meeting_title=meeting.title,
        expires_at=datetime.now() + timedelta(hours=ttl_hours)
    )

    return CallTokenResponse(
        call_token=call_token,
        socket_url=config.get('video_call.socket_url', '')
    )

@router.post("/video-calls/{meeting_id}/end", response_model=EndCallResponse)
async def end_video_call(
    meeting_id: str,
    current_user: dict = Depends(get_current_user),
    meeting_store: IMeetingRepository = Depends(get_meeting_store),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """End the call for everyone (organizer only)"""
    meeting = await load_meeting(meeting_store, meeting_id)
    if not meeting.is_organizer(current_user["user_id"]):
        raise AuthorizationError("Only the organizer can end the call")

    disconnected = await coordinator.end_call(meeting_id, current_user["name"])

    logger.info(f"Video call ended: {meeting_id} by {current_user['name']}")
    return EndCallResponse(meeting_id=meeting_id, disconnected=disconnected)
