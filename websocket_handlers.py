# websocket_handlers.py - Video call WebSocket endpoint and event dispatch

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from auth import authenticate_websocket_user
from config_manager import get_config
from error_handler import AppError, AuthorizationError, ValidationError
from models import ChatMessageEvent, JoinRoomEvent, MediaToggleEvent, SignalEvent, SignalKind
from room_coordinator import RoomCoordinator, get_coordinator

logger = logging.getLogger(__name__)
config = get_config()
websocket_router = APIRouter()

# =============================================================================
# WEBSOCKET ENDPOINT
# =============================================================================

@websocket_router.websocket("/ws/video-call")
async def video_call_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """One signaling session per browser tab"""
    user_data = authenticate_websocket_user(token)
    if not user_data:
        logger.warning("Rejected video call socket without a valid token")
        await websocket.close(code=1008)
        return

    coordinator = get_coordinator()
    connection_id = await coordinator.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            coordinator.touch(connection_id)

            try:
                event = json.loads(data)
                if not isinstance(event, dict):
                    raise ValueError("event must be a JSON object")
            except ValueError as e:
                await send_error(coordinator, connection_id, ValidationError(f"Malformed event: {e}"))
                continue

            try:
                await handle_client_event(coordinator, connection_id, user_data, event)
            except AppError as e:
                await send_error(coordinator, connection_id, e)
            except PydanticValidationError as e:
                await send_error(coordinator, connection_id, ValidationError(_describe(e)))

    except WebSocketDisconnect:
        logger.debug(f"Client closed connection {connection_id}")
    finally:
        await coordinator.disconnect(connection_id)

def _describe(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid {location}: {first.get('msg')}" if location else first.get("msg", "Invalid event")

async def send_error(coordinator: RoomCoordinator, connection_id: str, error: AppError):
    """Failures go to the failing caller only"""
    logger.info(f"Event from {connection_id} rejected: {error.code} {error.message}")
    await coordinator.send_to_connection(connection_id, error.to_event())

# =============================================================================
# MESSAGE HANDLERS
# =============================================================================

async def handle_client_event(coordinator: RoomCoordinator, connection_id: str, user_data: dict, event: Dict[str, Any]):
    """Route one client event to the coordinator"""
    event_type = event.get("type")

    if event_type == "join-room":
        await handle_join(coordinator, connection_id, user_data, event)

    elif event_type in [kind.value for kind in SignalKind]:
        signal = SignalEvent(**event)
        await coordinator.relay_signal(connection_id, event_type, signal.target_connection_id, signal.payload)

    elif event_type == "toggle-audio":
        await coordinator.toggle_audio(connection_id, MediaToggleEvent(**event).enabled)

    elif event_type == "toggle-video":
        await coordinator.toggle_video(connection_id, MediaToggleEvent(**event).enabled)

    elif event_type == "start-screen-share":
        await coordinator.start_screen_share(connection_id)

    elif event_type == "stop-screen-share":
        await coordinator.stop_screen_share(connection_id)

    elif event_type == "chat-message":
        await coordinator.send_chat_message(connection_id, ChatMessageEvent(**event).message)

    elif event_type == "leave-room":
        await coordinator.leave(connection_id)

    elif event_type == "ping":
        await coordinator.send_to_connection(connection_id, {"type": "pong", "timestamp": datetime.now().isoformat()})

    else:
        raise ValidationError(f"Unknown event type: {event_type}", field="type")

async def handle_join(coordinator: RoomCoordinator, connection_id: str, user_data: dict, event: Dict[str, Any]):
    """join-room: the socket's token decides who is joining"""
    request = JoinRoomEvent(**event)

    user_id = request.user_id or user_data["user_id"]
    if user_id != user_data["user_id"]:
        raise AuthorizationError("userId does not match the authenticated user")

    result = await coordinator.join(
        connection_id,
        request.meeting_id,
        user_id,
        request.user_name or user_data["name"]
    )
    await coordinator.send_to_connection(connection_id, result.to_event())

# =============================================================================
# BACKGROUND TASKS
# =============================================================================

async def idle_connection_sweep():
    """Evict connections silent for longer than video_call.idle_timeout_seconds"""
    timeout = config.get('video_call.idle_timeout_seconds', 0)
    interval = config.get('video_call.sweep_interval_seconds', 60)
    if not timeout:
        logger.info("Idle connection sweep disabled")
        return

    logger.info(f"Idle connection sweep every {interval}s, timeout {timeout}s")
    while True:
        await asyncio.sleep(interval)
        try:
            evicted = await get_coordinator().sweep_idle_connections(timeout)
            if evicted:
                logger.info(f"Idle sweep evicted {len(evicted)} connections")
        except Exception as e:
            logger.error(f"Idle sweep error: {e}", exc_info=True)

async def connection_health_check():
    """Periodic room and participant counts in the log"""
    while True:
        await asyncio.sleep(600)
        coordinator = get_coordinator()
        if coordinator.participant_count > 0:
            logger.info(f"Health check: {coordinator.participant_count} participants, {coordinator.room_count} active rooms")

def start_background_tasks() -> list:
    """Start background tasks for WebSocket management"""
    return [
        asyncio.create_task(idle_connection_sweep()),
        asyncio.create_task(connection_health_check())
    ]

__all__ = ["websocket_router", "handle_client_event", "start_background_tasks"]
