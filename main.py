# main.py - App Setup and Configuration Only

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime
import asyncio
import logging

from routes import video_call_routes
from websocket_handlers import websocket_router, start_background_tasks
from database import init_database, DIContainer, IMeetingRepository
from error_handler import AppError, app_error_handler
from auth import init_jwt_manager
from room_coordinator import init_coordinator, get_coordinator
from config_manager import get_config

# Initialize configuration
config = get_config()

# Configure logging based on config
log_level = getattr(logging, config.get('logging.level', 'INFO').upper(), logging.INFO)
logging.basicConfig(
    level=log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# =============================================================================
# LIFESPAN EVENTS
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application lifespan events"""
    # Startup
    meeting_store = getattr(app.state, "meeting_store", None)
    if meeting_store is None:
        database_path = config.get_database_path()
        await init_database(database_path)
        meeting_store = DIContainer(database_path).get_meeting_repository()
        app.state.meeting_store = meeting_store

    init_jwt_manager(config.get_secret_key())
    init_coordinator(meeting_store)

    background_tasks = start_background_tasks()

    logger.info("Video call service started")

    yield  # Application runs here

    # Shutdown
    for task in background_tasks:
        task.cancel()
    await asyncio.gather(*background_tasks, return_exceptions=True)
    logger.info("Video call service shutting down")

# =============================================================================
# APP CONFIGURATION
# =============================================================================

def create_app(meeting_store: IMeetingRepository = None) -> FastAPI:
    """Create and configure FastAPI application"""

    app = FastAPI(
        title="Video Call Service",
        description="Room coordination and WebRTC signaling for meetings",
        version="2.0.0",
        lifespan=lifespan
    )

    # An injected store skips the SQLite setup in lifespan
    app.state.meeting_store = meeting_store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(AppError, app_error_handler)

    app.include_router(video_call_routes.router, prefix="/api", tags=["video-calls"])
    app.include_router(websocket_router, tags=["websocket"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        coordinator = get_coordinator()
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "active_rooms": coordinator.room_count,
            "active_participants": coordinator.participant_count
        }

    return app

app = create_app()

# =============================================================================
# DEVELOPMENT SERVER
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    host = config.get('server.host', '0.0.0.0')
    port = config.get('server.port', 5000)
    reload = config.get('server.reload', False)

    uvicorn_log_level = "debug" if config.get('server.debug', False) else "info"

    uvicorn.run("main:app", host=host, port=port, reload=reload, log_level=uvicorn_log_level)
