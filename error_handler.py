# error_handler.py - Centralized Error Handling

import logging
from datetime import datetime
from typing import Any, Dict, Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from config_manager import get_config

logger = logging.getLogger(__name__)
config = get_config()

class AppError(Exception):
    """Base application error"""
    def __init__(self, message: str, code: str = "APP_ERROR", status_code: int = 500):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)

    def to_event(self) -> Dict[str, Any]:
        """Render the error as a WebSocket event for the failing caller"""
        return {
            "type": "error",
            "code": self.code,
            "message": self.message
        }

class ValidationError(AppError):
    """Validation error (malformed event, empty chat text)"""
    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message, "VALIDATION_ERROR", 400)

class AuthenticationError(AppError):
    """Authentication error"""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, "AUTH_ERROR", 401)

class AuthorizationError(AppError):
    """Authorization error"""
    def __init__(self, message: str = "Access denied"):
        super().__init__(message, "AUTHZ_ERROR", 403)

class NotFoundError(AppError):
    """Resource not found error"""
    def __init__(self, message: str = "Resource not found", resource: str = None):
        self.resource = resource
        super().__init__(message, "NOT_FOUND", 404)

class TargetUnavailableError(AppError):
    """Relay target is no longer connected"""
    def __init__(self, target: str):
        self.target = target
        super().__init__(f"Connection {target} is not available", "TARGET_UNAVAILABLE", 410)

class DatabaseError(AppError):
    """Database error"""
    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, "DB_ERROR", 500)

def create_error_response(
    error: AppError,
    request: Optional[Request] = None,
    include_details: bool = None
) -> JSONResponse:
    """Create standardized error response"""

    if include_details is None:
        include_details = config.get('server.debug', False)

    # Clients read "detail", same shape as FastAPI's own HTTPException body
    api_response = {"detail": error.message}

    if include_details:
        error_info = {
            "code": error.code,
            "status_code": error.status_code,
            "timestamp": datetime.now().isoformat()
        }
        if isinstance(error, ValidationError) and error.field:
            error_info["field"] = error.field
        if isinstance(error, NotFoundError) and error.resource:
            error_info["resource"] = error.resource
        if request:
            error_info["request"] = {
                "method": request.method,
                "url": str(request.url)
            }
        api_response["error_info"] = error_info

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(error, AuthenticationError) else None

    return JSONResponse(
        status_code=error.status_code,
        content=api_response,
        headers=headers
    )

async def app_error_handler(request: Request, error: AppError) -> JSONResponse:
    """FastAPI exception handler for application errors"""
    if error.status_code >= 500:
        logger.error(f"{error.code} on {request.method} {request.url.path}: {error.message}")
    return create_error_response(error, request)
