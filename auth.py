# auth.py - JWT authentication for the video call REST and WebSocket surfaces

import jwt
import secrets
import time
from typing import Optional, Dict
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import logging

from config_manager import get_config
from error_handler import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)
config = get_config()

# =============================================================================
# JWT CONFIGURATION
# =============================================================================

class JWTManager:
    def __init__(self, secret_key: str):
        self.secret_key = secret_key
        self.algorithm = config.get('security.jwt.algorithm', 'HS256')
        self.access_token_expire_minutes = config.get('security.jwt.access_token_expire_minutes', 60)

    def create_access_token(self, user_id: str, name: str, role: str = "user") -> str:
        """Issue an access token (tokens normally come from the platform's auth service)"""
        issued_at = int(time.time())
        payload = {
            "sub": user_id,
            "name": name,
            "role": role,
            "iat": issued_at,
            "exp": issued_at + self.access_token_expire_minutes * 60,
            "jti": secrets.token_hex(16),
            "type": "access"
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str, token_type: str = "access") -> Optional[dict]:
        """Decode and check a token; None when it cannot be trusted"""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as e:
            logger.info(f"Token expired: {e}")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

        if payload.get("type") != token_type:
            logger.warning(f"Invalid token type: expected {token_type}, got {payload.get('type')}")
            return None

        if not payload.get("sub"):
            logger.warning("No user ID in JWT token")
            return None

        return payload

def user_from_payload(payload: dict) -> Dict[str, str]:
    return {
        "user_id": payload["sub"],
        "name": payload.get("name") or payload["sub"],
        "role": payload.get("role", "user")
    }

# =============================================================================
# DEPENDENCY FUNCTIONS
# =============================================================================

# Initialized in main.py lifespan
jwt_manager = None

def init_jwt_manager(secret_key: str) -> JWTManager:
    """Initialize JWT manager with secret key"""
    global jwt_manager
    jwt_manager = JWTManager(secret_key)
    return jwt_manager

def get_jwt_manager() -> JWTManager:
    """Get JWT manager instance"""
    if jwt_manager is None:
        raise RuntimeError("JWT manager not initialized")
    return jwt_manager

security = HTTPBearer(auto_error=False)

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> dict:
    """Get current user from the bearer token"""
    if credentials is None:
        raise AuthenticationError("Not authorized, no token")

    payload = get_jwt_manager().verify_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Not authorized, token failed")

    return user_from_payload(payload)

async def check_stats_access(current_user: dict = Depends(get_current_user)) -> dict:
    """Only the configured roles may read live call statistics"""
    allowed_roles = config.get('video_call.stats_roles', [])
    if current_user["role"] not in allowed_roles:
        logger.warning(f"User {current_user['user_id']} with role {current_user['role']} denied call stats")
        raise AuthorizationError("Access denied")
    return current_user

def authenticate_websocket_user(token: Optional[str]) -> Optional[dict]:
    """Authenticate a WebSocket user by the token query parameter"""
    if not token:
        return None

    payload = get_jwt_manager().verify_token(token)
    if not payload:
        return None

    return user_from_payload(payload)
