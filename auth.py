"""
Authentication module for front-desk staff.

Verifies session tokens issued out of band (bootstrap admin token, scripts,
tests). Login and registration flows are handled elsewhere; this module
only answers "who is calling and may they do this?".
"""

import logging
import secrets
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any

from fastapi import HTTPException, Request
from pydantic import BaseModel

logger = logging.getLogger(__name__)

STAFF_ROLES = ("RECEPTIONIST", "ADMIN")


# =============================================================================
# MODELS
# =============================================================================

class StaffSession(BaseModel):
    """Authenticated staff member."""
    user_id: str
    name: str = ""
    email: str = ""
    role: str


# =============================================================================
# TOKEN UTILITIES
# =============================================================================

def generate_session_token() -> str:
    """Generate a secure session token."""
    return secrets.token_urlsafe(32)


def token_from_request(request: Request) -> Optional[str]:
    """Bearer header first, then X-Auth-Token, then the auth_token cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer "):].strip() or None
    token = request.headers.get("X-Auth-Token")
    if token:
        return token
    return request.cookies.get("auth_token")


# =============================================================================
# SESSION STORE (In-Memory)
# =============================================================================

# In production, store sessions in Redis or Cosmos DB
_sessions: Dict[str, Dict[str, Any]] = {}


def create_session(user_data: Dict[str, Any], token: Optional[str] = None, ttl_hours: int = 24) -> str:
    """Create a new session for a staff member and return the token."""
    token = token or generate_session_token()

    _sessions[token] = {
        "user_id": user_data["id"],
        "name": user_data.get("name", ""),
        "email": user_data.get("email", ""),
        "role": user_data.get("role", "RECEPTIONIST"),
        "created_at": datetime.now(timezone.utc).isoformat(),
        "expires_at": (datetime.now(timezone.utc) + timedelta(hours=ttl_hours)).isoformat(),
    }

    logger.info(f"Created {_sessions[token]['role']} session for user {user_data['id']}")
    return token


def get_session(token: str) -> Optional[Dict[str, Any]]:
    """Get session data for a token, or None if invalid/expired."""
    if not token or token not in _sessions:
        return None

    session = _sessions[token]

    # Check expiration
    expires_at = datetime.fromisoformat(session["expires_at"])
    if datetime.now(timezone.utc) > expires_at:
        del _sessions[token]
        return None

    return session


def delete_session(token: str) -> bool:
    """Delete a session (logout)."""
    if token in _sessions:
        del _sessions[token]
        return True
    return False


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def require_staff(request: Request) -> StaffSession:
    """Any receptionist or admin."""
    session = get_session(token_from_request(request))
    if not session:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if session["role"] not in STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Not authorized to access this resource")
    return StaffSession(**{k: session[k] for k in ("user_id", "name", "email", "role")})


def require_admin(request: Request) -> StaffSession:
    """Admins only."""
    staff = require_staff(request)
    if staff.role != "ADMIN":
        raise HTTPException(status_code=403, detail="Not authorized to access this resource")
    return staff
