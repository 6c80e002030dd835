"""JWT helpers for identifying rule owners on API requests.

Tokens are issued by the wider application; this service only verifies them
and reads the owner id from ``sub``.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from .config import settings


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    """Create a signed access token, used by tests and service-to-service callers."""
    now = datetime.utcnow()
    delta = expires_delta or timedelta(minutes=settings.access_token_expires_minutes)
    payload: Dict[str, Any] = {"sub": subject, "type": "access", "iat": now, "exp": now + delta}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a JWT and return its payload if valid."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def owner_id_from_token(token: str) -> Optional[uuid.UUID]:
    """Return the owner id of a valid access token, or None."""
    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        return None
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None
