"""JWT token generation and validation

Identity is resolved outside this service; requests carry an HS256 bearer
token whose claims are trusted once the signature checks out.

Claims:
- sub: User ID as UUID string
- role: "ADMIN" | "MEMBER"
- iat / exp: Issued-at and expiry as Unix timestamps
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Any
from uuid import UUID

import jwt

from ..config import get_settings


def _get_jwt_secret() -> str:
    """Get JWT_SECRET from settings.

    Raises:
        ValueError: If JWT_SECRET is not set
    """
    secret = get_settings().JWT_SECRET
    if not secret:
        raise ValueError("JWT_SECRET environment variable is not set")
    return secret


def create_access_token(user_id: UUID, role: str, expires_minutes: int = None) -> str:
    """Create a signed access token.

    Args:
        user_id: User's UUID
        role: User's role (ADMIN, MEMBER)
        expires_minutes: Lifetime, defaults to JWT_EXPIRY_MINUTES

    Raises:
        ValueError: If JWT_SECRET is not set
    """
    settings = get_settings()
    secret = _get_jwt_secret()
    if expires_minutes is None:
        expires_minutes = settings.JWT_EXPIRY_MINUTES

    now = datetime.now(timezone.utc)
    payload = {
        'sub': str(user_id),
        'role': role,
        'iat': int(now.timestamp()),
        'exp': int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid or tampered
        ValueError: If JWT_SECRET is not set
    """
    settings = get_settings()
    return jwt.decode(token, _get_jwt_secret(), algorithms=[settings.JWT_ALGORITHM])
