"""FastAPI dependencies for authentication and authorization.

Usage:
    @router.get("/stats")
    def stats(user: CurrentUser = Depends(get_current_user)):
        ...

    @router.get("/analytics/global")
    def analytics(user: CurrentUser = Depends(require_role(UserRole.ADMIN))):
        ...
"""

from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .jwt import decode_token
from .roles import UserRole, has_permission


# auto_error=False so a missing header yields 401 rather than 403
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller resolved from token claims."""
    id: UUID
    role: UserRole


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Validate the bearer token and return the caller.

    Raises:
        HTTPException 401: If token is missing, invalid, expired, or has bad claims
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    try:
        payload = decode_token(credentials.credentials)
        user_id_str = payload.get("sub")
        if not user_id_str:
            raise _unauthorized("Invalid token: missing user ID claim")
        return CurrentUser(id=UUID(user_id_str), role=UserRole(payload.get("role")))
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {str(e)}")
    except ValueError as e:
        raise _unauthorized(f"Invalid token claims: {str(e)}")


def require_role(required_role: UserRole) -> Callable:
    """Create a dependency that enforces role-based access control.

    Raises:
        HTTPException 403: If user's role is insufficient
    """

    def role_dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not has_permission(current_user.role, required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required role: {required_role.value}",
            )
        return current_user

    return role_dependency
