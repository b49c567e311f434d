"""
Authentication dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT authentication.
The same token checks back the WebSocket handshake.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from fleet_backend.app.core.exceptions import AuthenticationError, InsufficientPermissionsError
from fleet_backend.app.core.jwt import decode_access_token
from fleet_backend.app.core.token_revocation import is_token_revoked, are_user_tokens_revoked
from fleet_backend.app.db.session import get_db
from fleet_backend.app.domain.tracking.components import TrackingComponents
from fleet_backend.app.models.user import User

# HTTP Bearer security scheme
security = HTTPBearer()


async def resolve_principal(token: str, db: AsyncSession) -> dict:
    """
    Resolve a bearer token to its principal payload.

    Security checks:
    1. Validates JWT token signature and expiry
    2. Checks if token has been explicitly revoked
    3. Checks if all user tokens have been revoked (user blocked)
    4. Verifies user is still active in database (real-time check)

    Args:
        token: Raw JWT
        db: Database session for real-time user status check

    Returns:
        Decoded token payload containing user_id, role and sub

    Raises:
        AuthenticationError: token invalid, revoked, or user unknown
        InsufficientPermissionsError: user account is inactive
    """
    # 1. Decode and validate JWT
    payload = decode_access_token(token)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    # 2. Check if this specific token has been revoked
    if await is_token_revoked(token):
        raise AuthenticationError("Token has been revoked")

    # 3. Check if all user tokens have been revoked (user was blocked)
    if await are_user_tokens_revoked(user_id):
        raise AuthenticationError("User access has been revoked")

    # 4. Real-time database check: Verify user is still active
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise InsufficientPermissionsError("User account is inactive")

    return payload


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Raises:
        HTTPException: 401 if authentication fails, 403 if the user is inactive
    """
    try:
        return await resolve_principal(credentials.credentials, db)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    except InsufficientPermissionsError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=e.message,
        )


def get_tracking(request: Request) -> TrackingComponents:
    """Tracking pipeline built at startup."""
    return request.app.state.tracking
