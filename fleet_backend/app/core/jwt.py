"""
JWT token utilities.

Tokens are issued by the auth service; tracking decodes them to a principal
payload {sub, user_id, role}. create_access_token is used by the seed script
and the tests to mint tokens with the same secret.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fleet_backend.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload to encode (sub, user_id, role)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string

    Example payload:
        {
            "sub": "driver1",
            "user_id": 7,
            "role": "DRIVER",
            "exp": 1234567890
        }
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_user_token(user, expires_delta: Optional[timedelta] = None) -> str:
    """Token for a User row."""
    return create_access_token(
        {"sub": user.username, "user_id": user.id, "role": user.role.value},
        expires_delta=expires_delta,
    )


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    Returns:
        Decoded payload if valid, None otherwise (bad signature, expired, malformed)
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
