"""
Token revocation checks backed by Redis.

The auth service blacklists tokens (logout) and flags users whose sessions
were terminated (blocked). Tracking only reads these flags.
"""

import logging
import fleet_backend.app.core.redis_client as redis_client_module

logger = logging.getLogger(__name__)

# Redis key prefix for blacklisted tokens
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"


def token_blacklist_key(token: str) -> str:
    return f"{TOKEN_BLACKLIST_PREFIX}{token}"


def user_revocation_key(user_id: int) -> str:
    return f"{USER_TOKENS_PREFIX}{user_id}:revoked"


async def is_token_revoked(token: str) -> bool:
    """
    Check if a token has been revoked.
    
    Args:
        token: JWT token string to check
        
    Returns:
        True if token is revoked, False otherwise
    """
    try:
        exists = await redis_client_module.redis_client.exists(token_blacklist_key(token))
        return exists > 0
    except Exception as e:
        # Redis down: allow the request (availability over strict revocation)
        logger.warning("Error checking token revocation: %s", e)
        return False


async def are_user_tokens_revoked(user_id: int) -> bool:
    """
    Check if all tokens for a user have been revoked.
    
    Args:
        user_id: User ID to check
        
    Returns:
        True if all user tokens are revoked, False otherwise
    """
    try:
        exists = await redis_client_module.redis_client.exists(user_revocation_key(user_id))
        return exists > 0
    except Exception as e:
        logger.warning("Error checking user token revocation for %s: %s", user_id, e)
        return False
