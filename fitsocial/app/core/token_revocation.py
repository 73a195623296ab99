"""
Token Revocation backed by Redis.

Logout blacklists the token's ``jti`` until the token would have expired
anyway, so a stolen or shared token stops working immediately.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

import redis.asyncio as redis
from fitsocial.app.core.config import settings

logger = logging.getLogger(__name__)

# Create async Redis client (connects lazily on first command)
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)

# Redis key prefix for blacklisted tokens
TOKEN_BLACKLIST_PREFIX = "blacklist:jti:"


def _remaining_ttl(payload: Dict[str, Any]) -> int:
    exp = payload.get("exp")
    if not exp:
        return settings.access_token_expire_minutes * 60
    remaining = int(exp - datetime.now(timezone.utc).timestamp())
    return max(remaining, 1)


async def revoke_token(payload: Dict[str, Any]) -> bool:
    """
    Revoke the token described by ``payload`` (a decoded access token).

    Returns:
        True if successfully revoked, False otherwise
    """
    jti = payload.get("jti")
    if not jti:
        return False
    try:
        await redis_client.setex(
            f"{TOKEN_BLACKLIST_PREFIX}{jti}",
            _remaining_ttl(payload),
            str(payload.get("user_id")),  # kept for audit purposes
        )
        return True
    except Exception as e:
        logger.error("Error revoking token for user %s: %s", payload.get("user_id"), e)
        return False


async def is_token_revoked(payload: Dict[str, Any]) -> bool:
    """
    Check if a token has been revoked.

    If Redis is unreachable the token is treated as valid (availability over
    strictness); the failure is logged.
    """
    jti = payload.get("jti")
    if not jti:
        return False
    try:
        exists = await redis_client.exists(f"{TOKEN_BLACKLIST_PREFIX}{jti}")
        return exists > 0
    except Exception as e:
        logger.warning("Error checking token revocation: %s", e)
        return False


async def ping_redis() -> bool:
    try:
        return bool(await redis_client.ping())
    except Exception:
        return False
