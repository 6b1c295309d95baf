"""
Token revocation backed by Redis.

Logout and account suspension blacklist a token (or every token of a user)
so payment and payroll endpoints reject it before it expires.
"""

import logging
from coursepay.app.core.redis_client import get_redis
from coursepay.app.core.config import settings

logger = logging.getLogger(__name__)

TOKEN_BLACKLIST_PREFIX = "coursepay:revoked:token:"
USER_REVOKED_PREFIX = "coursepay:revoked:user:"


async def revoke_token(token: str, user_id: int) -> bool:
    """Blacklist a single token until it would have expired anyway."""
    redis = await get_redis()
    try:
        await redis.set(
            f"{TOKEN_BLACKLIST_PREFIX}{token}",
            str(user_id),
            ex=settings.access_token_expire_minutes * 60,
        )
        return True
    except Exception:
        logger.exception("Failed to revoke token for user %s", user_id)
        return False


async def revoke_user_tokens(user_id: int) -> bool:
    """Blacklist every outstanding token of a user."""
    redis = await get_redis()
    try:
        await redis.set(
            f"{USER_REVOKED_PREFIX}{user_id}",
            "1",
            ex=settings.access_token_expire_minutes * 60,
        )
        return True
    except Exception:
        logger.exception("Failed to revoke tokens for user %s", user_id)
        return False


async def is_revoked(token: str, user_id: int) -> bool:
    """
    Check both the token blacklist and the per-user blacklist.

    Fails open when Redis is unreachable: the DB active-user check in
    get_current_user still applies.
    """
    redis = await get_redis()
    try:
        if await redis.exists(f"{TOKEN_BLACKLIST_PREFIX}{token}"):
            return True
        return bool(await redis.exists(f"{USER_REVOKED_PREFIX}{user_id}"))
    except Exception:
        logger.warning("Redis unavailable, skipping token revocation check")
        return False
