"""
Redis client initialization.

Used for the token revocation blacklist.
"""

import redis.asyncio as redis
from coursepay.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.

    Tests swap the module-level client for an in-memory fake.
    """
    return redis_client
