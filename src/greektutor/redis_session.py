from typing import Optional

import redis.asyncio as redis

from .config import settings

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Returns the process-wide async client, creating it on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
