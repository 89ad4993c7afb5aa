"""
Redis client initialization and connection management.

Redis backs bearer-token revocation and the consumed-payment-link set.
"""

import redis.asyncio as redis
from backend.app.core.config import settings


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


def get_redis_client():
    """Module-level client, looked up at call time so it can be swapped in tests."""
    return redis_client


async def get_redis():
    """FastAPI dependency returning the shared client."""
    return get_redis_client()


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await get_redis_client().ping()
    except Exception:
        return False
