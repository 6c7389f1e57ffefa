# storefront/redis.py
"""
Redis Client Setup.
"""

import redis
from storefront.config import get_settings


def get_redis_client():
    """Returns a synchronous Redis client, or None when Redis is not configured."""
    settings = get_settings()
    if not settings.REDIS_URL:
        return None
    return redis.from_url(settings.REDIS_URL, decode_responses=True)
