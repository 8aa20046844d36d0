import redis.asyncio as redis
import json
from typing import Optional, Any
import logging

from config import settings

logger = logging.getLogger(__name__)

class RedisCache:
    """Best-effort cache: any Redis failure is logged and treated as a miss"""

    def __init__(self, url: str = None, ttl: int = None):
        self.client = redis.from_url(url or settings.REDIS_URL, decode_responses=True)
        self.ttl = ttl or settings.CACHE_TTL_SECONDS

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        try:
            data = await self.client.get(key)
            if data:
                return json.loads(data)
            return None
        except Exception as e:
            logger.error(f"Redis get error: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = None):
        """Set value in cache with TTL"""
        try:
            ttl = ttl or self.ttl
            serialized = json.dumps(value, default=str)
            await self.client.setex(key, ttl, serialized)
        except Exception as e:
            logger.error(f"Redis set error: {e}")

    async def delete(self, key: str):
        """Delete key from cache"""
        try:
            await self.client.delete(key)
        except Exception as e:
            logger.error(f"Redis delete error: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"Redis ping error: {e}")
            return False

    async def close(self):
        """Close connections"""
        try:
            await self.client.aclose()
        except Exception as e:
            logger.error(f"Redis close error: {e}")
