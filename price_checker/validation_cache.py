from typing import Optional

import redis.asyncio as redis

from price_checker.config import REDIS_URL, SYMBOL_VALIDATION_TTL_SECONDS

KEY_PREFIX = "symbol_valid"


def create_redis_client(url: str = REDIS_URL) -> redis.Redis:
    return redis.from_url(url, decode_responses=True)


class ValidationCache:
    """
    Remembers whether the quote source accepted a symbol.

    Only validity is stored, never prices. Redis errors are raised to the
    caller, which decides how to degrade.
    """

    def __init__(self, client: Optional[redis.Redis] = None, ttl_seconds: int = SYMBOL_VALIDATION_TTL_SECONDS):
        self.redis = client if client is not None else create_redis_client()
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(symbol: str) -> str:
        return f"{KEY_PREFIX}:{symbol}"

    async def get(self, symbol: str) -> Optional[bool]:
        """True/False for a cached verdict, None on a miss"""
        value = await self.redis.get(self.key(symbol))
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return value == "1"

    async def set(self, symbol: str, valid: bool):
        await self.redis.setex(self.key(symbol), self.ttl_seconds, "1" if valid else "0")

    async def close(self):
        await self.redis.aclose()
