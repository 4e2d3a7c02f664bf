"""
Hot cache

Thin JSON key-value layer over Redis with per-key TTL. Used for short-lived
acceleration of transcript/metadata lookups and for coordination state
(rate-limit windows, diamond balances, dedup locks, negative markers).

Every operation fails open: a Redis error is logged and reported as a
miss / failed write, never raised to the caller.
"""

import json
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.logging import get_logger

logger = get_logger(__name__)


class HotCache:
    def __init__(self, client: Redis):
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"HotCache get failed for {key}: {e}")
            return None

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"HotCache value for {key} is not JSON, ignoring")
            return None

    async def put(
        self,
        key: str,
        value: str,
        ttl_seconds: Optional[int] = None,
        if_absent: bool = False,
    ) -> bool:
        """
        Store a value. Returns False when the write failed or, with
        `if_absent`, when the key already existed.
        """
        try:
            ex = max(1, int(ttl_seconds)) if ttl_seconds else None
            result = await self.client.set(key, value, ex=ex, nx=if_absent)
            return bool(result)
        except (RedisError, OSError) as e:
            logger.warning(f"HotCache put failed for {key}: {e}")
            return False

    async def put_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        return await self.put(key, json.dumps(value, ensure_ascii=False), ttl_seconds)

    async def delete(self, key: str) -> bool:
        try:
            await self.client.delete(key)
            return True
        except (RedisError, OSError) as e:
            logger.warning(f"HotCache delete failed for {key}: {e}")
            return False

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError):
            return False
