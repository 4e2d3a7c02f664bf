"""
Dedup Lock

Best-effort advisory lock keeping concurrent requests from calling the same
expensive upstream twice. Ownership is proven by a random token, never by
the store's own locking.

Acquire: bail out if the key is held, write a fresh token (NX), wait a
short settle delay, then read the key back and confirm it still carries our
token. Release: delete only while the key still carries our token.

Race windows:
- another writer can replace the key between our write and the read-back;
  the read-back catches that and we back off
- between release's read and delete the key can expire and be re-acquired,
  in which case we delete a lock we no longer own

Both cost at most one duplicate upstream call. The TTL bounds how long a
crashed holder blocks others. An unreachable store grants the lock.
"""

import asyncio
import secrets
from typing import Awaitable, Callable, Optional

from app.core.logging import get_logger
from app.infra.hot_cache import HotCache

logger = get_logger(__name__)


class DedupLock:
    def __init__(
        self,
        hot_cache: HotCache,
        settle_seconds: float = 0.05,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.hot_cache = hot_cache
        self.settle_seconds = settle_seconds
        self.sleep = sleep

    async def acquire(self, resource_key: str, ttl_seconds: int) -> Optional[str]:
        """Owner token, or None when someone else holds the lock"""
        if await self.hot_cache.get(resource_key):
            return None

        token = secrets.token_hex(16)
        if not await self.hot_cache.put(resource_key, token, ttl_seconds, if_absent=True):
            if not await self.hot_cache.ping():
                # Store unreachable: proceed as if unlocked
                logger.warning(f"Lock store unavailable, proceeding without lock for {resource_key}")
                return token
            return None

        if self.settle_seconds > 0:
            await self.sleep(self.settle_seconds)

        current = await self.hot_cache.get(resource_key)
        if current != token:
            logger.debug(f"Lost lock race for {resource_key}")
            return None
        return token

    async def release(self, resource_key: str, token: Optional[str]) -> bool:
        if not token:
            return False
        current = await self.hot_cache.get(resource_key)
        if current != token:
            return False
        return await self.hot_cache.delete(resource_key)
