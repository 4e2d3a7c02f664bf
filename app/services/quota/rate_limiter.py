"""
Rate Limiter

Fixed-window request counter per client identity, stored in the hot cache
as {count, resetAt} under `ratelimit:{prefix}:{identity}`.

The counter is a plain read-modify-write, not an atomic increment, so two
concurrent requests can both read the same count and both be admitted.
The limit is therefore approximate: it may be exceeded by the number of
concurrent requests racing within one window. If the hot cache is
unavailable the request is allowed.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping

from app.core.logging import get_logger
from app.infra.hot_cache import HotCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max: int
    window_seconds: int
    key_prefix: str


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds

    def retry_after(self, now: float) -> int:
        return max(0, math.ceil(self.reset_at - now))


def resolve_tier_limit(max_by_tier: Mapping[str, int], tier: str) -> int:
    """Per-tier ceiling, unknown tiers get the anonymous one"""
    if tier in max_by_tier:
        return max_by_tier[tier]
    return max_by_tier.get("anonymous", 0)


def rate_limit_headers(result: RateLimitResult, now: float) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at)),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after(now))
    return headers


class RateLimiter:
    def __init__(self, hot_cache: HotCache, clock: Callable[[], float] = time.time):
        self.hot_cache = hot_cache
        self.clock = clock

    @staticmethod
    def key(identity: str, config: RateLimitConfig) -> str:
        return f"ratelimit:{config.key_prefix}:{identity}"

    async def consume(self, identity: str, config: RateLimitConfig) -> RateLimitResult:
        now = self.clock()
        key = self.key(identity, config)

        state = await self.hot_cache.get_json(key)
        count = 0
        reset_at = now + config.window_seconds
        if isinstance(state, dict):
            try:
                stored_reset = float(state.get("resetAt", 0))
                if now <= stored_reset:
                    count = int(state.get("count", 0))
                    reset_at = stored_reset
            except (TypeError, ValueError):
                logger.warning(f"Malformed rate limit state for {key}, resetting window")

        count += 1
        allowed = count <= config.max

        written = await self.hot_cache.put_json(
            key,
            {"count": count, "resetAt": reset_at},
            ttl_seconds=max(1, math.ceil(reset_at - now)),
        )
        if not written:
            # Fail open; nothing was counted
            logger.warning(f"Rate limit state for {identity} not persisted, allowing request")
            return RateLimitResult(allowed=True, remaining=max(0, config.max - count), reset_at=reset_at)

        if not allowed:
            logger.info(f"Rate limit hit for {identity} ({config.key_prefix}: {count}/{config.max})")
        return RateLimitResult(allowed=allowed, remaining=max(0, config.max - count), reset_at=reset_at)
