"""
Wiring of the transcript pipeline from settings and shared clients
"""

import asyncio
import time
from typing import Awaitable, Callable, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.infra.hot_cache import HotCache
from app.services.quota.credits import CreditLedger
from app.services.quota.dedup_lock import DedupLock
from app.services.quota.rate_limiter import RateLimiter
from app.services.transcripts.background import BackgroundTasks
from app.services.transcripts.metadata import MetadataIndex
from app.services.transcripts.poller import JobPoller
from app.services.transcripts.resolver import TranscriptResolver
from app.services.transcripts.store import TranscriptStore
from app.services.transcripts.strategies import (
    InstanceHealthTracker,
    PaidStrategy,
    Strategy,
    StrategyChain,
)
from app.services.upstream.gladia_client import GladiaClient
from app.services.upstream.piped_client import PipedCaptionsClient
from app.services.upstream.supadata_client import SupadataClient
from app.services.upstream.youtube_captions import YouTubeCaptionsClient


def build_strategies(
    settings: Settings,
    http: httpx.AsyncClient,
    hot_cache: HotCache,
    lock: DedupLock,
) -> List[Strategy]:
    strategies: List[Strategy] = [Strategy(YouTubeCaptionsClient())]
    for base_url in settings.caption_mirrors:
        strategies.append(Strategy(PipedCaptionsClient(http, base_url, settings.mirror_timeout_seconds)))

    if settings.paid_enabled:
        client = SupadataClient(
            http,
            settings.supadata_api_key,
            settings.supadata_api_url,
            settings.upstream_timeout_seconds,
        )
        strategies.append(
            PaidStrategy(
                client,
                hot_cache,
                lock,
                lock_ttl_seconds=settings.paid_lock_ttl_seconds,
                no_caption_ttl_seconds=settings.paid_no_caption_ttl_seconds,
            )
        )
    return strategies


def build_resolver(
    settings: Settings,
    hot_cache: HotCache,
    session_factory: async_sessionmaker[AsyncSession],
    http: httpx.AsyncClient,
    health: Optional[InstanceHealthTracker] = None,
    background: Optional[BackgroundTasks] = None,
    strategies: Optional[List[Strategy]] = None,
    ai_client: Optional[GladiaClient] = None,
    clock: Callable[[], float] = time.time,
    monotonic: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> TranscriptResolver:
    """
    Assemble a resolver. Strategies and the AI client default to the ones
    the settings enable; tests pass their own.
    """
    lock = DedupLock(hot_cache, settle_seconds=settings.lock_settle_seconds, sleep=sleep)

    if strategies is None:
        strategies = build_strategies(settings, http, hot_cache, lock)
    if ai_client is None and settings.ai_enabled:
        ai_client = GladiaClient(
            http,
            settings.gladia_api_key,
            settings.gladia_api_url,
            settings.upstream_timeout_seconds,
        )

    chain = StrategyChain(
        strategies,
        health=health or InstanceHealthTracker(settings.health_reset_seconds, clock=monotonic),
        mode=settings.strategy_mode,
        timeout_seconds=settings.strategy_timeout_seconds,
        max_attempts=settings.strategy_max_attempts,
        retry_backoff_seconds=settings.strategy_retry_backoff_seconds,
        race_stagger_seconds=settings.race_stagger_seconds,
        sleep=sleep,
    )
    poller = JobPoller(
        budget_seconds=settings.poll_budget_seconds,
        safety_margin_seconds=settings.poll_safety_margin_seconds,
        initial_delay_seconds=settings.poll_initial_delay_seconds,
        max_delay_seconds=settings.poll_max_delay_seconds,
        multiplier=settings.poll_backoff_multiplier,
        clock=monotonic,
        sleep=sleep,
    )

    return TranscriptResolver(
        settings=settings,
        store=TranscriptStore(session_factory, hot_cache, settings.transcript_hot_ttl_seconds),
        metadata=MetadataIndex(
            session_factory,
            hot_cache,
            negative_hot_ttl_seconds=settings.negative_cache_ttl_seconds,
            negative_max_age_seconds=settings.negative_cache_max_age_seconds,
            pending_job_ttl_seconds=settings.pending_job_ttl_seconds,
            clock=clock,
        ),
        hot_cache=hot_cache,
        rate_limiter=RateLimiter(hot_cache, clock=clock),
        ledger=CreditLedger(
            hot_cache,
            session_factory,
            max_balance=settings.max_diamonds,
            regen_seconds=settings.diamond_regen_seconds,
            anonymous_ttl_seconds=settings.diamond_ttl_seconds,
            clock=clock,
        ),
        lock=lock,
        chain=chain,
        poller=poller,
        ai_client=ai_client,
        background=background or BackgroundTasks(),
        clock=clock,
    )
