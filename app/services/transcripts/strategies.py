"""
Strategy Chain

A strategy fetches one language of one video from one upstream. The chain
runs strategies cheapest first, either one after another until the first
success or concurrently as a race.

Every strategy failure is contained here: timeouts and transient errors are
retried within the strategy's own attempt budget, permanent errors and
garbage responses end that strategy only. Results are cleaned and checked
against the requested language before they count as a success.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Literal, Optional, Protocol, Sequence

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_incrementing

from app.core.errors import PermanentUpstreamError, TransientUpstreamError
from app.core.logging import get_logger
from app.infra.hot_cache import HotCache
from app.schemas.transcript import TranscriptSource, UpstreamCaptions
from app.services.quota.dedup_lock import DedupLock
from app.services.transcripts.cleaner import clean_segments
from app.services.transcripts.language import sample_text, verify_language

logger = get_logger(__name__)

COST_FREE = 0
COST_PAID = 1


class CaptionFetcher(Protocol):
    name: str

    async def fetch(self, video_id: str, lang: str) -> UpstreamCaptions: ...


class InstanceHealthTracker:
    """
    Per-process failure counts for upstream instances. A count is forgotten
    once its last failure is older than `reset_seconds`.
    """

    def __init__(self, reset_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.reset_seconds = reset_seconds
        self.clock = clock
        self._failures: Dict[str, int] = {}
        self._last_failure: Dict[str, float] = {}

    def record_failure(self, name: str) -> None:
        self._failures[name] = self.failures(name) + 1
        self._last_failure[name] = self.clock()

    def record_success(self, name: str) -> None:
        self._failures.pop(name, None)
        self._last_failure.pop(name, None)

    def failures(self, name: str) -> int:
        last = self._last_failure.get(name)
        if last is None:
            return 0
        if self.clock() - last > self.reset_seconds:
            self.record_success(name)
            return 0
        return self._failures.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        return {name: self.failures(name) for name in list(self._failures)}


class Strategy:
    """Fetch captions through one upstream adapter"""

    cost = COST_FREE

    def __init__(self, client: CaptionFetcher, source: TranscriptSource = "scrape"):
        self.client = client
        self.source = source

    @property
    def name(self) -> str:
        return self.client.name

    async def run(self, video_id: str, lang: str) -> Optional[UpstreamCaptions]:
        return await self.client.fetch(video_id, lang)


class PaidStrategy(Strategy):
    """
    Paid caption lookup. Skipped while a `paid:nocap` marker says the
    captions are known to be missing, or while another request holds the
    dedup lock for this video.
    """

    cost = COST_PAID

    def __init__(
        self,
        client: CaptionFetcher,
        hot_cache: HotCache,
        lock: DedupLock,
        lock_ttl_seconds: int = 300,
        no_caption_ttl_seconds: int = 3600,
    ):
        super().__init__(client, source="paid")
        self.hot_cache = hot_cache
        self.lock = lock
        self.lock_ttl_seconds = lock_ttl_seconds
        self.no_caption_ttl_seconds = no_caption_ttl_seconds

    @staticmethod
    def no_caption_key(video_id: str, lang: str) -> str:
        return f"paid:nocap:{video_id}:{lang}"

    @staticmethod
    def lock_key(video_id: str) -> str:
        return f"paid:lock:{video_id}"

    async def run(self, video_id: str, lang: str) -> Optional[UpstreamCaptions]:
        if await self.hot_cache.get(self.no_caption_key(video_id, lang)):
            logger.info(f"{self.name}: skipping {video_id}:{lang}, known to have no captions")
            return None

        lock_key = self.lock_key(video_id)
        token = await self.lock.acquire(lock_key, self.lock_ttl_seconds)
        if token is None:
            logger.info(f"{self.name}: skipping {video_id}, lookup already in progress")
            return None

        try:
            return await self.client.fetch(video_id, lang)
        except PermanentUpstreamError:
            await self.hot_cache.put(
                self.no_caption_key(video_id, lang), "1", self.no_caption_ttl_seconds
            )
            raise
        finally:
            await self.lock.release(lock_key, token)


@dataclass
class ChainResult:
    captions: Optional[UpstreamCaptions] = None
    strategy: Optional[Strategy] = None
    # Languages upstreams reported along the way, even on failure
    discovered_languages: List[str] = field(default_factory=list)
    # Some strategy positively answered "nothing here"
    permanent_miss: bool = False

    @property
    def success(self) -> bool:
        return self.captions is not None

    @property
    def source(self) -> Optional[TranscriptSource]:
        return self.strategy.source if self.strategy else None


class StrategyChain:
    def __init__(
        self,
        strategies: Sequence[Strategy],
        health: Optional[InstanceHealthTracker] = None,
        mode: Literal["sequential", "race"] = "sequential",
        timeout_seconds: float = 10.0,
        max_attempts: int = 2,
        retry_backoff_seconds: float = 0.5,
        race_stagger_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.strategies = list(strategies)
        self.health = health or InstanceHealthTracker()
        self.mode = mode
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.race_stagger_seconds = race_stagger_seconds
        self.sleep = sleep

    def ordered(self) -> List[Strategy]:
        """Cheapest first; within a cost tier, healthiest first (stable)"""
        return sorted(self.strategies, key=lambda s: (s.cost, self.health.failures(s.name)))

    def _accept(self, strategy: Strategy, captions: UpstreamCaptions, lang: str) -> Optional[UpstreamCaptions]:
        segments = clean_segments(captions.segments)
        if not segments:
            logger.info(f"{strategy.name}: no usable cues after cleaning")
            return None
        if captions.language != lang:
            logger.info(f"{strategy.name}: returned {captions.language} instead of {lang}, rejecting")
            return None
        if not verify_language(sample_text(segments), lang):
            logger.info(f"{strategy.name}: text does not look like {lang}, rejecting")
            return None
        return captions.model_copy(update={"segments": segments})

    async def run_strategy(
        self,
        strategy: Strategy,
        video_id: str,
        lang: str,
        result: ChainResult,
    ) -> Optional[UpstreamCaptions]:
        def record_failed_attempt(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            if isinstance(error, TransientUpstreamError):
                logger.warning(f"{strategy.name}: {error.message} (attempt {retry_state.attempt_number})")
            else:
                logger.warning(
                    f"{strategy.name}: timed out after {self.timeout_seconds}s (attempt {retry_state.attempt_number})"
                )
            self.health.record_failure(strategy.name)

        async def attempt() -> Optional[UpstreamCaptions]:
            return await asyncio.wait_for(strategy.run(video_id, lang), timeout=self.timeout_seconds)

        retrying = AsyncRetrying(
            retry=retry_if_exception_type((TransientUpstreamError, asyncio.TimeoutError)),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.retry_backoff_seconds, increment=self.retry_backoff_seconds),
            sleep=self.sleep,
            after=record_failed_attempt,
            reraise=True,
        )

        try:
            captions = await retrying(attempt)
        except (TransientUpstreamError, asyncio.TimeoutError):
            return None
        except PermanentUpstreamError as e:
            logger.info(f"{strategy.name}: {e.message}")
            result.permanent_miss = True
            return None
        except Exception as e:
            # Garbage upstream payloads end this strategy, never the chain
            logger.warning(f"{strategy.name}: unexpected failure: {e!r}")
            self.health.record_failure(strategy.name)
            return None

        if captions is None:
            return None
        for code in captions.available_languages:
            if code not in result.discovered_languages:
                result.discovered_languages.append(code)
        accepted = self._accept(strategy, captions, lang)
        if accepted is not None:
            self.health.record_success(strategy.name)
        return accepted

    async def resolve(self, video_id: str, lang: str) -> ChainResult:
        result = ChainResult()
        ordered = self.ordered()

        if self.mode == "race":
            # Race within a cost tier; only move to a pricier tier when the cheaper one failed
            for cost in sorted({s.cost for s in ordered}):
                tier = [s for s in ordered if s.cost == cost]
                if await self._race(tier, video_id, lang, result):
                    return result
            return result

        for strategy in ordered:
            captions = await self.run_strategy(strategy, video_id, lang, result)
            if captions is not None:
                result.captions, result.strategy = captions, strategy
                logger.info(f"Resolved {video_id}:{lang} via {strategy.name}")
                return result

        logger.info(f"All strategies failed for {video_id}:{lang}")
        return result

    async def _race(
        self,
        strategies: List[Strategy],
        video_id: str,
        lang: str,
        result: ChainResult,
    ) -> bool:
        if len(strategies) == 1:
            captions = await self.run_strategy(strategies[0], video_id, lang, result)
            if captions is not None:
                result.captions, result.strategy = captions, strategies[0]
            return captions is not None

        async def launch(index: int, strategy: Strategy):
            if index and self.race_stagger_seconds > 0:
                await self.sleep(self.race_stagger_seconds * index)
            return strategy, await self.run_strategy(strategy, video_id, lang, result)

        tasks = [asyncio.ensure_future(launch(i, s)) for i, s in enumerate(strategies)]
        try:
            for next_done in asyncio.as_completed(tasks):
                strategy, captions = await next_done
                if captions is not None:
                    result.captions, result.strategy = captions, strategy
                    logger.info(f"Resolved {video_id}:{lang} via {strategy.name} (race)")
                    return True
            return False
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
