"""
Transcript Resolver

Turns one transcript request into one response:

1. validate video id, language and duration
2. resume a known AI job when the request carries its handle
3. native rate limit for the caller's tier
4. content store lookup (skipped on forceRefresh)
5. negative cache, then the known native languages of the video
6. strategy chain over the free and paid caption sources
7. on failure: an existing AI transcript in another language, else the AI
   path when the caller has a diamond to spend
8. AI path: resume a pending job, reuse a finished one, or debit, submit
   and poll within the request budget

Every caller visible failure is returned as a structured outcome carrying
the diamond balance and known languages. Persistence after a success runs
in the background and never delays the response.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from app.core.config import Settings
from app.core.errors import UpstreamError, ValidationError
from app.core.logging import get_logger
from app.infra.hot_cache import HotCache
from app.schemas.transcript import (
    AvailableLanguages,
    LanguageAvailability,
    Segment,
    TranscriptRequest,
    TranscriptResponse,
)
from app.services.quota.credits import CreditBalance, CreditLedger
from app.services.quota.dedup_lock import DedupLock
from app.services.quota.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    rate_limit_headers,
    resolve_tier_limit,
)
from app.services.transcripts.background import BackgroundTasks
from app.services.transcripts.cleaner import clean_segments
from app.services.transcripts.language import is_valid_video_id, normalize_language
from app.services.transcripts.metadata import MetadataIndex
from app.services.transcripts.poller import JobPoller
from app.services.transcripts.store import TranscriptStore
from app.services.transcripts.strategies import ChainResult, StrategyChain
from app.services.upstream.gladia_client import GladiaClient

logger = get_logger(__name__)

CACHE_CONTROL_HIT = "public, max-age=86400, stale-while-revalidate=3600"
CACHE_CONTROL_NATIVE = "public, max-age=3600, stale-while-revalidate=600"
CACHE_CONTROL_AI = "public, max-age=604800, stale-while-revalidate=86400"
CACHE_CONTROL_NO_STORE = "no-store"


@dataclass(frozen=True)
class Caller:
    """Who is asking: user id when authenticated, else a client address"""

    identity: str
    tier: str = "anonymous"
    authenticated: bool = False


@dataclass
class ResolveOutcome:
    status_code: int
    body: TranscriptResponse
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class _RequestState:
    caller: Caller
    video_id: str
    lang: str
    started: float
    credit: CreditBalance
    native: List[str]
    ai: List[str]
    headers: Dict[str, str] = field(default_factory=dict)

    def add_native(self, *languages: str) -> None:
        for lang in languages:
            if lang and lang not in self.native:
                self.native.append(lang)

    def add_ai(self, lang: str) -> None:
        if lang and lang not in self.ai:
            self.ai.append(lang)


def job_map_key(handle: str) -> str:
    return f"job_map:{handle}"


class TranscriptResolver:
    def __init__(
        self,
        settings: Settings,
        store: TranscriptStore,
        metadata: MetadataIndex,
        hot_cache: HotCache,
        rate_limiter: RateLimiter,
        ledger: CreditLedger,
        lock: DedupLock,
        chain: StrategyChain,
        poller: JobPoller,
        ai_client: Optional[GladiaClient],
        background: BackgroundTasks,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.store = store
        self.metadata = metadata
        self.hot_cache = hot_cache
        self.rate_limiter = rate_limiter
        self.ledger = ledger
        self.lock = lock
        self.chain = chain
        self.poller = poller
        self.ai_client = ai_client
        self.background = background
        self.clock = clock

    # ------------------------------------------------------------------
    # Response helpers
    # ------------------------------------------------------------------

    def _outcome(
        self,
        state: _RequestState,
        status_code: int = 200,
        cache_control: str = CACHE_CONTROL_NO_STORE,
        x_cache: Optional[str] = None,
        **fields,
    ) -> ResolveOutcome:
        fields.setdefault("success", False)
        fields.setdefault("whisper_available", self.ai_client is not None and state.credit.balance > 0)
        if fields["success"]:
            fields.setdefault("language", state.lang)

        body = TranscriptResponse(
            video_id=state.video_id,
            requested_language=state.lang,
            available_languages=AvailableLanguages(native=list(state.native), ai=list(state.ai)),
            diamonds=state.credit.balance,
            max_diamonds=state.credit.max_balance,
            next_regen_at=state.credit.next_regen_at,
            timing=int((self.poller.clock() - state.started) * 1000),
            **fields,
        )

        headers = dict(state.headers)
        headers["Cache-Control"] = cache_control
        if x_cache:
            headers["X-Cache"] = x_cache
        return ResolveOutcome(status_code=status_code, body=body, headers=headers)

    def _failure(self, state: _RequestState, status_code: int, error_code: str, error: str, **fields) -> ResolveOutcome:
        return self._outcome(state, status_code=status_code, error_code=error_code, error=error, **fields)

    def _no_native(self, state: _RequestState, error: str, x_cache: Optional[str] = None) -> ResolveOutcome:
        return self._outcome(
            state,
            x_cache=x_cache,
            error_code="NO_NATIVE",
            error=error,
        )

    def _no_diamonds(self, state: _RequestState) -> ResolveOutcome:
        retry_after = 0
        if state.credit.next_regen_at:
            retry_after = max(0, math.ceil(state.credit.next_regen_at / 1000 - self.clock()))
        state.headers["Retry-After"] = str(retry_after)
        return self._failure(
            state,
            429,
            "NO_DIAMONDS",
            "No diamonds remaining for AI transcription. Please wait for regeneration.",
            whisper_available=False,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def resolve(self, request: TranscriptRequest, caller: Caller) -> ResolveOutcome:
        started = self.poller.clock()
        settings = self.settings

        lang = normalize_language(request.lang) or settings.default_language
        if lang not in settings.supported_languages:
            raise ValidationError(
                f"Unsupported language. Supported: {', '.join(settings.supported_languages)}",
                error_code="UNSUPPORTED_LANGUAGE",
            )

        video_id = request.video_id
        if not video_id and request.result_handle:
            video_id = await self.hot_cache.get(job_map_key(request.result_handle))
        if not is_valid_video_id(video_id):
            raise ValidationError("Invalid or missing videoId")

        ceiling = settings.max_ai_duration_seconds if request.prefer_ai else settings.max_native_duration_seconds
        if request.duration is not None and request.duration > ceiling:
            raise ValidationError(
                f"Video exceeds the {ceiling // 60} minute limit",
                error_code="VIDEO_TOO_LONG",
            )

        credit = await self.ledger.get_balance(caller.identity, caller.authenticated)
        availability = await self.metadata.list_availability(video_id)
        state = _RequestState(
            caller=caller,
            video_id=video_id,
            lang=lang,
            started=started,
            credit=credit,
            native=list(availability.native),
            ai=list(availability.ai),
        )
        logger.info(
            f"Request {video_id}:{lang} preferAI={request.prefer_ai} "
            f"tier={caller.tier} diamonds={credit.balance}"
        )

        if request.result_handle:
            return await self._resume(state, request.result_handle)

        if not request.prefer_ai:
            limited = await self._check_native_rate_limit(state)
            if limited is not None:
                return limited

        if not request.force_refresh:
            cached = await self.store.get(video_id, lang)
            if cached is not None:
                logger.info(f"Cache hit {video_id}:{lang}")
                return self._outcome(
                    state,
                    cache_control=CACHE_CONTROL_AI if cached.source == "ai" else CACHE_CONTROL_HIT,
                    x_cache="HIT",
                    success=True,
                    segments=cached.segments,
                    source="cache",
                    source_detail=cached.source,
                )

        if request.prefer_ai:
            return await self._ai_path(state, request)

        return await self._native_path(state, request)

    # ------------------------------------------------------------------
    # Native path
    # ------------------------------------------------------------------

    async def _check_native_rate_limit(self, state: _RequestState) -> Optional[ResolveOutcome]:
        config = RateLimitConfig(
            max=resolve_tier_limit(self.settings.native_rate_limit_max, state.caller.tier),
            window_seconds=self.settings.native_rate_limit_window_seconds,
            key_prefix="native",
        )
        result = await self.rate_limiter.consume(state.caller.identity, config)
        state.headers.update(rate_limit_headers(result, self.clock()))
        if result.allowed:
            return None
        return self._failure(state, 429, "RATE_LIMITED", "Rate limit exceeded. Please try again later.")

    async def _native_path(self, state: _RequestState, request: TranscriptRequest) -> ResolveOutcome:
        video_id, lang = state.video_id, state.lang

        if await self.metadata.is_no_transcript(video_id, lang, "native"):
            logger.info(f"Negative cache hit {video_id}:{lang}")
            return self._no_native(state, "No native captions found. AI transcription available.", x_cache="NEG")

        known = await self.metadata.known_native_languages(video_id)
        if known and lang not in known:
            logger.info(f"{lang} not among known languages {known} of {video_id}")
            fallback = await self._fallback_transcript(state, known)
            if fallback is not None:
                return fallback
            return self._no_native(state, "Language not available natively. AI transcription available.")

        result = await self.chain.resolve(video_id, lang)
        state.add_native(*result.discovered_languages)

        if result.success:
            return self._native_success(state, result)

        if result.discovered_languages:
            self.background.spawn(
                self.metadata.add_native_languages(video_id, result.discovered_languages),
                name="add-languages",
            )
        if result.permanent_miss:
            self.background.spawn(
                self.metadata.mark_no_transcript(video_id, lang, "native"), name="mark-negative"
            )

        existing_ai = await self._existing_ai_fallback(state)
        if existing_ai is not None:
            return existing_ai

        can_use_ai = self.ai_client is not None and state.credit.balance > 0
        if self.settings.auto_ai_fallback and can_use_ai:
            logger.info(f"No native captions for {video_id}:{lang}, falling back to AI")
            return await self._ai_path(state, request)

        return self._no_native(state, "No native captions found. AI transcription available.")

    def _native_success(self, state: _RequestState, result: ChainResult) -> ResolveOutcome:
        video_id, lang = state.video_id, state.lang
        captions = result.captions
        source = result.source

        self.background.spawn(self.store.put(video_id, lang, captions.segments, source), name="store-put")
        self.background.spawn(self.metadata.record_availability(video_id, lang, source), name="record-availability")
        if result.discovered_languages:
            self.background.spawn(
                self.metadata.add_native_languages(video_id, result.discovered_languages),
                name="add-languages",
            )
        if captions.duration_seconds:
            self.background.spawn(
                self.metadata.save_video_duration(video_id, captions.duration_seconds),
                name="save-duration",
            )

        state.add_native(lang)
        return self._outcome(
            state,
            cache_control=CACHE_CONTROL_NATIVE,
            x_cache="MISS",
            success=True,
            segments=captions.segments,
            source=source,
            source_detail=result.strategy.name,
        )

    async def _fallback_transcript(self, state: _RequestState, languages: List[str]) -> Optional[ResolveOutcome]:
        """First stored transcript among `languages`, returned in place of the requested one"""
        for other in languages:
            if other == state.lang:
                continue
            cached = await self.store.get(state.video_id, other)
            if cached is None:
                continue
            return self._outcome(
                state,
                cache_control=CACHE_CONTROL_HIT,
                x_cache="HIT:FALLBACK",
                success=True,
                language=other,
                segments=cached.segments,
                source="cache",
                source_detail=f"fallback:{cached.source}",
                warning=f"Requested '{state.lang}' not available natively. Returned '{other}'.",
            )
        return None

    async def _existing_ai_fallback(self, state: _RequestState) -> Optional[ResolveOutcome]:
        """An AI transcript already paid for in another language beats asking for credit"""
        for other in list(state.ai):
            if other == state.lang:
                continue
            cached = await self.store.get(state.video_id, other)
            if cached is None or cached.source != "ai":
                continue
            logger.info(f"Returning existing AI transcript {state.video_id}:{other} for {state.lang}")
            return self._outcome(
                state,
                cache_control=CACHE_CONTROL_AI,
                x_cache="HIT:FALLBACK",
                success=True,
                language=other,
                segments=cached.segments,
                source="cache",
                source_detail="fallback:ai",
                whisper_available=True,
                warning=(
                    f"Requested '{state.lang}' not available natively. "
                    f"Found existing AI transcript in '{other}'."
                ),
            )
        return None

    # ------------------------------------------------------------------
    # AI path
    # ------------------------------------------------------------------

    async def _ai_path(self, state: _RequestState, request: TranscriptRequest) -> ResolveOutcome:
        video_id, lang = state.video_id, state.lang

        if state.credit.balance <= 0:
            return self._no_diamonds(state)

        if self.ai_client is None:
            return self._failure(state, 503, "SERVICE_UNAVAILABLE", "AI transcription not configured")

        duration = await self.metadata.get_video_duration(video_id) or request.duration
        if duration and duration > self.settings.max_ai_duration_seconds:
            return self._failure(
                state,
                400,
                "VIDEO_TOO_LONG",
                f"Video exceeds {self.settings.max_ai_duration_seconds // 60} minute limit for AI transcription",
            )

        pending = await self.metadata.get_pending_job(video_id)
        if pending is not None:
            logger.info(f"Resuming pending AI job for {video_id}")
            return await self._poll(state, pending.result_handle)

        stored = await self._stored_ai_outcome(state)
        if stored is not None:
            return stored

        config = RateLimitConfig(
            max=self.settings.ai_rate_limit_max,
            window_seconds=self.settings.ai_rate_limit_window_seconds,
            key_prefix="ai",
        )
        limit = await self.rate_limiter.consume(state.caller.identity, config)
        if not limit.allowed:
            state.headers.update(rate_limit_headers(limit, self.clock()))
            return self._failure(state, 429, "RATE_LIMITED", "Too many AI transcription requests.")

        lock_key = f"ai:lock:{video_id}"
        token = await self.lock.acquire(lock_key, self.settings.paid_lock_ttl_seconds)
        if token is None:
            # Someone else is submitting this video right now
            return self._outcome(
                state,
                status="processing",
                whisper_available=True,
                warning="AI transcription for this video is already being started. Retry shortly.",
            )

        submitted = False
        try:
            # Another request may have submitted while this one waited for the lock
            pending = await self.metadata.get_pending_job(video_id)
            if pending is not None:
                handle = pending.result_handle
            else:
                stored = await self._stored_ai_outcome(state)
                if stored is not None:
                    return stored

                debit = await self.ledger.debit(state.caller.identity, state.caller.authenticated)
                if not debit.success:
                    state.credit = CreditBalance(0, state.credit.max_balance, debit.next_regen_at)
                    return self._no_diamonds(state)
                state.credit = CreditBalance(debit.balance, state.credit.max_balance, debit.next_regen_at)

                try:
                    handle = await self.ai_client.submit(video_id)
                except UpstreamError as e:
                    logger.error(f"AI submission failed for {video_id} after debit: {e.message}")
                    return self._failure(state, 500, "AI_SERVICE_ERROR", f"AI transcription failed: {e.message}")

                await self.metadata.save_pending_job(video_id, lang, handle)
                await self.hot_cache.put(job_map_key(handle), video_id, self.settings.pending_job_ttl_seconds)
                submitted = True
        finally:
            await self.lock.release(lock_key, token)

        if submitted:
            self.background.spawn(self.metadata.cleanup_stale_jobs(), name="cleanup-jobs")
            self.background.spawn(self.metadata.sweep_negative_cache(), name="sweep-negative")
        else:
            logger.info(f"Resuming AI job submitted concurrently for {video_id}")

        return await self._poll(state, handle)

    async def _stored_ai_outcome(self, state: _RequestState) -> ResolveOutcome | None:
        existing = await self.store.get(state.video_id, state.lang)
        if existing is None or existing.source != "ai":
            return None
        return self._outcome(
            state,
            cache_control=CACHE_CONTROL_AI,
            x_cache="HIT:AI",
            success=True,
            segments=existing.segments,
            source="cache",
            source_detail="ai",
            whisper_available=True,
        )

    async def _resume(self, state: _RequestState, handle: str) -> ResolveOutcome:
        """Continue polling a job this service submitted earlier"""
        mapped = await self.hot_cache.get(job_map_key(handle))
        if mapped != state.video_id:
            pending = await self.metadata.get_pending_job(state.video_id)
            if pending is None or pending.result_handle != handle:
                finished = await self.store.get(state.video_id, state.lang)
                if finished is not None and finished.source == "ai":
                    return self._outcome(
                        state,
                        cache_control=CACHE_CONTROL_AI,
                        x_cache="HIT:AI",
                        success=True,
                        segments=finished.segments,
                        source="cache",
                        source_detail="ai",
                        whisper_available=True,
                    )
                return self._failure(state, 400, "INVALID_REQUEST", "Unknown or expired result handle")

        if self.ai_client is None:
            return self._failure(state, 503, "SERVICE_UNAVAILABLE", "AI transcription not configured")
        return await self._poll(state, handle)

    async def _poll(self, state: _RequestState, handle: str) -> ResolveOutcome:
        outcome = await self.poller.poll(handle, self.ai_client.get_status, started_at=state.started)

        if outcome.state == "processing":
            return self._outcome(
                state,
                status="processing",
                result_handle=handle,
                whisper_available=True,
            )

        video_id = state.video_id
        self.background.spawn(self.metadata.delete_pending_job(video_id), name="delete-pending")
        self.background.spawn(self.hot_cache.delete(job_map_key(handle)), name="delete-job-map")

        if outcome.state == "error":
            return self._failure(
                state, 500, "AI_SERVICE_ERROR", f"AI transcription failed: {outcome.job.error}"
            )

        segments: List[Segment] = clean_segments(outcome.job.segments)
        if not segments:
            return self._failure(state, 500, "AI_SERVICE_ERROR", "AI transcription returned no text")

        language = normalize_language(outcome.job.language) or state.lang
        self.background.spawn(self.store.put(video_id, language, segments, "ai"), name="store-put")
        self.background.spawn(self.metadata.record_availability(video_id, language, "ai"), name="record-availability")
        state.add_ai(language)

        return self._outcome(
            state,
            cache_control=CACHE_CONTROL_AI,
            x_cache="MISS",
            success=True,
            language=language,
            segments=segments,
            source="ai",
            source_detail=self.ai_client.name,
            whisper_available=True,
        )

    # ------------------------------------------------------------------
    # Other operations
    # ------------------------------------------------------------------

    async def credit_status(self, caller: Caller) -> CreditBalance:
        return await self.ledger.get_balance(caller.identity, caller.authenticated)

    async def availability(self, video_id: str) -> LanguageAvailability:
        return await self.metadata.list_availability(video_id)
