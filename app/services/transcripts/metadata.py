"""
Metadata Index

Lightweight relational facts about videos, kept apart from transcript
content:

- which (video, language, source) combinations have been produced
- which native caption languages a video is known to have, plus duration
- in-flight AI jobs, so a later request can resume polling
- "no transcript here" markers (negative cache)

The negative cache is two-tier: a short-lived hot cache marker in front of
a relational row that survives until its own expiry. Rows are only ever
removed once expired.

Like the content store, nothing here raises on storage failure. Reads
degrade to "unknown", writes log and return False.
"""

import time
from typing import Callable, Iterable, List, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import get_logger
from app.infra.hot_cache import HotCache
from app.models.transcript import (
    NoTranscriptEntry,
    PendingJob,
    VideoLanguages,
    VideoMeta,
)
from app.schemas.transcript import LanguageAvailability

logger = get_logger(__name__)


def negative_cache_key(video_id: str, language: str, source_class: str) -> str:
    return f"no-transcript:{video_id}:{language}:{source_class}"


class MetadataIndex:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hot_cache: HotCache,
        negative_hot_ttl_seconds: int = 3600,
        negative_max_age_seconds: int = 7 * 24 * 3600,
        pending_job_ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.session_factory = session_factory
        self.hot_cache = hot_cache
        self.negative_hot_ttl_seconds = negative_hot_ttl_seconds
        self.negative_max_age_seconds = negative_max_age_seconds
        self.pending_job_ttl_seconds = pending_job_ttl_seconds
        self.clock = clock

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def record_availability(self, video_id: str, language: str, source: str) -> bool:
        try:
            async with self.session_factory() as session:
                await session.merge(
                    VideoMeta(
                        video_id=video_id,
                        language=language,
                        source=source,
                        created_at=self.clock(),
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record availability {video_id}:{language}: {e}")
            return False

        # Anything not produced by AI is a native caption track
        if source != "ai":
            await self.add_native_languages(video_id, [language])
        return True

    async def list_availability(self, video_id: str) -> LanguageAvailability:
        native: List[str] = []
        ai: List[str] = []
        try:
            async with self.session_factory() as session:
                rows = (
                    await session.execute(
                        select(VideoMeta).where(VideoMeta.video_id == video_id)
                    )
                ).scalars().all()
                langs = await session.get(VideoLanguages, video_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to list availability for {video_id}: {e}")
            return LanguageAvailability(video_id=video_id)

        for row in rows:
            bucket = ai if row.source == "ai" else native
            if row.language not in bucket:
                bucket.append(row.language)
        if langs is not None:
            for lang in langs.available_languages or []:
                if lang not in native:
                    native.append(lang)

        return LanguageAvailability(video_id=video_id, native=sorted(native), ai=sorted(ai))

    # ------------------------------------------------------------------
    # Video languages / duration
    # ------------------------------------------------------------------

    async def known_native_languages(self, video_id: str) -> Optional[List[str]]:
        """None when nothing has ever been recorded for this video"""
        try:
            async with self.session_factory() as session:
                row = await session.get(VideoLanguages, video_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read languages for {video_id}: {e}")
            return None
        if row is None:
            return None
        return list(row.available_languages or [])

    async def add_native_languages(self, video_id: str, languages: Iterable[str]) -> bool:
        new_langs = [lang for lang in languages if lang]
        if not new_langs:
            return False
        try:
            async with self.session_factory() as session:
                row = await session.get(VideoLanguages, video_id)
                if row is None:
                    row = VideoLanguages(video_id=video_id, available_languages=[])
                    session.add(row)
                merged = list(row.available_languages or [])
                for lang in new_langs:
                    if lang not in merged:
                        merged.append(lang)
                # Reassign so the JSON column is flagged dirty
                row.available_languages = merged
                row.updated_at = self.clock()
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to add languages for {video_id}: {e}")
            return False

    async def get_video_duration(self, video_id: str) -> Optional[int]:
        try:
            async with self.session_factory() as session:
                row = await session.get(VideoLanguages, video_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read duration for {video_id}: {e}")
            return None
        return row.duration_seconds if row is not None else None

    async def save_video_duration(self, video_id: str, duration_seconds: int) -> bool:
        try:
            async with self.session_factory() as session:
                row = await session.get(VideoLanguages, video_id)
                if row is None:
                    row = VideoLanguages(video_id=video_id, available_languages=[])
                    session.add(row)
                row.duration_seconds = int(duration_seconds)
                row.updated_at = self.clock()
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to save duration for {video_id}: {e}")
            return False

    # ------------------------------------------------------------------
    # Pending AI jobs
    # ------------------------------------------------------------------

    async def save_pending_job(self, video_id: str, language: str, result_handle: str) -> bool:
        try:
            async with self.session_factory() as session:
                await session.merge(
                    PendingJob(
                        video_id=video_id,
                        language=language,
                        result_handle=result_handle,
                        created_at=self.clock(),
                    )
                )
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to save pending job for {video_id}: {e}")
            return False

    async def get_pending_job(self, video_id: str) -> Optional[PendingJob]:
        """Most recent job for the video, ignoring ones older than the job TTL"""
        cutoff = self.clock() - self.pending_job_ttl_seconds
        try:
            async with self.session_factory() as session:
                job = await session.get(PendingJob, video_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read pending job for {video_id}: {e}")
            return None
        if job is None or job.created_at <= cutoff:
            return None
        return job

    async def delete_pending_job(self, video_id: str) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(delete(PendingJob).where(PendingJob.video_id == video_id))
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete pending job for {video_id}: {e}")
            return False

    async def cleanup_stale_jobs(self, max_age_seconds: Optional[int] = None) -> int:
        max_age = max_age_seconds if max_age_seconds is not None else self.pending_job_ttl_seconds
        cutoff = self.clock() - max_age
        try:
            async with self.session_factory() as session:
                result = await session.execute(delete(PendingJob).where(PendingJob.created_at < cutoff))
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Failed to clean up pending jobs: {e}")
            return 0

    # ------------------------------------------------------------------
    # Negative cache
    # ------------------------------------------------------------------

    async def mark_no_transcript(self, video_id: str, language: str, source_class: str) -> bool:
        now = self.clock()
        await self.hot_cache.put(
            negative_cache_key(video_id, language, source_class),
            "1",
            self.negative_hot_ttl_seconds,
        )
        try:
            async with self.session_factory() as session:
                await session.merge(
                    NoTranscriptEntry(
                        video_id=video_id,
                        language=language,
                        source_class=source_class,
                        created_at=now,
                        expires_at=now + self.negative_max_age_seconds,
                    )
                )
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark {video_id}:{language} as missing: {e}")
            return False

    async def is_no_transcript(self, video_id: str, language: str, source_class: str) -> bool:
        key = negative_cache_key(video_id, language, source_class)
        if await self.hot_cache.get(key):
            return True

        now = self.clock()
        try:
            async with self.session_factory() as session:
                entry = await session.get(NoTranscriptEntry, (video_id, language, source_class))
        except SQLAlchemyError as e:
            logger.error(f"Failed to check negative cache for {video_id}:{language}: {e}")
            return False

        if entry is None or entry.expires_at <= now:
            return False

        # Re-warm the hot marker, but never past the row's own expiry
        ttl = min(self.negative_hot_ttl_seconds, int(entry.expires_at - now))
        if ttl > 0:
            await self.hot_cache.put(key, "1", ttl)
        return True

    async def clear_no_transcript(self, video_id: str, language: str, source_class: str) -> bool:
        await self.hot_cache.delete(negative_cache_key(video_id, language, source_class))
        try:
            async with self.session_factory() as session:
                await session.execute(
                    delete(NoTranscriptEntry).where(
                        NoTranscriptEntry.video_id == video_id,
                        NoTranscriptEntry.language == language,
                        NoTranscriptEntry.source_class == source_class,
                    )
                )
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to clear negative cache for {video_id}:{language}: {e}")
            return False

    async def sweep_negative_cache(self, max_age_seconds: Optional[int] = None) -> int:
        """Delete negative entries past their expiry (or older than max_age_seconds)"""
        now = self.clock()
        conditions = [NoTranscriptEntry.expires_at <= now]
        if max_age_seconds is not None:
            conditions.append(NoTranscriptEntry.created_at < now - max_age_seconds)
        try:
            async with self.session_factory() as session:
                result = await session.execute(delete(NoTranscriptEntry).where(or_(*conditions)))
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Failed to sweep negative cache: {e}")
            return 0
