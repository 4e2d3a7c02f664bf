"""
Transcript Store

Durable content store for completed transcripts keyed by (video, language),
fronted by a short-TTL hot cache entry. A missing durable row is a miss no
matter what the metadata index claims.

Storage failures never reach the caller: reads degrade to a miss, writes
log and report False.
"""

from typing import Optional, Sequence

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import get_logger
from app.infra.hot_cache import HotCache
from app.models.transcript import TranscriptDocument
from app.schemas.transcript import Segment, TranscriptRecord

logger = get_logger(__name__)


def transcript_cache_key(video_id: str, language: str) -> str:
    return f"transcript:{video_id}:{language}"


class TranscriptStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hot_cache: HotCache,
        hot_ttl_seconds: int = 3600,
    ):
        self.session_factory = session_factory
        self.hot_cache = hot_cache
        self.hot_ttl_seconds = hot_ttl_seconds

    async def get(self, video_id: str, language: str) -> Optional[TranscriptRecord]:
        key = transcript_cache_key(video_id, language)

        cached = await self.hot_cache.get_json(key)
        if cached:
            try:
                record = TranscriptRecord.model_validate(cached)
                if record.segments:
                    return record
            except ValueError:
                logger.warning(f"Discarding malformed hot cache entry {key}")

        try:
            async with self.session_factory() as session:
                doc = await session.get(TranscriptDocument, (video_id, language))
        except SQLAlchemyError as e:
            logger.error(f"Transcript read failed for {video_id}:{language}: {e}")
            return None

        if doc is None or not doc.segments:
            return None

        record = TranscriptRecord(
            video_id=doc.video_id,
            language=doc.language,
            source=doc.source,
            segments=[Segment.model_validate(s) for s in doc.segments],
            created_at=doc.created_at,
        )
        await self.hot_cache.put_json(key, record.model_dump(), self.hot_ttl_seconds)
        return record

    async def put(
        self,
        video_id: str,
        language: str,
        segments: Sequence[Segment],
        source: str,
    ) -> bool:
        """Replace the stored transcript wholesale (last write wins)"""
        if not video_id or not segments:
            return False

        payload = [s.model_dump() for s in segments]
        try:
            async with self.session_factory() as session:
                await session.merge(
                    TranscriptDocument(
                        video_id=video_id,
                        language=language,
                        source=source,
                        segments=payload,
                        segment_count=len(payload),
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Transcript write failed for {video_id}:{language}: {e}")
            return False

        record = TranscriptRecord(
            video_id=video_id, language=language, source=source, segments=list(segments)
        )
        await self.hot_cache.put_json(
            transcript_cache_key(video_id, language), record.model_dump(), self.hot_ttl_seconds
        )
        logger.info(f"Stored transcript {video_id}:{language} ({len(payload)} segments, {source})")
        return True

    async def delete(self, video_id: str, language: str) -> bool:
        """Maintenance only: transcripts are otherwise never deleted"""
        await self.hot_cache.delete(transcript_cache_key(video_id, language))
        try:
            async with self.session_factory() as session:
                await session.execute(
                    delete(TranscriptDocument).where(
                        TranscriptDocument.video_id == video_id,
                        TranscriptDocument.language == language,
                    )
                )
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Transcript delete failed for {video_id}:{language}: {e}")
            return False
