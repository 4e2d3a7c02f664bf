"""
Transcript Models

- TranscriptDocument: durable transcript content, one row per (video, language)
- VideoMeta: which (video, language, source) combinations exist; no content
- VideoLanguages: known native languages and duration of a video
- PendingJob: in-flight AI transcription job, resumable by handle
- NoTranscriptEntry: negative cache row, "nothing found here"
"""

from typing import Optional

from sqlalchemy import JSON, Double, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, EpochCreatedMixin


class TranscriptDocument(Base, EpochCreatedMixin):
    __tablename__ = "transcript_documents"

    video_id: Mapped[str] = mapped_column(String(11), primary_key=True)
    language: Mapped[str] = mapped_column(String(8), primary_key=True)
    source: Mapped[str] = mapped_column(String(16), nullable=False)

    # JSON array of {text, start, duration}; replaced wholesale on refresh
    segments: Mapped[list] = mapped_column(JSON, nullable=False)
    segment_count: Mapped[int] = mapped_column(Integer, default=0)


class VideoMeta(Base, EpochCreatedMixin):
    __tablename__ = "video_meta"

    video_id: Mapped[str] = mapped_column(String(11), primary_key=True)
    language: Mapped[str] = mapped_column(String(8), primary_key=True)
    source: Mapped[str] = mapped_column(String(16), nullable=False)


class VideoLanguages(Base, EpochCreatedMixin):
    __tablename__ = "video_languages"

    video_id: Mapped[str] = mapped_column(String(11), primary_key=True)
    available_languages: Mapped[list] = mapped_column(JSON, default=list)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[Optional[float]] = mapped_column(Double, nullable=True)


class PendingJob(Base, EpochCreatedMixin):
    __tablename__ = "pending_jobs"

    video_id: Mapped[str] = mapped_column(String(11), primary_key=True)
    language: Mapped[str] = mapped_column(String(8), nullable=False)
    result_handle: Mapped[str] = mapped_column(String(512), nullable=False)


class NoTranscriptEntry(Base, EpochCreatedMixin):
    __tablename__ = "no_transcript_cache"

    video_id: Mapped[str] = mapped_column(String(11), primary_key=True)
    language: Mapped[str] = mapped_column(String(8), primary_key=True)
    source_class: Mapped[str] = mapped_column(String(16), primary_key=True)
    expires_at: Mapped[float] = mapped_column(Double, nullable=False)

    __table_args__ = (
        Index("idx_no_transcript_video", "video_id"),
    )
