from app.models.base import Base
from app.models.transcript import (
    NoTranscriptEntry,
    PendingJob,
    TranscriptDocument,
    VideoLanguages,
    VideoMeta,
)
from app.models.user import UserAccount

__all__ = [
    "Base",
    "TranscriptDocument",
    "VideoMeta",
    "VideoLanguages",
    "PendingJob",
    "NoTranscriptEntry",
    "UserAccount",
]
