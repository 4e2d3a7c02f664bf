"""
Transcript Schemas
"""

import time
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TranscriptSource = Literal["scrape", "paid", "ai"]
ResponseSource = Literal["cache", "scrape", "paid", "ai", "none"]

_OPTIONAL_RESPONSE_KEYS = (
    "sourceDetail",
    "status",
    "resultHandle",
    "errorCode",
    "error",
    "warning",
)


class Segment(BaseModel):
    text: str
    start: float
    duration: float


class TranscriptRecord(BaseModel):
    """A resolved transcript as stored in the content store"""

    video_id: str
    language: str
    source: TranscriptSource
    segments: List[Segment]
    created_at: float = Field(default_factory=time.time)


class UpstreamCaptions(BaseModel):
    """Raw cues returned by an upstream adapter, before cleaning"""

    segments: List[Segment]
    language: str
    available_languages: List[str] = []
    duration_seconds: Optional[int] = None


class AIJobStatus(BaseModel):
    """One poll of an asynchronous AI transcription job"""

    status: Literal["queued", "processing", "done", "error"]
    segments: List[Segment] = []
    language: Optional[str] = None
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.status in ("done", "error")


class LanguageAvailability(BaseModel):
    video_id: str
    native: List[str] = []
    ai: List[str] = []


class TranscriptRequest(BaseModel):
    """Request body of POST /transcript"""

    model_config = ConfigDict(populate_by_name=True)

    video_id: Optional[str] = Field(None, alias="videoId")
    lang: Optional[str] = None
    prefer_ai: bool = Field(False, alias="preferAI")
    force_refresh: bool = Field(False, alias="forceRefresh")
    result_handle: Optional[str] = Field(None, alias="resultHandle")
    duration: Optional[float] = None


class AvailableLanguages(BaseModel):
    native: List[str] = []
    ai: List[str] = []


class TranscriptResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    video_id: Optional[str] = Field(None, alias="videoId")
    language: Optional[str] = None
    requested_language: Optional[str] = Field(None, alias="requestedLanguage")
    segments: List[Segment] = []
    source: ResponseSource = "none"
    source_detail: Optional[str] = Field(None, alias="sourceDetail")
    available_languages: AvailableLanguages = Field(
        default_factory=AvailableLanguages, alias="availableLanguages"
    )
    whisper_available: bool = Field(False, alias="whisperAvailable")
    diamonds: int = 0
    max_diamonds: int = Field(0, alias="maxDiamonds")
    next_regen_at: Optional[int] = Field(None, alias="nextRegenAt")
    status: Optional[Literal["processing"]] = None
    result_handle: Optional[str] = Field(None, alias="resultHandle")
    error_code: Optional[str] = Field(None, alias="errorCode")
    error: Optional[str] = None
    warning: Optional[str] = None
    timing: int = 0

    def to_payload(self) -> dict[str, Any]:
        """camelCase JSON body; optional keys are omitted when unset"""
        payload = self.model_dump(by_alias=True)
        for key in _OPTIONAL_RESPONSE_KEYS:
            if payload.get(key) is None:
                payload.pop(key, None)
        return payload


class CreditStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    diamonds: int
    max_diamonds: int = Field(alias="maxDiamonds")
    next_regen_at: Optional[int] = Field(None, alias="nextRegenAt")
