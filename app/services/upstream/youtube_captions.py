"""
YouTube caption scraper

Free source: fetches native caption tracks through youtube-transcript-api.
The library is synchronous, so every call runs in a worker thread.
"""

import asyncio
from typing import List

from youtube_transcript_api import (
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)
from youtube_transcript_api._errors import CouldNotRetrieveTranscript

from app.core.errors import PermanentUpstreamError, TransientUpstreamError
from app.core.logging import get_logger
from app.schemas.transcript import Segment, UpstreamCaptions
from app.services.transcripts.language import normalize_language

logger = get_logger(__name__)


class YouTubeCaptionsClient:
    name = "youtube"

    async def fetch(self, video_id: str, lang: str) -> UpstreamCaptions:
        return await asyncio.to_thread(self._fetch_sync, video_id, lang)

    def _fetch_sync(self, video_id: str, lang: str) -> UpstreamCaptions:
        api = YouTubeTranscriptApi()
        try:
            transcript_list = api.list(video_id)

            # Manually created tracks are listed before generated ones
            tracks = list(transcript_list)
            available: List[str] = []
            chosen = None
            for track in tracks:
                code = normalize_language(track.language_code)
                if code and code not in available:
                    available.append(code)
                if chosen is None and code == lang:
                    chosen = track

            if chosen is None:
                raise PermanentUpstreamError(f"No {lang} captions for {video_id} (has {available})")

            fetched = chosen.fetch()
            segments = [
                Segment(text=snippet.text, start=snippet.start, duration=snippet.duration)
                for snippet in fetched
            ]
        except (TranscriptsDisabled, VideoUnavailable, NoTranscriptFound) as e:
            raise PermanentUpstreamError(f"{type(e).__name__} for {video_id}") from e
        except CouldNotRetrieveTranscript as e:
            # Blocked requests, throttling and other retrieval failures
            raise TransientUpstreamError(f"{type(e).__name__} for {video_id}") from e
        except OSError as e:
            raise TransientUpstreamError(f"Network error fetching captions for {video_id}: {e}") from e

        if not segments:
            raise PermanentUpstreamError(f"Empty {lang} caption track for {video_id}")

        logger.debug(f"Scraped {len(segments)} cues for {video_id}:{lang}")
        return UpstreamCaptions(segments=segments, language=lang, available_languages=available)
