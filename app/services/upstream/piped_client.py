"""
Piped mirror client

Free caption source served by a Piped API instance. Several instances can
be configured; each becomes its own strategy so the chain can race them
and prefer the ones that have been answering.
"""

import io
import re
from typing import List, Optional
from urllib.parse import urlparse

import httpx
import webvtt
from webvtt.errors import MalformedFileError

from app.core.errors import PermanentUpstreamError, TransientUpstreamError
from app.core.logging import get_logger
from app.schemas.transcript import Segment, UpstreamCaptions
from app.services.transcripts.language import normalize_language

logger = get_logger(__name__)


def _to_seconds(timestamp: str) -> float:
    parts = timestamp.replace(",", ".").split(":")
    seconds = 0.0
    for part in parts:
        seconds = seconds * 60 + float(part)
    return seconds


def parse_vtt(body: str) -> List[Segment]:
    segments = []
    for caption in webvtt.read_buffer(io.StringIO(body)):
        text = re.sub(r"\s+", " ", caption.text).strip()
        if not text:
            continue
        start, end = _to_seconds(caption.start), _to_seconds(caption.end)
        segments.append(Segment(text=text, start=start, duration=max(end - start, 0.0)))
    return segments


class PipedCaptionsClient:
    def __init__(self, http: httpx.AsyncClient, base_url: str, timeout_seconds: float = 8.0):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.name = f"piped:{urlparse(self.base_url).netloc or self.base_url}"

    async def _get(self, url: str) -> httpx.Response:
        try:
            response = await self.http.get(url, timeout=self.timeout_seconds)
        except httpx.HTTPError as e:
            raise TransientUpstreamError(f"{self.name} request failed: {e}") from e
        if response.status_code == 404:
            raise PermanentUpstreamError(f"{self.name} returned 404")
        if response.status_code >= 400:
            raise TransientUpstreamError(f"{self.name} returned {response.status_code}")
        return response

    async def fetch(self, video_id: str, lang: str) -> UpstreamCaptions:
        response = await self._get(f"{self.base_url}/streams/{video_id}")
        try:
            data = response.json()
        except ValueError as e:
            raise TransientUpstreamError(f"{self.name} returned invalid JSON") from e

        tracks = data.get("subtitles") if isinstance(data, dict) else None
        if not tracks:
            raise PermanentUpstreamError(f"{self.name} lists no subtitles for {video_id}")

        available: List[str] = []
        chosen: Optional[dict] = None
        # Prefer human captions over auto-generated ones
        for track in sorted(tracks, key=lambda t: bool(t.get("autoGenerated"))):
            code = normalize_language(track.get("code"))
            if code and code not in available:
                available.append(code)
            if chosen is None and code == lang and track.get("url"):
                chosen = track

        if chosen is None:
            raise PermanentUpstreamError(f"{self.name} has no {lang} subtitles for {video_id}")

        body = (await self._get(chosen["url"])).text
        try:
            segments = parse_vtt(body)
        except MalformedFileError as e:
            raise TransientUpstreamError(f"{self.name} returned malformed VTT for {video_id}") from e

        if not segments:
            raise PermanentUpstreamError(f"{self.name} returned an empty {lang} track for {video_id}")

        duration = data.get("duration")
        return UpstreamCaptions(
            segments=segments,
            language=lang,
            available_languages=available,
            duration_seconds=int(duration) if isinstance(duration, (int, float)) and duration > 0 else None,
        )
