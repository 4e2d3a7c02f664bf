"""
Supadata client

Paid caption API. Each call spends quota, so callers gate it behind a
dedup lock and a dedicated negative marker.
"""

from typing import Optional

import httpx

from app.core.errors import PermanentUpstreamError, TransientUpstreamError
from app.core.logging import get_logger
from app.schemas.transcript import Segment, UpstreamCaptions
from app.services.transcripts.language import normalize_language

logger = get_logger(__name__)


class SupadataClient:
    name = "supadata"

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        api_url: str,
        timeout_seconds: float = 10.0,
    ):
        self.http = http
        self.api_key = api_key
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds

    async def fetch(self, video_id: str, lang: str) -> UpstreamCaptions:
        params = {"videoId": video_id, "lang": lang, "text": "false", "mode": "native"}
        headers = {"x-api-key": self.api_key, "Accept": "application/json"}

        try:
            response = await self.http.get(
                self.api_url, params=params, headers=headers, timeout=self.timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise TransientUpstreamError(f"Supadata timed out for {video_id}") from e
        except httpx.HTTPError as e:
            raise TransientUpstreamError(f"Supadata request failed for {video_id}: {e}") from e

        if response.status_code == 404:
            raise PermanentUpstreamError(f"Supadata has no {lang} captions for {video_id}")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientUpstreamError(f"Supadata returned {response.status_code} for {video_id}")
        if response.status_code >= 400:
            # Bad key or rejected request: retrying cannot help
            raise PermanentUpstreamError(f"Supadata rejected {video_id} with {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise TransientUpstreamError(f"Supadata returned invalid JSON for {video_id}") from e

        content = data.get("content") if isinstance(data, dict) else None
        if not isinstance(content, list) or not content:
            raise PermanentUpstreamError(f"Supadata returned no content for {video_id}:{lang}")

        segments = []
        for item in content:
            if not isinstance(item, dict):
                continue
            text = (item.get("text") or "").strip()
            if not text:
                continue
            segments.append(
                Segment(
                    text=text,
                    start=_millis_to_seconds(item.get("offset")),
                    duration=_millis_to_seconds(item.get("duration")),
                )
            )
        if not segments:
            raise PermanentUpstreamError(f"Supadata returned only empty cues for {video_id}:{lang}")

        detected = normalize_language(data.get("lang")) or lang
        available = [
            code
            for code in (normalize_language(raw) for raw in data.get("availableLangs") or [detected])
            if code
        ]

        logger.info(f"Supadata returned {len(segments)} cues for {video_id} in {detected} (requested {lang})")
        return UpstreamCaptions(segments=segments, language=detected, available_languages=available)


def _millis_to_seconds(value: Optional[float]) -> float:
    try:
        return float(value or 0) / 1000
    except (TypeError, ValueError):
        return 0.0
