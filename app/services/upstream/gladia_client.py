"""
Gladia client

AI transcription of a video's audio track. Submission returns a result URL
that serves as the job handle; the job is then polled until done.
"""

import httpx

from app.core.errors import PermanentUpstreamError, TransientUpstreamError
from app.core.logging import get_logger
from app.schemas.transcript import AIJobStatus, Segment
from app.services.transcripts.language import detect_language, sample_text

logger = get_logger(__name__)

YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

_KNOWN_STATUSES = ("queued", "processing", "done", "error")


class GladiaClient:
    name = "gladia"

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

    async def submit(self, video_id: str) -> str:
        """Start a job for the video's audio, returns the result handle"""
        try:
            response = await self.http.post(
                self.api_url,
                json={"audio_url": YOUTUBE_WATCH_URL.format(video_id=video_id)},
                headers={"x-gladia-key": self.api_key, "Content-Type": "application/json"},
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise TransientUpstreamError(f"Gladia submit failed for {video_id}: {e}") from e

        if response.status_code >= 400:
            raise PermanentUpstreamError(
                f"Gladia rejected {video_id} with {response.status_code}: {response.text[:200]}"
            )

        try:
            result_url = response.json().get("result_url")
        except (ValueError, AttributeError) as e:
            raise TransientUpstreamError(f"Gladia submit returned invalid JSON for {video_id}") from e
        if not result_url:
            raise TransientUpstreamError(f"No result_url from Gladia for {video_id}")

        logger.info(f"Submitted Gladia job for {video_id}")
        return result_url

    async def get_status(self, result_url: str) -> AIJobStatus:
        try:
            response = await self.http.get(
                result_url,
                headers={"x-gladia-key": self.api_key},
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise TransientUpstreamError(f"Gladia poll failed: {e}") from e

        if response.status_code >= 400:
            raise TransientUpstreamError(f"Gladia poll returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise TransientUpstreamError("Gladia poll returned invalid JSON") from e

        status = data.get("status")
        if status not in _KNOWN_STATUSES:
            status = "processing"

        if status == "error":
            return AIJobStatus(status="error", error=data.get("error_message") or "Transcription failed")
        if status != "done":
            return AIJobStatus(status=status)

        transcription = (data.get("result") or {}).get("transcription") or {}
        segments = []
        for utterance in transcription.get("utterances") or []:
            text = (utterance.get("text") or "").strip()
            if not text:
                continue
            start = float(utterance.get("start") or 0)
            end = float(utterance.get("end") or 0)
            segments.append(Segment(text=text, start=start, duration=max(0.0, end - start)))

        languages = transcription.get("languages") or []
        if languages:
            language = languages[0]
        elif segments:
            # Older jobs may not report the detected language
            language = detect_language(sample_text(segments))
        else:
            language = None
        return AIJobStatus(status="done", segments=segments, language=language)
