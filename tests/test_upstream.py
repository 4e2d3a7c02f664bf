"""
Upstream Adapter Tests

HTTP adapters run against httpx.MockTransport; the YouTube scraper runs
against a stand-in for youtube-transcript-api.
"""

import json
from types import SimpleNamespace

import httpx
import pytest
from youtube_transcript_api import TranscriptsDisabled

from app.core.errors import PermanentUpstreamError, TransientUpstreamError
from app.services.upstream import youtube_captions
from app.services.upstream.gladia_client import GladiaClient
from app.services.upstream.piped_client import PipedCaptionsClient, parse_vtt
from app.services.upstream.supadata_client import SupadataClient
from app.services.upstream.youtube_captions import YouTubeCaptionsClient

from tests.fakes import VIDEO_ID

SUPADATA_URL = "https://supadata.test/v1/youtube/transcript"
GLADIA_URL = "https://gladia.test/v2/pre-recorded"

VTT = """WEBVTT

00:00:01.000 --> 00:00:03.500
こんにちは

00:00:03.500 --> 00:00:06.000
今日は
いい天気ですね
"""


def mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ----------------------------------------------------------------------
# Supadata
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_supadata_parses_content():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["key"] = request.headers["x-api-key"]
        return httpx.Response(200, json={
            "lang": "ja-JP",
            "availableLangs": ["ja", "en"],
            "content": [
                {"text": "こんにちは", "offset": 1000, "duration": 2500},
                {"text": "  ", "offset": 3500, "duration": 100},
                {"text": "今日は", "offset": 3500, "duration": 2000},
            ],
        })

    async with mock_http(handler) as http:
        captions = await SupadataClient(http, "key-1", SUPADATA_URL).fetch(VIDEO_ID, "ja")

    assert seen["params"] == {"videoId": VIDEO_ID, "lang": "ja", "text": "false", "mode": "native"}
    assert seen["key"] == "key-1"
    assert captions.language == "ja"
    assert captions.available_languages == ["ja", "en"]
    assert [(s.text, s.start, s.duration) for s in captions.segments] == [
        ("こんにちは", 1.0, 2.5),
        ("今日は", 3.5, 2.0),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("status,error", [
    (404, PermanentUpstreamError),
    (401, PermanentUpstreamError),
    (429, TransientUpstreamError),
    (502, TransientUpstreamError),
])
async def test_supadata_status_mapping(status, error):
    async with mock_http(lambda request: httpx.Response(status)) as http:
        with pytest.raises(error):
            await SupadataClient(http, "key-1", SUPADATA_URL).fetch(VIDEO_ID, "ja")


@pytest.mark.asyncio
async def test_supadata_network_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    async with mock_http(handler) as http:
        with pytest.raises(TransientUpstreamError):
            await SupadataClient(http, "key-1", SUPADATA_URL).fetch(VIDEO_ID, "ja")


@pytest.mark.asyncio
async def test_supadata_empty_content_is_permanent():
    async with mock_http(lambda request: httpx.Response(200, json={"content": []})) as http:
        with pytest.raises(PermanentUpstreamError):
            await SupadataClient(http, "key-1", SUPADATA_URL).fetch(VIDEO_ID, "ja")


# ----------------------------------------------------------------------
# Gladia
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_gladia_submit_returns_result_url():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["key"] = request.headers["x-gladia-key"]
        return httpx.Response(201, json={"id": "job-1", "result_url": f"{GLADIA_URL}/job-1"})

    async with mock_http(handler) as http:
        handle = await GladiaClient(http, "g-key", GLADIA_URL).submit(VIDEO_ID)

    assert handle == f"{GLADIA_URL}/job-1"
    assert seen["body"] == {"audio_url": f"https://www.youtube.com/watch?v={VIDEO_ID}"}
    assert seen["key"] == "g-key"


@pytest.mark.asyncio
async def test_gladia_submit_errors():
    async with mock_http(lambda request: httpx.Response(400, text="bad audio_url")) as http:
        with pytest.raises(PermanentUpstreamError):
            await GladiaClient(http, "g-key", GLADIA_URL).submit(VIDEO_ID)

    async with mock_http(lambda request: httpx.Response(200, json={})) as http:
        with pytest.raises(TransientUpstreamError):
            await GladiaClient(http, "g-key", GLADIA_URL).submit(VIDEO_ID)


@pytest.mark.asyncio
async def test_gladia_status_done():
    payload = {
        "status": "done",
        "result": {"transcription": {
            "languages": ["ja"],
            "utterances": [
                {"text": "こんにちは", "start": 0.5, "end": 2.0},
                {"text": "", "start": 2.0, "end": 3.0},
                {"text": "ありがとう", "start": 3.0, "end": 4.25},
            ],
        }},
    }
    async with mock_http(lambda request: httpx.Response(200, json=payload)) as http:
        job = await GladiaClient(http, "g-key", GLADIA_URL).get_status(f"{GLADIA_URL}/job-1")

    assert job.status == "done"
    assert job.finished
    assert job.language == "ja"
    assert [(s.text, s.start, s.duration) for s in job.segments] == [
        ("こんにちは", 0.5, 1.5),
        ("ありがとう", 3.0, 1.25),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("payload,status", [
    ({"status": "queued"}, "queued"),
    ({"status": "processing"}, "processing"),
    ({"status": "something-new"}, "processing"),
    ({"status": "error", "error_message": "audio unavailable"}, "error"),
])
async def test_gladia_status_values(payload, status):
    async with mock_http(lambda request: httpx.Response(200, json=payload)) as http:
        job = await GladiaClient(http, "g-key", GLADIA_URL).get_status(f"{GLADIA_URL}/job-1")

    assert job.status == status


@pytest.mark.asyncio
async def test_gladia_poll_failure_is_transient():
    async with mock_http(lambda request: httpx.Response(503)) as http:
        with pytest.raises(TransientUpstreamError):
            await GladiaClient(http, "g-key", GLADIA_URL).get_status(f"{GLADIA_URL}/job-1")


# ----------------------------------------------------------------------
# Piped mirrors
# ----------------------------------------------------------------------

def test_parse_vtt():
    segments = parse_vtt(VTT)

    assert [s.text for s in segments] == ["こんにちは", "今日は いい天気ですね"]
    assert segments[0].start == 1.0
    assert segments[0].duration == 2.5


@pytest.mark.asyncio
async def test_piped_prefers_human_track():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/streams/{VIDEO_ID}":
            return httpx.Response(200, json={
                "duration": 754,
                "subtitles": [
                    {"code": "ja", "autoGenerated": True, "url": "https://piped.test/auto.vtt"},
                    {"code": "ja", "autoGenerated": False, "url": "https://piped.test/human.vtt"},
                    {"code": "en", "autoGenerated": False, "url": "https://piped.test/en.vtt"},
                ],
            })
        if request.url.path == "/human.vtt":
            return httpx.Response(200, text=VTT)
        return httpx.Response(404)

    async with mock_http(handler) as http:
        client = PipedCaptionsClient(http, "https://piped.test/")
        captions = await client.fetch(VIDEO_ID, "ja")

    assert client.name == "piped:piped.test"
    assert captions.language == "ja"
    assert sorted(captions.available_languages) == ["en", "ja"]
    assert captions.duration_seconds == 754
    assert len(captions.segments) == 2


@pytest.mark.asyncio
async def test_piped_missing_language_is_permanent():
    payload = {"subtitles": [{"code": "en", "url": "https://piped.test/en.vtt"}]}
    async with mock_http(lambda request: httpx.Response(200, json=payload)) as http:
        with pytest.raises(PermanentUpstreamError):
            await PipedCaptionsClient(http, "https://piped.test").fetch(VIDEO_ID, "ja")


@pytest.mark.asyncio
async def test_piped_malformed_vtt_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/streams/"):
            return httpx.Response(200, json={"subtitles": [{"code": "ja", "url": "https://piped.test/ja.vtt"}]})
        return httpx.Response(200, text="<html>rate limited</html>")

    async with mock_http(handler) as http:
        with pytest.raises(TransientUpstreamError):
            await PipedCaptionsClient(http, "https://piped.test").fetch(VIDEO_ID, "ja")


@pytest.mark.asyncio
async def test_piped_server_error_is_transient():
    async with mock_http(lambda request: httpx.Response(500)) as http:
        with pytest.raises(TransientUpstreamError):
            await PipedCaptionsClient(http, "https://piped.test").fetch(VIDEO_ID, "ja")


# ----------------------------------------------------------------------
# YouTube scraper
# ----------------------------------------------------------------------

class FakeTrack:
    def __init__(self, language_code, cues):
        self.language_code = language_code
        self.cues = cues

    def fetch(self):
        return [SimpleNamespace(text=t, start=s, duration=d) for t, s, d in self.cues]


def fake_api(tracks=None, error=None):
    class FakeYouTubeTranscriptApi:
        def list(self, video_id):
            if error is not None:
                raise error
            return iter(tracks)

    return FakeYouTubeTranscriptApi


@pytest.mark.asyncio
async def test_youtube_picks_requested_track(monkeypatch):
    tracks = [
        FakeTrack("en", [("hello", 0.0, 1.0)]),
        FakeTrack("ja", [("こんにちは", 0.0, 1.5), ("今日は", 1.5, 2.0)]),
    ]
    monkeypatch.setattr(youtube_captions, "YouTubeTranscriptApi", fake_api(tracks))

    captions = await YouTubeCaptionsClient().fetch(VIDEO_ID, "ja")

    assert captions.language == "ja"
    assert captions.available_languages == ["en", "ja"]
    assert [s.text for s in captions.segments] == ["こんにちは", "今日は"]


@pytest.mark.asyncio
async def test_youtube_missing_language_is_permanent(monkeypatch):
    monkeypatch.setattr(youtube_captions, "YouTubeTranscriptApi", fake_api([FakeTrack("en", [("hi", 0, 1)])]))

    with pytest.raises(PermanentUpstreamError):
        await YouTubeCaptionsClient().fetch(VIDEO_ID, "ja")


@pytest.mark.asyncio
async def test_youtube_disabled_captions_are_permanent(monkeypatch):
    monkeypatch.setattr(youtube_captions, "YouTubeTranscriptApi", fake_api(error=TranscriptsDisabled(VIDEO_ID)))

    with pytest.raises(PermanentUpstreamError):
        await YouTubeCaptionsClient().fetch(VIDEO_ID, "ja")


@pytest.mark.asyncio
async def test_youtube_network_error_is_transient(monkeypatch):
    monkeypatch.setattr(youtube_captions, "YouTubeTranscriptApi", fake_api(error=ConnectionResetError()))

    with pytest.raises(TransientUpstreamError):
        await YouTubeCaptionsClient().fetch(VIDEO_ID, "ja")


@pytest.mark.asyncio
async def test_gladia_guesses_language_when_not_reported():
    payload = {
        "status": "done",
        "result": {"transcription": {"utterances": [{"text": "안녕하세요 여러분", "start": 0, "end": 2}]}},
    }
    async with mock_http(lambda request: httpx.Response(200, json=payload)) as http:
        job = await GladiaClient(http, "g-key", GLADIA_URL).get_status(f"{GLADIA_URL}/job-1")

    assert job.language == "ko"
