"""
Language helpers

Request language normalisation and a lightweight script/alphabet check
used to reject transcripts an upstream silently returned in another
language.
"""

import re
from typing import Iterable, Optional

from app.schemas.transcript import Segment

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

_KANA_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF]")
_HANGUL_RE = re.compile(r"[\uAC00-\uD7AF]")
_HANZI_RE = re.compile(r"[\u4E00-\u9FFF]")
_LATIN_RE = re.compile(r"[A-Za-z]")

# Shorter samples are not worth judging
MIN_VERIFY_CHARS = 50
MAX_VERIFY_CHARS = 1000
SAMPLE_SEGMENTS = 10


def is_valid_video_id(video_id: Optional[str]) -> bool:
    return bool(video_id) and isinstance(video_id, str) and bool(VIDEO_ID_RE.match(video_id))


def normalize_language(lang: Optional[str]) -> Optional[str]:
    """'ja-JP' -> 'ja', 'zh_Hans' -> 'zh', '' -> None"""
    if not lang or not isinstance(lang, str):
        return None
    base = re.split(r"[-_]", lang.strip().lower(), maxsplit=1)[0]
    return base or None


def sample_text(segments: Iterable[Segment], count: int = SAMPLE_SEGMENTS) -> str:
    texts = []
    for index, seg in enumerate(segments):
        if index >= count:
            break
        texts.append(seg.text)
    return " ".join(texts)


def verify_language(text: str, expected: str) -> bool:
    """True unless the text clearly belongs to a different script than `expected`"""
    if not text or len(text) < MIN_VERIFY_CHARS:
        return True

    sample = text[:MAX_VERIFY_CHARS]
    kana = len(_KANA_RE.findall(sample))
    hangul = len(_HANGUL_RE.findall(sample))
    hanzi = len(_HANZI_RE.findall(sample))

    if expected == "ja":
        return kana > 5
    if expected == "ko":
        if kana > hangul * 2:
            return False
        return hangul > 5
    if expected == "zh":
        return hanzi > 10 and kana < 5 and hangul < 5
    if expected == "en":
        latin = len(_LATIN_RE.findall(sample))
        return latin >= kana + hangul + hanzi
    return True


def detect_language(text: str) -> str:
    """Best guess among the supported scripts, English for anything Latin"""
    if _HANGUL_RE.search(text or ""):
        return "ko"
    if _KANA_RE.search(text or ""):
        return "ja"
    if _HANZI_RE.search(text or ""):
        return "zh"
    return "en"
