"""
Segment Cleaner

Upstream sources disagree on segmentation and timing. Cleaning turns an
unordered, possibly overlapping list of cues (sometimes merged from several
near-duplicate sources) into one monotonically ordered, non-overlapping,
display-ready sequence:

1. Sort by start time
2. Group cues starting within MIN_CUE_GAP of the group's first cue
3. Keep the "most complete" cue of each group
   (trimmed text length + duration * 10, ties go to the first seen)
4. Drop cues with empty text
5. Sticky timing: each cue lasts until the next one starts, capped at
   MAX_CUE_DURATION and floored at MIN_CUE_DURATION

A kept cue starts at its group's first start time, so consecutive output
cues are always more than MIN_CUE_GAP apart. That makes the output
non-overlapping and a fixed point of clean_segments().
"""

from typing import Iterable, List, Sequence

from app.schemas.transcript import Segment

# Cues starting within this many seconds of a group's first cue are duplicates
MIN_CUE_GAP = 0.5
# Minimum duration for a cue (must not exceed MIN_CUE_GAP)
MIN_CUE_DURATION = 0.5
# Maximum duration for a single cue
MAX_CUE_DURATION = 10.0

_DURATION_WEIGHT = 10


def _score(segment: Segment) -> float:
    return len(segment.text.strip()) + max(segment.duration, 0.0) * _DURATION_WEIGHT


def group_by_timestamp(segments: Sequence[Segment], gap: float = MIN_CUE_GAP) -> List[List[Segment]]:
    """Group time-sorted segments that start within `gap` of the group's first member"""
    groups: List[List[Segment]] = []
    current: List[Segment] = []

    for seg in segments:
        if current and seg.start - current[0].start > gap:
            groups.append(current)
            current = []
        current.append(seg)

    if current:
        groups.append(current)
    return groups


def pick_best(group: Sequence[Segment]) -> Segment:
    """Most complete cue of a group, blank or not"""
    best = group[0]
    best_score = _score(best)
    for seg in group[1:]:
        score = _score(seg)
        if score > best_score:
            best, best_score = seg, score
    return best


def clean_segments(
    segments: Iterable[Segment],
    gap: float = MIN_CUE_GAP,
    min_duration: float = MIN_CUE_DURATION,
    max_duration: float = MAX_CUE_DURATION,
) -> List[Segment]:
    """Clean raw cues into an ordered, non-overlapping sequence"""
    ordered = sorted(segments, key=lambda s: s.start)
    if not ordered:
        return []

    picked: List[tuple[float, Segment]] = []
    for group in group_by_timestamp(ordered, gap):
        best = pick_best(group)
        if best.text.strip():
            picked.append((group[0].start, best))

    cleaned: List[Segment] = []
    for index, (start, seg) in enumerate(picked):
        if index < len(picked) - 1:
            duration = min(picked[index + 1][0] - start, max_duration)
        else:
            duration = min(max(seg.duration, 0.0), max_duration)

        if duration < min_duration:
            duration = min_duration

        cleaned.append(Segment(text=seg.text.strip(), start=start, duration=duration))

    return cleaned
