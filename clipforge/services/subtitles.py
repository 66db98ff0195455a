"""
Subtitle Service
SRT/VTT serialization and per-clip transcript slicing.
"""
from __future__ import annotations

import re
from typing import List

from clipforge.schemas.transcript import Transcript, TranscriptSegment

_TIMESTAMP_RE = re.compile(r"(\d{2}:\d{2}:\d{2}),(\d{3})")


def format_timestamp(seconds: float) -> str:
    """HH:MM:SS,mmm"""
    seconds = max(0.0, seconds)
    total_ms = int(round(seconds * 1000))
    hrs, rem = divmod(total_ms, 3_600_000)
    mins, rem = divmod(rem, 60_000)
    secs, ms = divmod(rem, 1000)
    return f"{hrs:02d}:{mins:02d}:{secs:02d},{ms:03d}"


def to_srt(transcript: Transcript) -> str:
    blocks = []
    for idx, seg in enumerate(transcript.segments, start=1):
        blocks.append(f"{idx}\n{format_timestamp(seg.start)} --> {format_timestamp(seg.end)}\n{seg.text}\n")
    return "\n".join(blocks)


def slice_transcript(transcript: Transcript, start: float, end: float) -> Transcript:
    """
    Segments overlapping [start, end], re-based so the clip starts at 0 and
    clamped to the clip length.
    """
    length = max(0.0, end - start)
    sliced: List[TranscriptSegment] = []

    for seg in transcript.segments:
        if seg.end < start or seg.start > end:
            continue
        rel_start = min(length, max(0.0, seg.start - start))
        rel_end = min(length, max(0.0, seg.end - start))
        if rel_end <= rel_start:
            continue
        sliced.append(TranscriptSegment(start=rel_start, end=rel_end, text=seg.text))

    return Transcript(language=transcript.language, segments=sliced)


def srt_to_vtt(srt: str) -> str:
    return "WEBVTT\n\n" + _TIMESTAMP_RE.sub(r"\1.\2", srt)
