"""
Highlight Engine
Candidate generation, hybrid audio/text scoring, silence trimming and
non-max suppression over a transcript and an audio-energy trace.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence

from clipforge.core.enums import DurationPreset
from clipforge.schemas.transcript import Transcript, TranscriptSegment

# =============================================================================
# Types
# =============================================================================

@dataclass
class HighlightSegment:
    start: float
    end: float
    score: float = 0.0
    reason: str = ""

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class EnergySample:
    t: float
    value: float  # 0..1


# =============================================================================
# Constants
# =============================================================================

# Topic / excitement cues
KEYWORDS = [
    "clave", "importante", "impacto", "secreto", "historia", "idea", "tip",
    "ejemplo", "truco", "wow", "increible", "resultado", "urgente", "ahora",
]
_KEYWORD_SET = frozenset(KEYWORDS)

DURATION_PRESETS: Dict[DurationPreset, Dict[str, float]] = {
    DurationPreset.SHORT: {"min": 12, "max": 22},
    DurationPreset.NORMAL: {"min": 18, "max": 32},
    DurationPreset.LONG: {"min": 30, "max": 45},
}

ENERGY_RUN_THRESHOLD = 0.35
SILENCE_TRIM_THRESHOLD = 0.2
MIN_TRIMMED_SEC = 6.0
AUDIO_PEAK_THRESHOLD = 0.55
DETECT_MAX_OVERLAP = 0.25
MERGE_GAP_SEC = 1.0

AUDIO_WEIGHT = 0.55
TEXT_WEIGHT = 0.45


def duration_range(preset: DurationPreset | str) -> Dict[str, float]:
    """Exact min/max clip length in seconds for a preset."""
    return dict(DURATION_PRESETS[DurationPreset(preset)])


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


# =============================================================================
# Candidate generation
# =============================================================================

def build_transcript_candidates(transcript: Transcript, min_len: float, max_len: float) -> List[HighlightSegment]:
    """
    Grow a window from every segment start, emitting each intermediate
    window whose length lands in [min_len, max_len).
    """
    segments = transcript.segments
    out: List[HighlightSegment] = []

    for i, first in enumerate(segments):
        start = first.start
        end = start
        j = i
        while j < len(segments) and end - start < max_len:
            end = segments[j].end
            if end - start >= min_len:
                out.append(HighlightSegment(start=start, end=end))
            j += 1

    return out


def _energy_runs(energy: Sequence[EnergySample], threshold: float) -> List[tuple]:
    runs = []
    active_start: Optional[float] = None

    for sample in energy:
        if sample.value >= threshold and active_start is None:
            active_start = sample.t
        if sample.value < threshold and active_start is not None:
            runs.append((active_start, sample.t))
            active_start = None

    if active_start is not None:
        runs.append((active_start, energy[-1].t))

    return runs


def build_energy_candidates(
    energy: Sequence[EnergySample],
    min_len: float,
    max_len: float,
    threshold: float = ENERGY_RUN_THRESHOLD,
) -> List[HighlightSegment]:
    """
    Contiguous runs above threshold become candidates. Short runs are
    dropped, runs inside [min, max] are kept whole, longer runs are chopped
    into max-length windows advanced by min-length steps.
    """
    if not energy:
        return []

    out: List[HighlightSegment] = []
    for run_start, run_end in _energy_runs(energy, threshold):
        length = run_end - run_start
        if length < min_len:
            continue
        if length <= max_len:
            out.append(HighlightSegment(start=run_start, end=run_end))
            continue

        cursor = run_start
        while cursor + max_len <= run_end:
            out.append(HighlightSegment(start=cursor, end=cursor + max_len))
            cursor += min_len

    return out


def build_fixed_windows(transcript: Transcript, preset: DurationPreset | str) -> List[HighlightSegment]:
    """Evenly spaced windows over the transcript span (transcript-only mode)."""
    bounds = duration_range(preset)
    total = transcript.duration
    window = _clamp(18, bounds["min"], bounds["max"])
    step = max(6, int(window // 2))

    out: List[HighlightSegment] = []
    start = 0.0
    while start + window <= total:
        out.append(HighlightSegment(start=start, end=start + window))
        start += step
    return out


# =============================================================================
# Scoring
# =============================================================================

def tokenize(text: str) -> List[str]:
    """Lowercase alphanumeric words."""
    cleaned = re.sub(r"[^a-z0-9\s]", " ", text.lower())
    return [w for w in cleaned.split() if w]


def _overlapping(segment: HighlightSegment, transcript: Transcript) -> List[TranscriptSegment]:
    return [s for s in transcript.segments if s.end >= segment.start and s.start <= segment.end]


def _window_samples(segment: HighlightSegment, energy: Iterable[EnergySample]) -> List[EnergySample]:
    return [s for s in energy if segment.start <= s.t <= segment.end]


def average_energy(segment: HighlightSegment, energy: Sequence[EnergySample]) -> float:
    window = _window_samples(segment, energy)
    if not window:
        return 0.0
    return sum(s.value for s in window) / len(window)


def keyword_hits(words: Iterable[str]) -> int:
    return sum(1 for w in words if w in _KEYWORD_SET)


def excitement_score(text: str) -> int:
    return text.count("!") + text.count("?")


def transcript_score(segment: HighlightSegment, transcript: Transcript) -> float:
    """
    textScore = min(1, density/3)*0.5 + min(1, keywords/6)*0.3 + min(1, excitement/3)*0.2
    where density is words per second over the candidate window.
    """
    window = _overlapping(segment, transcript)
    if not window:
        return 0.0

    text = " ".join(s.text for s in window)
    words = tokenize(text)
    density = len(words) / max(1.0, segment.end - segment.start)
    hits = keyword_hits(words)
    excitement = excitement_score(text)

    return (
        min(1.0, density / 3) * 0.5
        + min(1.0, hits / 6) * 0.3
        + min(1.0, excitement / 3) * 0.2
    )


def pick_keyword(segment: HighlightSegment, transcript: Optional[Transcript]) -> Optional[str]:
    if transcript is None:
        return None
    words = tokenize(" ".join(s.text for s in _overlapping(segment, transcript)))
    for w in words:
        if w in _KEYWORD_SET:
            return w
    return None


def rank_segments(
    candidates: Sequence[HighlightSegment],
    transcript: Optional[Transcript],
    energy: Sequence[EnergySample],
) -> List[HighlightSegment]:
    """
    Score every candidate and return new segments sorted by score
    descending. The sort is stable so equal scores keep generation order.
    """
    ranked: List[HighlightSegment] = []

    for cand in candidates:
        audio = average_energy(cand, energy) if energy else 0.0
        text = transcript_score(cand, transcript) if transcript is not None else 0.0
        score = audio * AUDIO_WEIGHT + text * TEXT_WEIGHT

        reasons: List[str] = []
        if audio > AUDIO_PEAK_THRESHOLD:
            reasons.append("audio peak")
        keyword = pick_keyword(cand, transcript)
        if keyword:
            reasons.append(f"keyword: {keyword}")
        if not reasons:
            reasons.append("balanced energy")

        ranked.append(replace(cand, score=score, reason=" + ".join(reasons)))

    return sorted(ranked, key=lambda s: s.score, reverse=True)


# =============================================================================
# Post-processing
# =============================================================================

def trim_silence(segment: HighlightSegment, energy: Sequence[EnergySample]) -> HighlightSegment:
    """
    Pull start/end in to the first/last sample at or above the silence
    threshold. Bounds are kept as-is if the result would be under 6s.
    """
    if not energy:
        return segment

    window = _window_samples(segment, energy)
    start, end = segment.start, segment.end

    for sample in window:
        if sample.value >= SILENCE_TRIM_THRESHOLD:
            start = sample.t
            break

    for sample in reversed(window):
        if sample.value >= SILENCE_TRIM_THRESHOLD:
            end = sample.t
            break

    if end - start < MIN_TRIMMED_SEC:
        return segment

    return replace(segment, start=start, end=end)


def overlap_ratio(a: HighlightSegment, b: HighlightSegment) -> float:
    """Intersection over union of two intervals."""
    overlap = max(0.0, min(a.end, b.end) - max(a.start, b.start))
    union = max(a.end, b.end) - min(a.start, b.start)
    if union == 0:
        return 0.0
    return overlap / union


def non_max_suppression(segments: Sequence[HighlightSegment], max_overlap: float = 0.3) -> List[HighlightSegment]:
    """
    Greedy NMS: walk by score descending and keep a segment only if its
    overlap ratio with every kept segment is below max_overlap.
    """
    kept: List[HighlightSegment] = []

    for seg in sorted(segments, key=lambda s: s.score, reverse=True):
        if all(overlap_ratio(k, seg) < max_overlap for k in kept):
            kept.append(seg)

    return kept


def merge_segments(segments: Sequence[HighlightSegment], gap: float = MERGE_GAP_SEC) -> List[HighlightSegment]:
    """Merge segments that touch or sit within `gap` seconds of each other."""
    if not segments:
        return []

    ordered = sorted(segments, key=lambda s: s.start)
    merged: List[HighlightSegment] = [replace(ordered[0])]

    for nxt in ordered[1:]:
        last = merged[-1]
        if nxt.start <= last.end + gap:
            last.end = max(last.end, nxt.end)
            last.score = max(last.score, nxt.score)
            last.reason = last.reason or nxt.reason
        else:
            merged.append(replace(nxt))

    return merged


# =============================================================================
# Entry points
# =============================================================================

def detect_highlights(
    transcript: Optional[Transcript],
    energy: Sequence[EnergySample],
    clip_count: int,
    preset: DurationPreset | str,
) -> List[HighlightSegment]:
    """
    Full hybrid detection: candidates from transcript windows and energy
    runs, ranked, silence-trimmed, duration-filtered, NMS-reduced and cut to
    the top clip_count.
    """
    bounds = duration_range(preset)
    min_len, max_len = bounds["min"], bounds["max"]

    candidates: List[HighlightSegment] = []
    if transcript is not None:
        candidates.extend(build_transcript_candidates(transcript, min_len, max_len))
    candidates.extend(build_energy_candidates(energy, min_len, max_len))

    if not candidates:
        return []

    ranked = rank_segments(candidates, transcript, energy)
    trimmed = [trim_silence(seg, energy) for seg in ranked]
    filtered = [seg for seg in trimmed if min_len <= seg.duration <= max_len]
    reduced = non_max_suppression(filtered, DETECT_MAX_OVERLAP)

    return reduced[: max(1, clip_count)]


def detect_from_transcript(
    transcript: Optional[Transcript],
    clip_count: int,
    preset: DurationPreset | str,
) -> List[HighlightSegment]:
    """Transcript-only detection over fixed windows (no audio available)."""
    if transcript is None:
        return []
    ranked = rank_segments(build_fixed_windows(transcript, preset), transcript, [])
    reduced = non_max_suppression(ranked, DETECT_MAX_OVERLAP)
    return reduced[: max(1, clip_count)]


def fallback_segment(transcript: Optional[Transcript], preset: DurationPreset | str) -> HighlightSegment:
    """Single clip from t=0 used when detection finds nothing."""
    bounds = duration_range(preset)
    total = transcript.duration if transcript is not None else 0.0
    length = _clamp(total, bounds["min"], bounds["max"]) if total > 0 else bounds["min"]
    return HighlightSegment(start=0.0, end=float(length), score=0.5, reason="fallback")
