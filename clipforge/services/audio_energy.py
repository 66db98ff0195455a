"""
Audio Energy Service
Derive a coarse per-second energy trace from ffmpeg silence detection.
"""
from __future__ import annotations

import logging
import math
import re
from typing import List, Optional, Tuple

import ffmpeg

from clipforge.services.highlights import EnergySample
from clipforge.services.process import run_process

logger = logging.getLogger(__name__)

SILENT_VALUE = 0.12
VOICED_VALUE = 0.72


SILENCE_RE = re.compile(r"silence_(start|end):\s*(-?[0-9.]+)")


def _parse_silencedetect(stderr_text: str) -> List[Tuple[float, float]]:
    """(start, end) pairs from silencedetect's stderr; an unterminated start is dropped."""
    silences: List[Tuple[float, float]] = []
    opened: Optional[float] = None
    for kind, value in SILENCE_RE.findall(stderr_text):
        if kind == "start":
            opened = max(0.0, float(value))
        elif opened is not None:
            silences.append((opened, float(value)))
            opened = None
    return silences


def probe_duration(input_path: str) -> float:
    info = ffmpeg.probe(input_path)
    try:
        return float(info.get("format", {}).get("duration") or 0.0)
    except (TypeError, ValueError):
        return 0.0


def detect_silence(
    input_path: str,
    silence_db: int = -30,
    min_silence_sec: float = 0.35,
    timeout_ms: int = 300_000,
) -> List[Tuple[float, float]]:
    cmd = (
        ffmpeg
        .input(input_path)
        .audio
        .filter("silencedetect", n=f"{silence_db}dB", d=min_silence_sec)
        .output("-", format="null")
        .compile()
    )
    result = run_process(cmd, timeout_ms=timeout_ms, name="ffmpeg")
    silences = _parse_silencedetect(result.stderr)
    logger.info(f"[audio_energy] Found {len(silences)} silence intervals in {input_path}")
    return silences


def energy_from_silences(duration_sec: float, silences: List[Tuple[float, float]]) -> List[EnergySample]:
    """One sample per second: low inside a silence interval, high elsewhere."""
    samples: List[EnergySample] = []
    for t in range(0, int(math.ceil(duration_sec)) + 1):
        silent = any(s0 <= t <= s1 for s0, s1 in silences)
        samples.append(EnergySample(t=float(t), value=SILENT_VALUE if silent else VOICED_VALUE))
    return samples


def analyze_audio_energy(input_path: str) -> List[EnergySample]:
    duration = probe_duration(input_path)
    if duration <= 0:
        return []
    return energy_from_silences(duration, detect_silence(input_path))
