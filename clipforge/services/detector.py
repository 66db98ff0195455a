"""
Highlight Detectors
Local files get the hybrid audio + transcript detector; remote streams
only have a transcript to work with.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

import ffmpeg

from clipforge.core.enums import DurationPreset
from clipforge.core.errors import ProviderError
from clipforge.schemas.transcript import Transcript
from clipforge.services.audio_energy import analyze_audio_energy
from clipforge.services.highlights import (
    EnergySample,
    HighlightSegment,
    detect_from_transcript,
    detect_highlights,
)

logger = logging.getLogger(__name__)


class HybridHighlightDetector:
    def __init__(self, energy_analyzer: Callable[[str], List[EnergySample]] = analyze_audio_energy):
        self.energy_analyzer = energy_analyzer

    def detect(
        self,
        input_path: str,
        transcript: Optional[Transcript],
        clip_count: int,
        duration_preset: DurationPreset,
    ) -> List[HighlightSegment]:
        try:
            energy = self.energy_analyzer(input_path)
        except (ffmpeg.Error, ProviderError, OSError) as e:
            # Transcript windows still work without a trace
            logger.warning(f"[detector] Audio energy unavailable for {input_path}: {e}")
            energy = []

        segments = detect_highlights(transcript, energy, clip_count, duration_preset)
        logger.info(f"[detector] {len(segments)} highlights (energy samples={len(energy)})")
        return segments


class TranscriptHighlightDetector:
    def detect_stream(
        self,
        url: str,
        transcript: Optional[Transcript],
        clip_count: int,
        duration_preset: DurationPreset,
    ) -> List[HighlightSegment]:
        segments = detect_from_transcript(transcript, clip_count, duration_preset)
        logger.info(f"[detector] {len(segments)} transcript highlights for {url}")
        return segments
