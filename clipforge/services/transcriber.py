"""
Transcription Service
Whisper transcription for local files and for remote YouTube audio.
The mock provider returns a fixed transcript for dev and tests.
"""
from __future__ import annotations

import logging
import math
import os
import threading
import time
from typing import Optional

from clipforge.core.errors import InputUnavailableError, ProviderError
from clipforge.schemas.transcript import Transcript, TranscriptSegment
from clipforge.services.clipper import build_ytdlp_args, is_youtube_url
from clipforge.services.process import run_piped

logger = logging.getLogger(__name__)


def _demo_transcript(language: str) -> Transcript:
    return Transcript(
        language=language,
        segments=[
            TranscriptSegment(start=0, end=6, text="ClipForge demo transcript."),
            TranscriptSegment(start=6, end=14, text="Replace this with Whisper output."),
        ],
    )


def _select_device(device: str) -> str:
    device = (device or "auto").lower()
    if device in {"cpu", "cuda"}:
        return device
    import torch

    if torch.cuda.is_available():
        logger.info("CUDA GPU detected! Using GPU for transcription.")
        return "cuda"
    logger.info("CUDA not found. Using CPU.")
    return "cpu"


class MockTranscriber:
    def transcribe(self, input_path: str, language: str, job_id: str) -> Transcript:
        return _demo_transcript(language)

    def transcribe_stream(
        self,
        url: str,
        language: str,
        job_id: str,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> Transcript:
        return _demo_transcript(language)


class WhisperTranscriber:
    """
    Loads the Whisper model lazily on first use and keeps it for the life
    of the worker process. One model per process: task threads share it,
    and decoding runs one file at a time since whisper hooks its kv-cache
    onto the shared modules.
    """

    def __init__(self, model_size: str = "base", device: str = "auto"):
        self.model_size = model_size
        self.device = device
        self._model = None
        self._load_lock = threading.Lock()
        self._decode_lock = threading.Lock()

    @property
    def model(self):
        if self._model is not None:
            return self._model
        with self._load_lock:
            if self._model is None:
                import whisper

                self.device = _select_device(self.device)
                if self.device == "cpu":
                    logger.warning("Whisper running on CPU. Expect slower transcription.")
                logger.info(f"Loading Whisper model '{self.model_size}' on {self.device}...")
                self._model = whisper.load_model(self.model_size, device=self.device)
        return self._model

    def transcribe(self, input_path: str, language: str, job_id: str) -> Transcript:
        """
        Transcribe an audio/video file.
        Returns ordered segments: [{'text': str, 'start': float, 'end': float}]
        """
        logger.info(f"[transcriber] Transcribing {input_path} (job={job_id}, lang={language})")
        model = self.model
        try:
            with self._decode_lock:
                result = model.transcribe(input_path, language=language, fp16=(self.device == "cuda"))
        except RuntimeError as e:
            raise ProviderError(f"Whisper failed: {e}")

        segments = [
            TranscriptSegment(start=float(seg["start"]), end=float(seg["end"]), text=seg["text"].strip())
            for seg in result.get("segments", [])
        ]
        segments.sort(key=lambda s: s.start)
        return Transcript(language=result.get("language") or language, segments=segments)


def _section_arg(start: float, end: float) -> str:
    """Whole-second window that covers [start, end]."""
    def fmt(total: int) -> str:
        total = max(0, total)
        return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"
    return f"*{fmt(math.floor(start))}-{fmt(math.ceil(end))}"


class StreamingWhisperTranscriber:
    """
    Pull only the audio track of a YouTube video through yt-dlp | ffmpeg
    into a 16kHz mono wav, transcribe it, and delete the wav.
    """

    def __init__(self, transcriber: WhisperTranscriber, work_dir: str, timeout_ms: int = 600_000):
        self.transcriber = transcriber
        self.work_dir = work_dir
        self.timeout_ms = timeout_ms

    def transcribe_stream(
        self,
        url: str,
        language: str,
        job_id: str,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> Transcript:
        if not is_youtube_url(url):
            raise InputUnavailableError("Only youtube.com or youtu.be links are allowed.")

        job_dir = os.path.join(self.work_dir, job_id)
        os.makedirs(job_dir, exist_ok=True)
        wav_path = os.path.join(job_dir, f"stream-{int(time.time() * 1000):x}.wav")

        ytdlp_args = build_ytdlp_args(url, "bestaudio")
        has_window = start is not None and end is not None and end > start
        if has_window:
            ytdlp_args[1:1] = ["--download-sections", _section_arg(start, end)]

        ffmpeg_args = [
            "ffmpeg", "-hide_banner", "-loglevel", "warning",
            "-i", "pipe:0", "-ar", "16000", "-ac", "1", "-f", "wav", "-y", wav_path,
        ]

        try:
            run_piped(ytdlp_args, ffmpeg_args, timeout_ms=self.timeout_ms, output_path=wav_path)
            transcript = self.transcriber.transcribe(wav_path, language, job_id)
        finally:
            if os.path.exists(wav_path):
                os.remove(wav_path)

        # Section downloads restart the clock at 0
        offset = max(0, math.floor(start)) if has_window else 0
        return transcript.shifted(offset)
