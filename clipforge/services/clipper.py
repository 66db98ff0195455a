"""
yt-dlp Clipper Service
Trim a time range straight out of a YouTube stream into a local mp4 by
piping yt-dlp into ffmpeg, without downloading the whole video.
"""
from __future__ import annotations

import logging
import math
import os
from typing import List
from urllib.parse import urlparse

from clipforge.core.errors import InputUnavailableError, ProviderError
from clipforge.services.process import run_piped

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = {"youtube.com", "youtu.be", "m.youtube.com", "music.youtube.com"}


def is_youtube_url(value: str) -> bool:
    try:
        host = (urlparse(value).hostname or "").lower()
    except ValueError:
        return False
    if host.startswith("www."):
        host = host[4:]
    return host in YOUTUBE_HOSTS


def build_ytdlp_args(url: str, format_selector: str) -> List[str]:
    return [
        "yt-dlp",
        "-f", format_selector,
        "--no-playlist",
        "--no-part",
        "--newline",
        "--concurrent-fragments", "1",
        "-o", "-",
        url,
    ]


def build_ffmpeg_trim_args(start: float, duration: float, output_path: str, copy: bool) -> List[str]:
    args = [
        "ffmpeg",
        "-hide_banner",
        "-loglevel", "warning",
        "-i", "pipe:0",
        "-ss", f"{start:.3f}",
        "-t", f"{duration:.3f}",
    ]
    if copy:
        args += ["-c", "copy"]
    else:
        args += [
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-crf", "23",
            "-c:a", "aac",
            "-b:a", "128k",
        ]
    args += ["-movflags", "+faststart", "-f", "mp4", "-y", output_path]
    return args


class YtdlpClipper:
    def clip(
        self,
        url: str,
        start: float,
        end: float,
        output_path: str,
        max_height: int = 720,
        timeout_ms: int = 300_000,
        prefer_copy: bool = True,
    ) -> None:
        """
        Stream-copy first when prefer_copy is set (fast, keyframe-aligned),
        re-encode if that fails.
        """
        if not is_youtube_url(url):
            raise InputUnavailableError("Only youtube.com or youtu.be links are allowed.")
        if not (math.isfinite(start) and math.isfinite(end)) or end <= start:
            raise ValueError("Invalid start or end times.")

        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)

        duration = max(0.1, end - start)
        fmt = f"best[ext=mp4][height<={max_height}]/best[height<={max_height}]/best"
        ytdlp_args = build_ytdlp_args(url, fmt)

        def _run(copy: bool) -> None:
            if os.path.exists(output_path):
                os.remove(output_path)
            logger.info(f"[clipper] {url} {start:.2f}-{end:.2f} (copy={copy}) -> {output_path}")
            run_piped(
                ytdlp_args,
                build_ffmpeg_trim_args(start, duration, output_path, copy),
                timeout_ms=timeout_ms,
                output_path=output_path,
            )

        if prefer_copy:
            try:
                _run(True)
                return
            except ProviderError as e:
                logger.warning(f"[clipper] Stream copy failed, re-encoding: {e.describe()}")

        _run(False)
