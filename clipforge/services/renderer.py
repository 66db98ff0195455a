import logging
import os
from typing import Optional, Tuple

import ffmpeg

from clipforge.services.process import run_process

logger = logging.getLogger(__name__)

OUTPUT_WIDTH = 1080
OUTPUT_HEIGHT = 1920
OUTPUT_FPS = 30

SUBTITLE_STYLE = (
    "Fontsize=48,PrimaryColour=&HFFFFFF&,OutlineColour=&H000000&,"
    "BorderStyle=3,Outline=2,Shadow=1,Alignment=2,MarginV=120"
)


def build_crop(width: int, height: int, smart_crop: bool = True) -> Tuple[int, int, int, int]:
    """
    Centered 9:16 crop box (w, h, x, y). Without smart crop the full frame
    is kept and later scaled into the vertical canvas.
    """
    if not smart_crop:
        return width, height, 0, 0
    target_w = min(width, (height * 9) // 16)
    x = max(0, (width - target_w) // 2)
    return target_w, height, x, 0


def probe_video(input_path: str) -> Tuple[int, int]:
    info = ffmpeg.probe(input_path, select_streams="v:0")
    streams = info.get("streams") or [{}]
    return int(streams[0].get("width") or 1920), int(streams[0].get("height") or 1080)


class FfmpegRenderer:
    """
    Cut a segment into a 1080x1920 / 30fps vertical clip, optionally
    burning subtitles into the frame.
    """

    def __init__(self, timeout_ms: int = 900_000, loudnorm: bool = False):
        self.timeout_ms = timeout_ms
        self.loudnorm = loudnorm

    def build_command(
        self,
        input_path: str,
        output_path: str,
        start: float,
        end: float,
        width: int,
        height: int,
        burn_subtitles: bool = False,
        subtitles_path: Optional[str] = None,
        smart_crop: bool = True,
    ) -> list:
        duration = max(0.1, end - start)

        # 1. Input stream (with seek)
        input_stream = ffmpeg.input(input_path, ss=f"{start:.2f}", t=f"{duration:.2f}")

        # 2. Separate Video and Audio
        video = input_stream.video
        audio = input_stream.audio

        # 3. Crop -> scale -> fps -> (subtitles)
        crop_w, crop_h, x, y = build_crop(width, height, smart_crop)
        video = video.filter("crop", crop_w, crop_h, x, y)
        if smart_crop:
            video = video.filter("scale", OUTPUT_WIDTH, OUTPUT_HEIGHT)
        else:
            video = (
                video
                .filter("scale", OUTPUT_WIDTH, OUTPUT_HEIGHT, force_original_aspect_ratio="decrease")
                .filter("pad", OUTPUT_WIDTH, OUTPUT_HEIGHT, "(ow-iw)/2", "(oh-ih)/2")
            )
        video = video.filter("fps", fps=OUTPUT_FPS).filter("setsar", 1)

        if burn_subtitles and subtitles_path:
            video = video.filter("subtitles", subtitles_path, force_style=SUBTITLE_STYLE)

        if self.loudnorm:
            audio = audio.filter("loudnorm", I=-14, TP=-1.5, LRA=11)

        # 4. Output with both video and audio
        output = ffmpeg.output(
            video,
            audio,
            output_path,
            vcodec="libx264",
            preset="fast",
            pix_fmt="yuv420p",
            video_bitrate="4000k",
            acodec="aac",
            audio_bitrate="160k",
            **{"profile:v": "high"},
        )
        return output.overwrite_output().compile()

    def render(
        self,
        input_path: str,
        output_path: str,
        start: float,
        end: float,
        burn_subtitles: bool = False,
        subtitles_path: Optional[str] = None,
        smart_crop: bool = True,
    ) -> None:
        width, height = probe_video(input_path)
        cmd = self.build_command(
            input_path, output_path, start, end, width, height,
            burn_subtitles=burn_subtitles,
            subtitles_path=subtitles_path,
            smart_crop=smart_crop,
        )
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        logger.info(f"[renderer] Cutting {end - start:.2f}s from {start:.2f} -> {output_path}")
        run_process(cmd, timeout_ms=self.timeout_ms, name="ffmpeg", output_path=output_path)
