"""
Job Pipeline
download -> transcribe -> highlights -> render for one job, plus the
clip-level entry points (re-render, manual single clip).

Every stage writes its checkpoint through JobStore before doing work so
pollers see the job move. Failures anywhere in process() end up as a
terminal job error with a short message; provider diagnostics only go to
the logs.
"""
from __future__ import annotations

import json
import logging
from contextlib import nullcontext
from typing import List, Optional

from clipforge.core.enums import (
    STAGE_PROGRESS,
    ClipStatus,
    JobStage,
    JobStatus,
    SourceType,
    SubtitleMode,
)
from clipforge.core.errors import (
    ClipRenderError,
    InputUnavailableError,
    JobBusyError,
    ProviderError,
)
from clipforge.core.logging import JobContext
from clipforge.schemas.job import JobOptions
from clipforge.schemas.transcript import Transcript
from clipforge.services.highlights import HighlightSegment, fallback_segment
from clipforge.services.subtitles import slice_transcript, srt_to_vtt, to_srt
from clipforge.workers.container import Dependencies

logger = logging.getLogger(__name__)

YOUTUBE_DISABLED_MESSAGE = "YouTube downloads are disabled. Upload a file you own or have rights to use."
NO_INPUT_MESSAGE = "No input file available for processing."
MANUAL_YOUTUBE_DISABLED_MESSAGE = "YouTube access is disabled. Upload a file you own or have rights to use."
TRANSCRIPT_FILE = "transcript.json"


def render_progress(done: int, total: int) -> int:
    """70..99 spread linearly over the clips of a job."""
    if total <= 0:
        return STAGE_PROGRESS[JobStage.RENDER]
    return min(99, STAGE_PROGRESS[JobStage.RENDER] + round(29 * done / total))


def _root_provider_error(exc: BaseException) -> Optional[ProviderError]:
    while exc is not None:
        if isinstance(exc, ProviderError):
            return exc
        exc = exc.__cause__
    return None


class JobPipeline:
    def __init__(self, deps: Dependencies):
        self.deps = deps
        self.store = deps.store
        self.storage = deps.storage
        self.log = deps.logger

    # =========================================================================
    # Jobs
    # =========================================================================

    def create_job(
        self,
        source_type: SourceType,
        source_url: Optional[str] = None,
        upload_id: Optional[str] = None,
        options: Optional[JobOptions] = None,
    ):
        options = options or JobOptions()
        job = self.store.create_job(
            source_type=SourceType(source_type).value,
            options=options.to_stored(),
            source_url=source_url,
            upload_id=upload_id,
        )
        self.deps.queue.enqueue_job(job.id)
        self.log.info(job.id, "Job queued.")
        return job

    def process(self, job_id: str) -> None:
        job = self.store.get_job(job_id)
        if job is None:
            logger.warning(f"[pipeline] Job {job_id} not found, skipping")
            return

        try:
            with self._lease(job_id), JobContext(job_id=job_id):
                self._run(job)
        except JobBusyError as e:
            logger.warning(f"[pipeline] {e} Skipping duplicate run.")

    def _run(self, job) -> None:
        job_id = job.id
        try:
            options = JobOptions.from_stored(job.options)
            self._set_stage(job_id, JobStage.DOWNLOAD, error=None)

            source = self.deps.source.resolve(url=job.source_url, upload_id=job.upload_id)
            self.store.update_job(job_id, metadata_json=source.metadata())

            streaming = (
                self.deps.settings.allow_youtube_streaming
                and source.type == SourceType.YOUTUBE
                and not source.file_path
            )
            if not source.file_path and not streaming:
                if source.type == SourceType.YOUTUBE:
                    self.log.warn(job_id, "YouTube downloads disabled. Ask user to upload a file.")
                    raise InputUnavailableError(YOUTUBE_DISABLED_MESSAGE)
                raise InputUnavailableError(NO_INPUT_MESSAGE)

            # Transcribe
            self.log.info(job_id, "Starting transcription." + (" (streaming)" if streaming else ""))
            self._set_stage(job_id, JobStage.TRANSCRIBE)
            if streaming:
                transcript = self.deps.stream_transcriber.transcribe_stream(source.url, options.language, job_id)
            else:
                transcript = self.deps.transcriber.transcribe(source.file_path, options.language, job_id)
            self._write_transcript(job_id, transcript)

            # Highlights
            self.log.info(job_id, "Detecting highlights.")
            self._set_stage(job_id, JobStage.HIGHLIGHTS)
            if streaming:
                segments = self.deps.stream_detector.detect_stream(
                    source.url, transcript, options.clip_count, options.duration_preset
                )
            else:
                segments = self.deps.detector.detect(
                    source.file_path, transcript, options.clip_count, options.duration_preset
                )

            if not segments:
                self.log.warn(job_id, "No highlights detected. Using fallback clip.")
                segments = [fallback_segment(transcript, options.duration_preset)]

            clips = self._create_clips(job_id, segments)

            # Render
            self.log.info(job_id, f"Rendering {len(clips)} clips.")
            self._set_stage(job_id, JobStage.RENDER)
            for index, clip in enumerate(clips):
                if streaming:
                    self.render_stream_clip(job_id, clip, source.url, options)
                else:
                    self.render_one_clip(job_id, clip, source.file_path, options)
                self.store.update_job(job_id, progress=render_progress(index + 1, len(clips)))

            self._finish(job_id)
            self.log.info(job_id, "Job ready.")
        except Exception as e:
            self._fail(job_id, e)

    def _create_clips(self, job_id: str, segments: List[HighlightSegment]) -> list:
        return [
            self.store.create_clip(job_id, seg.start, seg.end, seg.score, seg.reason)
            for seg in segments
        ]

    # =========================================================================
    # Clips
    # =========================================================================

    def render_one_clip(self, job_id: str, clip, input_path: str, options: JobOptions) -> None:
        self.store.update_clip(clip.id, status=ClipStatus.RENDERING)
        self._render_clip(job_id, clip, input_path, options, clip.start, clip.end)

    def render_stream_clip(self, job_id: str, clip, url: str, options: JobOptions) -> None:
        """
        Trim the clip's range out of the remote source into a temp file, then
        render that file with clip-relative timings.
        """
        self.storage.ensure_job_dir(job_id)
        temp_path = self.storage.job_path(job_id, f"stream-{clip.id}.mp4")
        settings = self.deps.settings

        self.store.update_clip(clip.id, status=ClipStatus.RENDERING)
        try:
            try:
                self.deps.clipper.clip(
                    url,
                    clip.start,
                    clip.end,
                    temp_path,
                    max_height=settings.yt_clip_max_height,
                    timeout_ms=settings.yt_clip_timeout_ms,
                    prefer_copy=settings.yt_clip_prefer_copy,
                )
            except Exception as e:
                self.store.update_clip(clip.id, status=ClipStatus.ERROR)
                raise ClipRenderError(clip.id, e) from e

            self._render_clip(job_id, clip, temp_path, options, 0.0, clip.end - clip.start)
        finally:
            self.storage.remove(temp_path)

    def _render_clip(
        self,
        job_id: str,
        clip,
        input_path: str,
        options: JobOptions,
        render_start: float,
        render_end: float,
    ) -> None:
        self.storage.ensure_job_dir(job_id)
        video_path = self.storage.job_path(job_id, f"clip-{clip.id}.mp4")
        srt_path = self.storage.job_path(job_id, f"clip-{clip.id}.srt")
        vtt_path = self.storage.job_path(job_id, f"clip-{clip.id}.vtt")
        subtitles_on = options.subtitles != SubtitleMode.OFF

        with JobContext(job_id=job_id, clip_id=clip.id):
            try:
                if subtitles_on:
                    # Subtitles always slice with the absolute source bounds
                    sliced = slice_transcript(self._read_transcript(job_id), clip.start, clip.end)
                    srt = to_srt(sliced)
                    self.storage.write_file(srt_path, srt)
                    self.storage.write_file(vtt_path, srt_to_vtt(srt))

                self.deps.renderer.render(
                    input_path,
                    video_path,
                    render_start,
                    render_end,
                    burn_subtitles=options.subtitles == SubtitleMode.BURNED,
                    subtitles_path=srt_path if subtitles_on else None,
                    smart_crop=options.smart_crop,
                )
            except Exception as e:
                self.store.update_clip(clip.id, status=ClipStatus.ERROR)
                raise ClipRenderError(clip.id, e) from e

        self.store.update_clip(
            clip.id,
            status=ClipStatus.READY,
            video_path=video_path,
            srt_path=srt_path if subtitles_on else None,
            vtt_path=vtt_path if subtitles_on else None,
        )

    def rerender_clip(self, job_id: str, clip_id: str, start: float, end: float, options: JobOptions) -> None:
        job = self.store.get_job(job_id)
        if job is None:
            return
        clip = self.store.get_clip(clip_id)
        if clip is None:
            return
        if clip.job_id != job_id:
            logger.warning(f"[pipeline] Clip {clip_id} belongs to job {clip.job_id}, not {job_id}; skipping re-render")
            return
        if not job.upload_id:
            raise InputUnavailableError("Missing upload_id for re-render.")

        with self._lease(job_id), JobContext(job_id=job_id, clip_id=clip_id):
            clip = self.store.update_clip(clip_id, start=start, end=end)
            self.log.info(job_id, f"Re-render clip {clip_id}.")
            self.render_one_clip(job_id, clip, self.storage.upload_path(job.upload_id), options)

    def generate_clip(
        self,
        start: float,
        end: float,
        source_url: Optional[str] = None,
        upload_id: Optional[str] = None,
        options: Optional[JobOptions] = None,
    ):
        """
        Render one clip for a caller-chosen range, skipping detection.
        Creates a one-off job that tracks the run; returns the ready clip.
        """
        if end <= start:
            raise ValueError("Clip end must be greater than start.")

        options = (options or JobOptions()).merged(clip_count=1)
        source_type = SourceType.UPLOAD if upload_id else SourceType.YOUTUBE
        job = self.store.create_job(
            source_type=source_type.value,
            options=options.to_stored(),
            source_url=source_url,
            upload_id=upload_id,
        )
        job_id = job.id
        self.log.info(job_id, f"Manual clip {start:.2f}-{end:.2f}.")

        with JobContext(job_id=job_id):
            try:
                self._set_stage(job_id, JobStage.DOWNLOAD, error=None)
                source = self.deps.source.resolve(url=source_url, upload_id=upload_id)
                self.store.update_job(job_id, metadata_json=source.metadata())

                streaming = (
                    not source.file_path
                    and source.type == SourceType.YOUTUBE
                    and self.deps.settings.allow_youtube_streaming
                )
                if not source.file_path and not streaming:
                    raise InputUnavailableError(MANUAL_YOUTUBE_DISABLED_MESSAGE)

                self._set_stage(job_id, JobStage.TRANSCRIBE)
                if options.subtitles == SubtitleMode.OFF:
                    transcript = Transcript(language=options.language, segments=[])
                elif streaming:
                    transcript = self.deps.stream_transcriber.transcribe_stream(
                        source.url, options.language, job_id, start, end
                    )
                else:
                    transcript = self.deps.transcriber.transcribe(source.file_path, options.language, job_id)
                self._write_transcript(job_id, transcript)

                clip = self.store.create_clip(job_id, start, end, 1.0, "manual")
                self._set_stage(job_id, JobStage.RENDER)
                if streaming:
                    self.render_stream_clip(job_id, clip, source.url, options)
                else:
                    self.render_one_clip(job_id, clip, source.file_path, options)

                self._finish(job_id)
            except Exception as e:
                self._fail(job_id, e)
                raise

        return self.store.get_clip(clip.id)

    def list_clips(self, job_id: str) -> list:
        return self.store.list_clips(job_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _lease(self, job_id: str):
        if self.deps.lease is None:
            return nullcontext()
        return self.deps.lease.hold(job_id)

    def _set_stage(self, job_id: str, stage: JobStage, **extra) -> None:
        self.store.update_job(
            job_id,
            status=JobStatus.PROCESSING,
            stage=stage,
            progress=STAGE_PROGRESS[stage],
            **extra,
        )

    def _finish(self, job_id: str) -> None:
        self.store.update_job(
            job_id,
            status=JobStatus.READY,
            stage=JobStage.READY,
            progress=STAGE_PROGRESS[JobStage.READY],
            error=None,
        )

    def _fail(self, job_id: str, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        provider_error = _root_provider_error(exc)
        if provider_error is not None and provider_error.tail:
            logger.error(f"[pipeline] {job_id} provider output:\n{provider_error.tail}")
        logger.exception(f"[pipeline] Job {job_id} failed: {message}")
        self.log.error(job_id, message)
        self.store.update_job(
            job_id,
            status=JobStatus.ERROR,
            stage=JobStage.ERROR,
            progress=STAGE_PROGRESS[JobStage.ERROR],
            error=message,
        )

    def _transcript_path(self, job_id: str) -> str:
        self.storage.ensure_job_dir(job_id)
        return self.storage.job_path(job_id, TRANSCRIPT_FILE)

    def _write_transcript(self, job_id: str, transcript: Transcript) -> None:
        self.storage.write_file(self._transcript_path(job_id), json.dumps(transcript.model_dump(), indent=2))

    def _read_transcript(self, job_id: str) -> Transcript:
        return Transcript.model_validate_json(self.storage.read_file(self._transcript_path(job_id)))
