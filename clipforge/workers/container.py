"""
Dependency wiring. build_dependencies() runs once per worker process and
the resulting struct is passed explicitly to the pipeline and task handlers.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from redis import Redis

from clipforge.core.logging import JobLogger
from clipforge.core.settings import Settings
from clipforge.db.repositories import JobStore
from clipforge.db.session import create_db_engine, create_session_factory, init_db
from clipforge.services.clipper import YtdlpClipper
from clipforge.services.detector import HybridHighlightDetector, TranscriptHighlightDetector
from clipforge.services.rate_limit import RateLimiter
from clipforge.services.renderer import FfmpegRenderer
from clipforge.services.storage import LocalStorage
from clipforge.services.transcriber import (
    MockTranscriber,
    StreamingWhisperTranscriber,
    WhisperTranscriber,
)
from clipforge.services.video_source import VideoSourceResolver
from clipforge.workers.lease import JobLease
from clipforge.workers.queue import RedisQueue

logger = logging.getLogger(__name__)


@dataclass
class Dependencies:
    settings: Settings
    store: JobStore
    queue: RedisQueue
    source: VideoSourceResolver
    transcriber: object
    stream_transcriber: object
    detector: HybridHighlightDetector
    stream_detector: TranscriptHighlightDetector
    renderer: FfmpegRenderer
    clipper: YtdlpClipper
    storage: LocalStorage
    logger: JobLogger
    lease: Optional[JobLease] = None
    rate_limiter: Optional[RateLimiter] = None

    def close(self) -> None:
        self.queue.close()


def build_transcribers(settings: Settings, storage: LocalStorage):
    """(local, streaming) transcriber pair for the configured provider."""
    if settings.whisper_provider.lower() == "whisper":
        whisper_transcriber = WhisperTranscriber(settings.whisper_model, settings.whisper_device)
        streaming = StreamingWhisperTranscriber(
            whisper_transcriber,
            work_dir=storage.jobs_dir,
            timeout_ms=settings.yt_transcribe_timeout_ms,
        )
        return whisper_transcriber, streaming
    mock = MockTranscriber()
    return mock, mock


def build_dependencies(settings: Settings, redis_client: Optional[Redis] = None) -> Dependencies:
    engine = create_db_engine(settings.database_url)
    init_db(engine)

    redis_client = redis_client or Redis.from_url(settings.redis_url)
    storage = LocalStorage(settings.storage_path)
    transcriber, stream_transcriber = build_transcribers(settings, storage)

    lease = None
    if settings.job_lease_enabled:
        lease = JobLease(redis_client, ttl_sec=settings.job_lease_ttl_sec)

    logger.info(
        f"[container] provider={settings.whisper_provider} "
        f"streaming={settings.allow_youtube_streaming} lease={lease is not None}"
    )

    return Dependencies(
        settings=settings,
        store=JobStore(create_session_factory(engine)),
        queue=RedisQueue(settings.redis_url, settings.rq_queue_name, connection=redis_client),
        source=VideoSourceResolver(storage.uploads_dir),
        transcriber=transcriber,
        stream_transcriber=stream_transcriber,
        detector=HybridHighlightDetector(),
        stream_detector=TranscriptHighlightDetector(),
        renderer=FfmpegRenderer(settings.render_timeout_ms, settings.ffmpeg_loudnorm),
        clipper=YtdlpClipper(),
        storage=storage,
        logger=JobLogger(settings.logs_path),
        lease=lease,
        rate_limiter=RateLimiter(redis_client, prefix=settings.rate_limit_prefix),
    )
