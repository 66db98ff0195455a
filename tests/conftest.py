"""Shared fixtures: in-memory database, temp storage and fake collaborators."""
import os
from contextlib import contextmanager

import pytest

from clipforge.core.errors import JobBusyError, ProviderError
from clipforge.core.logging import JobLogger
from clipforge.core.settings import Settings
from clipforge.db.repositories import JobStore
from clipforge.db.session import create_db_engine, create_session_factory, init_db
from clipforge.schemas.transcript import Transcript, TranscriptSegment
from clipforge.services.storage import LocalStorage
from clipforge.services.video_source import VideoSourceResolver
from clipforge.workers.container import Dependencies
from clipforge.workers.pipeline import JobPipeline


def make_transcript(*segments, language="es") -> Transcript:
    return Transcript(
        language=language,
        segments=[TranscriptSegment(start=s, end=e, text=t) for s, e, t in segments],
    )


class FakeQueue:
    def __init__(self):
        self.jobs = []
        self.rerenders = []
        self.closed = False

    def enqueue_job(self, job_id):
        self.jobs.append(job_id)

    def enqueue_clip_rerender(self, **payload):
        self.rerenders.append(payload)

    def close(self):
        self.closed = True


class FakeTranscriber:
    def __init__(self, transcript: Transcript):
        self.transcript = transcript
        self.calls = []

    def transcribe(self, input_path, language, job_id):
        self.calls.append(("local", input_path, language))
        return self.transcript

    def transcribe_stream(self, url, language, job_id, start=None, end=None):
        self.calls.append(("stream", url, language, start, end))
        return self.transcript


class FakeDetector:
    def __init__(self, segments=None):
        self.segments = list(segments or [])
        self.calls = []

    def detect(self, input_path, transcript, clip_count, duration_preset):
        self.calls.append(("local", input_path, clip_count, duration_preset))
        return list(self.segments)

    def detect_stream(self, url, transcript, clip_count, duration_preset):
        self.calls.append(("stream", url, clip_count, duration_preset))
        return list(self.segments)


class FakeRenderer:
    """Writes a placeholder mp4; fails on the call numbers listed in fail_on (1-based)."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = []

    def render(self, input_path, output_path, start, end, burn_subtitles=False, subtitles_path=None, smart_crop=True):
        self.calls.append({
            "input_path": input_path,
            "output_path": output_path,
            "start": start,
            "end": end,
            "burn_subtitles": burn_subtitles,
            "subtitles_path": subtitles_path,
            "smart_crop": smart_crop,
            "input_existed": os.path.exists(input_path),
        })
        if len(self.calls) in self.fail_on:
            raise ProviderError("ffmpeg exited with code 1", "[ffmpeg] Invalid data found")
        with open(output_path, "wb") as f:
            f.write(b"mp4")


class FakeClipper:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def clip(self, url, start, end, output_path, max_height=720, timeout_ms=300_000, prefer_copy=True):
        self.calls.append((url, start, end, output_path, max_height, prefer_copy))
        if self.fail:
            raise ProviderError("yt-dlp | ffmpeg exited with code 1")
        with open(output_path, "wb") as f:
            f.write(b"partial")


class FakeLease:
    def __init__(self, busy=False):
        self.busy = busy
        self.held = []

    @contextmanager
    def hold(self, job_id):
        if self.busy:
            raise JobBusyError(job_id)
        self.held.append(job_id)
        yield


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite:///:memory:",
        storage_path=str(tmp_path / "storage"),
        logs_path=str(tmp_path / "logs"),
        allow_youtube_streaming=False,
    )


@pytest.fixture
def store():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    return JobStore(create_session_factory(engine))


@pytest.fixture
def storage(settings):
    return LocalStorage(settings.storage_path)


@pytest.fixture
def upload(storage):
    """An uploaded source file; returns its upload id."""
    os.makedirs(storage.uploads_dir, exist_ok=True)
    with open(storage.upload_path("talk.mp4"), "wb") as f:
        f.write(b"source")
    return "talk.mp4"


@pytest.fixture
def make_pipeline(settings, store, storage):
    """Build a JobPipeline; override any collaborator by keyword."""

    def _make(**overrides):
        transcript = overrides.pop("transcript", None) or make_transcript(
            (0, 5, "hola clipforge"), (5, 12, "momento clave")
        )
        fake_transcriber = FakeTranscriber(transcript)
        fake_detector = FakeDetector(overrides.pop("segments", []))
        parts = dict(
            settings=settings,
            store=store,
            queue=FakeQueue(),
            source=VideoSourceResolver(storage.uploads_dir, metadata_fetcher=lambda url: None),
            transcriber=fake_transcriber,
            stream_transcriber=fake_transcriber,
            detector=fake_detector,
            stream_detector=fake_detector,
            renderer=FakeRenderer(),
            clipper=FakeClipper(),
            storage=storage,
            logger=JobLogger(settings.logs_path),
            lease=None,
        )
        parts.update(overrides)
        return JobPipeline(Dependencies(**parts))

    return _make
