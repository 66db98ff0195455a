from enum import Enum

class SourceType(str, Enum):
    UPLOAD = "upload"
    YOUTUBE = "youtube"

class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"

    # Terminal states
    READY = "ready"
    ERROR = "error"

class JobStage(str, Enum):
    # Initial state
    QUEUED = "queued"

    # Pipeline stages (ordered)
    DOWNLOAD = "download"
    TRANSCRIBE = "transcribe"
    HIGHLIGHTS = "highlights"
    RENDER = "render"

    # Terminal states
    READY = "ready"
    ERROR = "error"

class ClipStatus(str, Enum):
    PENDING = "pending"
    RENDERING = "rendering"
    READY = "ready"
    ERROR = "error"

class DurationPreset(str, Enum):
    SHORT = "short"
    NORMAL = "normal"
    LONG = "long"

class SubtitleMode(str, Enum):
    OFF = "off"
    SRT = "srt"
    BURNED = "burned"


# Canonical progress checkpoints per stage
STAGE_PROGRESS = {
    JobStage.QUEUED: 0,
    JobStage.DOWNLOAD: 5,
    JobStage.TRANSCRIBE: 20,
    JobStage.HIGHLIGHTS: 40,
    JobStage.RENDER: 70,
    JobStage.READY: 100,
    JobStage.ERROR: 0,
}
