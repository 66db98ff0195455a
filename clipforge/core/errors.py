"""
Error taxonomy for the clip pipeline.

InputUnavailableError is terminal and user-facing. ProviderError and
ProcessTimeoutError come from external processes (ffmpeg, yt-dlp, whisper)
and carry a diagnostic tail that is logged but never stored on the job.
"""
from typing import Optional


class ClipforgeError(Exception):
    """Base class for pipeline errors."""


class InputUnavailableError(ClipforgeError):
    """Missing upload, disabled YouTube access or no usable input."""


class ProviderError(ClipforgeError):
    def __init__(self, message: str, tail: str = ""):
        super().__init__(message)
        self.tail = tail

    def describe(self) -> str:
        if not self.tail:
            return str(self)
        return f"{self}\n{self.tail}"


class ProcessTimeoutError(ProviderError):
    def __init__(self, name: str, timeout_ms: int, tail: str = ""):
        super().__init__(f"{name} timed out after {timeout_ms}ms", tail)
        self.name = name
        self.timeout_ms = timeout_ms


class ClipRenderError(ClipforgeError):
    def __init__(self, clip_id: str, cause: Optional[BaseException] = None):
        message = f"Clip {clip_id} failed to render"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.clip_id = clip_id
        self.cause = cause


class JobBusyError(ClipforgeError):
    """Another worker holds the run lease for this job."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} is already being processed.")
        self.job_id = job_id
