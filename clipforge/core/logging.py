"""
Logging - stdout records tagged with the job/clip being worked on, plus a
per-job activity file.
"""
import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

job_id_var: ContextVar[Optional[str]] = ContextVar("clipforge_job_id", default=None)
clip_id_var: ContextVar[Optional[str]] = ContextVar("clipforge_clip_id", default=None)

PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(process)d:%(threadName)s | %(name)s | %(message)s"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "pid": record.process,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        for key, var in (("job_id", job_id_var), ("clip_id", clip_id_var)):
            value = var.get()
            if value:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: str = "INFO", structured: bool = True) -> None:
    """
    Replace the root handlers with a single stdout handler.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        structured: JSON lines when True, pipe-separated text otherwise
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(PLAIN_FORMAT))
    root.addHandler(handler)


class JobContext:
    """
    Tags every record emitted inside the block with job_id (and clip_id).

        with JobContext(job_id=job.id, clip_id=clip.id):
            logger.info("Rendering")
    """

    def __init__(self, job_id: Optional[str] = None, clip_id: Optional[str] = None):
        self.job_id = job_id
        self.clip_id = clip_id
        self._tokens = []

    def __enter__(self):
        if self.job_id:
            self._tokens.append((job_id_var, job_id_var.set(self.job_id)))
        if self.clip_id:
            self._tokens.append((clip_id_var, clip_id_var.set(self.clip_id)))
        return self

    def __exit__(self, *exc):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


class JobLogger:
    """
    Per-job activity log.

    Every entry goes to the process logger and is appended to
    `<logs_dir>/<job_id>.log` so a job's history can be read back on its own.
    """
    _LEVELS = {
        "INFO": logging.INFO,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
    }

    def __init__(self, logs_dir: str):
        self.logs_dir = logs_dir
        self._logger = logging.getLogger("clipforge.jobs")

    def info(self, job_id: str, message: str) -> None:
        self._append(job_id, "INFO", message)

    def warn(self, job_id: str, message: str) -> None:
        self._append(job_id, "WARN", message)

    def error(self, job_id: str, message: str) -> None:
        self._append(job_id, "ERROR", message)

    def log_path(self, job_id: str) -> str:
        return os.path.join(self.logs_dir, f"{job_id}.log")

    def read(self, job_id: str) -> str:
        path = self.log_path(job_id)
        if not os.path.exists(path):
            return ""
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def _append(self, job_id: str, level: str, message: str) -> None:
        with JobContext(job_id=job_id):
            self._logger.log(self._LEVELS[level], f"[{job_id}] {message}")

        line = f"[{datetime.now(timezone.utc).isoformat()}] {level} {message}\n"
        os.makedirs(self.logs_dir, exist_ok=True)
        with open(self.log_path(job_id), "a", encoding="utf-8") as f:
            f.write(line)
