"""
Settings - Environment-driven configuration for the worker and pipeline.
"""
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = Field(default="sqlite:///./clipforge.db", alias="DATABASE_URL")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    rq_queue_name: str = Field(default="clipforge", alias="RQ_QUEUE_NAME")

    # Storage
    storage_path: str = Field(default="./storage", alias="STORAGE_PATH")
    logs_path: str = Field(default="./logs", alias="LOGS_PATH")

    # Sources
    allow_youtube_streaming: bool = Field(default=False, alias="ALLOW_YOUTUBE_STREAMING")

    # Transcription
    whisper_provider: str = Field(default="mock", alias="WHISPER_PROVIDER")
    whisper_model: str = Field(default="base", alias="WHISPER_MODEL")
    whisper_device: str = Field(default="auto", alias="WHISPER_DEVICE")

    # External process budgets
    yt_clip_timeout_ms: int = Field(default=300_000, alias="YT_CLIP_TIMEOUT_MS")
    yt_clip_max_height: int = Field(default=720, alias="YT_CLIP_MAX_HEIGHT")
    yt_clip_prefer_copy: bool = Field(default=True, alias="YT_CLIP_PREFER_COPY")
    yt_transcribe_timeout_ms: int = Field(default=600_000, alias="YT_TRANSCRIBE_TIMEOUT_MS")
    render_timeout_ms: int = Field(default=900_000, alias="RENDER_TIMEOUT_MS")
    ffmpeg_loudnorm: bool = Field(default=False, alias="FFMPEG_LOUDNORM")

    # Worker pool
    worker_count: int = Field(default=1, alias="WORKER_COUNT")
    worker_concurrency: int = Field(default=1, alias="WORKER_CONCURRENCY")
    worker_max_rss_mb: int = Field(default=0, alias="WORKER_MAX_RSS_MB")

    # Per-job run lease (Redis); off by default
    job_lease_enabled: bool = Field(default=False, alias="JOB_LEASE_ENABLED")
    job_lease_ttl_sec: int = Field(default=3600, alias="JOB_LEASE_TTL_SEC")

    # Admission control
    rate_limit_prefix: str = Field(default="clipforge:rl", alias="RATE_LIMIT_PREFIX")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_structured: bool = Field(default=False, alias="LOG_STRUCTURED")

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


def get_settings() -> Settings:
    return Settings()
