from pydantic import BaseModel


class ClipOut(BaseModel):
    id: str
    job_id: str
    start: float
    end: float
    score: float
    reason: str
    status: str
    video_path: str | None = None
    srt_path: str | None = None
    vtt_path: str | None = None

    class Config:
        from_attributes = True
