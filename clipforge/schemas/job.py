from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from clipforge.core.enums import DurationPreset, SubtitleMode


class JobOptions(BaseModel):
    """
    Per-job processing options. Every field has its own default so a stored
    partial dict (or an empty one) always resolves to a complete set.
    """
    language: str = Field(default="es", min_length=2)
    clip_count: int = Field(default=5, ge=1, le=10)
    duration_preset: DurationPreset = DurationPreset.NORMAL
    subtitles: SubtitleMode = SubtitleMode.SRT
    smart_crop: bool = True

    @classmethod
    def from_stored(cls, data: Optional[Dict[str, Any]]) -> "JobOptions":
        return cls(**(data or {}))

    def merged(self, **overrides: Any) -> "JobOptions":
        """Copy with only the non-None overrides applied (validated)."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        return JobOptions(**{**self.model_dump(), **updates})

    def to_stored(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class JobOut(BaseModel):
    id: str
    source_type: str
    source_url: str | None = None
    upload_id: str | None = None
    status: str
    stage: str
    progress: int
    error: str | None = None
    options: Dict[str, Any]
    metadata_json: Dict[str, Any] | None = None

    class Config:
        from_attributes = True
