from typing import Optional

from pydantic import BaseModel

from clipforge.core.enums import SourceType


class VideoSource(BaseModel):
    type: SourceType
    url: Optional[str] = None
    file_path: Optional[str] = None
    title: Optional[str] = None
    provider: Optional[str] = None
    duration_sec: Optional[float] = None

    def metadata(self) -> dict:
        return {"title": self.title, "provider": self.provider, "url": self.url}
