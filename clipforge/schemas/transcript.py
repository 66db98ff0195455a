from typing import List

from pydantic import BaseModel


class TranscriptSegment(BaseModel):
    start: float
    end: float
    text: str


class Transcript(BaseModel):
    language: str
    segments: List[TranscriptSegment] = []

    @property
    def duration(self) -> float:
        """Latest segment end (0 for an empty transcript)."""
        if not self.segments:
            return 0.0
        return max(s.end for s in self.segments)

    def shifted(self, offset: float) -> "Transcript":
        if not offset:
            return self
        return Transcript(
            language=self.language,
            segments=[
                TranscriptSegment(start=s.start + offset, end=s.end + offset, text=s.text)
                for s in self.segments
            ],
        )
