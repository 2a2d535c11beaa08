from __future__ import annotations

from datetime import datetime

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from .reel import CamelModel, utcnow


class TranscriptSegment(CamelModel):
    """A time-bounded span of spoken text. Edits produce new segment values."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    start_time: float = Field(ge=0)      # seconds
    end_time: float = Field(ge=0)        # seconds
    text: str = ""
    confidence: float | None = Field(default=None, ge=0, le=1)


class Transcript(CamelModel):
    id: str
    reel_id: str
    version: int = Field(default=1, ge=1)
    segments: list[TranscriptSegment] = Field(default_factory=list)
    language: str = "English"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    updated_by: str = ""
