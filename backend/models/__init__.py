from .reel import (
    METADATA_FIELDS,
    Reel,
    ReelMetadata,
    ReelStatus,
    ReelVersion,
    SkillLevel,
    Visibility,
    parse_tags,
)
from .reprocess import JobStatus, ReprocessJob, ReprocessStartResponse
from .transcript import Transcript, TranscriptSegment

__all__ = [
    "Reel",
    "ReelMetadata",
    "ReelVersion",
    "ReelStatus",
    "SkillLevel",
    "Visibility",
    "METADATA_FIELDS",
    "parse_tags",
    "Transcript",
    "TranscriptSegment",
    "JobStatus",
    "ReprocessJob",
    "ReprocessStartResponse",
]
