"""Transcript working copy: edits, dirty tracking and playback sync."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Literal

from models.transcript import Transcript, TranscriptSegment
from services.errors import NotFoundError, ValidationError
from services.time_index import locate

logger = logging.getLogger(__name__)

TranscriptSaver = Callable[[list[TranscriptSegment], str | None], Awaitable[Transcript]]
TimeField = Literal["start", "end"]

# Nudged times are rounded to this many places to drop float noise.
_TIME_PRECISION = 9


def validate_segments(segments: Sequence[TranscriptSegment]) -> None:
    """
    Check that every segment has ``start < end`` and that segments are sorted
    and do not overlap. Touching boundaries (end == next start) are allowed.
    """
    errors: list[dict[str, str]] = []
    previous: TranscriptSegment | None = None
    for segment in segments:
        if segment.start_time >= segment.end_time:
            errors.append(
                {"field": segment.id, "message": "start time must be before end time"}
            )
        if previous is not None and segment.start_time < previous.end_time:
            errors.append(
                {"field": segment.id, "message": f"overlaps or precedes segment {previous.id}"}
            )
        previous = segment
    if errors:
        raise ValidationError("Transcript segments are not a valid timeline", errors=errors)


class TranscriptSyncEngine:
    """
    Owns the editable working copy of one transcript.

    ``load()`` sets the clean baseline. Edits produce new segment values in
    the working copy; ``is_dirty()`` compares by value against the baseline,
    so an edit that is later undone by hand leaves the engine clean.
    """

    def __init__(self, save: TranscriptSaver | None = None) -> None:
        self._save = save
        self._baseline: Transcript | None = None
        self._working: list[TranscriptSegment] = []

    @property
    def baseline(self) -> Transcript | None:
        return self._baseline

    @property
    def segments(self) -> list[TranscriptSegment]:
        return list(self._working)

    @property
    def version(self) -> int | None:
        return self._baseline.version if self._baseline else None

    def load(self, transcript: Transcript) -> None:
        self._baseline = transcript
        self._working = list(transcript.segments)
        logger.info(
            "[transcript_sync] Loaded transcript=%s version=%d segments=%d",
            transcript.id,
            transcript.version,
            len(self._working),
        )

    def reset(self) -> None:
        """Discard unsaved edits."""
        if self._baseline is not None:
            self._working = list(self._baseline.segments)

    def is_dirty(self) -> bool:
        if self._baseline is None:
            return False
        return self._working != self._baseline.segments

    def changed_segment_ids(self) -> list[str]:
        if self._baseline is None:
            return []
        original = {segment.id: segment for segment in self._baseline.segments}
        return [segment.id for segment in self._working if original.get(segment.id) != segment]

    def edit_segment_text(self, segment_id: str, text: str) -> TranscriptSegment:
        index, segment = self._find(segment_id)
        updated = segment.model_copy(update={"text": text})
        self._working[index] = updated
        return updated

    def adjust_time(self, segment_id: str, field: TimeField, delta_seconds: float) -> TranscriptSegment:
        """
        Nudge a segment boundary, clamped at zero.

        Ordering against the other boundary and neighbouring segments is not
        enforced here; ``commit()`` validates the whole timeline.
        """
        if field not in ("start", "end"):
            raise ValidationError(f"Unknown time field {field!r}; expected 'start' or 'end'")
        index, segment = self._find(segment_id)
        attr = "start_time" if field == "start" else "end_time"
        value = round(max(0.0, getattr(segment, attr) + delta_seconds), _TIME_PRECISION)
        updated = segment.model_copy(update={attr: value})
        self._working[index] = updated
        return updated

    def active_segment(self, playback_time: float) -> TranscriptSegment | None:
        """Segment under the playhead, resolved against the working copy."""
        index = locate([(s.start_time, s.end_time) for s in self._working], playback_time)
        return None if index is None else self._working[index]

    def seek_target(self, segment_id: str) -> float:
        """Playback position to jump to when a segment is selected."""
        _, segment = self._find(segment_id)
        return segment.start_time

    async def commit(self, change_note: str | None = None) -> Transcript:
        """
        Persist the full working copy.

        On success the saved transcript becomes the new clean baseline. On any
        failure the working copy is left exactly as it was.
        """
        if self._baseline is None:
            raise ValidationError("No transcript loaded")
        if self._save is None:
            raise RuntimeError("TranscriptSyncEngine was created without a save collaborator")
        segments = list(self._working)
        validate_segments(segments)

        saved = await self._save(segments, change_note)

        previous = self._baseline.version
        if saved.version <= previous:
            saved = saved.model_copy(update={"version": previous + 1})
        if self._working != segments:
            # Edits made while the save was in flight stay unsaved on top of the new baseline.
            self._baseline = saved
        else:
            self.load(saved)
        logger.info(
            "[transcript_sync] Committed transcript=%s version %d -> %d",
            saved.id,
            previous,
            saved.version,
        )
        return saved

    def _find(self, segment_id: str) -> tuple[int, TranscriptSegment]:
        if self._baseline is None:
            raise ValidationError("No transcript loaded")
        for index, segment in enumerate(self._working):
            if segment.id == segment_id:
                return index, segment
        raise NotFoundError(f"Segment {segment_id} not found")
