"""One editor's session on one reel: metadata, transcript and reprocessing."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from enum import StrEnum
from typing import Any, Protocol

from models import (
    JobStatus,
    Reel,
    ReelMetadata,
    ReelVersion,
    ReprocessJob,
    Transcript,
    TranscriptSegment,
)
from services.config import EngineSettings
from services.errors import CommitInProgressError, ConflictError
from services.reprocess_tracker import DEFAULT_POLL_INTERVAL_SECONDS, ReprocessJobTracker
from services.transcript_sync import TimeField, TranscriptSyncEngine
from services.version_store import VersionStore

logger = logging.getLogger(__name__)


class SessionView(StrEnum):
    REEL = "reel"
    VERSIONS = "versions"
    TRANSCRIPT = "transcript"


class ReelApi(Protocol):
    async def get_reel(self, reel_id: str) -> Reel: ...

    async def update_reel_metadata(
        self,
        reel_id: str,
        patch: ReelMetadata | Mapping[str, Any],
        *,
        changes_description: str | None = None,
        expected_version: int | None = None,
    ) -> Reel: ...

    async def get_reel_versions(self, reel_id: str) -> list[ReelVersion]: ...

    async def rollback_to_version(self, reel_id: str, version_id: str) -> Reel: ...

    async def start_reprocessing(self, reel_id: str) -> str: ...

    async def get_reprocess_status(self, reel_id: str, job_id: str) -> ReprocessJob: ...

    async def get_transcript(self, reel_id: str) -> Transcript: ...

    async def update_transcript(
        self, reel_id: str, segments: Sequence[TranscriptSegment], change_note: str | None = None
    ) -> Transcript: ...


class EditSessionController:
    """
    Composes the version history, transcript working copy and reprocess
    tracker for a single reel.

    Commits are serialized per concern: while a metadata commit (or rollback)
    is pending another one fails fast with CommitInProgressError, and the same
    holds for transcript commits. The session caches the reel, its version
    list and its transcript; successful writes invalidate the affected views
    so the next read goes back to the server.
    """

    def __init__(
        self,
        reel_id: str,
        client: ReelApi,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        on_reprocess_finished: Callable[[ReprocessJob], None] | None = None,
    ) -> None:
        self._reel_id = reel_id
        self._client = client
        self._reel: Reel | None = None
        self._versions: list[ReelVersion] | None = None
        self._transcript: Transcript | None = None
        self._history: VersionStore | None = None
        self._pending: set[str] = set()
        self._on_reprocess_finished = on_reprocess_finished
        self._transcript_engine = TranscriptSyncEngine(save=self._save_transcript)
        self._tracker = ReprocessJobTracker(
            client,
            poll_interval=poll_interval,
            on_terminal=self._on_reprocess_terminal,
        )

    @classmethod
    def from_settings(
        cls,
        reel_id: str,
        client: ReelApi,
        settings: EngineSettings,
        *,
        on_reprocess_finished: Callable[[ReprocessJob], None] | None = None,
    ) -> EditSessionController:
        return cls(
            reel_id,
            client,
            poll_interval=settings.poll_interval_seconds,
            on_reprocess_finished=on_reprocess_finished,
        )

    @property
    def reel_id(self) -> str:
        return self._reel_id

    @property
    def transcript_engine(self) -> TranscriptSyncEngine:
        return self._transcript_engine

    @property
    def tracker(self) -> ReprocessJobTracker:
        return self._tracker

    async def __aenter__(self) -> EditSessionController:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def open(self) -> None:
        await self.get_reel()
        await self.list_versions()
        await self.get_transcript()
        logger.info("[edit_session] Opened session for reel %s", self._reel_id)

    def close(self) -> None:
        self._tracker.cancel()
        logger.info("[edit_session] Closed session for reel %s", self._reel_id)

    # --- cached views -------------------------------------------------------

    def invalidate(self, *views: SessionView) -> None:
        """Drop cached views so the next read re-fetches them. No args drops all."""
        for view in views or tuple(SessionView):
            if view is SessionView.REEL:
                self._reel = None
                self._history = None
            elif view is SessionView.VERSIONS:
                self._versions = None
                self._history = None
            elif view is SessionView.TRANSCRIPT:
                self._transcript = None

    async def get_reel(self) -> Reel:
        if self._reel is None:
            self._reel = await self._client.get_reel(self._reel_id)
        return self._reel

    async def list_versions(self) -> list[ReelVersion]:
        if self._versions is None:
            self._versions = await self._client.get_reel_versions(self._reel_id)
        return list(self._versions)

    async def get_transcript(self) -> Transcript:
        """
        The saved transcript. A fresh copy replaces the working copy only
        when there are no unsaved edits.
        """
        if self._transcript is None:
            self._transcript = await self._client.get_transcript(self._reel_id)
            if not self._transcript_engine.is_dirty():
                self._transcript_engine.load(self._transcript)
        return self._transcript

    async def _version_store(self) -> VersionStore:
        if self._history is None:
            reel = await self.get_reel()
            versions = await self.list_versions()
            self._history = VersionStore(reel, versions)
        return self._history

    @contextmanager
    def _commit_slot(self, concern: str) -> Iterator[None]:
        if concern in self._pending:
            raise CommitInProgressError(concern)
        self._pending.add(concern)
        try:
            yield
        finally:
            self._pending.discard(concern)

    # --- metadata -----------------------------------------------------------

    async def commit_metadata(
        self,
        patch: ReelMetadata | Mapping[str, Any],
        change_note: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> Reel:
        """
        Save a metadata patch as a new version.

        ``expected_version`` is the version the editor's form was based on;
        it defaults to the cached reel's version. Field and staleness checks
        run before the request is sent.
        """
        with self._commit_slot("metadata"):
            patch = ReelMetadata.parse(patch)
            history = await self._version_store()
            current = history.reel
            if expected_version is not None and expected_version != current.current_version:
                current = current.model_copy(update={"current_version": expected_version})
            parsed = history.validate_commit(current, patch)
            try:
                reel = await self._client.update_reel_metadata(
                    self._reel_id,
                    parsed,
                    changes_description=change_note,
                    expected_version=current.current_version,
                )
            except ConflictError:
                self.invalidate(SessionView.REEL, SessionView.VERSIONS)
                raise
            self.invalidate(SessionView.REEL, SessionView.VERSIONS)
            logger.info("[edit_session] Reel %s metadata saved as version %d", reel.id, reel.current_version)
            return reel

    async def rollback(self, version_id: str) -> Reel:
        with self._commit_slot("metadata"):
            history = await self._version_store()
            target = history.validate_rollback(version_id)
            reel = await self._client.rollback_to_version(self._reel_id, version_id)
            self.invalidate(SessionView.REEL, SessionView.VERSIONS)
            logger.info(
                "[edit_session] Reel %s rolled back to version %d (now version %d)",
                reel.id,
                target.version,
                reel.current_version,
            )
            return reel

    # --- transcript ---------------------------------------------------------

    def edit_segment_text(self, segment_id: str, text: str) -> TranscriptSegment:
        return self._transcript_engine.edit_segment_text(segment_id, text)

    def adjust_time(self, segment_id: str, field: TimeField, delta_seconds: float) -> TranscriptSegment:
        return self._transcript_engine.adjust_time(segment_id, field, delta_seconds)

    def active_segment(self, playback_time: float) -> TranscriptSegment | None:
        return self._transcript_engine.active_segment(playback_time)

    def seek_target(self, segment_id: str) -> float:
        return self._transcript_engine.seek_target(segment_id)

    def has_unsaved_transcript_edits(self) -> bool:
        return self._transcript_engine.is_dirty()

    def discard_transcript_edits(self) -> None:
        self._transcript_engine.reset()

    async def commit_transcript(self, change_note: str | None = None) -> Transcript:
        with self._commit_slot("transcript"):
            saved = await self._transcript_engine.commit(change_note)
            self.invalidate(SessionView.TRANSCRIPT)
            return saved

    async def _save_transcript(
        self, segments: list[TranscriptSegment], change_note: str | None
    ) -> Transcript:
        return await self._client.update_transcript(self._reel_id, segments, change_note)

    # --- reprocessing -------------------------------------------------------

    @property
    def reprocess_status(self) -> ReprocessJob | None:
        return self._tracker.last_status

    async def start_reprocessing(self) -> str:
        return await self._tracker.start(self._reel_id)

    def cancel_reprocessing(self) -> None:
        self._tracker.cancel()

    def _on_reprocess_terminal(self, job: ReprocessJob) -> None:
        if job.status is JobStatus.COMPLETED:
            # Video attributes (duration, thumbnail) may have changed.
            self.invalidate(SessionView.REEL)
        logger.info("[edit_session] Reprocess job %s for reel %s ended: %s", job.job_id, self._reel_id, job.status)
        if self._on_reprocess_finished is not None:
            self._on_reprocess_finished(job)
