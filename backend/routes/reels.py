"""Reel REST API backed by the in-memory store. Mounted under /api."""

import logging

from fastapi import APIRouter, HTTPException

from models import (
    Reel,
    ReelMetadata,
    ReelVersion,
    ReprocessJob,
    ReprocessStartResponse,
    Transcript,
    TranscriptSegment,
)
from models.reel import CamelModel, utcnow
from services import store
from services.errors import (
    ConflictError,
    NotFoundError,
    ReelEngineError,
    RollbackDeniedError,
    ValidationError,
)
from services.transcript_sync import validate_segments
from services.version_store import VersionStore

router = APIRouter(prefix="/reels", tags=["reels"])
logger = logging.getLogger(__name__)

API_AUTHOR = "api"


class UpdateReelRequest(ReelMetadata):
    changes_description: str | None = None
    expected_version: int | None = None


class UpdateTranscriptRequest(CamelModel):
    segments: list[TranscriptSegment]
    change_note: str | None = None


def _http_error(exc: ReelEngineError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, RollbackDeniedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValidationError):
        detail = [
            {"loc": ["body", err["field"]], "msg": err["message"], "type": "value_error"}
            for err in exc.errors
        ]
        return HTTPException(status_code=422, detail=detail or str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _history(reel_id: str) -> VersionStore:
    history = store.histories.get(reel_id)
    if history is None:
        raise HTTPException(status_code=404, detail="Reel not found")
    return history


@router.get("/{reel_id}", response_model=Reel)
def get_reel(reel_id: str) -> Reel:
    return _history(reel_id).reel


@router.patch("/{reel_id}", response_model=Reel)
def update_reel_metadata(reel_id: str, body: UpdateReelRequest) -> Reel:
    """Apply a metadata patch; every successful patch creates a new version."""
    history = _history(reel_id)
    patch = ReelMetadata.model_validate(
        body.model_dump(exclude_unset=True, exclude={"changes_description", "expected_version"})
    )
    current = history.reel
    if body.expected_version is not None:
        current = current.model_copy(update={"current_version": body.expected_version})
    try:
        reel, version = history.commit_metadata(
            current, patch, body.changes_description, author=API_AUTHOR
        )
    except ReelEngineError as exc:
        raise _http_error(exc) from exc
    logger.info("[reels] PATCH /reels/%s -> version %d", reel_id, version.version)
    return reel


@router.get("/{reel_id}/versions", response_model=list[ReelVersion])
def get_reel_versions(reel_id: str) -> list[ReelVersion]:
    """Versions ascending. The current version is never offered for rollback."""
    history = _history(reel_id)
    return [
        v.model_copy(update={"can_rollback": False}) if v.version == history.current_version else v
        for v in history.list_versions()
    ]


@router.post("/{reel_id}/versions/{version_id}/rollback", response_model=Reel)
def rollback_to_version(reel_id: str, version_id: str) -> Reel:
    history = _history(reel_id)
    try:
        reel, version = history.rollback(version_id, author=API_AUTHOR)
    except ReelEngineError as exc:
        raise _http_error(exc) from exc
    logger.info("[reels] Rollback /reels/%s to %s -> version %d", reel_id, version_id, version.version)
    return reel


@router.post("/{reel_id}/reprocess", response_model=ReprocessStartResponse)
def start_reprocessing(reel_id: str) -> ReprocessStartResponse:
    _history(reel_id)
    job = store.create_job(reel_id)
    return ReprocessStartResponse(job_id=job.job_id)


@router.get("/{reel_id}/reprocess/{job_id}", response_model=ReprocessJob)
def get_reprocess_status(reel_id: str, job_id: str) -> ReprocessJob:
    if store.job_reels.get(job_id) != reel_id:
        raise HTTPException(status_code=404, detail="Reprocess job not found")
    return store.advance_job(job_id)


@router.get("/{reel_id}/transcript", response_model=Transcript)
def get_transcript(reel_id: str) -> Transcript:
    transcript = store.transcripts.get(reel_id)
    if transcript is None:
        raise HTTPException(status_code=404, detail="Transcript not found")
    return transcript


@router.put("/{reel_id}/transcript", response_model=Transcript)
def update_transcript(reel_id: str, body: UpdateTranscriptRequest) -> Transcript:
    """Replace all segments. Segments must form a sorted, non-overlapping timeline."""
    transcript = store.transcripts.get(reel_id)
    if transcript is None:
        raise HTTPException(status_code=404, detail="Transcript not found")
    try:
        validate_segments(body.segments)
    except ValidationError as exc:
        raise _http_error(exc) from exc
    updated = transcript.model_copy(
        update={
            "segments": list(body.segments),
            "version": transcript.version + 1,
            "updated_at": utcnow(),
            "updated_by": API_AUTHOR,
        }
    )
    store.transcripts[reel_id] = updated
    logger.info(
        "[reels] PUT /reels/%s/transcript -> version %d (%s)",
        reel_id,
        updated.version,
        body.change_note or "no change note",
    )
    return updated
