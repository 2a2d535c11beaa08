"""In-memory reel store for the reference API. Keyed by reel ID."""

from __future__ import annotations

import logging
import secrets

from models import JobStatus, Reel, ReprocessJob, SkillLevel, Transcript, TranscriptSegment
from models.reel import utcnow
from services.version_store import VersionStore

logger = logging.getLogger(__name__)

PROGRESS_STEP = 25

histories: dict[str, VersionStore] = {}
transcripts: dict[str, Transcript] = {}
jobs: dict[str, ReprocessJob] = {}
job_reels: dict[str, str] = {}


def clear() -> None:
    histories.clear()
    transcripts.clear()
    jobs.clear()
    job_reels.clear()


def add_reel(reel: Reel, transcript: Transcript | None = None) -> VersionStore:
    history = VersionStore.create(reel, author=reel.uploader_id, author_name=reel.uploader_name)
    histories[reel.id] = history
    if transcript is not None:
        transcripts[reel.id] = transcript
    return history


def create_job(reel_id: str) -> ReprocessJob:
    job_id = secrets.token_urlsafe(8)
    job = ReprocessJob(job_id=job_id, status=JobStatus.QUEUED, message="Waiting for a worker")
    jobs[job_id] = job
    job_reels[job_id] = reel_id
    logger.info("[store] Reprocess job %s queued for reel %s", job_id, reel_id)
    return job


def advance_job(job_id: str) -> ReprocessJob:
    """
    Move a simulated job one step forward: queued -> processing, then
    PROGRESS_STEP percent per call until completed. Terminal jobs are
    returned unchanged.
    """
    job = jobs[job_id]
    if job.status.is_terminal:
        return job
    now = utcnow()
    if job.status is JobStatus.QUEUED:
        job = job.model_copy(
            update={"status": JobStatus.PROCESSING, "progress": 0, "message": "Transcoding", "started_at": now}
        )
    else:
        progress = min(100, (job.progress or 0) + PROGRESS_STEP)
        job = job.model_copy(update={"progress": progress})
        if progress == 100:
            job = job.model_copy(
                update={"status": JobStatus.COMPLETED, "message": "Reprocessing complete", "completed_at": now}
            )
            history = histories.get(job_reels[job_id])
            if history is not None:
                history.update_media(thumbnail_url=f"/media/{history.reel.id}/thumbnail-{job_id}.jpg")
    jobs[job_id] = job
    return job


def seed_demo() -> Reel:
    """A small reel with a transcript, for local development."""
    reel = Reel(
        id="demo-reel",
        title="Changing an end mill on the CNC mill",
        description="Safe tool change procedure for the 3-axis mill.",
        tags=["CNC", "Safety", "Setup"],
        category="Setup",
        machine="CNC Mill",
        tooling="End Mill",
        process_step="Tool Change",
        skill_level=SkillLevel.BEGINNER,
        duration="0:15",
        uploader_id="demo-user",
        uploader_name="Demo User",
    )
    transcript = Transcript(
        id="demo-transcript",
        reel_id=reel.id,
        segments=[
            TranscriptSegment(id="s1", start_time=0.0, end_time=5.0, text="Power down the spindle first.", confidence=0.97),
            TranscriptSegment(id="s2", start_time=5.0, end_time=10.0, text="Release the drawbar and remove the holder.", confidence=0.92),
            TranscriptSegment(id="s3", start_time=10.0, end_time=15.0, text="Seat the new end mill and torque the collet.", confidence=0.88),
        ],
        updated_by=reel.uploader_id,
    )
    add_reel(reel, transcript)
    return reel
