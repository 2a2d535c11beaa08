from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from .reel import CamelModel


class JobStatus(StrEnum):
    IDLE = "idle"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.QUEUED, JobStatus.PROCESSING)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ReprocessJob(CamelModel):
    """Status record of a server-side reprocessing job, as observed by polling."""

    job_id: str | None = None
    status: JobStatus = JobStatus.IDLE
    progress: int | None = Field(default=None, ge=0, le=100)
    message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ReprocessStartResponse(CamelModel):
    job_id: str
