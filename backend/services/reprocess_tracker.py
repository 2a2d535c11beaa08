"""Polling state machine that follows a server-side reprocessing job."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from models.reprocess import JobStatus, ReprocessJob
from services.errors import AlreadyRunningError, JobFailedError, NotFoundError, ReelEngineError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0

_ALLOWED_TRANSITIONS = {
    (JobStatus.IDLE, JobStatus.QUEUED),
    (JobStatus.QUEUED, JobStatus.PROCESSING),
    (JobStatus.PROCESSING, JobStatus.COMPLETED),
    (JobStatus.PROCESSING, JobStatus.FAILED),
}


class ReprocessClient(Protocol):
    async def start_reprocessing(self, reel_id: str) -> str: ...

    async def get_reprocess_status(self, reel_id: str, job_id: str) -> ReprocessJob: ...


class ReprocessJobTracker:
    """
    Track one reprocessing job at a time: idle -> queued -> processing ->
    completed | failed.

    Status is polled every ``poll_interval`` seconds from a single task owned
    by the tracker. When the job reaches a terminal state polling stops and
    ``on_terminal`` is called exactly once for that job. Poll errors other
    than NotFoundError never end the job; the most recent one is kept in
    ``last_error``.

    ``cancel()`` only stops observing. The remote job is not aborted.
    """

    def __init__(
        self,
        client: ReprocessClient,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        on_terminal: Callable[[ReprocessJob], None] | None = None,
    ) -> None:
        self._client = client
        self._poll_interval = poll_interval
        self._on_terminal = on_terminal
        self._state = JobStatus.IDLE
        self._reel_id: str | None = None
        self._job_id: str | None = None
        self._last_status: ReprocessJob | None = None
        self._last_error: Exception | None = None
        self._transitions: list[tuple[JobStatus, JobStatus]] = []
        self._task: asyncio.Task[None] | None = None
        self._generation = 0
        self._starting = False
        self._terminal_fired = False

    @property
    def state(self) -> JobStatus:
        return self._state

    @property
    def job_id(self) -> str | None:
        return self._job_id

    @property
    def last_status(self) -> ReprocessJob | None:
        return self._last_status

    @property
    def last_error(self) -> Exception | None:
        """Most recent transient error seen while polling, if any."""
        return self._last_error

    @property
    def transitions(self) -> list[tuple[JobStatus, JobStatus]]:
        """State edges taken by the current job."""
        return list(self._transitions)

    @property
    def is_running(self) -> bool:
        return self._starting or self._state.is_active

    async def start(self, reel_id: str) -> str:
        if self.is_running:
            raise AlreadyRunningError(
                f"Reprocessing of reel {self._reel_id or reel_id} is already running (job={self._job_id})"
            )
        self._starting = True
        generation = self._generation
        try:
            job_id = await self._client.start_reprocessing(reel_id)
        finally:
            self._starting = False

        if generation != self._generation:
            # cancel() was called while the start request was in flight.
            logger.info("[reprocess] Job %s started after cancel; not observing it", job_id)
            return job_id

        self._generation += 1
        self._state = JobStatus.IDLE
        self._transitions = []
        self._terminal_fired = False
        self._reel_id = reel_id
        self._job_id = job_id
        self._last_error = None
        self._last_status = ReprocessJob(job_id=job_id, status=JobStatus.QUEUED)
        self._transition(JobStatus.QUEUED)
        self._task = asyncio.create_task(
            self._poll(self._generation, reel_id, job_id), name=f"reprocess-poll-{job_id}"
        )
        return job_id

    def cancel(self) -> None:
        """Stop polling now. Safe to call any number of times."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if self._state.is_active:
            logger.info("[reprocess] Stopped observing job %s (state=%s)", self._job_id, self._state)
            self._state = JobStatus.IDLE

    async def wait(self) -> ReprocessJob | None:
        """
        Wait for the current job to finish.

        Returns the final status on completion, raises JobFailedError if the
        job failed, and returns None if observation was cancelled.
        """
        task = self._task
        generation = self._generation
        if task is not None:
            await asyncio.wait({task})
            if generation != self._generation:
                return None
        if self._state is JobStatus.COMPLETED:
            return self._last_status
        if self._state is JobStatus.FAILED:
            message = (self._last_status and self._last_status.message) or "Reprocessing failed"
            raise JobFailedError(message, job_id=self._job_id)
        return None

    async def _poll(self, generation: int, reel_id: str, job_id: str) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            if generation != self._generation:
                return
            try:
                job = await self._client.get_reprocess_status(reel_id, job_id)
            except NotFoundError as exc:
                job = ReprocessJob(job_id=job_id, status=JobStatus.FAILED, message=str(exc))
            except ReelEngineError as exc:
                # Anything short of "job unknown" is retried on the next tick.
                if generation != self._generation:
                    return
                self._last_error = exc
                logger.warning("[reprocess] Status poll for job %s failed, retrying: %s", job_id, exc)
                continue

            if generation != self._generation:
                logger.info("[reprocess] Discarding status for cancelled job %s", job_id)
                return
            self._observe(job)
            if self._state.is_terminal:
                self._fire_terminal()
                return

    def _observe(self, job: ReprocessJob) -> None:
        if job.job_id is None:
            job = job.model_copy(update={"job_id": self._job_id})
        self._last_status = job
        target = job.status
        if target is JobStatus.PROCESSING and self._state is JobStatus.QUEUED:
            self._transition(JobStatus.PROCESSING)
        elif target.is_terminal:
            if self._state is JobStatus.QUEUED:
                self._transition(JobStatus.PROCESSING)
            self._transition(target)

    def _transition(self, new_state: JobStatus) -> None:
        edge = (self._state, new_state)
        if edge not in _ALLOWED_TRANSITIONS:
            raise RuntimeError(f"Illegal reprocess transition {edge[0]} -> {edge[1]}")
        self._transitions.append(edge)
        self._state = new_state
        logger.info("[reprocess] job=%s %s -> %s", self._job_id, edge[0], new_state)

    def _fire_terminal(self) -> None:
        if self._terminal_fired or self._last_status is None:
            return
        self._terminal_fired = True
        if self._on_terminal is None:
            return
        try:
            self._on_terminal(self._last_status)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "[reprocess] on_terminal callback failed for job %s: %s",
                self._job_id,
                exc,
                exc_info=True,
            )
