from __future__ import annotations

import asyncio

import httpx
import pytest

from models import JobStatus, ReprocessJob
from services.errors import (
    AlreadyRunningError,
    ConflictError,
    JobFailedError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from services.reel_api import ReelApiClient
from services.reprocess_tracker import DEFAULT_POLL_INTERVAL_SECONDS, ReprocessJobTracker

IDLE, QUEUED, PROCESSING, COMPLETED, FAILED = (
    JobStatus.IDLE,
    JobStatus.QUEUED,
    JobStatus.PROCESSING,
    JobStatus.COMPLETED,
    JobStatus.FAILED,
)


def _job(status: JobStatus, progress: int | None = None, message: str | None = None) -> ReprocessJob:
    return ReprocessJob(status=status, progress=progress, message=message)


class _FakeReprocessClient:
    """Replays scripted status responses; the last one repeats forever."""

    def __init__(self, statuses: list[ReprocessJob | Exception]) -> None:
        self._statuses = list(statuses)
        self.start_calls: list[str] = []
        self.status_calls = 0

    async def start_reprocessing(self, reel_id: str) -> str:
        self.start_calls.append(reel_id)
        return f"job-{len(self.start_calls)}"

    async def get_reprocess_status(self, reel_id: str, job_id: str) -> ReprocessJob:
        self.status_calls += 1
        item = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        if isinstance(item, Exception):
            raise item
        return item


def _tracker(client, fired: list[ReprocessJob]) -> ReprocessJobTracker:
    return ReprocessJobTracker(client, poll_interval=0, on_terminal=fired.append)


async def _spin(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_job_runs_to_completion_and_fires_once() -> None:
    client = _FakeReprocessClient(
        [_job(QUEUED), _job(PROCESSING, 10), _job(PROCESSING, 60), _job(COMPLETED, 100)]
    )
    fired: list[ReprocessJob] = []
    tracker = _tracker(client, fired)

    job_id = await tracker.start("reel-1")
    assert job_id == "job-1"
    assert tracker.state is QUEUED

    final = await tracker.wait()

    assert final is not None and final.status is COMPLETED
    assert final.job_id == "job-1"
    assert tracker.state is COMPLETED
    assert tracker.transitions == [(IDLE, QUEUED), (QUEUED, PROCESSING), (PROCESSING, COMPLETED)]
    assert [job.status for job in fired] == [COMPLETED]
    calls = client.status_calls
    await _spin()
    assert client.status_calls == calls


@pytest.mark.asyncio
async def test_job_failure_raises_job_failed() -> None:
    client = _FakeReprocessClient([_job(PROCESSING, 40), _job(FAILED, message="codec error")])
    fired: list[ReprocessJob] = []
    tracker = _tracker(client, fired)

    await tracker.start("reel-1")
    with pytest.raises(JobFailedError) as excinfo:
        await tracker.wait()

    assert "codec error" in str(excinfo.value)
    assert excinfo.value.job_id == "job-1"
    assert tracker.transitions[-1] == (PROCESSING, FAILED)
    assert len(fired) == 1


@pytest.mark.asyncio
async def test_skipped_processing_state_is_walked_through() -> None:
    client = _FakeReprocessClient([_job(COMPLETED, 100)])
    tracker = _tracker(client, [])

    await tracker.start("reel-1")
    await tracker.wait()

    assert tracker.transitions == [(IDLE, QUEUED), (QUEUED, PROCESSING), (PROCESSING, COMPLETED)]


@pytest.mark.asyncio
async def test_status_regression_is_ignored() -> None:
    client = _FakeReprocessClient([_job(PROCESSING, 30), _job(QUEUED, message="requeued"), _job(COMPLETED)])
    tracker = _tracker(client, [])

    await tracker.start("reel-1")
    await tracker.wait()

    assert tracker.transitions == [(IDLE, QUEUED), (QUEUED, PROCESSING), (PROCESSING, COMPLETED)]


@pytest.mark.asyncio
async def test_transport_errors_do_not_end_polling() -> None:
    client = _FakeReprocessClient(
        [TransportError("connection reset"), _job(PROCESSING, 50), TransportError("timeout"), _job(COMPLETED)]
    )
    fired: list[ReprocessJob] = []
    tracker = _tracker(client, fired)

    await tracker.start("reel-1")
    final = await tracker.wait()

    assert final.status is COMPLETED
    assert isinstance(tracker.last_error, TransportError)
    assert "timeout" in str(tracker.last_error)
    assert len(fired) == 1


@pytest.mark.asyncio
async def test_unknown_job_ends_as_failed() -> None:
    client = _FakeReprocessClient([NotFoundError("Reprocess job not found")])
    tracker = _tracker(client, [])

    await tracker.start("reel-1")
    with pytest.raises(JobFailedError):
        await tracker.wait()
    assert tracker.state is FAILED


@pytest.mark.asyncio
async def test_second_start_while_running_is_rejected() -> None:
    client = _FakeReprocessClient([_job(PROCESSING, 5)])
    tracker = _tracker(client, [])

    await tracker.start("reel-1")
    with pytest.raises(AlreadyRunningError):
        await tracker.start("reel-1")

    assert client.start_calls == ["reel-1"]
    tracker.cancel()


@pytest.mark.asyncio
async def test_start_while_start_request_in_flight_is_rejected() -> None:
    release = asyncio.Event()

    class _SlowStartClient(_FakeReprocessClient):
        async def start_reprocessing(self, reel_id: str) -> str:
            await release.wait()
            return await super().start_reprocessing(reel_id)

    tracker = _tracker(_SlowStartClient([_job(COMPLETED)]), [])
    first = asyncio.create_task(tracker.start("reel-1"))
    await _spin(2)

    with pytest.raises(AlreadyRunningError):
        await tracker.start("reel-1")

    release.set()
    assert await first == "job-1"
    await tracker.wait()


@pytest.mark.asyncio
async def test_cancel_stops_polling_and_returns_to_idle() -> None:
    client = _FakeReprocessClient([_job(PROCESSING, 5)])
    fired: list[ReprocessJob] = []
    tracker = _tracker(client, fired)

    await tracker.start("reel-1")
    await _spin()
    assert tracker.state is PROCESSING

    tracker.cancel()
    tracker.cancel()
    calls = client.status_calls
    await _spin()

    assert tracker.state is IDLE
    assert client.status_calls == calls
    assert fired == []
    assert await tracker.wait() is None


@pytest.mark.asyncio
async def test_in_flight_poll_result_is_discarded_after_cancel() -> None:
    entered = asyncio.Event()
    release = asyncio.Event()

    class _BlockingClient(_FakeReprocessClient):
        async def get_reprocess_status(self, reel_id: str, job_id: str) -> ReprocessJob:
            entered.set()
            await release.wait()
            return _job(COMPLETED)

    fired: list[ReprocessJob] = []
    tracker = _tracker(_BlockingClient([]), fired)

    await tracker.start("reel-1")
    await entered.wait()
    tracker.cancel()
    release.set()
    await _spin()

    assert tracker.state is IDLE
    assert fired == []


@pytest.mark.asyncio
async def test_each_start_fires_its_own_terminal_callback() -> None:
    client = _FakeReprocessClient([_job(COMPLETED)])
    fired: list[ReprocessJob] = []
    tracker = _tracker(client, fired)

    await tracker.start("reel-1")
    await tracker.wait()
    second = await tracker.start("reel-1")
    await tracker.wait()

    assert second == "job-2"
    assert [job.job_id for job in fired] == ["job-1", "job-2"]
    assert tracker.transitions[0] == (IDLE, QUEUED)


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_tracker() -> None:
    def _boom(job: ReprocessJob) -> None:
        raise RuntimeError("ui went away")

    tracker = ReprocessJobTracker(_FakeReprocessClient([_job(COMPLETED)]), poll_interval=0, on_terminal=_boom)
    await tracker.start("reel-1")
    final = await tracker.wait()
    assert final.status is COMPLETED


@pytest.mark.asyncio
async def test_polls_at_configured_interval(monkeypatch: pytest.MonkeyPatch) -> None:
    slept: list[float] = []
    real_sleep = asyncio.sleep

    async def _fake_sleep(seconds: float) -> None:
        slept.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr("services.reprocess_tracker.asyncio.sleep", _fake_sleep, raising=True)

    tracker = ReprocessJobTracker(_FakeReprocessClient([_job(PROCESSING), _job(COMPLETED)]))
    await tracker.start("reel-1")
    await tracker.wait()

    assert slept == [DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_POLL_INTERVAL_SECONDS]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body", "error"),
    [
        (422, {"detail": [{"loc": ["path", "job_id"], "msg": "bad id", "type": "value_error"}]}, ValidationError),
        (409, {"detail": "stale"}, ConflictError),
        (200, {"status": "exploded"}, ValidationError),
        (200, "<html>gateway hiccup</html>", ValidationError),
    ],
)
async def test_rejected_status_poll_is_retried(status: int, body, error: type[Exception]) -> None:
    replies = [(status, body), (200, {"status": "completed", "progress": 100})]

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"jobId": "job-7"})
        code, payload = replies.pop(0)
        if isinstance(payload, str):
            return httpx.Response(code, text=payload)
        return httpx.Response(code, json=payload)

    fired: list[ReprocessJob] = []
    async with ReelApiClient("http://test/api", transport=httpx.MockTransport(handler)) as api:
        tracker = _tracker(api, fired)
        await tracker.start("reel-1")
        final = await tracker.wait()

    assert final.status is COMPLETED
    assert isinstance(tracker.last_error, error)
    assert [job.job_id for job in fired] == ["job-7"]
    assert not tracker.is_running
