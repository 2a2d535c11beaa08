"""Error taxonomy for the reel revision engine.

Two failure classes are kept apart: ``DomainError`` (the request was
understood and rejected) and ``TransportError`` (the request never got a
usable answer). Guard errors are raised locally before any network call.
"""

from __future__ import annotations

from typing import Any


class ReelEngineError(Exception):
    """Base class for every error raised by the engine."""


class DomainError(ReelEngineError):
    pass


class ValidationError(DomainError):
    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class ConflictError(DomainError):
    """The caller's view of the reel version is stale."""

    def __init__(self, message: str, *, expected: int | None = None, actual: int | None = None) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class NotFoundError(DomainError):
    pass


class RollbackDeniedError(DomainError):
    pass


class JobFailedError(DomainError):
    """A reprocess job reached the ``failed`` state on the server."""

    def __init__(self, message: str, *, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class ApiError(DomainError):
    """The API answered with a status the engine has no specific mapping for."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class GuardError(ReelEngineError):
    pass


class AlreadyRunningError(GuardError):
    pass


class CommitInProgressError(GuardError):
    def __init__(self, concern: str) -> None:
        super().__init__(f"A {concern} commit is already in progress")
        self.concern = concern


class TransportError(ReelEngineError):
    """Network failure or timeout; generally safe for the caller to retry."""
