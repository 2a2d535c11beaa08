"""Async HTTP client for the reel API server."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, TypeVar

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from models import (
    Reel,
    ReelMetadata,
    ReelVersion,
    ReprocessJob,
    ReprocessStartResponse,
    Transcript,
    TranscriptSegment,
)
from services.config import EngineSettings
from services.errors import (
    ApiError,
    ConflictError,
    DomainError,
    NotFoundError,
    RollbackDeniedError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {502, 503, 504}

T = TypeVar("T")


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        detail = body["detail"]
        if isinstance(detail, list):
            return "Request validation failed"
        return str(detail)
    return str(body)


def _validation_errors(response: httpx.Response) -> list[dict[str, Any]]:
    try:
        detail = response.json().get("detail")
    except (ValueError, AttributeError):
        return []
    if not isinstance(detail, list):
        return []
    return [
        {"field": ".".join(str(p) for p in item.get("loc", [])[1:]), "message": item.get("msg", "")}
        for item in detail
        if isinstance(item, dict)
    ]


def _parse(response: httpx.Response, schema: type[T]) -> T:
    """Decode a success body into ``schema``, raising the engine's ValidationError."""
    request = response.request
    try:
        return TypeAdapter(schema).validate_python(response.json())
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError(
            f"Unexpected response body from {request.method} {request.url.path}", errors=errors
        ) from exc
    except ValueError as exc:
        raise ValidationError(f"{request.method} {request.url.path} did not return JSON") from exc


class ReelApiClient:
    """
    Thin async wrapper over the reel API.

    Every method either returns a parsed model or raises from the engine's
    error taxonomy: TransportError when no usable answer came back, a
    DomainError subclass when the server rejected the request.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: EngineSettings, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> ReelApiClient:
        return cls(
            settings.api_base_url,
            token=settings.api_token,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> ReelApiClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_reel(self, reel_id: str) -> Reel:
        response = await self._request("GET", f"/reels/{reel_id}")
        return _parse(response, Reel)

    async def update_reel_metadata(
        self,
        reel_id: str,
        patch: ReelMetadata | Mapping[str, Any],
        *,
        changes_description: str | None = None,
        expected_version: int | None = None,
    ) -> Reel:
        body = ReelMetadata.parse(patch).model_dump(mode="json", by_alias=True, exclude_unset=True)
        if changes_description is not None:
            body["changesDescription"] = changes_description
        if expected_version is not None:
            body["expectedVersion"] = expected_version
        response = await self._request("PATCH", f"/reels/{reel_id}", json=body)
        return _parse(response, Reel)

    async def get_reel_versions(self, reel_id: str) -> list[ReelVersion]:
        response = await self._request("GET", f"/reels/{reel_id}/versions")
        return _parse(response, list[ReelVersion])

    async def rollback_to_version(self, reel_id: str, version_id: str) -> Reel:
        response = await self._request(
            "POST",
            f"/reels/{reel_id}/versions/{version_id}/rollback",
            json={},
            forbidden=RollbackDeniedError,
        )
        return _parse(response, Reel)

    async def start_reprocessing(self, reel_id: str) -> str:
        response = await self._request("POST", f"/reels/{reel_id}/reprocess", json={})
        return _parse(response, ReprocessStartResponse).job_id

    async def get_reprocess_status(self, reel_id: str, job_id: str) -> ReprocessJob:
        response = await self._request("GET", f"/reels/{reel_id}/reprocess/{job_id}")
        job = _parse(response, ReprocessJob)
        if job.job_id is None:
            job = job.model_copy(update={"job_id": job_id})
        return job

    async def get_transcript(self, reel_id: str) -> Transcript:
        response = await self._request("GET", f"/reels/{reel_id}/transcript")
        return _parse(response, Transcript)

    async def update_transcript(
        self,
        reel_id: str,
        segments: Sequence[TranscriptSegment],
        change_note: str | None = None,
    ) -> Transcript:
        body: dict[str, Any] = {
            "segments": [
                segment.model_dump(mode="json", by_alias=True, exclude_none=True)
                for segment in segments
            ],
        }
        if change_note is not None:
            body["changeNote"] = change_note
        response = await self._request("PUT", f"/reels/{reel_id}/transcript", json=body)
        return _parse(response, Transcript)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        forbidden: type[DomainError] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if response.is_success:
            return response

        status = response.status_code
        detail = _detail(response)
        logger.info("[reel_api] %s %s -> %d %s", method, path, status, detail)
        if status in (400, 422):
            raise ValidationError(detail, errors=_validation_errors(response))
        if status == 404:
            raise NotFoundError(detail)
        if status == 409:
            raise ConflictError(detail)
        if status == 403 and forbidden is not None:
            raise forbidden(detail)
        if status in _RETRYABLE_STATUS:
            raise TransportError(f"{method} {path} -> {status}: {detail}")
        raise ApiError(f"{method} {path} -> {status}: {detail}", status_code=status)
