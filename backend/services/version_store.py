"""Append-only metadata history for a single reel."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from models.reel import Reel, ReelMetadata, ReelVersion, utcnow
from services.errors import ConflictError, NotFoundError, RollbackDeniedError, ValidationError

logger = logging.getLogger(__name__)

SYSTEM_AUTHOR = "system"
MEDIA_FIELDS = frozenset({"duration", "video_url", "thumbnail_url"})


def version_id(reel_id: str, version: int) -> str:
    return f"{reel_id}-v{version}"


class VersionStore:
    """
    Ordered, immutable ReelVersion snapshots for one reel.

    Commits and rollbacks only ever append. A rollback to version N creates a
    new version whose snapshot equals N's, so the history keeps a total order
    and every earlier version stays retrievable.

    The store is synchronous and in-memory. An edit session keeps one as a
    mirror of the server's history so validation and staleness checks happen
    before any request is sent; the reference API keeps one per reel as the
    authoritative history.
    """

    def __init__(self, reel: Reel, versions: Iterable[ReelVersion] = ()) -> None:
        ordered = sorted(versions, key=lambda v: v.version)
        numbers = [v.version for v in ordered]
        if len(set(numbers)) != len(numbers):
            raise ValueError(f"duplicate version numbers for reel {reel.id}: {numbers}")
        self._reel = reel
        self._versions: list[ReelVersion] = ordered

    @classmethod
    def create(cls, reel: Reel, *, author: str = SYSTEM_AUTHOR, author_name: str = "") -> VersionStore:
        """Start a history whose first entry snapshots the reel as it is now."""
        initial = ReelVersion(
            id=version_id(reel.id, reel.current_version),
            reel_id=reel.id,
            version=reel.current_version,
            timestamp=reel.updated_at,
            changes_description="Initial version",
            changed_by=author,
            changed_by_name=author_name,
            metadata=reel.snapshot(),
        )
        return cls(reel, [initial])

    @property
    def reel(self) -> Reel:
        return self._reel

    @property
    def current_version(self) -> int:
        return self._reel.current_version

    @property
    def latest_version(self) -> int:
        if not self._versions:
            return self._reel.current_version
        return self._versions[-1].version

    def list_versions(self) -> list[ReelVersion]:
        """All versions, ascending by version number."""
        return list(self._versions)

    def get_version(self, version_id_: str) -> ReelVersion:
        for version in self._versions:
            if version.id == version_id_:
                return version
        raise NotFoundError(f"Version {version_id_} not found for reel {self._reel.id}")

    def validate_commit(
        self, current: Reel, patch: ReelMetadata | Mapping[str, Any]
    ) -> ReelMetadata:
        parsed = ReelMetadata.parse(patch)
        if not parsed.changes():
            raise ValidationError("Metadata patch contains no fields to change")
        if current.current_version != self.latest_version:
            raise ConflictError(
                f"Reel {self._reel.id} is at version {self.latest_version}, "
                f"but the edit was based on version {current.current_version}",
                expected=current.current_version,
                actual=self.latest_version,
            )
        return parsed

    def commit_metadata(
        self,
        current: Reel,
        patch: ReelMetadata | Mapping[str, Any],
        change_note: str | None = None,
        *,
        author: str = "",
        author_name: str = "",
    ) -> tuple[Reel, ReelVersion]:
        """Apply a patch and append a snapshot of the resulting metadata."""
        parsed = self.validate_commit(current, patch)
        reel, version = self._append(
            self._reel,
            parsed,
            change_note or "",
            author=author,
            author_name=author_name,
        )
        logger.info(
            "[version_store] Committed reel=%s version=%d fields=%s",
            reel.id,
            version.version,
            sorted(parsed.changes()),
        )
        return reel, version

    def validate_rollback(self, version_id_: str) -> ReelVersion:
        target = self.get_version(version_id_)
        if target.version == self.current_version:
            raise RollbackDeniedError(f"Version {target.version} is already the current version")
        if not target.can_rollback:
            raise RollbackDeniedError(f"Version {target.version} is locked and cannot be restored")
        return target

    def rollback(
        self, version_id_: str, *, author: str = SYSTEM_AUTHOR, author_name: str = ""
    ) -> tuple[Reel, ReelVersion]:
        """Restore an earlier snapshot as a brand-new version."""
        target = self.validate_rollback(version_id_)
        reel, version = self._append(
            self._reel,
            target.metadata,
            f"Rolled back to version {target.version}",
            author=author,
            author_name=author_name,
            snapshot=target.metadata,
        )
        logger.info(
            "[version_store] Rolled back reel=%s to version %d as version %d",
            reel.id,
            target.version,
            version.version,
        )
        return reel, version

    def update_media(self, **fields: Any) -> Reel:
        """Update video attributes, which are not versioned metadata."""
        unknown = set(fields) - MEDIA_FIELDS
        if unknown:
            raise ValueError(f"not media fields: {sorted(unknown)}")
        self._reel = self._reel.model_copy(update={**fields, "updated_at": utcnow()})
        return self._reel

    def _append(
        self,
        base: Reel,
        patch: ReelMetadata,
        note: str,
        *,
        author: str,
        author_name: str,
        snapshot: ReelMetadata | None = None,
    ) -> tuple[Reel, ReelVersion]:
        number = self.latest_version + 1
        now = utcnow()
        reel = base.apply(patch, version=number, at=now)
        version = ReelVersion(
            id=version_id(reel.id, number),
            reel_id=reel.id,
            version=number,
            timestamp=now,
            changes_description=note,
            changed_by=author,
            changed_by_name=author_name,
            metadata=snapshot if snapshot is not None else reel.snapshot(),
        )
        self._versions.append(version)
        self._reel = reel
        return reel, version
