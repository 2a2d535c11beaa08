from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from services.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base for wire models: snake_case attributes, camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SkillLevel(StrEnum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"


class Visibility(StrEnum):
    TENANT = "tenant"
    PUBLIC = "public"
    INTERNAL = "internal"


class ReelStatus(StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


def parse_tags(value: str | list[str]) -> list[str]:
    """Split a comma-separated tag string, trimming and dropping empty tags."""
    parts = value.split(",") if isinstance(value, str) else value
    return [tag.strip() for tag in parts if tag and tag.strip()]


class ReelMetadata(CamelModel):
    """
    Partial reel metadata.

    Used as the patch of a metadata commit and as the snapshot stored on a
    ReelVersion. Only fields that were explicitly set take part in either.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    title: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    category: str | None = None
    machine: str | None = None
    tooling: str | None = None
    process_step: str | None = None
    skill_level: SkillLevel | None = None
    language: str | None = None
    visibility: Visibility | None = None
    status: ReelStatus | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("Title is required")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> Any:
        if isinstance(value, (str, list)):
            return parse_tags(value)
        return value

    @classmethod
    def parse(cls, data: ReelMetadata | Mapping[str, Any]) -> ReelMetadata:
        """Build a patch from a mapping, raising the engine's ValidationError."""
        if isinstance(data, ReelMetadata):
            return data
        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid reel metadata",
                errors=[
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in exc.errors()
                ],
            ) from exc

    def changes(self) -> dict[str, Any]:
        """Fields that were set and are not null, keyed by attribute name."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


METADATA_FIELDS: tuple[str, ...] = tuple(ReelMetadata.model_fields)


class Reel(CamelModel):
    id: str
    title: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    category: str = ""
    machine: str = ""
    tooling: str = ""
    process_step: str = ""
    skill_level: SkillLevel = SkillLevel.BEGINNER
    language: str = "English"
    duration: str = ""
    current_version: int = Field(default=1, ge=1)
    status: ReelStatus = ReelStatus.DRAFT
    visibility: Visibility = Visibility.TENANT
    uploader_id: str = ""
    uploader_name: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    video_url: str | None = None
    thumbnail_url: str | None = None

    def snapshot(self) -> ReelMetadata:
        """Full metadata snapshot of the reel as it is now."""
        values = {name: getattr(self, name) for name in METADATA_FIELDS}
        values["tags"] = list(self.tags)
        return ReelMetadata.model_construct(**values)

    def apply(self, patch: ReelMetadata, *, version: int, at: datetime | None = None) -> Reel:
        """Return a copy with the patch applied and ``current_version`` advanced."""
        update = patch.changes()
        if "tags" in update:
            update["tags"] = list(update["tags"])
        update["current_version"] = version
        update["updated_at"] = at or utcnow()
        return self.model_copy(update=update)


class ReelVersion(CamelModel):
    """Immutable snapshot of a reel's metadata at one point in its history."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    reel_id: str
    version: int = Field(ge=1)
    timestamp: datetime = Field(default_factory=utcnow)
    changes_description: str = ""
    changed_by: str = ""
    changed_by_name: str = ""
    metadata: ReelMetadata
    can_rollback: bool = True
