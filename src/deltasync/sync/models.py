"""Pydantic models for sync API payloads.

Change records share one shape across every entity category; the payload
``data`` stays an opaque JSON value until the caller decodes it.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

MAX_ITEMS_PER_ENTITY_TYPE = 100

_T = TypeVar("_T")


class ChangeType(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    # Compacted feeds collapse created/updated into a single value.
    CHANGED = "changed"

    @classmethod
    def _missing_(cls, value: object) -> ChangeType | None:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class EntityCategory(StrEnum):
    ITEMS = "items"
    ASSETS = "assets"
    TYPES = "types"
    LANGUAGES = "languages"
    TAXONOMIES = "taxonomies"


class ChangeRecord(BaseModel):
    """A single change to an entity of any category."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    change_type: ChangeType
    data: Any = None

    @property
    def is_deletion(self) -> bool:
        return self.change_type is ChangeType.DELETED

    def decode(self, shape: type[_T]) -> _T:
        """Validate the opaque payload against *shape* (a model or any type)."""
        return TypeAdapter(shape).validate_python(self.data)


class InitResponse(BaseModel):
    """Acknowledgement of sync initialization.

    The init endpoint answers with an empty body; the continuation token is
    delivered in the response headers.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")


class DeltaResponse(BaseModel):
    """One page of changes returned by a delta fetch."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    items: list[ChangeRecord] = Field(default_factory=list)
    assets: list[ChangeRecord] = Field(default_factory=list)
    types: list[ChangeRecord] = Field(default_factory=list)
    languages: list[ChangeRecord] = Field(default_factory=list)
    taxonomies: list[ChangeRecord] = Field(default_factory=list)

    def changes(self, category: EntityCategory | str) -> list[ChangeRecord]:
        return getattr(self, EntityCategory(category).value)

    def counts(self) -> dict[EntityCategory, int]:
        return {category: len(self.changes(category)) for category in EntityCategory}

    @property
    def total_changes(self) -> int:
        return sum(self.counts().values())

    def has_more_changes(self) -> bool:
        """True if any category was filled up to the per-response maximum."""
        return any(count >= MAX_ITEMS_PER_ENTITY_TYPE for count in self.counts().values())
