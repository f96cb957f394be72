"""Pydantic models describing product version payloads."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class CommitRequest(BaseModel):
    """Imported or API-originated data for one entity_code."""

    patch: dict[str, Any] = Field(..., description="Partial product payload")
    source_id: str = Field(..., description="Import source whose policy applies")


class ManualEditRequest(BaseModel):
    patch: dict[str, Any] = Field(default_factory=dict)
    lock_fields: list[str] = Field(default_factory=list)
    unlock_fields: list[str] = Field(default_factory=list)
    status: Literal["draft", "published"] | None = None
    edited_by: str | None = None


class CommitResponse(BaseModel):
    product: dict[str, Any]
    warnings: list[str] = Field(default_factory=list)


class VersionSummary(BaseModel):
    version: int
    is_current: bool
    status: str
    completeness_score: int
    auto_publish_reason: str | None = None
    manually_edited: bool = False
    has_conflict: bool = False
    source_id: str | None = None
    created_at: Any = None


class VersionListResponse(BaseModel):
    entity_code: str
    versions: list[VersionSummary]


class FieldChangeRead(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None
    change_type: str


class CompareResponse(BaseModel):
    entity_code: str
    version_a: int
    version_b: int
    has_changes: bool
    changes: list[FieldChangeRead]
