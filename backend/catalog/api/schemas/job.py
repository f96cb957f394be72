"""Bulk job submission and status payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class JobSubmitRequest(BaseModel):
    job_type: str = Field(..., description="import_products|associate_products|bulk_publish")
    items: list[Any] = Field(..., description="Rows to import or entity_codes to act on")
    action: str | None = Field(None, description="add|remove for associate_products")
    params: dict[str, Any] = Field(default_factory=dict)


class JobAccepted(BaseModel):
    job_id: str
    total_items: int


class JobError(BaseModel):
    item: str
    error: str
    index: int | None = None


class JobStatus(BaseModel):
    id: str
    type: str = Field(..., description="e.g., import_products, bulk_publish")
    status: str = Field(..., description="pending|processing|completed|failed|cancelled")
    progress: float | None = Field(None, description="0-1 range for UI progress bars")
    message: str | None = None
    total_items: int = 0
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    auto_published_items: int = 0
    errors: list[JobError] = Field(default_factory=list)
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: float | None = None
