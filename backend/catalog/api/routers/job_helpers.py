"""Shared helpers for shaping job responses."""
from __future__ import annotations

from catalog.api.schemas.job import JobStatus
from catalog.db.models.job import Job


def serialize_job(job: Job, progress_payload: dict | None) -> JobStatus:
    """Combine DB state + cached progress snapshot into a response schema.

    Counters and status come from the Job row, which is the source of
    truth; the Redis snapshot only contributes the progress message.
    """
    progress_payload = progress_payload or {}

    calculated_progress = progress_payload.get("progress")
    if job.total_items:
        calculated_progress = job.processed_items / job.total_items
    elif calculated_progress is None and job.is_terminal:
        calculated_progress = 1.0

    message = progress_payload.get("message")
    if not message:
        message = f"Processed {job.processed_items}/{job.total_items} items"

    return JobStatus(
        id=job.id,
        type=job.job_type,
        status=job.status,
        progress=calculated_progress,
        message=message,
        total_items=job.total_items or 0,
        processed_items=job.processed_items or 0,
        successful_items=job.successful_items or 0,
        failed_items=job.failed_items or 0,
        auto_published_items=job.auto_published_items or 0,
        errors=job.errors or [],
        error_message=job.error_message,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        duration_seconds=job.duration_seconds,
    )
