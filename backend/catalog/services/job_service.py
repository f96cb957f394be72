"""Submit, inspect, cancel and reap bulk jobs."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from catalog.core.config import get_settings
from catalog.core.exceptions import JobNotFoundError, ValidationError
from catalog.db.models.job import Job
from catalog.services import batch_operations
from catalog.services.job_runner import Finalizer, ItemOp, JobRunner, ProgressCallback
from catalog.services.progress_tracker import fetch_progress, publish_progress
from catalog.services.sources import get_source, record_import_run

logger = logging.getLogger(__name__)

JOB_TYPES = ("import_products", "associate_products", "bulk_publish")

Dispatcher = Callable[[str], None]


def _dispatch_celery(job_id: str) -> None:
    from catalog.workers.tasks.run_job import run_job_task

    run_job_task.apply_async(args=(job_id,), queue="imports")


def _validate_params(db: Session, job_type: str, params: dict[str, Any]) -> dict[str, Any]:
    if job_type == "import_products":
        source_id = params.get("source_id")
        if not source_id:
            raise ValidationError("source_id is required for import_products")
        get_source(db, source_id)
        return {"source_id": source_id}

    if job_type == "associate_products":
        action = params.get("action")
        field = params.get("field")
        if action not in batch_operations.ASSOCIATION_ACTIONS:
            raise ValidationError(f"action must be one of {batch_operations.ASSOCIATION_ACTIONS}")
        if field not in batch_operations.ASSOCIATION_FIELDS:
            raise ValidationError(f"field must be one of {batch_operations.ASSOCIATION_FIELDS}")
        if params.get("value") in (None, "", {}):
            raise ValidationError("value is required for associate_products")
        return {"action": action, "field": field, "value": params["value"]}

    min_score = params.get("min_score", 0)
    if isinstance(min_score, bool) or not isinstance(min_score, int) or not 0 <= min_score <= 100:
        raise ValidationError("min_score must be an integer between 0 and 100")
    return {"min_score": min_score}


def submit_job(
    db: Session,
    job_type: str,
    items: Sequence[Any],
    params: dict[str, Any] | None = None,
    dispatch: Dispatcher | None = None,
) -> dict[str, Any]:
    """Validate and persist a pending job, then hand it to a worker.

    Returns ``{"job_id", "total_items"}`` immediately; the work itself runs
    in the background.
    """
    if job_type not in JOB_TYPES:
        raise ValidationError(f"Unknown job type: {job_type!r}")
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("items must be a non-empty list")
    max_batch = get_settings().max_batch_size
    if len(items) > max_batch:
        raise ValidationError(f"Batch too large: {len(items)} items (max {max_batch})")
    params = _validate_params(db, job_type, dict(params or {}))

    job = Job(
        job_type=job_type,
        status="pending",
        total_items=len(items),
        items=list(items),
        params=params,
        errors=[],
    )
    db.add(job)
    db.commit()
    job_id = job.id
    publish_progress(
        job_id,
        0.0,
        "Job queued",
        status="pending",
        meta={"total_items": len(items)},
    )

    try:
        (dispatch or _dispatch_celery)(job_id)
    except Exception as exc:
        logger.error(f"Failed to dispatch job {job_id}: {exc}", exc_info=True)
        job.status = "failed"
        job.error_message = f"Failed to queue job: {exc}"
        job.completed_at = datetime.now(timezone.utc)
        db.commit()
        raise

    logger.info(f"Queued {job_type} job {job_id} with {len(items)} items")
    return {"job_id": job_id, "total_items": len(items)}


def get_job(db: Session, job_id: str) -> Job:
    job = db.get(Job, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


def list_jobs(db: Session, limit: int = 50, status: str | None = None) -> list[Job]:
    query = select(Job)
    if status:
        query = query.where(Job.status == status)
    return list(db.scalars(query.order_by(Job.created_at.desc()).limit(limit)))


def get_job_status(db: Session, job_id: str) -> tuple[Job, dict[str, Any]]:
    """DB row plus the latest Redis progress snapshot (may be empty)."""
    job = get_job(db, job_id)
    return job, fetch_progress(job_id)


def cancel_job(db: Session, job_id: str) -> Job:
    """Ask a pending or processing job to stop at its next chunk boundary."""
    job = get_job(db, job_id)
    if job.is_terminal:
        raise ValidationError(f"Job {job_id} is already {job.status}")
    was_pending = job.status == "pending"
    job.status = "cancelled"
    if was_pending:
        job.completed_at = datetime.now(timezone.utc)
    db.commit()
    publish_progress(job_id, 0.0, "Cancellation requested", status="cancelled")
    logger.info(f"Cancellation requested for job {job_id}")
    return job


def fail_stale_jobs(db: Session, older_than: timedelta | None = None) -> list[str]:
    """Mark ``processing`` jobs with no progress since ``older_than`` as failed.

    A worker that dies mid-job leaves its row in ``processing``; nothing
    resumes it, so the watchdog closes it out for pollers.
    """
    if older_than is None:
        older_than = timedelta(minutes=get_settings().stale_job_after_minutes)
    cutoff = datetime.now(timezone.utc) - older_than
    stale = db.scalars(
        select(Job).where(Job.status == "processing", Job.updated_at < cutoff)
    ).all()

    failed_ids: list[str] = []
    for job in stale:
        message = f"No progress for more than {int(older_than.total_seconds() // 60)} minutes"
        job.status = "failed"
        job.error_message = message
        job.errors = [*(job.errors or []), {"item": "system", "error": message, "index": None}]
        job.completed_at = datetime.now(timezone.utc)
        failed_ids.append(job.id)
    db.commit()

    for job_id in failed_ids:
        publish_progress(job_id, 0.0, "Job marked stale", status="failed")
        logger.warning(f"Marked stale job {job_id} as failed")
    return failed_ids


def build_operation(db: Session, job: Job) -> tuple[ItemOp, Finalizer | None]:
    """Resolve the per-item operation and end-of-job hook for ``job``."""
    params = job.params or {}
    if job.job_type == "import_products":
        source = get_source(db, params["source_id"])
        source_id = source.source_id

        def finalize(db: Session, finished: Job) -> None:
            record_import_run(
                db,
                source_id,
                finished.successful_items or 0,
                finished.failed_items or 0,
                job_failed=finished.status == "failed",
            )

        return batch_operations.import_product_op(source_id, source.field_mappings), finalize

    if job.job_type == "associate_products":
        return (
            batch_operations.associate_op(params["action"], params["field"], params["value"]),
            None,
        )

    if job.job_type == "bulk_publish":
        return batch_operations.publish_op(params.get("min_score", 0)), None

    raise ValidationError(f"Unknown job type: {job.job_type!r}")


def process_job(
    db: Session,
    job_id: str,
    *,
    progress: ProgressCallback | None = None,
    chunk_size: int | None = None,
) -> Job:
    """Run a submitted job to completion on ``db``. Used by the worker task."""
    job = get_job(db, job_id)
    if job.status != "pending":
        logger.warning(f"Job {job_id} is {job.status}; nothing to run")
        return job

    op, finalize = build_operation(db, job)

    runner = JobRunner(db, chunk_size=chunk_size, progress=progress)
    return runner.execute(job, op, finalize=finalize)
