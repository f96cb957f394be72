"""Chunked, sequential execution of bulk jobs with observable progress.

Items are processed one chunk at a time. After every chunk the counters are
written to the Job row and a progress snapshot is pushed, so a poller always
sees ``processed_items == successful_items + failed_items`` growing
monotonically. Per-item failures (``ITEM_ERRORS``) are recorded and skipped;
anything else stops the job as ``failed``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from catalog.core.config import get_settings
from catalog.core.exceptions import ITEM_ERRORS
from catalog.db.models.job import Job
from catalog.services.progress_tracker import publish_progress
from catalog.utils.batching import chunked

logger = logging.getLogger(__name__)

HIGH_FAILURE_RATE = 0.10
HIGH_FAILURE_MIN_ITEMS = 100


@dataclass
class ItemOutcome:
    """What a successful per-item operation reports back."""

    published: bool = False
    warnings: list[str] = field(default_factory=list)


ItemOp = Callable[[Session, Any, int], ItemOutcome | None]
ProgressCallback = Callable[..., None]
Finalizer = Callable[[Session, Job], None]


def describe_item(item: Any, index: int) -> str:
    """Human-readable identifier for an item in the job's ``errors`` list."""
    if isinstance(item, str) and item.strip():
        return item.strip()
    if isinstance(item, dict):
        for key in ("entity_code", "sku"):
            value = item.get(key)
            if value not in (None, ""):
                return str(value)
    return f"item {index + 1}"


class JobRunner:
    """Run one job's items through ``op``, persisting progress per chunk."""

    def __init__(
        self,
        db: Session,
        *,
        chunk_size: int | None = None,
        error_cap: int | None = None,
        progress: ProgressCallback | None = None,
    ):
        settings = get_settings()
        self.db = db
        self.chunk_size = chunk_size or settings.job_chunk_size
        self.error_cap = settings.job_error_cap if error_cap is None else error_cap
        self.progress = progress or publish_progress

    def run(
        self,
        job_type: str,
        items: Sequence[Any],
        op: ItemOp,
        *,
        params: dict[str, Any] | None = None,
        finalize: Finalizer | None = None,
    ) -> Job:
        """Create a pending job for ``items`` and execute it synchronously."""
        job = Job(
            job_type=job_type,
            status="pending",
            total_items=len(items),
            items=list(items),
            params=dict(params or {}),
            errors=[],
        )
        self.db.add(job)
        self.db.commit()
        return self.execute(job, op, finalize=finalize)

    def execute(self, job: Job, op: ItemOp, *, finalize: Finalizer | None = None) -> Job:
        """Process a pending job's stored items in order."""
        if job.status != "pending":
            logger.warning(f"Job {job.id} is {job.status}, not pending; skipping")
            return job

        items = list(job.items or [])
        job_id = job.id
        started = time.monotonic()

        job.status = "processing"
        job.started_at = datetime.now(timezone.utc)
        job.total_items = len(items)
        self.db.commit()
        logger.info(f"Job {job_id} ({job.job_type}) started: {len(items)} items")
        self._report(job, "Processing started")

        processed = successful = failed = published = 0
        errors: list[dict[str, Any]] = list(job.errors or [])
        cancelled = False

        try:
            for chunk_index, chunk in enumerate(chunked(items, self.chunk_size)):
                if self._cancel_requested(job):
                    cancelled = True
                    break

                for offset, item in enumerate(chunk):
                    index = chunk_index * self.chunk_size + offset
                    try:
                        outcome = op(self.db, item, index)
                    except ITEM_ERRORS as exc:
                        self.db.rollback()
                        failed += 1
                        if len(errors) < self.error_cap:
                            errors.append(
                                {
                                    "item": describe_item(item, index),
                                    "error": str(exc),
                                    "index": index,
                                }
                            )
                        logger.debug(f"Job {job_id} item {index} failed: {exc}")
                    else:
                        successful += 1
                        if outcome is not None and outcome.published:
                            published += 1
                        if outcome is not None and outcome.warnings:
                            logger.warning(
                                f"Job {job_id} item {index}: {'; '.join(outcome.warnings)}"
                            )
                    processed += 1

                job.processed_items = processed
                job.successful_items = successful
                job.failed_items = failed
                job.auto_published_items = published
                job.errors = list(errors)
                self.db.commit()
                self._report(job, f"Processed {processed}/{len(items)} items")
            else:
                # A cancel that landed during the last chunk still wins
                cancelled = self._cancel_requested(job)
        except Exception as exc:
            self._fail(job, exc, processed, successful, failed, published, errors)
            self._finalize(job, finalize)
            raise

        elapsed = time.monotonic() - started
        if cancelled:
            # status was already set to cancelled by whoever requested it
            job.completed_at = datetime.now(timezone.utc)
            job.duration_seconds = elapsed
            self.db.commit()
            logger.info(
                f"Job {job_id} cancelled after {processed}/{len(items)} items "
                f"({successful} ok, {failed} failed)"
            )
            self._report(job, "Job cancelled")
            return job

        job.status = "completed"
        job.completed_at = datetime.now(timezone.utc)
        job.duration_seconds = elapsed
        self.db.commit()
        self._finalize(job, finalize)

        rate = processed / elapsed if elapsed > 0 else float(processed)
        logger.info(
            f"Job {job_id} completed: {successful} ok, {failed} failed, "
            f"{published} published in {elapsed:.2f}s ({rate:.1f} items/s)"
        )
        if processed > HIGH_FAILURE_MIN_ITEMS and failed / processed > HIGH_FAILURE_RATE:
            logger.error(
                f"High failure rate on job {job_id}: {failed}/{processed} items failed"
            )
        self._report(job, "Job complete")
        return job

    def _cancel_requested(self, job: Job) -> bool:
        self.db.refresh(job, attribute_names=["status"])
        return job.status == "cancelled"

    def _fail(
        self,
        job: Job,
        exc: Exception,
        processed: int,
        successful: int,
        failed: int,
        published: int,
        errors: list[dict[str, Any]],
    ) -> None:
        logger.error(f"Job {job.id} failed: {exc}", exc_info=True)
        self.db.rollback()
        job.status = "failed"
        job.error_message = str(exc)
        job.processed_items = processed
        job.successful_items = successful
        job.failed_items = failed
        job.auto_published_items = published
        job.errors = [*errors, {"item": "system", "error": str(exc), "index": None}]
        job.completed_at = datetime.now(timezone.utc)
        try:
            self.db.commit()
        except Exception as commit_exc:
            self.db.rollback()
            logger.error(
                f"Could not record failure of job {job.id}: {commit_exc}", exc_info=True
            )
            return
        self._report(job, "Job failed", error=str(exc))

    def _finalize(self, job: Job, finalize: Finalizer | None) -> None:
        if finalize is None:
            return
        try:
            finalize(self.db, job)
            self.db.commit()
        except Exception as exc:
            self.db.rollback()
            logger.error(f"Finalizer for job {job.id} failed: {exc}", exc_info=True)

    def _report(self, job: Job, message: str, **extra: Any) -> None:
        total = job.total_items or 0
        processed = job.processed_items or 0
        self.progress(
            job.id,
            processed / total if total else (1.0 if job.is_terminal else 0.0),
            message,
            status=job.status,
            meta={
                "processed_items": processed,
                "successful_items": job.successful_items or 0,
                "failed_items": job.failed_items or 0,
                "total_items": total,
                **extra,
            },
        )
