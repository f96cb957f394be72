"""Celery task that runs one submitted bulk job."""

from __future__ import annotations

import logging

from catalog.db.session import get_fresh_session
from catalog.services.job_service import process_job
from catalog.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="catalog.workers.tasks.run_job")
def run_job_task(self, job_id: str) -> dict:
    """Process the job's items chunk by chunk; progress lands on the Job row."""
    session = get_fresh_session()
    try:
        job = process_job(session, job_id)
        return {
            "job_id": job_id,
            "status": job.status,
            "processed_items": job.processed_items,
            "successful_items": job.successful_items,
            "failed_items": job.failed_items,
        }
    except Exception as e:
        logger.error(f"Job task {job_id} failed: {e}", exc_info=True)
        raise
    finally:
        session.close()
