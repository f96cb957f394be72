"""Bulk job submission and tracking endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog.api.dependencies.db import get_session
from catalog.api.routers.job_helpers import serialize_job
from catalog.api.schemas.job import JobAccepted, JobStatus, JobSubmitRequest
from catalog.core.exceptions import (
    JobNotFoundError,
    SourceNotFoundError,
    ValidationError,
)
from catalog.services import feed_parser, job_service
from catalog.services.progress_tracker import fetch_progress

logger = logging.getLogger(__name__)

router = APIRouter()


def _submit(db: Session, job_type: str, items: list, params: dict) -> JobAccepted:
    try:
        accepted = job_service.submit_job(db, job_type, items, params)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SourceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        logger.error(f"Database error creating {job_type} job: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create job",
        ) from exc
    except Exception as exc:
        logger.error(f"Failed to queue {job_type} job: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job could not be queued; try again later",
        ) from exc
    return JobAccepted(**accepted)


@router.post(
    "/",
    summary="Submit a bulk job",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobAccepted,
)
async def submit_job(
    payload: JobSubmitRequest,
    db: Session = Depends(get_session),
) -> JobAccepted:
    """Validate and queue a bulk job; returns immediately with its id.

    Per-item failures are reported on the job, never as a failed request.
    """
    params = dict(payload.params)
    if payload.action is not None:
        params["action"] = payload.action
    return _submit(db, payload.job_type, payload.items, params)


@router.post(
    "/import-csv/{source_id}",
    summary="Start an import job from a CSV feed",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobAccepted,
)
async def import_csv(
    source_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_session),
) -> JobAccepted:
    """Parse an uploaded CSV feed and queue its rows as an import job."""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required",
        )
    if not file.filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV uploads are supported",
        )

    content = await file.read()
    try:
        rows = feed_parser.parse_csv(content)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid CSV: {str(exc)}",
        ) from exc
    return _submit(db, "import_products", rows, {"source_id": source_id})


@router.get(
    "/",
    summary="List jobs",
    response_model=list[JobStatus],
)
async def list_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    status_filter: str | None = Query(
        None, alias="status", description="Filter by status (pending, processing, completed, failed, cancelled)"
    ),
    db: Session = Depends(get_session),
) -> list[JobStatus]:
    """Return jobs newest first, each merged with its latest progress snapshot."""
    try:
        jobs = job_service.list_jobs(db, limit=limit, status=status_filter)
    except SQLAlchemyError as e:
        logger.error(f"Database error listing jobs: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve jobs",
        ) from e
    return [serialize_job(job, fetch_progress(job.id)) for job in jobs]


@router.get(
    "/{job_id}",
    summary="Fetch job state and latest progress",
    response_model=JobStatus,
)
async def get_job(
    job_id: str,
    db: Session = Depends(get_session),
) -> JobStatus:
    """Expose job counters and errors for polling clients."""
    try:
        job, progress_payload = job_service.get_job_status(db, job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc
    return serialize_job(job, progress_payload)


@router.post(
    "/{job_id}/cancel",
    summary="Cancel a pending or running job",
    response_model=JobStatus,
)
async def cancel_job(
    job_id: str,
    db: Session = Depends(get_session),
) -> JobStatus:
    """Processing stops at the next chunk boundary; finished items stay committed."""
    try:
        job = job_service.cancel_job(db, job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return serialize_job(job, None)
