"""Commit, read and compare versioned product records."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog.api.dependencies.db import get_session
from catalog.api.schemas.product import (
    CommitRequest,
    CommitResponse,
    CompareResponse,
    FieldChangeRead,
    ManualEditRequest,
    VersionListResponse,
    VersionSummary,
)
from catalog.core.exceptions import (
    CommitConflictError,
    ProductNotFoundError,
    SourceNotFoundError,
    ValidationError,
    VersionNotFoundError,
)
from catalog.services.search_sync import notify_published
from catalog.services.versioning import ActorContext, CommitResult, VersionChainManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _commit(
    db: Session, entity_code: str, patch: dict, actor: ActorContext
) -> CommitResult:
    manager = VersionChainManager(db, notifier=notify_published)
    try:
        return manager.commit(entity_code, patch, actor)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (SourceNotFoundError, ProductNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CommitConflictError as exc:
        logger.warning(f"Commit conflict on {entity_code}: {exc}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        logger.error(f"Database error committing {entity_code}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to commit product version",
        ) from exc


@router.post(
    "/{entity_code}/commits",
    summary="Commit imported data for a product",
    status_code=status.HTTP_201_CREATED,
    response_model=CommitResponse,
)
async def commit_product(
    entity_code: str,
    payload: CommitRequest,
    db: Session = Depends(get_session),
) -> CommitResponse:
    """Append a new current version; locked fields keep their values and the
    source policy decides draft vs published."""
    actor = ActorContext(kind="api", source_id=payload.source_id)
    result = _commit(db, entity_code, payload.patch, actor)
    return CommitResponse(product=result.record.to_dict(), warnings=result.warnings)


@router.patch(
    "/{entity_code}",
    summary="Manually edit a product",
    response_model=CommitResponse,
)
async def edit_product(
    entity_code: str,
    payload: ManualEditRequest,
    db: Session = Depends(get_session),
) -> CommitResponse:
    """Operator edit: may overwrite locked fields, change locks and request
    a status. Publishing still requires no critical issues."""
    actor = ActorContext(
        kind="manual",
        user=payload.edited_by,
        lock_fields=tuple(payload.lock_fields),
        unlock_fields=tuple(payload.unlock_fields),
        requested_status=payload.status,
    )
    result = _commit(db, entity_code, payload.patch, actor)
    return CommitResponse(product=result.record.to_dict(), warnings=result.warnings)


@router.get(
    "/{entity_code}",
    summary="Fetch the current (or a specific) version of a product",
)
async def get_product(
    entity_code: str,
    version: int | None = Query(None, ge=1, description="Specific version number"),
    db: Session = Depends(get_session),
) -> dict:
    manager = VersionChainManager(db)
    try:
        if version is not None:
            record = manager.get_version(entity_code, version)
        else:
            record = manager.get_current(entity_code)
    except VersionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return record.to_dict()


@router.get(
    "/{entity_code}/versions",
    summary="List the version chain of a product",
    response_model=VersionListResponse,
)
async def list_versions(
    entity_code: str,
    db: Session = Depends(get_session),
) -> VersionListResponse:
    """Newest first."""
    versions = VersionChainManager(db).list_versions(entity_code)
    if not versions:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return VersionListResponse(
        entity_code=entity_code,
        versions=[
            VersionSummary(
                version=v.version,
                is_current=v.is_current,
                status=v.status,
                completeness_score=v.completeness_score,
                auto_publish_reason=v.auto_publish_reason,
                manually_edited=v.manually_edited,
                has_conflict=bool(v.has_conflict),
                source_id=(v.source or {}).get("source_id"),
                created_at=v.created_at,
            )
            for v in versions
        ],
    )


@router.get(
    "/{entity_code}/compare",
    summary="Field-level diff between two versions",
    response_model=CompareResponse,
)
async def compare_versions(
    entity_code: str,
    v1: int = Query(..., ge=1),
    v2: int = Query(..., ge=1),
    db: Session = Depends(get_session),
) -> CompareResponse:
    try:
        diff = VersionChainManager(db).compare(entity_code, v1, v2)
    except VersionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return CompareResponse(
        entity_code=diff.entity_code,
        version_a=diff.version_a,
        version_b=diff.version_b,
        has_changes=diff.has_changes,
        changes=[
            FieldChangeRead(
                field=c.field,
                old_value=c.old_value,
                new_value=c.new_value,
                change_type=c.change_type,
            )
            for c in diff.changes
        ],
    )
