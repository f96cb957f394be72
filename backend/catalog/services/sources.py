"""Import source lookups: policy, field mappings and run statistics."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from catalog.core.exceptions import SourceNotFoundError
from catalog.db.models.import_source import ImportSource, default_stats
from catalog.services.auto_publish import SourcePolicy

logger = logging.getLogger(__name__)


def get_source(db: Session, source_id: str) -> ImportSource:
    source = db.get(ImportSource, source_id)
    if source is None:
        raise SourceNotFoundError(source_id)
    return source


def get_source_policy(db: Session, source_id: str) -> SourcePolicy:
    """Read the auto-publish policy for ``source_id``."""
    return SourcePolicy.from_source(get_source(db, source_id))


def apply_field_mappings(
    raw: Mapping[str, Any], field_mappings: Mapping[str, str] | None
) -> dict[str, Any]:
    """Rename source fields to canonical ones.

    Mapped fields win; unmapped fields pass through unless a mapping already
    produced a canonical field of the same name.
    """
    if not field_mappings:
        return dict(raw)

    mapped: dict[str, Any] = {}
    for source_field, canonical_field in field_mappings.items():
        if source_field in raw:
            mapped[canonical_field] = raw[source_field]

    for key, value in raw.items():
        if key not in field_mappings and key not in mapped:
            mapped[key] = value
    return mapped


def record_import_run(
    db: Session,
    source_id: str,
    successful: int,
    failed: int,
    *,
    job_failed: bool = False,
) -> None:
    """Fold one import job's outcome into the source's aggregate stats."""
    source = db.get(ImportSource, source_id)
    if source is None:
        logger.warning(f"Source {source_id} disappeared before stats update")
        return

    stats = {**default_stats(), **(source.stats or {})}
    if job_failed:
        stats["last_import_status"] = "failed"
    else:
        stats["total_imports"] += 1
        stats["total_products"] += successful
        stats["last_import_status"] = "partial" if failed > 0 else "success"
    stats["last_import_at"] = datetime.now(timezone.utc).isoformat()
    # Reassign so the JSON column is flagged dirty
    source.stats = stats
