"""Job progress snapshots kept in Redis for cheap polling.

The Job row stays the source of truth; a snapshot only adds the latest
human-readable message and lets pollers avoid a database round trip. Redis
being unavailable degrades polling, never the job itself.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from redis.exceptions import RedisError

from catalog.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "catalog:jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def publish_progress(
    job_id: str,
    progress: float,
    message: str | None = None,
    *,
    status: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """Overwrite the snapshot for ``job_id``; ``progress`` is clamped to [0, 1]."""
    snapshot = {
        "job_id": job_id,
        "progress": round(max(0.0, min(progress, 1.0)), 4),
        "message": message,
        "status": status,
        "meta": meta or {},
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        get_redis_client().set(
            _key(job_id),
            json.dumps(snapshot, default=str),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError as e:
        logger.warning(f"Could not publish progress for job {job_id}: {e}")


def fetch_progress(job_id: str) -> dict[str, Any]:
    """Latest snapshot for ``job_id``, or ``{}`` when none is readable."""
    try:
        raw = get_redis_client().get(_key(job_id))
    except RedisError as e:
        logger.warning(f"Could not read progress for job {job_id}: {e}")
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Discarding malformed progress snapshot for job {job_id}")
        return {}
