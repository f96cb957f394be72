"""Celery task for asynchronous search index sync."""

from __future__ import annotations

import logging
from typing import Any

from catalog.services.search_sync import dispatch_sync
from catalog.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="catalog.workers.tasks.search_sync")
def sync_product_task(self, payload: dict[str, Any]) -> dict[str, Any]:
    """Deliver a publish event to the search indexer.

    Delivery is best-effort: failures are logged and returned, never retried
    into the commit path.
    """
    try:
        result = dispatch_sync(payload)
    except Exception as e:
        logger.error(f"Error dispatching search sync: {e}", exc_info=True)
        return {"success": False, "error": str(e)}

    data = payload.get("data") or {}
    logger.info(
        f"Search sync for {data.get('entity_code')} v{data.get('version')}: "
        f"success={result.get('success')}, status={result.get('status')}"
    )
    return result
