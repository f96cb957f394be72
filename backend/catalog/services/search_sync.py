"""Best-effort search index sync for newly published versions."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from catalog.core.config import get_settings
from catalog.db.models.product_version import ProductVersion

logger = logging.getLogger(__name__)


def _sign_payload(payload: dict, secret: str) -> str:
    """Generate HMAC signature for the sync payload."""
    payload_str = json.dumps(payload, sort_keys=True)
    return hmac.new(
        secret.encode("utf-8"),
        payload_str.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def build_publish_payload(record: ProductVersion) -> dict[str, Any]:
    """Build the search sync payload for a published version."""
    return {
        "event": "product.published",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": record.to_dict(),
    }


def dispatch_sync(
    payload: dict[str, Any],
    *,
    url: str | None = None,
    secret: str | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """POST the payload to the search indexer and return delivery metrics.

    Returns a dict with ``status`` (HTTP code or error string),
    ``response_time_ms``, ``success`` and ``error``. Never raises.
    """
    settings = get_settings()
    url = url or settings.search_sync_url
    secret = secret if secret is not None else settings.search_sync_secret
    timeout = timeout or settings.search_sync_timeout_seconds

    start_time = time.time()
    result: dict[str, Any] = {
        "status": None,
        "response_time_ms": None,
        "success": False,
        "error": None,
    }
    if not url:
        result["status"] = "disabled"
        result["error"] = "search sync URL not configured"
        return result

    try:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Catalog-Versioning-Pipeline/1.0",
        }
        if secret:
            headers["X-Signature"] = f"sha256={_sign_payload(payload, secret)}"

        with httpx.Client(timeout=timeout, follow_redirects=True) as client:
            response = client.post(url, content=json.dumps(payload), headers=headers)

        result["response_time_ms"] = int((time.time() - start_time) * 1000)
        result["status"] = response.status_code
        result["success"] = 200 <= response.status_code < 300
        if not result["success"]:
            result["error"] = f"HTTP {response.status_code}: {response.text[:200]}"

        logger.info(
            f"Search sync delivered: status={result['status']}, "
            f"time={result['response_time_ms']}ms"
        )
    except httpx.TimeoutException as e:
        result["response_time_ms"] = int((time.time() - start_time) * 1000)
        result["status"] = "timeout"
        result["error"] = f"Request timeout after {timeout}s"
        logger.warning(f"Search sync timeout: {e}")
    except httpx.RequestError as e:
        result["response_time_ms"] = int((time.time() - start_time) * 1000)
        result["status"] = "error"
        result["error"] = f"Request failed: {str(e)}"
        logger.error(f"Search sync request error: {e}", exc_info=True)

    return result


def notify_published(record: ProductVersion, async_dispatch: bool | None = None) -> list[str]:
    """Ask the search indexer to pick up a published version.

    Returns warning strings for the caller's response payload; the committed
    version is never touched.
    """
    settings = get_settings()
    if not settings.search_sync_url:
        return []
    if async_dispatch is None:
        async_dispatch = settings.search_sync_async

    payload = build_publish_payload(record)
    if async_dispatch:
        from catalog.workers.tasks.search_sync import sync_product_task

        try:
            sync_product_task.delay(payload)
            logger.debug(f"Enqueued search sync for {record.entity_code} v{record.version}")
            return []
        except Exception as e:
            logger.error(
                f"Error enqueueing search sync for {record.entity_code}: {e}",
                exc_info=True,
            )
            return [f"search sync not queued: {e}"]

    result = dispatch_sync(payload)
    if not result["success"]:
        logger.warning(f"Search sync failed for {record.entity_code}: {result['error']}")
        return [f"search sync failed: {result['error']}"]
    return []
