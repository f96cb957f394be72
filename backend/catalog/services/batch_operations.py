"""Per-item operations for each bulk job type.

Each factory returns an ``op(db, item, index)`` callable for ``JobRunner``.
Every mutation goes through ``VersionChainManager.commit`` so bulk edits get
the same versioning, locking and publish rules as single commits.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from catalog.core.exceptions import (
    ProductNotFoundError,
    PublishBlockedError,
    ValidationError,
)
from catalog.services import scorer
from catalog.services.auto_publish import STATUS_PUBLISHED
from catalog.services.job_runner import ItemOp, ItemOutcome
from catalog.services.merge import is_locked
from catalog.services.search_sync import notify_published
from catalog.services.sources import apply_field_mappings
from catalog.services.versioning import ActorContext, Notifier, VersionChainManager

ASSOCIATION_ACTIONS = ("add", "remove")
ASSOCIATION_FIELDS = ("brand", "category", "tags", "collections")
LIST_FIELDS = ("tags", "collections")

# Identity keys used to match association values, by field
_ID_KEYS = {
    "brand": ("brand_id", "id", "slug", "name"),
    "category": ("category_id", "id", "slug", "name"),
    "tags": ("tag_id", "id", "slug", "name"),
    "collections": ("collection_id", "id", "slug", "name"),
}


def _entity_code_of(item: Any) -> str:
    if isinstance(item, Mapping):
        item = item.get("entity_code")
    if not isinstance(item, str) or not item.strip():
        raise ValidationError("Item must be an entity_code")
    return item.strip()


def _identity(field: str, value: Any) -> Any:
    if isinstance(value, Mapping):
        for key in _ID_KEYS[field]:
            if value.get(key) not in (None, ""):
                return value[key]
        return tuple(sorted(value.items()))
    return value


def import_product_op(
    source_id: str,
    field_mappings: Mapping[str, str] | None = None,
    notifier: Notifier | None = notify_published,
) -> ItemOp:
    """Map a raw feed row to canonical fields and commit it for ``source_id``."""
    actor = ActorContext(kind="import", source_id=source_id)

    def op(db: Session, item: Any, index: int) -> ItemOutcome:
        if not isinstance(item, Mapping):
            raise ValidationError(f"Row {index + 1} is not an object")
        mapped = apply_field_mappings(item, field_mappings)
        entity_code = mapped.get("entity_code") or mapped.get("sku")
        if entity_code in (None, ""):
            raise ValidationError("Missing entity_code or sku")
        entity_code = str(entity_code)
        mapped["entity_code"] = entity_code
        sku = mapped.get("sku")
        if isinstance(sku, (int, float)) and not isinstance(sku, bool):
            mapped["sku"] = str(sku)

        manager = VersionChainManager(db, notifier=notifier)
        result = manager.commit(entity_code, mapped, actor)
        return ItemOutcome(
            published=result.record.status == STATUS_PUBLISHED,
            warnings=result.warnings,
        )

    return op


def associate_op(
    action: str,
    field: str,
    value: Any,
    notifier: Notifier | None = notify_published,
) -> ItemOp:
    """Add or remove a brand, category, tag or collection on current versions.

    Brand and category are single-valued: ``add`` replaces, ``remove`` clears
    the field only when it holds ``value``. Tags and collections are lists
    matched by identity (``tag_id``/``collection_id``/``id``/``slug``/``name``).
    Adding a value that is already present is a no-op and counts as success.
    """
    if action not in ASSOCIATION_ACTIONS:
        raise ValidationError(f"Unknown association action: {action!r}")
    if field not in ASSOCIATION_FIELDS:
        raise ValidationError(f"Unknown association field: {field!r}")
    if value in (None, "", {}):
        raise ValidationError("Association value is required")

    actor = ActorContext(kind="association")
    target = _identity(field, value)

    def op(db: Session, item: Any, index: int) -> ItemOutcome:
        entity_code = _entity_code_of(item)
        manager = VersionChainManager(db, notifier=notifier)
        current = manager.get_current(entity_code)
        if current is None:
            raise ProductNotFoundError(entity_code)
        if is_locked(field, current.locked_fields or []):
            raise ValidationError(f"{field} is locked on {entity_code}")

        data = current.data or {}
        if field in LIST_FIELDS:
            existing = list(data.get(field) or [])
            present = [_identity(field, entry) for entry in existing]
            if action == "add":
                if target in present:
                    return ItemOutcome()
                patch = {field: [*existing, value]}
            else:
                if target not in present:
                    return ItemOutcome()
                patch = {
                    field: [e for e in existing if _identity(field, e) != target]
                }
        elif action == "add":
            if _identity(field, data.get(field)) == target:
                return ItemOutcome()
            patch = {field: value}
        else:
            if _identity(field, data.get(field)) != target:
                raise ValidationError(f"{entity_code} is not associated with that {field}")
            patch = {field: None}

        result = manager.commit(entity_code, patch, actor)
        return ItemOutcome(
            published=result.record.status == STATUS_PUBLISHED,
            warnings=result.warnings,
        )

    return op


def publish_op(
    min_score: int = 0,
    user: str = "bulk publish",
    notifier: Notifier | None = notify_published,
) -> ItemOp:
    """Publish current drafts that pass the quality gate.

    Drafts with critical issues or a score below ``min_score`` are reported
    as item failures. Already-published products count as successes.
    """
    actor = ActorContext(kind="manual", user=user, requested_status=STATUS_PUBLISHED)

    def op(db: Session, item: Any, index: int) -> ItemOutcome:
        entity_code = _entity_code_of(item)
        manager = VersionChainManager(db, notifier=notifier)
        current = manager.get_current(entity_code)
        if current is None:
            raise ProductNotFoundError(entity_code)
        if current.status == STATUS_PUBLISHED:
            return ItemOutcome()

        score, issues = scorer.score(current.data or {})
        if issues:
            raise PublishBlockedError(f"critical issues present: {', '.join(issues)}")
        if score < min_score:
            raise PublishBlockedError(f"score {score} below threshold {min_score}")

        result = manager.commit(entity_code, {}, actor)
        return ItemOutcome(
            published=result.record.status == STATUS_PUBLISHED,
            warnings=result.warnings,
        )

    return op
