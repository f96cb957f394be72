"""Validate commit requests and enforce field constraints."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from numbers import Number
from typing import Any

from catalog.core.exceptions import ValidationError

# Governance fields owned by the version chain; never accepted from a patch
RESERVED_FIELDS = frozenset(
    {
        "version",
        "is_current",
        "is_current_published",
        "status",
        "published_at",
        "locked_fields",
        "manually_edited",
        "edited_by",
        "completeness_score",
        "critical_issues",
        "auto_publish_eligible",
        "auto_publish_reason",
        "source",
    }
)

MAX_ENTITY_CODE_LENGTH = 128


def validate_entity_code(entity_code: Any) -> str:
    if not isinstance(entity_code, str) or not entity_code.strip():
        raise ValidationError("entity_code is required and cannot be empty")
    entity_code = entity_code.strip()
    if len(entity_code) > MAX_ENTITY_CODE_LENGTH:
        raise ValidationError(
            f"entity_code exceeds {MAX_ENTITY_CODE_LENGTH} characters"
        )
    return entity_code


def validate_field_paths(paths: Iterable[Any]) -> list[str]:
    """Ensure each lock path is a dotted path with non-empty segments."""
    cleaned: list[str] = []
    for path in paths:
        if not isinstance(path, str) or not path.strip():
            raise ValidationError(f"Invalid field path: {path!r}")
        path = path.strip()
        if any(not segment for segment in path.split(".")):
            raise ValidationError(f"Invalid field path: {path!r}")
        if path.split(".")[0] in RESERVED_FIELDS:
            raise ValidationError(f"Field {path!r} cannot be locked")
        if path not in cleaned:
            cleaned.append(path)
    return cleaned


def _clean(value: Any) -> Any:
    """Trim strings recursively, leaving other values untouched."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Mapping):
        return {key: _clean(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_clean(item) for item in value]
    return value


def validate_patch(entity_code: Any, patch: Any) -> tuple[str, dict[str, Any]]:
    """Check a commit request and return the normalized (entity_code, patch)."""
    entity_code = validate_entity_code(entity_code)

    if not isinstance(patch, Mapping):
        raise ValidationError("patch must be an object of field -> value")

    normalized: dict[str, Any] = {}
    for key, value in patch.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError(f"Invalid field name: {key!r}")
        key = key.strip()
        if any(not segment for segment in key.split(".")):
            raise ValidationError(f"Invalid field path: {key!r}")
        if key.split(".")[0] in RESERVED_FIELDS:
            raise ValidationError(f"Field {key!r} is managed by the catalog and cannot be set")
        normalized[key] = _clean(value)

    if "entity_code" in normalized and normalized["entity_code"] != entity_code:
        raise ValidationError(
            f"patch entity_code {normalized['entity_code']!r} does not match {entity_code!r}"
        )
    normalized.pop("entity_code", None)

    if "price" in normalized and normalized["price"] is not None:
        price = normalized["price"]
        if isinstance(price, bool) or not isinstance(price, Number):
            raise ValidationError(f"price must be a number, got {price!r}")
        if price < 0:
            raise ValidationError(f"price cannot be negative ({price})")

    if "sku" in normalized and not (
        isinstance(normalized["sku"], str) and normalized["sku"]
    ):
        raise ValidationError("sku must be a non-empty string")

    return entity_code, normalized
