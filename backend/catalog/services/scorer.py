"""Product completeness scoring.

Pure functions: the same record always yields the same score and issues, and
nothing here raises on malformed input -- a structurally incomplete record
simply scores low.

Weights (maximum 100):

    ==================  ======  =========================================
    signal              points  rule
    ==================  ======  =========================================
    name                15      >= 10 chars; 7 for a shorter, non-empty name
    description         10      >= 50 chars; 5 for a shorter, non-empty one
    brand               10      non-empty string, or dict with brand_id and
                                label/name
    category            10      non-empty string, or dict with category_id
                                and name
    primary image       15      first entry of ``images`` has a url
    gallery             5       three or more images
    price               15      numeric and > 0
    marketing features  10      2 per feature, capped
    packaging options   10      at least one option
    ==================  ======  =========================================

Multilingual text (``{"it": "...", "en": "..."}``) counts its longest
translation. Critical issues block auto-publish regardless of score and are
reported in a fixed order: missing primary image, then missing price.
"""

from __future__ import annotations

from collections.abc import Mapping
from numbers import Number
from typing import Any

NAME_MIN_LENGTH = 10
DESCRIPTION_MIN_LENGTH = 50
GALLERY_MIN_IMAGES = 3
POINTS_PER_FEATURE = 2

FIELD_WEIGHTS: dict[str, int] = {
    "name": 15,
    "description": 10,
    "brand": 10,
    "category": 10,
    "images": 15,
    "gallery": 5,
    "price": 15,
    "marketing_features": 10,
    "packaging_options": 10,
}

ISSUE_MISSING_IMAGE = "Missing primary product image"
ISSUE_MISSING_PRICE = "Missing or invalid price"


def _text_length(text: Any) -> int:
    if isinstance(text, str):
        return len(text.strip())
    if isinstance(text, Mapping):
        lengths = [len(v.strip()) for v in text.values() if isinstance(v, str)]
        return max(lengths, default=0)
    return 0


def _has_text(text: Any) -> bool:
    return _text_length(text) > 0


def _has_reference(value: Any, id_key: str, label_keys: tuple[str, ...]) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, Mapping):
        return bool(value.get(id_key)) and any(_has_text(value.get(k)) for k in label_keys)
    return False


def _images(record: Mapping[str, Any]) -> list:
    images = record.get("images")
    return images if isinstance(images, list) else []


def _has_primary_image(record: Mapping[str, Any]) -> bool:
    images = _images(record)
    if not images:
        return False
    first = images[0]
    if isinstance(first, str):
        return bool(first.strip())
    if isinstance(first, Mapping):
        return _has_text(first.get("url"))
    return False


def _has_price(record: Mapping[str, Any]) -> bool:
    price = record.get("price")
    if isinstance(price, bool) or not isinstance(price, Number):
        return False
    try:
        return price > 0
    except TypeError:
        return False


def _feature_count(features: Any) -> int:
    # Legacy flat list, or multilingual {lang: [...]} counting the largest list
    if isinstance(features, list):
        return len(features)
    if isinstance(features, Mapping):
        return max((len(v) for v in features.values() if isinstance(v, list)), default=0)
    return 0


def score_breakdown(record: Mapping[str, Any]) -> dict[str, dict[str, float]]:
    """Return points earned per signal: ``{field: {current, max, percentage}}``."""
    if not isinstance(record, Mapping):
        record = {}

    name_length = _text_length(record.get("name"))
    if name_length >= NAME_MIN_LENGTH:
        name = FIELD_WEIGHTS["name"]
    elif name_length > 0:
        name = 7
    else:
        name = 0

    description_length = _text_length(record.get("description"))
    if description_length >= DESCRIPTION_MIN_LENGTH:
        description = FIELD_WEIGHTS["description"]
    elif description_length > 0:
        description = 5
    else:
        description = 0

    earned = {
        "name": name,
        "description": description,
        "brand": FIELD_WEIGHTS["brand"]
        if _has_reference(record.get("brand"), "brand_id", ("label", "name"))
        else 0,
        "category": FIELD_WEIGHTS["category"]
        if _has_reference(record.get("category"), "category_id", ("name",))
        else 0,
        "images": FIELD_WEIGHTS["images"] if _has_primary_image(record) else 0,
        "gallery": FIELD_WEIGHTS["gallery"]
        if len(_images(record)) >= GALLERY_MIN_IMAGES
        else 0,
        "price": FIELD_WEIGHTS["price"] if _has_price(record) else 0,
        "marketing_features": min(
            _feature_count(record.get("marketing_features")) * POINTS_PER_FEATURE,
            FIELD_WEIGHTS["marketing_features"],
        ),
        "packaging_options": FIELD_WEIGHTS["packaging_options"]
        if _feature_count(record.get("packaging_options")) > 0
        else 0,
    }

    return {
        field: {
            "current": points,
            "max": FIELD_WEIGHTS[field],
            "percentage": points / FIELD_WEIGHTS[field] * 100,
        }
        for field, points in earned.items()
    }


def calculate_completeness_score(record: Mapping[str, Any]) -> int:
    """Calculate the 0-100 completeness score."""
    total = sum(int(entry["current"]) for entry in score_breakdown(record).values())
    return max(0, min(total, 100))


def find_critical_issues(record: Mapping[str, Any]) -> list[str]:
    """Defects that unconditionally block auto-publish."""
    if not isinstance(record, Mapping):
        record = {}
    issues: list[str] = []
    if not _has_primary_image(record):
        issues.append(ISSUE_MISSING_IMAGE)
    if not _has_price(record):
        issues.append(ISSUE_MISSING_PRICE)
    return issues


def score(record: Mapping[str, Any]) -> tuple[int, list[str]]:
    """Return ``(completeness, critical_issues)`` for a candidate record."""
    return calculate_completeness_score(record), find_critical_issues(record)
