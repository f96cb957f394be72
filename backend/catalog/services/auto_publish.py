"""Auto-publish decision engine.

Checks run in a fixed priority and stop at the first blocking condition, so
the recorded reason always names that condition:

1. auto-publish disabled for the source
2. critical issues present
3. required fields missing
4. completeness score below the source threshold
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from catalog.services.merge import get_path

STATUS_DRAFT = "draft"
STATUS_PUBLISHED = "published"


@dataclass(frozen=True)
class SourcePolicy:
    """Per-source auto-publish configuration in effect for one commit."""

    source_id: str
    source_name: str = ""
    auto_publish_enabled: bool = False
    min_score_threshold: int = 80
    required_fields: tuple[str, ...] = ()
    field_mappings: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_source(cls, source: Any) -> "SourcePolicy":
        return cls(
            source_id=source.source_id,
            source_name=source.source_name or source.source_id,
            auto_publish_enabled=bool(source.auto_publish_enabled),
            min_score_threshold=int(source.min_score_threshold or 0),
            required_fields=tuple(source.required_fields or ()),
            field_mappings=dict(source.field_mappings or {}),
        )

    def snapshot(self) -> dict[str, Any]:
        """Policy fields stored on each version as provenance."""
        return {
            "auto_publish_enabled": self.auto_publish_enabled,
            "min_score_threshold": self.min_score_threshold,
            "required_fields": list(self.required_fields),
        }


@dataclass(frozen=True)
class Decision:
    status: str
    eligible: bool
    reason: str


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def missing_required_fields(
    record: Mapping[str, Any], required_fields: Iterable[str]
) -> list[str]:
    """Required paths (dotted, e.g. ``brand.brand_id``) absent or empty on the record."""
    return [path for path in required_fields if _is_empty(get_path(record, path))]


def decide(
    candidate: Mapping[str, Any],
    score: int,
    critical_issues: list[str],
    policy: SourcePolicy,
) -> Decision:
    """Decide the lifecycle status of a scored candidate."""
    if not policy.auto_publish_enabled:
        return Decision(STATUS_DRAFT, False, "auto-publish disabled for source")

    if critical_issues:
        return Decision(
            STATUS_DRAFT,
            False,
            f"critical issues present: {', '.join(critical_issues)}",
        )

    missing = missing_required_fields(candidate, policy.required_fields)
    if missing:
        return Decision(
            STATUS_DRAFT, False, f"missing required fields: {', '.join(missing)}"
        )

    if score < policy.min_score_threshold:
        return Decision(
            STATUS_DRAFT,
            False,
            f"score {score} below threshold {policy.min_score_threshold}",
        )

    return Decision(
        STATUS_PUBLISHED,
        True,
        f"meets auto-publish criteria (score {score} >= {policy.min_score_threshold})",
    )
