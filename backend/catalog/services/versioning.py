"""Version chain manager: one current version per entity_code.

Every commit appends version N+1 and retires version N in the same
transaction:

    (a) look up the current version, compute N+1
    (b) merge the patch with N's payload and locked fields
    (c) score the merged candidate
    (d) decide the lifecycle status from the originating source policy
    (e) flip N's ``is_current``/``is_current_published`` to False
    (f) insert N+1 as the current version

(a)-(d) are pure and run before anything is written. (e)+(f) share one
transaction and are guarded three ways: a per-entity_code critical section,
a compare-and-swap on N's ``is_current`` flag, and the partial unique index
that lets the store hold at most one current row per entity_code. A lost race
is retried against the new latest version; repeated losses surface as
``CommitConflictError``.

Post-commit notifications (search index sync) run after the transaction and
report failures as warnings only.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from catalog.core.config import get_settings
from catalog.core.exceptions import (
    CommitConflictError,
    ProductNotFoundError,
    ValidationError,
    VersionNotFoundError,
)
from catalog.db.models.product_version import ProductVersion
from catalog.services import scorer
from catalog.services.auto_publish import (
    STATUS_DRAFT,
    STATUS_PUBLISHED,
    Decision,
    SourcePolicy,
    decide,
)
from catalog.services.merge import dropped_fields, locked_conflicts, merge
from catalog.services.sources import get_source_policy
from catalog.utils.keyed_lock import KeyedLock, LockTimeout, get_commit_lock
from catalog.utils.validators import validate_field_paths, validate_patch

logger = logging.getLogger(__name__)

ACTOR_KINDS = ("import", "api", "manual", "association")
AUTOMATED_KINDS = ("import", "api")

# Store constraints a concurrent writer can trip; anything else is a real error
RACE_CONSTRAINTS = ("uq_product_versions_current", "uq_product_versions_entity_version")
# SQLite names columns, not constraints, in its messages
SQLITE_RACE_PREFIX = "UNIQUE constraint failed: product_versions.entity_code"

Notifier = Callable[[ProductVersion], list[str]]


@dataclass(frozen=True)
class ActorContext:
    """Who is committing, and with which governance intent.

    ``import``/``api`` commits honor locked fields and take their status from
    the source policy. ``manual`` commits may overwrite locked fields, edit the
    lock set, and request a status. ``association`` commits (bulk tag/category
    assignment) honor locks and keep the previous status.
    """

    kind: str = "import"
    source_id: str | None = None
    user: str | None = None
    lock_fields: tuple[str, ...] = ()
    unlock_fields: tuple[str, ...] = ()
    requested_status: str | None = None

    @property
    def honors_locks(self) -> bool:
        return self.kind != "manual"


@dataclass
class CommitResult:
    record: ProductVersion
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any
    change_type: str  # added | removed | modified


@dataclass
class Diff:
    entity_code: str
    version_a: int
    version_b: int
    changes: list[FieldChange] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)


class _LostRace(Exception):
    """Another writer moved the current pointer between read and flip."""


def _is_lost_race(exc: IntegrityError) -> bool:
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint in RACE_CONSTRAINTS
    message = str(exc.orig)
    return SQLITE_RACE_PREFIX in message or any(name in message for name in RACE_CONSTRAINTS)


def _merge_conflicts(
    previous: Iterable[Mapping[str, Any]],
    detected: Iterable[tuple[str, Any, Any]],
    detected_at: str,
) -> list[dict[str, Any]]:
    """Carry unresolved conflicts forward; a newer one replaces the same field's."""
    merged = {entry["field"]: dict(entry) for entry in previous}
    for path, kept, incoming in detected:
        merged[path] = {
            "field": path,
            "locked_value": kept,
            "incoming_value": incoming,
            "detected_at": detected_at,
        }
    return list(merged.values())


def _flatten(value: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, item in value.items():
        path = f"{prefix}{key}"
        if isinstance(item, Mapping) and item:
            flat.update(_flatten(item, f"{path}."))
        else:
            flat[path] = item
    return flat


def _ordered_union(base: Iterable[str], added: Iterable[str], removed: Iterable[str]) -> list[str]:
    removed = set(removed)
    result: list[str] = []
    for path in [*base, *added]:
        if path not in removed and path not in result:
            result.append(path)
    return result


class VersionChainManager:
    """Commit, read and compare product versions on one session."""

    def __init__(
        self,
        db: Session,
        *,
        lock: KeyedLock | None = None,
        notifier: Notifier | None = None,
        retry_attempts: int | None = None,
    ):
        self.db = db
        self.lock = lock if lock is not None else get_commit_lock()
        self.notifier = notifier
        if retry_attempts is None:
            retry_attempts = get_settings().commit_retry_attempts
        self.retry_attempts = retry_attempts

    # Reads

    def get_current(self, entity_code: str) -> ProductVersion | None:
        return self.db.scalar(
            select(ProductVersion).where(
                ProductVersion.entity_code == entity_code,
                ProductVersion.is_current.is_(True),
            )
        )

    def get_version(self, entity_code: str, version: int) -> ProductVersion:
        record = self.db.scalar(
            select(ProductVersion).where(
                ProductVersion.entity_code == entity_code,
                ProductVersion.version == version,
            )
        )
        if record is None:
            raise VersionNotFoundError(entity_code, version)
        return record

    def list_versions(self, entity_code: str) -> list[ProductVersion]:
        return list(
            self.db.scalars(
                select(ProductVersion)
                .where(ProductVersion.entity_code == entity_code)
                .order_by(ProductVersion.version.desc())
            )
        )

    def compare(self, entity_code: str, version_a: int, version_b: int) -> Diff:
        """Field-level diff between two versions of one entity."""
        a = self.get_version(entity_code, version_a)
        b = self.get_version(entity_code, version_b)

        def _view(record: ProductVersion) -> dict[str, Any]:
            view = _flatten(record.data or {})
            view["status"] = record.status
            view["locked_fields"] = sorted(record.locked_fields or [])
            view["completeness_score"] = record.completeness_score
            return view

        old, new = _view(a), _view(b)
        changes: list[FieldChange] = []
        for path in sorted(old.keys() | new.keys()):
            if path not in old:
                changes.append(FieldChange(path, None, new[path], "added"))
            elif path not in new:
                changes.append(FieldChange(path, old[path], None, "removed"))
            elif old[path] != new[path]:
                changes.append(FieldChange(path, old[path], new[path], "modified"))
        return Diff(entity_code, version_a, version_b, changes)

    # Writes

    def commit(
        self,
        entity_code: str,
        patch: Mapping[str, Any],
        actor: ActorContext,
    ) -> CommitResult:
        """Append a new current version for ``entity_code``."""
        if actor.kind not in ACTOR_KINDS:
            raise ValidationError(f"Unknown actor kind: {actor.kind!r}")
        if actor.requested_status not in (None, STATUS_DRAFT, STATUS_PUBLISHED):
            raise ValidationError(f"Invalid status: {actor.requested_status!r}")
        entity_code, patch = validate_patch(entity_code, patch)

        policy: SourcePolicy | None = None
        if actor.kind in AUTOMATED_KINDS:
            if not actor.source_id:
                raise ValidationError("source_id is required for imported data")
            policy = get_source_policy(self.db, actor.source_id)
        if (actor.lock_fields or actor.unlock_fields) and actor.kind != "manual":
            raise ValidationError("Only manual edits can change field locks")
        lock_fields = validate_field_paths(actor.lock_fields)
        unlock_fields = validate_field_paths(actor.unlock_fields)

        attempts = 1 + max(self.retry_attempts, 0)
        record: ProductVersion | None = None
        try:
            with self.lock.hold(entity_code):
                for attempt in range(1, attempts + 1):
                    try:
                        record = self._commit_once(
                            entity_code, patch, actor, policy, lock_fields, unlock_fields
                        )
                        break
                    except _LostRace:
                        self.db.rollback()
                        logger.warning(
                            f"Lost current-version race on {entity_code} "
                            f"(attempt {attempt}/{attempts})"
                        )
                    except Exception:
                        self.db.rollback()
                        raise
        except LockTimeout as exc:
            raise CommitConflictError(entity_code, 0) from exc

        if record is None:
            raise CommitConflictError(entity_code, attempts)

        warnings = self._notify(record)
        return CommitResult(record=record, warnings=warnings)

    def _next_version(self, entity_code: str) -> int:
        latest = self.db.scalar(
            select(func.max(ProductVersion.version)).where(
                ProductVersion.entity_code == entity_code
            )
        )
        return (latest or 0) + 1

    def _flip_current(self, current: ProductVersion) -> bool:
        """Compare-and-swap: retire ``current`` only if it is still current."""
        result = self.db.execute(
            update(ProductVersion)
            .where(
                ProductVersion.id == current.id,
                ProductVersion.is_current.is_(True),
            )
            .values(is_current=False, is_current_published=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _decide(
        self,
        candidate: Mapping[str, Any],
        score: int,
        issues: list[str],
        actor: ActorContext,
        policy: SourcePolicy | None,
        current: ProductVersion | None,
    ) -> tuple[Decision, SourcePolicy]:
        if policy is not None:
            return decide(candidate, score, issues, policy), policy

        # Operator-driven commits: requested status, else keep the previous one
        requested = actor.requested_status or (current.status if current else STATUS_DRAFT)
        if actor.kind == "manual":
            who = actor.user or "operator"
            policy = SourcePolicy(source_id="manual", source_name="Manual edit")
        else:
            who = "bulk association"
            policy = SourcePolicy(source_id="association", source_name="Bulk association")

        if requested == STATUS_DRAFT:
            return Decision(STATUS_DRAFT, False, f"kept as draft by {who}"), policy

        policy = SourcePolicy(
            source_id=policy.source_id,
            source_name=policy.source_name,
            auto_publish_enabled=True,
            min_score_threshold=0,
        )
        decision = decide(candidate, score, issues, policy)
        if decision.eligible:
            decision = Decision(STATUS_PUBLISHED, True, f"published by {who}")
        return decision, policy

    def _commit_once(
        self,
        entity_code: str,
        patch: dict[str, Any],
        actor: ActorContext,
        policy: SourcePolicy | None,
        lock_fields: list[str],
        unlock_fields: list[str],
    ) -> ProductVersion:
        # (a)
        current = self.get_current(entity_code)
        if current is None and actor.kind == "association":
            raise ProductNotFoundError(entity_code)
        next_version = self._next_version(entity_code)

        # (b)
        current_data = dict(current.data or {}) if current else None
        current_locks = list(current.locked_fields or []) if current else []
        candidate = merge(
            current_data,
            patch,
            current_locks if actor.honors_locks else (),
        )
        detected: list[tuple[str, Any, Any]] = []
        if actor.honors_locks and current_locks:
            skipped = dropped_fields(patch, current_locks)
            if skipped:
                logger.debug(f"Kept locked fields on {entity_code}: {', '.join(skipped)}")
            detected = locked_conflicts(current_data, patch, current_locks)
        if not candidate.get("sku"):
            candidate["sku"] = current.sku if current else entity_code
        if actor.kind == "manual":
            locked_fields = _ordered_union(current_locks, lock_fields, unlock_fields)
        else:
            locked_fields = current_locks

        # (c)
        score, issues = scorer.score(candidate)

        # (d)
        decision, effective_policy = self._decide(
            candidate, score, issues, actor, policy, current
        )

        now = datetime.now(timezone.utc)
        # Manual edits are the operator's resolution of outstanding conflicts
        if actor.kind == "manual" or current is None:
            conflicts: list[dict[str, Any]] = []
        else:
            conflicts = _merge_conflicts(current.conflict_data or [], detected, now.isoformat())
        if detected:
            logger.info(
                f"Locked values on {entity_code} kept over incoming data: "
                f"{', '.join(path for path, _, _ in detected)}"
            )
        published_at = current.published_at if current else None
        if decision.status == STATUS_PUBLISHED and published_at is None:
            published_at = now

        # (e) + (f), one transaction
        if current is not None and not self._flip_current(current):
            raise _LostRace()

        record = ProductVersion(
            entity_code=entity_code,
            sku=str(candidate["sku"]),
            version=next_version,
            is_current=True,
            is_current_published=decision.status == STATUS_PUBLISHED,
            status=decision.status,
            published_at=published_at,
            locked_fields=locked_fields,
            manually_edited=actor.kind == "manual",
            edited_by=actor.user if actor.kind == "manual" else None,
            edited_at=now if actor.kind == "manual" else None,
            completeness_score=score,
            critical_issues=issues,
            auto_publish_eligible=decision.eligible,
            auto_publish_reason=decision.reason,
            has_conflict=bool(conflicts),
            conflict_data=conflicts,
            source={
                "source_id": effective_policy.source_id,
                "source_name": effective_policy.source_name,
                "imported_at": now.isoformat(),
                **effective_policy.snapshot(),
            },
            data=candidate,
        )
        self.db.add(record)
        try:
            self.db.flush()
            self.db.commit()
        except IntegrityError as exc:
            if not _is_lost_race(exc):
                raise
            logger.debug(f"Integrity error committing {entity_code} v{next_version}: {exc}")
            raise _LostRace() from exc

        logger.debug(
            f"Committed {entity_code} v{next_version} status={decision.status} "
            f"score={score} ({decision.reason})"
        )
        return record

    def _notify(self, record: ProductVersion) -> list[str]:
        if self.notifier is None or not record.is_current_published:
            return []
        try:
            return list(self.notifier(record) or [])
        except Exception as exc:
            logger.error(
                f"Post-commit notification failed for {record.entity_code} "
                f"v{record.version}: {exc}",
                exc_info=True,
            )
            return [f"search sync failed: {exc}"]
