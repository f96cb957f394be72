"""Three-way merge of incoming data with operator-locked fields.

Structural only: status and scoring never influence the result.

Rules, per field path present in the incoming patch:

* path (or one of its ancestors) locked -> current value kept, incoming dropped
* otherwise -> incoming value taken; objects and arrays replace the current
  value wholesale, except that a locked sub-path inside an incoming object
  keeps the current value at that sub-path
* a locked path that descends into an array pins the whole array (there is
  no per-element locking)

Fields absent from the patch keep their current value. With no current
version every incoming field is taken and locks are ignored.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any

MISSING = object()


def _segments(path: str) -> list[str]:
    return path.split(".")


def get_path(record: Mapping[str, Any] | None, path: str, default: Any = None) -> Any:
    """Resolve a dotted path through nested dicts."""
    node: Any = record
    for segment in _segments(path):
        if not isinstance(node, Mapping) or segment not in node:
            return default
        node = node[segment]
    return node


def _set_path(record: dict[str, Any], path: str, value: Any) -> None:
    segments = _segments(path)
    node = record
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child
    node[segments[-1]] = value


def _delete_path(record: dict[str, Any], path: str) -> None:
    segments = _segments(path)
    node: Any = record
    for segment in segments[:-1]:
        node = node.get(segment) if isinstance(node, dict) else None
        if node is None:
            return
    if isinstance(node, dict):
        node.pop(segments[-1], None)


def is_locked(path: str, locked: Iterable[str]) -> bool:
    """True when ``path`` itself or any ancestor path is locked."""
    segments = _segments(path)
    prefixes = {".".join(segments[: i + 1]) for i in range(len(segments))}
    return any(lock in prefixes for lock in locked)


def _locked_descendants(path: str, locked: Iterable[str]) -> list[str]:
    prefix = f"{path}."
    return sorted(lock for lock in locked if lock.startswith(prefix))


def _restore(target: Any, source: Any, segments: list[str]) -> Any:
    """Put ``source``'s value at ``segments`` back into ``target``."""
    if not segments or (source is MISSING and not isinstance(target, dict)):
        return source if source is MISSING else copy.deepcopy(source)
    if target is MISSING and isinstance(source, Mapping):
        target = {}
    if not isinstance(target, dict):
        # Array or scalar on the way down: the lock pins the value at this level
        return copy.deepcopy(source)

    head, rest = segments[0], segments[1:]
    source_child = source.get(head, MISSING) if isinstance(source, Mapping) else MISSING
    restored = _restore(target.get(head, MISSING), source_child, rest)
    if restored is MISSING:
        target.pop(head, None)
    else:
        target[head] = restored
    return target


def merge(
    current: Mapping[str, Any] | None,
    incoming: Mapping[str, Any],
    locked: Iterable[str] = (),
) -> dict[str, Any]:
    """Produce the merged candidate payload; inputs are never mutated."""
    if current is None:
        result: dict[str, Any] = {}
        for path, value in incoming.items():
            _set_path(result, path, copy.deepcopy(value))
        return result

    locked = [lock for lock in locked if lock]
    result = copy.deepcopy(dict(current))

    for path, value in incoming.items():
        if is_locked(path, locked):
            continue

        new_value = copy.deepcopy(value)
        current_value = get_path(current, path, MISSING)
        for lock in _locked_descendants(path, locked):
            relative = _segments(lock[len(path) + 1 :])
            new_value = _restore(new_value, current_value, relative)

        if new_value is MISSING:
            _delete_path(result, path)
        else:
            _set_path(result, path, new_value)

    return result


def dropped_fields(incoming: Mapping[str, Any], locked: Iterable[str]) -> list[str]:
    """Incoming paths a merge will discard because they are locked."""
    locked = list(locked)
    return [path for path in incoming if is_locked(path, locked)]


def locked_conflicts(
    current: Mapping[str, Any] | None,
    incoming: Mapping[str, Any],
    locked: Iterable[str],
) -> list[tuple[str, Any, Any]]:
    """``(locked path, kept value, discarded incoming value)`` for each locked
    path where the patch disagreed with the value a merge keeps."""
    if current is None:
        return []
    locked = [lock for lock in locked if lock]
    conflicts: list[tuple[str, Any, Any]] = []
    for path, value in incoming.items():
        if is_locked(path, locked):
            kept = get_path(current, path)
            if value != kept:
                conflicts.append((path, copy.deepcopy(kept), copy.deepcopy(value)))
            continue
        if not isinstance(value, Mapping):
            continue
        for lock in _locked_descendants(path, locked):
            incoming_value = get_path(value, lock[len(path) + 1 :], MISSING)
            if incoming_value is MISSING:
                continue
            kept = get_path(current, lock)
            if incoming_value != kept:
                conflicts.append((lock, copy.deepcopy(kept), copy.deepcopy(incoming_value)))
    return conflicts
