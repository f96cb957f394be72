"""Per-key critical sections used to serialize commits for one entity_code."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Protocol

from redis import Redis
from redis.exceptions import LockError, RedisError

from catalog.core.config import get_settings
from catalog.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)


class LockTimeout(Exception):
    """The per-key lock could not be acquired in time."""


class KeyedLock(Protocol):
    def hold(self, key: str) -> AbstractContextManager[None]: ...


class KeyedMutex:
    """In-process mutex map; entries are dropped once nobody holds or waits."""

    def __init__(self, timeout: float | None = None):
        self._timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [Lock, holders+waiters]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        acquired = lock.acquire(timeout=self._timeout if self._timeout else -1)
        try:
            if not acquired:
                raise LockTimeout(f"Timed out waiting for lock on {key}")
            yield
        finally:
            if acquired:
                lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class RedisKeyedLock:
    """Cross-process variant for deployments running several workers."""

    def __init__(self, client: Redis, timeout: float = 30.0, prefix: str = "catalog:commit:"):
        self._client = client
        self._timeout = timeout
        self._prefix = prefix

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._client.lock(
            f"{self._prefix}{key}",
            timeout=self._timeout,
            blocking_timeout=self._timeout,
        )
        try:
            acquired = lock.acquire()
        except RedisError as exc:
            raise LockTimeout(f"Redis lock unavailable for {key}: {exc}") from exc
        if not acquired:
            raise LockTimeout(f"Timed out waiting for lock on {key}")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Expired while held; the store constraint still guards the flip
                logger.warning(f"Commit lock for {key} expired before release")


_local_locks = KeyedMutex()


def get_commit_lock() -> KeyedLock:
    """Return the configured commit lock backend."""
    settings = get_settings()
    if settings.commit_lock_backend == "redis":
        return RedisKeyedLock(get_redis_client(), timeout=settings.commit_lock_timeout_seconds)
    return _local_locks
