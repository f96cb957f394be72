"""Redis connections for progress snapshots, commit locks and health checks."""

from __future__ import annotations

import ssl
from functools import lru_cache
from typing import Any

from redis import Redis

from catalog.core.config import get_settings

TLS_ONLY_HOSTS = (".upstash.io",)


def normalize_redis_url(url: str) -> str:
    """Upgrade hosts that only accept TLS to ``rediss://``."""
    if url.startswith("redis://") and any(host in url for host in TLS_ONLY_HOSTS):
        return "rediss://" + url[len("redis://") :]
    return url


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Build a client for ``url``; TLS connections skip certificate checks,
    which hosted providers with shared certificates require."""
    url = normalize_redis_url(url)
    client = Redis.from_url(url, **kwargs)

    if url.startswith("rediss://"):
        pool_kwargs = getattr(client.connection_pool, "connection_kwargs", None)
        if pool_kwargs is not None:
            pool_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client


@lru_cache
def get_redis_client() -> Redis:
    """Process-wide client shared by progress snapshots and commit locks."""
    return create_redis_client(
        get_settings().redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
    )
