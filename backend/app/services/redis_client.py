"""Simple Redis client helper (sync) used by the Redis-backed state store."""
from __future__ import annotations

import os
from typing import Optional

import redis


_clients: dict[str, redis.Redis] = {}


def get_redis(url: Optional[str] = None) -> redis.Redis:
    url = url or os.environ.get("LAUNCH_REDIS_URL", "redis://127.0.0.1:6379/0")
    client = _clients.get(url)
    if client is None:
        client = redis.from_url(url, decode_responses=True)
        _clients[url] = client
    return client
