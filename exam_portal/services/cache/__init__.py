"""JSON values cached in the shared Redis client under an app-wide namespace.

Callers decide how to degrade; Redis errors propagate from here.
"""
from __future__ import annotations

import json
from typing import Any

from exam_portal.connections.redis import get_redis
from exam_portal.utils.config import settings


def cache_key(key: str) -> str:
    return f"{settings.app_name}:{key}"


def cache_get_json(key: str) -> Any | None:
    raw = get_redis().get(name=cache_key(key))
    if raw is None:
        return None
    return json.loads(raw)


def cache_set_json(key: str, value: Any, ttl_seconds: int | None = None) -> bool:
    payload = json.dumps(value, separators=(",", ":"))
    client = get_redis()
    if ttl_seconds is None:
        return bool(client.set(name=cache_key(key), value=payload))
    return bool(client.setex(name=cache_key(key), time=ttl_seconds, value=payload))


def cache_delete(*keys: str) -> int:
    if not keys:
        return 0
    return int(get_redis().delete(*(cache_key(k) for k in keys)))
