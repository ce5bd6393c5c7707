import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis
from fastapi import FastAPI

from exam_portal.utils.config import settings


logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None
_queue_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    if _redis_client is None:
        raise RuntimeError("Redis not initialized")
    return _redis_client


def set_redis(client: Optional[redis.Redis]) -> None:
    """Install an already-built client (workers, scripts, tests)."""
    global _redis_client
    _redis_client = client


def get_queue_redis() -> redis.Redis:
    """Byte-oriented client for rq, which stores pickled job payloads."""
    global _queue_client
    if _queue_client is None:
        _queue_client = redis.Redis(
            db=settings.redis_db,
            port=settings.redis_port,
            host=settings.redis_host,
            password=settings.redis_password,
            socket_timeout=2.0,
        )
    return _queue_client


def init_redis() -> None:
    set_redis(redis.Redis(
        db=settings.redis_db,
        port=settings.redis_port,
        host=settings.redis_host,
        password=settings.redis_password,
        decode_responses=True,
        socket_timeout=2.0,
    ))
    logger.info("Redis client configured for %s:%s/%s", settings.redis_host, settings.redis_port, settings.redis_db)


def close_redis() -> None:
    global _queue_client
    if _queue_client is not None:
        _queue_client.close()
        _queue_client = None
    client = _redis_client
    if client is not None:
        try:
            client.close()
        finally:
            set_redis(None)


@asynccontextmanager
async def redis_lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_redis()
    try:
        yield
    finally:
        close_redis()
