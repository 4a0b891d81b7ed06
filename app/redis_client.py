"""Redis connection management."""
from contextlib import contextmanager
from typing import Iterator, Optional

import redis

from app.config import get_settings

settings = get_settings()


@contextmanager
def redis_connection(url: Optional[str] = None) -> Iterator[redis.Redis]:
    """
    Open a Redis client for the duration of a block and close it afterwards.

    Args:
        url: Redis URL, defaults to the configured one
    """
    client = redis.Redis.from_url(
        url or settings.redis_url,
        decode_responses=True,
        health_check_interval=30,
    )
    try:
        yield client
    finally:
        client.close()


def get_redis():
    """Dependency for getting a Redis client."""
    with redis_connection() as client:
        yield client
