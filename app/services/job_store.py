"""Redis-backed key store holding all import job state."""
import logging
from typing import Iterable, Iterator, Optional

import redis

logger = logging.getLogger(__name__)

DATA_FIELD = "data"


def job_queue_key(job_id: str) -> str:
    return f"job:{job_id}:queue"


def job_status_key(job_id: str) -> str:
    return f"job:{job_id}:status"


def job_metadata_key(job_id: str) -> str:
    return f"job:{job_id}:metadata"


def job_worker_key(job_id: str) -> str:
    return f"job:{job_id}:worker"


def job_id_from_key(key: str) -> str:
    """Extract the job id from any ``job:{id}:...`` key."""
    return key.split(":")[1]


class JobStore:
    """
    Small command vocabulary over a Redis client.

    Hashes keep their JSON document under a single ``data`` field so a
    record is read and replaced as one value.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    def hash_get(self, key: str) -> Optional[str]:
        return self.client.hget(key, DATA_FIELD)

    def hash_set(self, key: str, value: str) -> None:
        self.client.hset(key, mapping={DATA_FIELD: value})

    def list_push(self, key: str, *values: str) -> int:
        return self.client.rpush(key, *values)

    def list_push_many(self, key: str, values: Iterable[str], batch_size: int = 1000) -> int:
        """
        Append values in order, pipelining RPUSH calls in batches.

        Args:
            key: List key
            values: Serialized items, pushed in iteration order
            batch_size: Values per RPUSH command

        Returns:
            Number of values pushed
        """
        pushed = 0
        batch: list[str] = []
        pipe = self.client.pipeline(transaction=False)
        for value in values:
            batch.append(value)
            if len(batch) >= batch_size:
                pipe.rpush(key, *batch)
                pushed += len(batch)
                batch = []
        if batch:
            pipe.rpush(key, *batch)
            pushed += len(batch)
        pipe.execute()
        return pushed

    def list_pop(self, key: str) -> Optional[str]:
        return self.client.lpop(key)

    def list_length(self, key: str) -> int:
        return self.client.llen(key)

    def list_range(self, key: str, start: int, end: int) -> list[str]:
        return self.client.lrange(key, start, end)

    def list_trim(self, key: str, start: int, end: int) -> None:
        self.client.ltrim(key, start, end)

    def exists(self, key: str) -> bool:
        return self.client.exists(key) > 0

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return self.client.delete(*keys)

    def scan_keys(self, pattern: str) -> Iterator[str]:
        return self.client.scan_iter(match=pattern, count=500)

    def hash_field_get(self, key: str, field: str) -> Optional[str]:
        return self.client.hget(key, field)

    def acquire_lease(self, key: str, token: str, ttl: int) -> bool:
        """Take ``key`` for ``token`` unless someone else holds it (SET NX EX)."""
        return bool(self.client.set(key, token, nx=True, ex=ttl))

    def refresh_lease(self, key: str, token: str, ttl: int) -> bool:
        """
        Extend a lease held by ``token``, taking it again if it expired.

        Returns:
            False when another token holds the lease
        """
        holder = self.client.get(key)
        if holder is None:
            return self.acquire_lease(key, token, ttl)
        if holder != token:
            return False
        return bool(self.client.expire(key, ttl))

    def release_lease(self, key: str, token: str) -> None:
        if self.client.get(key) == token:
            self.client.delete(key)
