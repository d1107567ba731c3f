"""Redis-backed session storage."""

from __future__ import annotations

import json
from typing import Any

from redis import Redis


class RedisSessionStore:
    """Sessions stored as Redis hashes with a sliding TTL.

    Values are JSON encoded so strings, numbers and booleans survive the
    round trip unchanged.
    """

    def __init__(self, client: Redis, *, ttl_seconds: int, key_prefix: str = "session") -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._key_prefix = key_prefix

    def _key(self, session_id: str) -> str:
        return f"{self._key_prefix}:{session_id}"

    def get(self, session_id: str, key: str) -> Any:
        raw = self._client.hget(self._key(session_id), key)
        if raw is None:
            return None
        return json.loads(raw)

    def put(self, session_id: str, key: str, value: Any) -> None:
        redis_key = self._key(session_id)
        pipe = self._client.pipeline()
        pipe.hset(redis_key, key, json.dumps(value))
        pipe.expire(redis_key, self._ttl)
        pipe.execute()

    def delete(self, session_id: str, key: str) -> None:
        self._client.hdel(self._key(session_id), key)
