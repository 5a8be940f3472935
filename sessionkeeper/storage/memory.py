from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from sessionkeeper.service.errors import InfrastructureError

_Value = Union[str, Dict[str, str]]


class MemoryStore:
    """In-process stand-in for Redis used by tests and local development.

    Mirrors the Redis semantics the services depend on: keys expire lazily
    against ``clock``, removing the last field of a hash removes the key, and
    ``expire`` on a missing key reports False. A single re-entrant lock makes
    every method atomic across threads.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: Dict[str, _Value] = {}
        self._expiry: Dict[str, float] = {}
        self._data_lock = threading.RLock()

    # -- internals ---------------------------------------------------------

    def _purge(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= self._clock():
            self._values.pop(key, None)
            self._expiry.pop(key, None)

    def _lookup(self, key: str) -> Optional[_Value]:
        self._purge(key)
        return self._values.get(key)

    def _string(self, key: str) -> Optional[str]:
        value = self._lookup(key)
        if value is not None and not isinstance(value, str):
            raise InfrastructureError(f"wrong type for key {key}: expected string")
        return value

    def _hash(self, key: str, *, create: bool = False) -> Optional[Dict[str, str]]:
        value = self._lookup(key)
        if value is None:
            if not create:
                return None
            value = {}
            self._values[key] = value
        if not isinstance(value, dict):
            raise InfrastructureError(f"wrong type for key {key}: expected hash")
        return value

    def _set_deadline(self, key: str, seconds: float) -> bool:
        if self._lookup(key) is None:
            return False
        if seconds <= 0:
            self._values.pop(key, None)
            self._expiry.pop(key, None)
        else:
            self._expiry[key] = self._clock() + seconds
        return True

    # -- string commands ---------------------------------------------------

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        with self._data_lock:
            return self._string(key)

    async def set(self, key: str, value: str, *, ex: Optional[int] = None) -> bool:
        with self._data_lock:
            self._lookup(key)
            self._values[key] = str(value)
            if ex is not None and ex > 0:
                self._expiry[key] = self._clock() + ex
            else:
                self._expiry.pop(key, None)
            return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        with self._data_lock:
            for key in keys:
                if self._lookup(key) is not None:
                    self._values.pop(key, None)
                    self._expiry.pop(key, None)
                    removed += 1
        return removed

    async def expire(self, key: str, seconds: int) -> bool:
        with self._data_lock:
            return self._set_deadline(key, seconds)

    async def pexpire(self, key: str, milliseconds: int) -> bool:
        with self._data_lock:
            return self._set_deadline(key, milliseconds / 1000.0)

    async def ttl(self, key: str) -> int:
        with self._data_lock:
            if self._lookup(key) is None:
                return -2
            deadline = self._expiry.get(key)
            if deadline is None:
                return -1
            return int(deadline - self._clock() + 0.5)

    async def incr(self, key: str) -> int:
        with self._data_lock:
            current = self._string(key)
            try:
                value = int(current) + 1 if current is not None else 1
            except ValueError as exc:
                raise InfrastructureError(f"value at {key} is not an integer") from exc
            self._values[key] = str(value)
            return value

    async def exists(self, key: str) -> int:
        with self._data_lock:
            return 1 if self._lookup(key) is not None else 0

    # -- hash commands -----------------------------------------------------

    async def hset(self, key: str, field: str, value: str) -> int:
        with self._data_lock:
            bucket = self._hash(key, create=True)
            added = 0 if field in bucket else 1
            bucket[field] = str(value)
            return added

    async def hget(self, key: str, field: str) -> Optional[str]:
        with self._data_lock:
            bucket = self._hash(key)
            return bucket.get(field) if bucket else None

    async def hgetall(self, key: str) -> Dict[str, str]:
        with self._data_lock:
            bucket = self._hash(key)
            return dict(bucket) if bucket else {}

    async def hdel(self, key: str, *fields: str) -> int:
        with self._data_lock:
            bucket = self._hash(key)
            if not bucket:
                return 0
            removed = 0
            for field in fields:
                if bucket.pop(field, None) is not None:
                    removed += 1
            if not bucket:
                self._values.pop(key, None)
                self._expiry.pop(key, None)
            return removed

    async def hlen(self, key: str) -> int:
        with self._data_lock:
            bucket = self._hash(key)
            return len(bucket) if bucket else 0

    async def hset_capped(
        self,
        key: str,
        field: str,
        value: str,
        *,
        max_fields: int,
        ttl_seconds: int,
        evict: Sequence[str] = (),
    ) -> Tuple[bool, int]:
        with self._data_lock:
            if evict:
                await self.hdel(key, *evict)
            bucket = self._hash(key) or {}
            present = field in bucket
            if not present and len(bucket) >= max_fields:
                return (False, len(bucket))
            bucket = self._hash(key, create=True)
            bucket[field] = str(value)
            self._set_deadline(key, ttl_seconds)
            return (True, len(bucket))

    async def close(self) -> None:
        """Nothing to release; data lives for the lifetime of the object."""
