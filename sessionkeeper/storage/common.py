"""Store contract shared between the Redis and in-memory backends.

Every method maps to a single Redis command (or one server-side script over a
single key), so each call is atomic on its own. Sequences of calls are not.
Backends raise ``InfrastructureError`` for any failure to reach or use the
store.
"""

from __future__ import annotations

from typing import Dict, Optional, Protocol, Sequence, Tuple


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, *, ex: Optional[int] = None) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def expire(self, key: str, seconds: int) -> bool: ...

    async def pexpire(self, key: str, milliseconds: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...

    async def incr(self, key: str) -> int: ...

    async def exists(self, key: str) -> int: ...

    async def hset(self, key: str, field: str, value: str) -> int: ...

    async def hget(self, key: str, field: str) -> Optional[str]: ...

    async def hgetall(self, key: str) -> Dict[str, str]: ...

    async def hdel(self, key: str, *fields: str) -> int: ...

    async def hlen(self, key: str) -> int: ...

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
        """Set ``field`` unless the hash already holds ``max_fields`` other fields.

        Fields named in ``evict`` are removed first, in the same atomic step,
        so they never count against the cap. Overwriting an existing field
        always succeeds. On success the hash TTL is reset to ``ttl_seconds``.
        Returns ``(stored, field_count)``.
        """
        ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...
