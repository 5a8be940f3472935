from __future__ import annotations

import asyncio
import contextlib
from typing import Dict, Iterator, Optional, Sequence, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from sessionkeeper.logging import get_logger
from sessionkeeper.service.errors import InfrastructureError

logger = get_logger(__name__)


@contextlib.contextmanager
def _store_errors(op: str, key: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except (RedisError, asyncio.TimeoutError, OSError) as exc:
        logger.warning("store_operation_failed", op=op, key=key, error=str(exc))
        raise InfrastructureError(f"key-value store {op} failed") from exc


class RedisStore:
    """Thin Redis wrapper exposing the commands the session manager relies on."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    # Check-and-set over one hash: ARGV[5..] are dropped first, then an existing
    # field may always be overwritten, a new one only while the hash holds
    # fewer than ARGV[3] fields.
    _CAPPED_HSET_SCRIPT = """
local key = KEYS[1]
local field = ARGV[1]
local value = ARGV[2]
local max_fields = tonumber(ARGV[3])
local ttl = tonumber(ARGV[4])

for i = 5, #ARGV do
  redis.call('HDEL', key, ARGV[i])
end

local present = redis.call('HEXISTS', key, field)
local count = redis.call('HLEN', key)
if present == 0 and count >= max_fields then
  return {0, count}
end

redis.call('HSET', key, field, value)
redis.call('EXPIRE', key, ttl)
if present == 0 then
  count = count + 1
end
return {1, count}
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._capped_hset = self.client.register_script(self._CAPPED_HSET_SCRIPT)

    async def ping(self) -> bool:
        with _store_errors("ping"):
            return bool(await self.client.ping())

    async def get(self, key: str) -> Optional[str]:
        with _store_errors("get", key):
            return await self.client.get(key)

    async def set(self, key: str, value: str, *, ex: Optional[int] = None) -> bool:
        with _store_errors("set", key):
            return bool(await self.client.set(key, value, ex=ex))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with _store_errors("delete", keys[0]):
            return int(await self.client.delete(*keys))

    async def expire(self, key: str, seconds: int) -> bool:
        with _store_errors("expire", key):
            return bool(await self.client.expire(key, seconds))

    async def pexpire(self, key: str, milliseconds: int) -> bool:
        with _store_errors("pexpire", key):
            return bool(await self.client.pexpire(key, milliseconds))

    async def ttl(self, key: str) -> int:
        with _store_errors("ttl", key):
            return int(await self.client.ttl(key))

    async def incr(self, key: str) -> int:
        with _store_errors("incr", key):
            return int(await self.client.incr(key))

    async def exists(self, key: str) -> int:
        with _store_errors("exists", key):
            return int(await self.client.exists(key))

    async def hset(self, key: str, field: str, value: str) -> int:
        with _store_errors("hset", key):
            return int(await self.client.hset(key, field, value))

    async def hget(self, key: str, field: str) -> Optional[str]:
        with _store_errors("hget", key):
            return await self.client.hget(key, field)

    async def hgetall(self, key: str) -> Dict[str, str]:
        with _store_errors("hgetall", key):
            return dict(await self.client.hgetall(key))

    async def hdel(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        with _store_errors("hdel", key):
            return int(await self.client.hdel(key, *fields))

    async def hlen(self, key: str) -> int:
        with _store_errors("hlen", key):
            return int(await self.client.hlen(key))

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
        with _store_errors("hset_capped", key):
            result = await self._capped_hset(
                keys=[key], args=[field, value, max_fields, ttl_seconds, *evict]
            )
        return (bool(int(result[0])), int(result[1]))

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()
