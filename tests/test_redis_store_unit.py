"""RedisStore unit tests against a mocked redis.asyncio client."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from sessionkeeper.service.errors import InfrastructureError
from sessionkeeper.storage.redis_cache import RedisStore


@pytest.fixture
def mock_client():
    client = MagicMock()
    for name in (
        "ping",
        "get",
        "set",
        "delete",
        "expire",
        "pexpire",
        "ttl",
        "incr",
        "exists",
        "hset",
        "hget",
        "hgetall",
        "hdel",
        "hlen",
        "aclose",
    ):
        setattr(client, name, AsyncMock())
    client.connection_pool.disconnect = AsyncMock()
    client.capped_script = AsyncMock(return_value=[1, 3])
    client.register_script = MagicMock(return_value=client.capped_script)
    return client


@pytest.fixture
def store(mock_client):
    with patch(
        "sessionkeeper.storage.redis_cache.aioredis.from_url", return_value=mock_client
    ) as from_url:
        store = RedisStore("redis://localhost:6379/0", socket_timeout=2.5)
    from_url.assert_called_once_with(
        "redis://localhost:6379/0",
        decode_responses=True,
        socket_timeout=2.5,
        socket_connect_timeout=2.5,
    )
    return store


async def test_commands_delegate_to_client(store, mock_client):
    mock_client.get.return_value = "v"
    mock_client.incr.return_value = 4
    mock_client.hgetall.return_value = {"a": "1"}
    mock_client.exists.return_value = 1

    assert await store.get("k") == "v"
    assert await store.incr("k") == 4
    assert await store.hgetall("h") == {"a": "1"}
    assert await store.exists("k") == 1

    await store.set("k", "v", ex=30)
    mock_client.set.assert_awaited_once_with("k", "v", ex=30)
    await store.pexpire("k", 1000)
    mock_client.pexpire.assert_awaited_once_with("k", 1000)


async def test_delete_and_hdel_skip_empty_calls(store, mock_client):
    assert await store.delete() == 0
    assert await store.hdel("h") == 0
    mock_client.delete.assert_not_awaited()
    mock_client.hdel.assert_not_awaited()


async def test_hset_capped_runs_registered_script(store, mock_client):
    stored, count = await store.hset_capped(
        "user_sessions:u1", "tid", "{}", max_fields=50, ttl_seconds=604800
    )
    assert (stored, count) == (True, 3)
    mock_client.capped_script.assert_awaited_once_with(
        keys=["user_sessions:u1"], args=["tid", "{}", 50, 604800]
    )


async def test_hset_capped_passes_evicted_fields_after_fixed_args(store, mock_client):
    await store.hset_capped(
        "user_sessions:u1", "tid", "{}", max_fields=50, ttl_seconds=60, evict=["old1", "old2"]
    )
    mock_client.capped_script.assert_awaited_once_with(
        keys=["user_sessions:u1"], args=["tid", "{}", 50, 60, "old1", "old2"]
    )


async def test_hset_capped_reports_rejection(store, mock_client):
    mock_client.capped_script.return_value = [0, 50]
    assert await store.hset_capped("h", "f", "v", max_fields=50, ttl_seconds=10) == (False, 50)


@pytest.mark.parametrize(
    "exc", [RedisConnectionError("down"), RedisTimeoutError("slow"), OSError("reset")]
)
async def test_failures_become_infrastructure_errors(store, mock_client, exc):
    mock_client.exists.side_effect = exc
    with patch("sessionkeeper.storage.redis_cache.logger") as mock_logger:
        with pytest.raises(InfrastructureError) as excinfo:
            await store.exists("blacklisted_token:x")
    assert excinfo.value.__cause__ is exc
    mock_logger.warning.assert_called_once()
    assert mock_logger.warning.call_args[0][0] == "store_operation_failed"
    assert mock_logger.warning.call_args[1]["op"] == "exists"


async def test_script_failure_becomes_infrastructure_error(store, mock_client):
    mock_client.capped_script.side_effect = RedisConnectionError("down")
    with pytest.raises(InfrastructureError):
        await store.hset_capped("h", "f", "v", max_fields=1, ttl_seconds=1)


async def test_close_releases_pool(store, mock_client):
    await store.close()
    mock_client.aclose.assert_awaited_once()
    mock_client.connection_pool.disconnect.assert_awaited_once()
