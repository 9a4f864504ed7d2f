"""Tests for the Redis-backed failure counter store."""
from __future__ import annotations

import asyncio
import logging
import os
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

os.environ.setdefault("STORE_BACKEND", "memory")

from twofa_guard.config import Settings  # noqa: E402
from twofa_guard.gate import AttemptGate  # noqa: E402
from twofa_guard.store import (  # noqa: E402
    InMemoryKVStore,
    RedisKVStore,
    StoreError,
    StoreTimeout,
    build_store,
)


@pytest.fixture()
def redis_client() -> AsyncMock:
    client = AsyncMock()
    client.get.return_value = None
    return client


@pytest.fixture()
def store(redis_client) -> RedisKVStore:
    return RedisKVStore(redis_client, namespace="twofa", group="aic2fa", num_retries_on_timeout=2)


@pytest.mark.asyncio
async def test_get_json_reads_prefixed_key(store, redis_client) -> None:
    redis_client.get.return_value = b'{"failedAttempts": 2}'
    assert await store.get_json("10-0-0-1", timeout_ms=500) == {"failedAttempts": 2}
    redis_client.get.assert_awaited_once_with("twofa:aic2fa:10-0-0-1")


@pytest.mark.asyncio
async def test_get_json_missing_key_returns_none(store) -> None:
    assert await store.get_json("10-0-0-1", timeout_ms=500) is None


@pytest.mark.asyncio
async def test_get_json_retries_transient_timeouts(store, redis_client) -> None:
    redis_client.get.side_effect = [RedisTimeoutError("slow"), RedisTimeoutError("slow"), b'{"failedAttempts": 1}']
    assert await store.get_json("10-0-0-1", timeout_ms=500) == {"failedAttempts": 1}
    assert redis_client.get.await_count == 3


@pytest.mark.asyncio
async def test_get_json_gives_up_after_retries(store, redis_client) -> None:
    redis_client.get.side_effect = RedisTimeoutError("slow")
    with pytest.raises(StoreTimeout):
        await store.get_json("10-0-0-1", timeout_ms=500)
    assert redis_client.get.await_count == 3


@pytest.mark.asyncio
async def test_get_json_respects_total_budget(store, redis_client) -> None:
    async def never_answers(key: str) -> bytes:
        await asyncio.sleep(5)
        return b"{}"

    redis_client.get.side_effect = never_answers
    with pytest.raises(StoreTimeout):
        await store.get_json("10-0-0-1", timeout_ms=50)


@pytest.mark.asyncio
async def test_get_json_wraps_redis_errors(store, redis_client) -> None:
    redis_client.get.side_effect = RedisConnectionError("refused")
    with pytest.raises(StoreError):
        await store.get_json("10-0-0-1", timeout_ms=500)
    assert redis_client.get.await_count == 1


@pytest.mark.asyncio
async def test_get_json_rejects_invalid_json(store, redis_client) -> None:
    redis_client.get.return_value = b"{broken"
    with pytest.raises(StoreError):
        await store.get_json("10-0-0-1", timeout_ms=500)


@pytest.mark.asyncio
async def test_gate_fails_open_on_store_timeout(store, redis_client) -> None:
    redis_client.get.side_effect = RedisTimeoutError("slow")
    decision = await AttemptGate(store, Settings(store_backend="memory")).check("10-0-0-1", 1)
    assert decision.allowed is True
    assert decision.failed_attempts == 0


@pytest.mark.asyncio
async def test_put_json_nowait_schedules_write(store, redis_client) -> None:
    store.put_json_nowait("10-0-0-1", {"failedAttempts": 1})
    redis_client.set.assert_not_awaited()
    await store.aclose()
    redis_client.set.assert_awaited_once_with("twofa:aic2fa:10-0-0-1", '{"failedAttempts": 1}')
    redis_client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_put_json_nowait_logs_failed_writes(store, redis_client, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="twofa_guard.store")
    redis_client.set.side_effect = RedisConnectionError("refused")
    store.put_json_nowait("10-0-0-1", {"failedAttempts": 1})
    await store.aclose()
    assert any("Write of 10-0-0-1 failed" in record.getMessage() for record in caplog.records)


def test_put_json_nowait_requires_running_loop(store) -> None:
    with pytest.raises(RuntimeError):
        store.put_json_nowait("10-0-0-1", {"failedAttempts": 1})


def test_build_store_selects_backend() -> None:
    assert isinstance(build_store(Settings(store_backend="memory")), InMemoryKVStore)
    assert isinstance(build_store(Settings(store_backend="redis", redis_url="redis://localhost:6379/0")), RedisKVStore)
