"""Clients for the external key-value store holding the failure counters."""
from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Any

from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the store cannot serve a read or accept a write."""


class StoreTimeout(StoreError):
    """Raised when a read does not complete within its time budget."""


class KeyValueStore(ABC):
    """Bounded-time reads and fire-and-forget writes of JSON values."""

    @abstractmethod
    async def get_json(self, item: str, *, timeout_ms: int) -> Any | None:
        """Return the decoded value for ``item`` or ``None`` when it does not exist."""

    @abstractmethod
    def put_json_nowait(self, item: str, value: Any) -> None:
        """Schedule a write of ``value`` without waiting for it to complete."""

    async def aclose(self) -> None:
        return None


class RedisKVStore(KeyValueStore):
    """Store backed by a Redis server through the asyncio client.

    Items live under ``{namespace}:{group}:{item}``. Reads are retried on
    transient socket timeouts, and all attempts together share the caller's
    time budget.
    """

    def __init__(self, client, *, namespace: str, group: str, num_retries_on_timeout: int = 2) -> None:
        self._client = client
        self._prefix = f"{namespace}:{group}"
        self.num_retries_on_timeout = num_retries_on_timeout
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisKVStore":
        import redis.asyncio as aioredis

        attempt_timeout = settings.kv_timeout_ms / 1000 / (settings.kv_num_retries_on_timeout + 1)
        client = aioredis.from_url(
            settings.redis_url,
            socket_timeout=attempt_timeout,
            socket_connect_timeout=attempt_timeout,
        )
        return cls(
            client,
            namespace=settings.kv_namespace,
            group=settings.kv_group,
            num_retries_on_timeout=settings.kv_num_retries_on_timeout,
        )

    def _key(self, item: str) -> str:
        return f"{self._prefix}:{item}"

    async def get_json(self, item: str, *, timeout_ms: int) -> Any | None:
        try:
            raw = await asyncio.wait_for(self._get_with_retries(item), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise StoreTimeout(f"read of {item!r} exceeded {timeout_ms}ms") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StoreError(f"item {item!r} does not hold JSON") from exc

    async def _get_with_retries(self, item: str) -> bytes | None:
        attempt = 0
        while True:
            try:
                return await self._client.get(self._key(item))
            except RedisTimeoutError as exc:
                if attempt >= self.num_retries_on_timeout:
                    raise StoreTimeout(f"read of {item!r} timed out after {attempt + 1} attempts") from exc
                attempt += 1
                logger.debug("Retrying read of %s after timeout (%d/%d)", item, attempt, self.num_retries_on_timeout)
            except RedisError as exc:
                raise StoreError(f"read of {item!r} failed: {exc}") from exc

    def put_json_nowait(self, item: str, value: Any) -> None:
        payload = json.dumps(value)
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._client.set(self._key(item), payload))
        self._pending.add(task)
        task.add_done_callback(partial(self._write_done, item))

    def _write_done(self, item: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Write of %s was cancelled", item)
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Write of %s failed: %s", item, exc)

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.wait(set(self._pending), timeout=1)
        await self._client.aclose()


class InMemoryKVStore(KeyValueStore):
    """Dict-backed store for local development and tests."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.reads = 0
        self.writes: list[tuple[str, Any]] = []

    async def get_json(self, item: str, *, timeout_ms: int) -> Any | None:
        self.reads += 1
        if self.fail_reads:
            raise StoreError("reads are disabled")
        raw = self._items.get(item)
        if raw is None:
            return None
        return json.loads(raw)

    def put_json_nowait(self, item: str, value: Any) -> None:
        if self.fail_writes:
            raise StoreError("writes are disabled")
        self._items[item] = json.dumps(value)
        self.writes.append((item, value))


def build_store(settings: Settings | None = None) -> KeyValueStore:
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        logger.info("Using in-memory failure counter store")
        return InMemoryKVStore()
    logger.info("Using Redis failure counter store at %s", settings.redis_url)
    return RedisKVStore.from_settings(settings)
