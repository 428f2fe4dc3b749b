"""Factory functions and distributed backends for counter/record stores.

This module provides factory functions that return the appropriate store
implementation based on the configured backend (memory|redis|dynamodb).

Usage:
    from chat_gateway.core.limits.factory import get_stores_from_settings

    counter_store, record_store = get_stores_from_settings(settings)
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable

import boto3
import redis.asyncio as redis
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config

from chat_gateway.config.settings import Settings
from chat_gateway.core.limits import CounterStore, RecordStore
from chat_gateway.core.limits.memory import InMemoryCounterStore


def get_counter_store(
    backend: str = "memory",
    *,
    redis_url: str = "",
    table_name: str = "",
    region: str = "",
) -> CounterStore:
    """Get a counter store implementation.

    The returned object also implements RecordStore, so one backend holds
    both rate limit counters and the liveness heartbeat.

    Raises:
        ValueError: If the backend is unknown or misconfigured.
    """
    if backend == "memory":
        return InMemoryCounterStore()

    if backend == "redis":
        if not redis_url:
            raise ValueError("redis_url is required when limits_backend=redis")
        return RedisCounterStore(redis_url=redis_url)

    if backend == "dynamodb":
        if not table_name:
            raise ValueError("dynamodb_table_name is required when limits_backend=dynamodb")
        return DynamoCounterStore(table_name=table_name, region=region or None)

    raise ValueError(f"Unknown limits_backend: {backend}. Use 'memory', 'redis' or 'dynamodb'")


def get_stores_from_settings(settings: Settings) -> tuple[CounterStore, RecordStore]:
    """Get counter and record stores from settings.

    This is a convenience function for app startup and the autostop script.
    """
    store = get_counter_store(
        settings.limits_backend,
        redis_url=settings.redis_url,
        table_name=settings.dynamodb_table_name,
        region=settings.aws_region,
    )
    return store, store  # type: ignore[return-value]


class RedisCounterStore(CounterStore, RecordStore):
    """Redis-based counters using INCR + EXPIREAT inside MULTI/EXEC.

    The transaction makes increment-and-read a single atomic step across
    workers. Keys are prefixed with "chatgw:" to avoid collisions.
    """

    def __init__(self, redis_url: str, prefix: str = "chatgw:"):
        self._redis_url = redis_url
        self._prefix = prefix
        self._client: redis.Redis | None = None

    def _get_client(self) -> redis.Redis:
        """Get or create Redis client (lazy initialization)."""
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def increment(self, key: str, expires_at: int) -> int:
        client = self._get_client()
        redis_key = f"{self._prefix}{key}"
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            pipe.expireat(redis_key, int(expires_at))
            count, _ = await pipe.execute()
        return int(count)

    async def get_count(self, key: str) -> int:
        value = await self._get_client().get(f"{self._prefix}{key}")
        return int(value) if value is not None else 0

    async def put_record(self, key: str, record: dict[str, Any]) -> None:
        await self._get_client().set(f"{self._prefix}{key}", json.dumps(record))

    async def get_record(self, key: str) -> dict[str, Any] | None:
        raw = await self._get_client().get(f"{self._prefix}{key}")
        if raw is None:
            return None
        return json.loads(raw)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class DynamoCounterStore(CounterStore, RecordStore):
    """DynamoDB-based counters using ``UpdateItem ADD`` with ``UPDATED_NEW``.

    Items live under ``PK=SYSTEM`` with the counter key as ``SK``. The
    ``ttl`` attribute drives DynamoDB's own TTL purge, which can lag, so
    reads also ignore items whose ``ttl`` has passed.
    """

    PARTITION = "SYSTEM"

    def __init__(
        self,
        table_name: str,
        region: str | None = None,
        client: Any = None,
        clock: Callable[[], float] = time.time,
    ):
        self._table_name = table_name
        self._client = client or boto3.client(
            "dynamodb",
            region_name=region,
            config=Config(retries={"mode": "standard", "max_attempts": 2}),
        )
        self._clock = clock
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def _key(self, key: str) -> dict[str, Any]:
        return {"PK": {"S": self.PARTITION}, "SK": {"S": key}}

    def _increment_sync(self, key: str, expires_at: int) -> int:
        response = self._client.update_item(
            TableName=self._table_name,
            Key=self._key(key),
            UpdateExpression="ADD requestCount :inc SET #ttl = :ttl",
            ExpressionAttributeNames={"#ttl": "ttl"},
            ExpressionAttributeValues={
                ":inc": {"N": "1"},
                ":ttl": {"N": str(int(expires_at))},
            },
            ReturnValues="UPDATED_NEW",
        )
        return int(response["Attributes"]["requestCount"]["N"])

    def _get_item_sync(self, key: str) -> dict[str, Any] | None:
        response = self._client.get_item(
            TableName=self._table_name,
            Key=self._key(key),
            ConsistentRead=True,
        )
        item = response.get("Item")
        if not item:
            return None
        return {k: self._deserializer.deserialize(v) for k, v in item.items()}

    def _put_item_sync(self, key: str, record: dict[str, Any]) -> None:
        item = {k: self._serializer.serialize(v) for k, v in record.items()}
        item.update(self._key(key))
        self._client.put_item(TableName=self._table_name, Item=item)

    async def increment(self, key: str, expires_at: int) -> int:
        return await asyncio.to_thread(self._increment_sync, key, expires_at)

    async def get_count(self, key: str) -> int:
        item = await asyncio.to_thread(self._get_item_sync, key)
        if item is None:
            return 0
        ttl = item.get("ttl")
        if ttl is not None and self._clock() > int(ttl):
            return 0
        return int(item.get("requestCount", 0))

    async def put_record(self, key: str, record: dict[str, Any]) -> None:
        await asyncio.to_thread(self._put_item_sync, key, record)

    async def get_record(self, key: str) -> dict[str, Any] | None:
        item = await asyncio.to_thread(self._get_item_sync, key)
        if item is None:
            return None
        item.pop("PK", None)
        item.pop("SK", None)
        return item
