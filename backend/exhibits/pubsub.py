from __future__ import annotations

import json
import os
from contextlib import suppress
from datetime import datetime
from typing import Any, AsyncIterator
from uuid import UUID

import redis.asyncio as redis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
_redis = None

async def get_redis():
    global _redis
    if _redis is None:
        if os.getenv("TESTING") == "1":
            from fakeredis import aioredis
            _redis = aioredis.FakeRedis()
        else:
            _redis = redis.from_url(REDIS_URL)
    return _redis


def _json_default(value: Any) -> Any:
    # purpose: convert datetime and uuid values to strings for event payloads
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def _serialize_event(event: dict[str, Any]) -> str:
    return json.dumps(event, default=_json_default)


def exhibit_channel(exhibit_id: UUID | str) -> str:
    return f"exhibit:{exhibit_id}"


async def publish_exhibit_event(exhibit_id: UUID | str, event: dict[str, Any]) -> None:
    """Broadcast exhibit lifecycle events (published, suppressed, locked, ...) to listeners."""

    # purpose: let editor sessions refresh when another actor changes an exhibit
    r = await get_redis()
    await r.publish(exhibit_channel(exhibit_id), _serialize_event(event))


async def iter_exhibit_events(exhibit_id: UUID | str) -> AsyncIterator[str]:
    """Yield exhibit pub/sub messages as a stream."""

    r = await get_redis()
    channel = exhibit_channel(exhibit_id)
    pubsub = r.pubsub()
    await pubsub.subscribe(channel)
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            data = message.get("data")
            if isinstance(data, bytes):
                yield data.decode()
            else:
                yield str(data)
    finally:
        with suppress(Exception):
            await pubsub.unsubscribe(channel)
        with suppress(AttributeError):
            await pubsub.aclose()
