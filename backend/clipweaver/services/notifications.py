"""Redis Pub/Sub bridge for job change notifications.

The orchestrator publishes to a per-owner channel after every committed
mutation. The FastAPI WebSocket handler subscribes and relays to connected
clients. Delivery is fire-and-forget: a failed publish is logged and dropped.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from clipweaver.config import get_settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "clipweaver:user:"


def channel_for(owner_id: str) -> str:
    return f"{CHANNEL_PREFIX}{owner_id}"


def build_message(
    job_id: str,
    fields: dict[str, Any],
    snapshot: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "type": "job_update",
        "job_id": job_id,
        "updates": fields,
        "job": snapshot,
    }


class NotificationSink(Protocol):
    """Anything that can push a job change to the job owner's subscribers."""

    async def publish(
        self,
        owner_id: str,
        job_id: str,
        fields: dict[str, Any],
        snapshot: dict[str, Any] | None = None,
    ) -> None: ...


class RedisNotificationSink:
    """Publishes job updates as JSON on ``clipweaver:user:<owner_id>``."""

    def __init__(self, client: aioredis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisNotificationSink":
        return cls(aioredis.from_url(url))

    async def publish(
        self,
        owner_id: str,
        job_id: str,
        fields: dict[str, Any],
        snapshot: dict[str, Any] | None = None,
    ) -> None:
        message = build_message(job_id, fields, snapshot)
        try:
            await self._client.publish(channel_for(owner_id), json.dumps(message, default=str))
        except (RedisError, OSError):
            # Best-effort: a lost notification must not fail reconciliation
            logger.warning("Failed to publish update for job %s", job_id, exc_info=True)

    async def aclose(self) -> None:
        await self._client.aclose()


# ──────── Subscriber (used by the WebSocket relay) ────────

_async_client: aioredis.Redis | None = None


def _get_async_client() -> aioredis.Redis:
    """Lazy-init a module-level async Redis client (singleton)."""
    global _async_client
    if _async_client is None:
        _async_client = aioredis.from_url(get_settings().REDIS_URL)
    return _async_client


async def subscribe_owner(owner_id: str) -> aioredis.client.PubSub:
    """Subscribe to one owner's channel.

    Caller should close the pubsub when done, but NOT the shared client.
    """
    pubsub = _get_async_client().pubsub()
    await pubsub.subscribe(channel_for(owner_id))
    return pubsub


async def listen_pubsub(pubsub: aioredis.client.PubSub) -> AsyncIterator[dict[str, Any]]:
    """Async generator that yields parsed messages from a PubSub subscription."""
    async for raw_message in pubsub.listen():
        if raw_message["type"] == "message":
            try:
                yield json.loads(raw_message["data"])
            except (json.JSONDecodeError, TypeError):
                continue
