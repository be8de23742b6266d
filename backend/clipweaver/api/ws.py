"""WebSocket endpoint for real-time job updates.

Uses Redis Pub/Sub to receive notifications published by the orchestrator
and relay them to the owner's connected clients.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.exceptions import RedisError

from clipweaver.services.notifications import listen_pubsub, subscribe_owner

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/{owner_id}")
async def ws_owner(ws: WebSocket, owner_id: str):
    """Relay one owner's job updates.

    1. Accepts the WebSocket connection
    2. Subscribes to the owner's Redis channel
    3. Relays messages from Redis to the client
    4. Answers client pings
    """
    await ws.accept()
    logger.info("WS connected: owner=%s", owner_id)

    pubsub = None
    listener_task = None
    try:
        pubsub = await subscribe_owner(owner_id)
        listener_task = asyncio.create_task(_relay_pubsub_to_ws(pubsub, ws, owner_id))

        while True:
            data = await ws.receive_text()
            if data == "ping":
                await ws.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info("WS disconnected: owner=%s", owner_id)
    except (RedisError, OSError) as exc:
        logger.warning("WS error for owner=%s: %s", owner_id, exc)
    finally:
        if listener_task:
            listener_task.cancel()
        if pubsub:
            await pubsub.unsubscribe()
            await pubsub.aclose()


async def _relay_pubsub_to_ws(pubsub, ws: WebSocket, owner_id: str):
    """Background task: read from Redis Pub/Sub and forward to the client."""
    try:
        async for message in listen_pubsub(pubsub):
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                break  # WebSocket closed
    except asyncio.CancelledError:
        pass
    except (RedisError, OSError) as exc:
        logger.warning("Pub/Sub relay error for owner=%s: %s", owner_id, exc)
