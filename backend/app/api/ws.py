"""WebSocket endpoint for live position and ETA events."""

import asyncio
import contextlib
import logging

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.broadcaster import CLOSE, Broadcaster, Subscriber

logger = logging.getLogger(__name__)

router = APIRouter()


async def _pump(websocket: WebSocket, sub: Subscriber) -> None:
    """Drain the subscriber's queue onto the socket."""
    try:
        while True:
            payload = await sub.queue.get()
            if payload is CLOSE:
                await websocket.close(code=1013, reason="Client too slow")
                return
            await websocket.send_text(payload.decode())
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.debug("WebSocket send to %s failed: %s", sub.id, e)


@router.websocket("/ws")
async def live_ws(websocket: WebSocket) -> None:
    """Subscribe to topics and stream matching events."""
    await websocket.accept()

    broadcaster: Broadcaster = websocket.app.state.services.broadcaster
    sub = broadcaster.register()
    writer = asyncio.create_task(_pump(websocket, sub))
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text") or frame.get("bytes")
            try:
                message = orjson.loads(raw)
            except (orjson.JSONDecodeError, TypeError):
                logger.warning("WebSocket message parse error from %s", sub.id)
                broadcaster.send_error(sub.id, "Invalid message format")
                continue
            broadcaster.on_message(sub.id, message)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WebSocket error for client %s", sub.id)
    finally:
        broadcaster.unregister(sub.id)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
