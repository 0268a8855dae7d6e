"""
Realtime WebSocket endpoint - room membership and event delivery.

Client frames: {"event": "join" | "leave", "data": "<room>"}
Server frames: {"event": "<name>", "data": <payload>}
"""

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..realtime.bus import FanOutBus, Subscriber, is_valid_room

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _error(message: str, room=None) -> dict:
    return {"event": "error", "data": {"message": message, "room": room}}


async def _read_frames(websocket: WebSocket, bus: FanOutBus, subscriber: Subscriber) -> None:
    while True:
        raw = await websocket.receive_text()
        try:
            frame = json.loads(raw)
            event = frame.get("event")
            room = frame.get("data")
        except (json.JSONDecodeError, AttributeError):
            logger.warning(f"Ignoring malformed frame from {subscriber.conn_id}")
            continue

        if event not in ("join", "leave"):
            logger.warning(f"Ignoring unknown event {event!r} from {subscriber.conn_id}")
            continue

        if not is_valid_room(room):
            subscriber.offer(_error("Unknown room", room))
            continue

        if event == "join":
            bus.join(subscriber.conn_id, room)
            logger.debug(f"{subscriber.conn_id} joined {room}")
        else:
            bus.leave(subscriber.conn_id, room)
            logger.debug(f"{subscriber.conn_id} left {room}")


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    """Handle one realtime client connection."""
    bus: FanOutBus = websocket.app.state.services.bus
    await websocket.accept()
    subscriber = bus.connect(websocket.send_json)
    logger.info(f"Realtime client connected: {subscriber.conn_id}")

    tasks = [
        asyncio.ensure_future(subscriber.pump()),
        asyncio.ensure_future(_read_frames(websocket, bus, subscriber)),
        asyncio.ensure_future(subscriber.closed.wait()),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"Realtime connection {subscriber.conn_id} failed: {error}")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        dropped = subscriber.closed.is_set()
        bus.disconnect(subscriber.conn_id)
        if dropped:
            try:
                await websocket.close()
            except Exception:
                logger.debug(f"Close failed for dropped client {subscriber.conn_id}")
        logger.info(f"Realtime client disconnected: {subscriber.conn_id}")
