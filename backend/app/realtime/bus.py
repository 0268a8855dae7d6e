"""
Realtime Fan-Out Bus - room-based publish/subscribe over live connections.

Rooms:
    sessions            every client rendering a session list
    session:<id>        every client viewing one session's thread

Publishing never awaits: a frame is put on each member's outbound FIFO
queue and a per-connection pump task writes it to the socket. Frames
published in order A, B reach every member in order A, B.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

GLOBAL_ROOM = "sessions"
SESSION_ROOM_PREFIX = "session:"

SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]


def session_room(session_id: str) -> str:
    return f"{SESSION_ROOM_PREFIX}{session_id}"


def is_valid_room(room: Any) -> bool:
    if not isinstance(room, str):
        return False
    if room == GLOBAL_ROOM:
        return True
    return room.startswith(SESSION_ROOM_PREFIX) and len(room) > len(SESSION_ROOM_PREFIX)


class Subscriber:
    """One live connection and its outbound queue."""

    def __init__(self, conn_id: str, send: SendFunc, queue_size: int = 256):
        self.conn_id = conn_id
        self._send = send
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.rooms: Set[str] = set()
        self.closed = asyncio.Event()

    def offer(self, frame: Dict[str, Any]) -> bool:
        """Enqueue a frame without waiting. False if closed or full."""
        if self.closed.is_set():
            return False
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    async def pump(self) -> None:
        """Write queued frames to the connection until cancelled."""
        while True:
            frame = await self.queue.get()
            await self._send(frame)

    def close(self) -> None:
        self.closed.set()


class FanOutBus:
    """Room registry and best-effort broadcaster."""

    def __init__(self, queue_size: int = 256):
        """
        Args:
            queue_size: Per-connection outbound queue bound; a connection
                that falls this far behind is dropped
        """
        self.queue_size = queue_size
        self._subscribers: Dict[str, Subscriber] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._ids = itertools.count(1)

    def connect(self, send: SendFunc, conn_id: Optional[str] = None) -> Subscriber:
        conn_id = conn_id or f"conn-{next(self._ids)}"
        subscriber = Subscriber(conn_id, send, self.queue_size)
        self._subscribers[conn_id] = subscriber
        logger.debug(f"Realtime client connected: {conn_id}")
        return subscriber

    def disconnect(self, conn_id: str) -> None:
        """Forget a connection. Room membership does not survive a disconnect."""
        subscriber = self._subscribers.pop(conn_id, None)
        if subscriber is None:
            return
        for room in subscriber.rooms:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(conn_id)
                if not members:
                    del self._rooms[room]
        subscriber.rooms.clear()
        subscriber.close()
        logger.debug(f"Realtime client disconnected: {conn_id}")

    def close_all(self) -> None:
        for conn_id in list(self._subscribers):
            self.disconnect(conn_id)

    def join(self, conn_id: str, room: str) -> bool:
        subscriber = self._subscribers.get(conn_id)
        if subscriber is None or not is_valid_room(room):
            return False
        self._rooms.setdefault(room, set()).add(conn_id)
        subscriber.rooms.add(room)
        return True

    def leave(self, conn_id: str, room: str) -> bool:
        subscriber = self._subscribers.get(conn_id)
        members = self._rooms.get(room)
        if subscriber is None or members is None or conn_id not in members:
            return False
        members.discard(conn_id)
        if not members:
            del self._rooms[room]
        subscriber.rooms.discard(room)
        return True

    def members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, ()))

    @property
    def connection_count(self) -> int:
        return len(self._subscribers)

    def publish(self, room: str, event: str, data: Any) -> int:
        """
        Broadcast an event to every member of a room.

        Never raises. Members whose queue is full are disconnected.

        Returns:
            int: Number of members the frame was queued for
        """
        frame = {"event": event, "data": data}
        delivered = 0
        for conn_id in list(self._rooms.get(room, ())):
            subscriber = self._subscribers.get(conn_id)
            if subscriber is None:
                continue
            try:
                if subscriber.offer(frame):
                    delivered += 1
                    continue
                logger.warning(
                    f"Dropping slow realtime client {conn_id}: outbound queue full",
                    extra={"extra_fields": {"room": room, "event": event}}
                )
                self.disconnect(conn_id)
            except Exception:
                logger.exception(f"Failed to queue {event} for {conn_id}")
        logger.debug(f"Published {event} to {room} ({delivered} recipients)")
        return delivered
