"""
Client Synchronization Agent - keeps a rendered thread and session list
consistent with the server despite duplicate delivery, late events and
connection loss.

Room membership is explicit: opening a view creates a RoomSubscription,
closing it leaves the room. The server forgets membership on disconnect,
so every (re)connect re-joins all active subscriptions.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import aiohttp
import httpx

from .bus import GLOBAL_ROOM, session_room
from .events import MESSAGE_NEW, SESSION_NEW, SESSION_UPDATE

logger = logging.getLogger(__name__)

SessionFetcher = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


class ThreadView:
    """One session's rendered transcript, one node per message id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.messages: List[Dict[str, Any]] = []
        self.header: Optional[Dict[str, Any]] = None
        self.scrolled_to: Optional[int] = None
        self._ids: Set[int] = set()

    def append(self, message: Dict[str, Any]) -> bool:
        """Append unless a node with this id exists. True if rendered."""
        message_id = message.get("id")
        if message_id in self._ids:
            return False
        self._ids.add(message_id)
        self.messages.append(message)
        self.scroll_to_latest()
        return True

    def scroll_to_latest(self) -> None:
        if self.messages:
            self.scrolled_to = self.messages[-1].get("id")

    def patch_header(self, summary: Dict[str, Any]) -> None:
        self.header = dict(summary)


class SessionListView:
    """Rendered session list, newest first."""

    def __init__(self, entries: Optional[List[Dict[str, Any]]] = None):
        self.entries: List[Dict[str, Any]] = list(entries or [])

    def _index(self, session_id: str) -> Optional[int]:
        for i, entry in enumerate(self.entries):
            if entry.get("session_id") == session_id:
                return i
        return None

    def insert_top(self, summary: Dict[str, Any]) -> bool:
        if self._index(summary.get("session_id")) is not None:
            return False
        self.entries.insert(0, dict(summary))
        return True

    def patch(self, summary: Dict[str, Any]) -> bool:
        index = self._index(summary.get("session_id"))
        if index is None:
            return False
        self.entries[index] = {**self.entries[index], **summary}
        return True

    @property
    def session_ids(self) -> List[str]:
        return [entry.get("session_id") for entry in self.entries]


class Transport(ABC):
    """Frame transport to the realtime endpoint."""

    @abstractmethod
    async def send(self, frame: Dict[str, Any]) -> bool:
        """Send a frame; False if not currently connected."""
        pass


class RoomSubscription:
    """Membership in one room, paired with a view's lifetime."""

    def __init__(self, room: str, transport: Transport):
        self.room = room
        self._transport = transport
        self.active = False

    async def join(self) -> None:
        self.active = True
        await self._transport.send({"event": "join", "data": self.room})

    async def rejoin(self) -> None:
        if self.active:
            await self._transport.send({"event": "join", "data": self.room})

    async def leave(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._transport.send({"event": "leave", "data": self.room})


class SyncAgent:
    """Reconciles server-pushed events against the local views."""

    def __init__(self, transport: Transport, fetch_session: SessionFetcher):
        """
        Args:
            transport: Connection to the realtime endpoint
            fetch_session: Authoritative session lookup, used on `session:update`
        """
        self.transport = transport
        self.fetch_session = fetch_session
        self.thread: Optional[ThreadView] = None
        self.session_list: Optional[SessionListView] = None
        self._thread_sub: Optional[RoomSubscription] = None
        self._list_sub: Optional[RoomSubscription] = None

    @property
    def subscriptions(self) -> List[RoomSubscription]:
        return [s for s in (self._list_sub, self._thread_sub) if s is not None and s.active]

    @property
    def active_rooms(self) -> List[str]:
        return [s.room for s in self.subscriptions]

    async def open_thread(self, session_id: str, messages: Optional[List[Dict[str, Any]]] = None) -> ThreadView:
        """Mount a thread view; replaces any open thread."""
        await self.close_thread()
        self.thread = ThreadView(session_id)
        for message in messages or ():
            self.thread.append(message)
        self._thread_sub = RoomSubscription(session_room(session_id), self.transport)
        await self._thread_sub.join()
        return self.thread

    async def close_thread(self) -> None:
        if self._thread_sub is not None:
            await self._thread_sub.leave()
        self._thread_sub = None
        self.thread = None

    async def show_list(self, entries: Optional[List[Dict[str, Any]]] = None) -> SessionListView:
        await self.hide_list()
        self.session_list = SessionListView(entries)
        self._list_sub = RoomSubscription(GLOBAL_ROOM, self.transport)
        await self._list_sub.join()
        return self.session_list

    async def hide_list(self) -> None:
        if self._list_sub is not None:
            await self._list_sub.leave()
        self._list_sub = None
        self.session_list = None

    async def on_connect(self) -> None:
        """Re-join every active room after a (re)connect."""
        for subscription in self.subscriptions:
            await subscription.rejoin()
        logger.info(f"Realtime connected; rejoined {self.active_rooms}")

    async def handle_event(self, frame: Dict[str, Any]) -> None:
        event = frame.get("event")
        data = frame.get("data")
        if not isinstance(data, dict):
            if event == "error":
                logger.warning(f"Realtime server error: {data}")
            return

        if event == MESSAGE_NEW:
            self._on_message_new(data)
        elif event == SESSION_NEW:
            if self.session_list is not None:
                self.session_list.insert_top(data)
        elif event == SESSION_UPDATE:
            await self._on_session_update(data)
        elif event == "error":
            logger.warning(f"Realtime server error: {data.get('message')} ({data.get('room')})")

    def _on_message_new(self, message: Dict[str, Any]) -> None:
        # Late events for a thread that is no longer open are dropped
        if self.thread is None or message.get("session_id") != self.thread.session_id:
            return
        self.thread.append(message)

    async def _on_session_update(self, summary: Dict[str, Any]) -> None:
        session_id = summary.get("session_id")
        if self.session_list is not None:
            self.session_list.patch(summary)

        if self.thread is None or self.thread.session_id != session_id:
            return

        # The push is a refresh signal; the header comes from the server
        try:
            fresh = await self.fetch_session(session_id)
        except Exception as e:
            logger.warning(f"Failed to refresh session {session_id}: {e}")
            return
        if fresh is None or self.thread is None or self.thread.session_id != session_id:
            return
        self.thread.patch_header(fresh)
        if self.session_list is not None:
            self.session_list.patch(fresh)


class HttpSessionFetcher:
    """Fetches sanitized session details through `GET /session/{id}`."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def __call__(self, session_id: str) -> Optional[Dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(f"{self.base_url}/session/{session_id}")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()


class WebSocketTransport(Transport):
    """
    aiohttp WebSocket client with reconnect backoff.

    Frames sent while disconnected are dropped; the agent's rejoin on
    connect restores room membership.
    """

    def __init__(self, url: str, initial_backoff: float = 1.0, max_backoff: float = 30.0):
        self.url = url
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.agent: Optional[SyncAgent] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._stopped = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def send(self, frame: Dict[str, Any]) -> bool:
        if not self.connected:
            return False
        try:
            await self._ws.send_json(frame)
        except (aiohttp.ClientError, ConnectionResetError) as e:
            logger.warning(f"Realtime send failed: {e}")
            return False
        return True

    async def run(self) -> None:
        """Connect and dispatch frames until stop() is called."""
        backoff = self.initial_backoff
        async with aiohttp.ClientSession() as session:
            while not self._stopped.is_set():
                try:
                    async with session.ws_connect(self.url, heartbeat=30.0) as ws:
                        self._ws = ws
                        backoff = self.initial_backoff
                        if self.agent is not None:
                            await self.agent.on_connect()
                        await self._dispatch(ws)
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.warning(f"Realtime connection to {self.url} failed: {e}")
                finally:
                    self._ws = None

                if self._stopped.is_set():
                    break
                logger.info(f"Reconnecting in {backoff:.1f}s")
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=backoff)
                except asyncio.TimeoutError:
                    pass
                backoff = min(backoff * 2, self.max_backoff)

    async def _dispatch(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    frame = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed realtime frame")
                    continue
                if self.agent is not None:
                    await self.agent.handle_event(frame)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning(f"Realtime socket error: {ws.exception()}")
                break

    async def stop(self) -> None:
        self._stopped.set()
        if self._ws is not None:
            await self._ws.close()
