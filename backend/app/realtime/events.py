"""
Domain event publisher - turns store changes into sanitized realtime events.

Every method swallows and logs its own failures; a broadcast problem must
never fail the bot command or HTTP request that triggered it.
"""

import logging
from typing import Optional

from ..core.identity import IdentityResolver
from ..core.sanitizer import sanitize_message, sanitize_session
from ..models import MessageRecord
from ..storage import SessionStoreInterface
from .bus import FanOutBus, GLOBAL_ROOM, session_room

logger = logging.getLogger(__name__)

MESSAGE_NEW = "message:new"
SESSION_NEW = "session:new"
SESSION_UPDATE = "session:update"


class SessionEvents:
    """Publishes `message:new`, `session:new` and `session:update`."""

    def __init__(self, bus: FanOutBus, store: SessionStoreInterface, resolver: IdentityResolver):
        self.bus = bus
        self.store = store
        self.resolver = resolver

    def message_new(self, message: MessageRecord) -> None:
        """
        Publish a persisted message to its session room.

        Must be called right after the store returns, with no await in
        between; per-session publish order then equals persistence order.
        """
        if not message.session_id:
            return
        try:
            payload = sanitize_message(message, self.resolver)
            self.bus.publish(session_room(message.session_id), MESSAGE_NEW, payload)
        except Exception:
            logger.exception(f"Failed to broadcast {MESSAGE_NEW} for message {message.id}")

    async def _summary(self, session_id: str) -> Optional[dict]:
        details = await self.store.get_session_details(session_id)
        if details is None:
            logger.warning(f"Cannot broadcast for unknown session {session_id}")
            return None
        await self.resolver.ensure_fresh()
        return sanitize_session(details, self.resolver)

    async def session_new(self, session_id: str) -> None:
        """Announce a new session to list observers."""
        try:
            summary = await self._summary(session_id)
            if summary is not None:
                self.bus.publish(GLOBAL_ROOM, SESSION_NEW, summary)
        except Exception:
            logger.exception(f"Failed to broadcast {SESSION_NEW} for {session_id}")

    async def session_update(self, session_id: str) -> None:
        """Announce a status/summary change to both thread and list observers."""
        try:
            summary = await self._summary(session_id)
            if summary is not None:
                self.bus.publish(session_room(session_id), SESSION_UPDATE, summary)
                self.bus.publish(GLOBAL_ROOM, SESSION_UPDATE, summary)
        except Exception:
            logger.exception(f"Failed to broadcast {SESSION_UPDATE} for {session_id}")
