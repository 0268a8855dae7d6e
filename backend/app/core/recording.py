"""
Recording State Machine - per-operator capture state for the chat bot.

    idle --start--> awaiting_title --title--> recording <--pause/resume--> paused
      ^                                          |                          |
      +-------------------stop-------------------+--------------------------+

State lives in an OperatorSessionStore keyed by (user, chat), so several
operators can record at once. Each operation holds that operator's lock,
and mutates in-memory state only after the store write succeeded.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional

from ..models import MessageRecord, SessionRecord, SessionStatus
from ..realtime.events import SessionEvents
from ..storage import SessionStoreInterface
from ..utils.ids import generate_session_id
from .identity import IdentityResolver
from .logging_config import LoggerAdapter

logger = logging.getLogger(__name__)


class RecordingState(str, Enum):
    IDLE = "idle"
    AWAITING_TITLE = "awaiting_title"
    RECORDING = "recording"
    PAUSED = "paused"


class Outcome(str, Enum):
    """What happened; the bot layer turns this into a reply."""
    AWAITING_TITLE = "awaiting_title"
    TITLE_REQUIRED = "title_required"
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    STOPPED = "stopped"
    CANCELLED = "cancelled"
    RECORDED = "recorded"
    RECORDING_PAUSED = "recording_paused"
    NOT_RECORDING = "not_recording"
    NO_OP = "no_op"
    FAILED = "failed"


@dataclass
class Operator:
    """The person driving the bot, as seen in one chat."""
    chat_id: str
    user_id: str
    username: Optional[str] = None
    first_name: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.user_id}:{self.chat_id}"

    @property
    def author(self) -> str:
        """Name recorded as the session author."""
        return self.first_name or self.username or "Anonymous"

    @property
    def identity(self) -> str:
        """Internal identity recorded on each message."""
        return self.username or self.first_name or "Anonymous"


@dataclass
class OperatorSession:
    state: RecordingState = RecordingState.IDLE
    session_id: Optional[str] = None
    author: Optional[str] = None
    title: Optional[str] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def reset(self) -> None:
        self.state = RecordingState.IDLE
        self.session_id = None
        self.author = None
        self.title = None


class OperatorSessionStore:
    """Per-conversation bot session storage."""

    def __init__(self):
        self._sessions: Dict[str, OperatorSession] = {}

    def get(self, operator: Operator) -> OperatorSession:
        session = self._sessions.get(operator.key)
        if session is None:
            session = self._sessions[operator.key] = OperatorSession()
        return session

    def peek(self, operator: Operator) -> Optional[OperatorSession]:
        return self._sessions.get(operator.key)

    def __len__(self) -> int:
        return len(self._sessions)


@dataclass
class Result:
    outcome: Outcome
    session_id: Optional[str] = None
    title: Optional[str] = None
    message: Optional[MessageRecord] = None
    error: Optional[str] = None


class RecordingStateMachine:
    """Gates which operator text becomes a persisted transcript message."""

    def __init__(
        self,
        store: SessionStoreInterface,
        events: SessionEvents,
        resolver: IdentityResolver,
        sessions: Optional[OperatorSessionStore] = None,
        id_factory: Callable[[], str] = generate_session_id,
    ):
        self.store = store
        self.events = events
        self.resolver = resolver
        self.sessions = sessions or OperatorSessionStore()
        self._id_factory = id_factory

    def state_of(self, operator: Operator) -> RecordingState:
        session = self.sessions.peek(operator)
        return session.state if session else RecordingState.IDLE

    def _log(self, operator: Operator, message: str, **fields) -> None:
        LoggerAdapter(logger, {"operator": operator.key}).info(message, extra={"extra_fields": fields})

    async def start_recording(self, operator: Operator) -> Result:
        """Begin a new capture; valid from any state. Nothing is persisted yet."""
        session = self.sessions.get(operator)
        async with session.lock:
            session.state = RecordingState.AWAITING_TITLE
            session.session_id = self._id_factory()
            session.author = operator.author
            session.title = None
            self._log(operator, "Recording requested, awaiting title", session_id=session.session_id)
            return Result(Outcome.AWAITING_TITLE, session_id=session.session_id)

    async def supply_title(self, operator: Operator, title: str) -> Result:
        session = self.sessions.get(operator)
        async with session.lock:
            return await self._supply_title(operator, session, title)

    async def _supply_title(self, operator: Operator, session: OperatorSession, title: str) -> Result:
        if session.state != RecordingState.AWAITING_TITLE:
            return Result(Outcome.NO_OP)

        title = (title or "").strip()
        if not title:
            return Result(Outcome.TITLE_REQUIRED, session_id=session.session_id)

        session_id = session.session_id
        try:
            await self.store.save_session(
                session_id,
                title=title,
                status=SessionStatus.ACTIVE,
                author=session.author,
                created_at=datetime.now(timezone.utc),
            )
        except Exception as e:
            logger.exception(f"Failed to create session {session_id}")
            session.reset()
            return Result(Outcome.FAILED, error=str(e))

        session.state = RecordingState.RECORDING
        session.title = title
        self._log(operator, f"Recording started: {title!r}", session_id=session_id)
        await self.events.session_new(session_id)
        return Result(Outcome.STARTED, session_id=session_id, title=title)

    async def _current_row(self, session: OperatorSession) -> Optional[SessionRecord]:
        """
        Re-read the session row so status changes made through the web tier
        apply to the operator. A missing or completed row ends the capture.
        """
        record = await self.store.get_session(session.session_id)
        if record is None or record.status == SessionStatus.COMPLETED:
            session.reset()
            return None
        if record.status == SessionStatus.PAUSED:
            session.state = RecordingState.PAUSED
        elif record.status == SessionStatus.ACTIVE:
            session.state = RecordingState.RECORDING
        return record

    async def _set_status(self, session: OperatorSession, status: SessionStatus) -> Optional[str]:
        """Persist a status change; returns an error string on failure."""
        try:
            await self.store.save_session(session.session_id, status=status)
        except Exception as e:
            logger.exception(f"Failed to set session {session.session_id} to {status.value}")
            return str(e)
        return None

    async def pause(self, operator: Operator) -> Result:
        session = self.sessions.get(operator)
        async with session.lock:
            if session.state not in (RecordingState.RECORDING, RecordingState.PAUSED):
                return Result(Outcome.NO_OP)
            try:
                if await self._current_row(session) is None or session.state != RecordingState.RECORDING:
                    return Result(Outcome.NO_OP)
            except Exception as e:
                logger.exception("Failed to read session before pause")
                return Result(Outcome.FAILED, error=str(e))

            error = await self._set_status(session, SessionStatus.PAUSED)
            if error:
                return Result(Outcome.FAILED, session_id=session.session_id, error=error)

            session.state = RecordingState.PAUSED
            self._log(operator, "Recording paused", session_id=session.session_id)
            await self.events.session_update(session.session_id)
            return Result(Outcome.PAUSED, session_id=session.session_id)

    async def resume(self, operator: Operator) -> Result:
        session = self.sessions.get(operator)
        async with session.lock:
            if session.state not in (RecordingState.RECORDING, RecordingState.PAUSED):
                return Result(Outcome.NO_OP)
            try:
                if await self._current_row(session) is None or session.state != RecordingState.PAUSED:
                    return Result(Outcome.NO_OP)
            except Exception as e:
                logger.exception("Failed to read session before resume")
                return Result(Outcome.FAILED, error=str(e))

            error = await self._set_status(session, SessionStatus.ACTIVE)
            if error:
                return Result(Outcome.FAILED, session_id=session.session_id, error=error)

            session.state = RecordingState.RECORDING
            self._log(operator, "Recording resumed", session_id=session.session_id)
            await self.events.session_update(session.session_id)
            return Result(Outcome.RESUMED, session_id=session.session_id)

    async def stop(self, operator: Operator) -> Result:
        session = self.sessions.get(operator)
        async with session.lock:
            if session.state == RecordingState.IDLE:
                return Result(Outcome.NO_OP)
            if session.state == RecordingState.AWAITING_TITLE:
                session.reset()
                return Result(Outcome.CANCELLED)

            session_id = session.session_id
            try:
                record = await self.store.get_session(session_id)
            except Exception as e:
                logger.exception("Failed to read session before stop")
                return Result(Outcome.FAILED, session_id=session_id, error=str(e))

            if record is None:
                # Purged while recording; nothing left to complete
                session.reset()
                return Result(Outcome.NO_OP)
            if record.status == SessionStatus.COMPLETED:
                # Already completed through the web tier
                session.reset()
                return Result(Outcome.STOPPED, session_id=session_id)

            error = await self._set_status(session, SessionStatus.COMPLETED)
            if error:
                return Result(Outcome.FAILED, session_id=session_id, error=error)

            session.reset()
            self._log(operator, "Recording stopped", session_id=session_id)
            await self.events.session_update(session_id)
            return Result(Outcome.STOPPED, session_id=session_id)

    async def record_incoming(
        self, operator: Operator, text: str, date: Optional[datetime] = None
    ) -> Result:
        """
        Route operator text: a title while awaiting one, a transcript
        message while recording, a notice otherwise.
        """
        session = self.sessions.get(operator)
        async with session.lock:
            if session.state == RecordingState.AWAITING_TITLE:
                return await self._supply_title(operator, session, text)
            if session.state not in (RecordingState.RECORDING, RecordingState.PAUSED):
                return Result(Outcome.NOT_RECORDING)

            # Bounded and fail-soft; must precede the row re-read
            await self.resolver.ensure_fresh()

            session_id = session.session_id
            try:
                record = await self._current_row(session)
            except Exception as e:
                logger.exception(f"Failed to read session {session_id}")
                return Result(Outcome.FAILED, session_id=session_id, error=str(e))
            if record is None:
                return Result(Outcome.NOT_RECORDING)
            if session.state == RecordingState.PAUSED:
                return Result(Outcome.RECORDING_PAUSED, session_id=session_id)

            try:
                message = await self.store.save_message(
                    username=operator.identity,
                    message=text,
                    date=date or datetime.now(timezone.utc),
                    session_id=session_id,
                    chat_id=operator.chat_id,
                    session_title=record.title,
                )
            except Exception as e:
                logger.exception(f"Failed to save message for session {session_id}")
                return Result(Outcome.FAILED, session_id=session_id, error=str(e))

            self.events.message_new(message)
            return Result(Outcome.RECORDED, session_id=session_id, message=message)
