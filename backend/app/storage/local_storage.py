"""
Local Filesystem Session Store.
Sessions live in a single JSON document; messages are an append-only
JSON-lines log whose line order is the persistence order.
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, List, Dict

import aiofiles
import aiofiles.os

from ..models import SessionRecord, MessageRecord, SessionDetails, SessionStatus
from .interface import SessionStoreInterface, StorageError

logger = logging.getLogger(__name__)


class LocalSessionStore(SessionStoreInterface):
    """
    Filesystem-backed session store.

    All writes go through one asyncio.Lock, so message ids are assigned in
    the same order the messages are appended to the log.
    """

    SESSIONS_FILE = "sessions.json"
    MESSAGES_FILE = "messages.jsonl"

    def __init__(self, base_dir: str = "./data"):
        """
        Initialize the store under a base directory.

        Args:
            base_dir: Directory holding the session and message files
        """
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._sessions_path = self.base_dir / self.SESSIONS_FILE
        self._messages_path = self.base_dir / self.MESSAGES_FILE

        self._lock = asyncio.Lock()
        self._loaded = False
        self._sessions: Dict[str, SessionRecord] = {}
        self._messages: List[MessageRecord] = []
        self._last_id = 0

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._lock:
            if self._loaded:
                return
            try:
                await self._load()
            except (OSError, ValueError) as e:
                raise StorageError(f"Failed to load session store: {e}") from e
            self._loaded = True

    async def _load(self) -> None:
        if self._sessions_path.exists():
            async with aiofiles.open(self._sessions_path, 'r', encoding='utf-8') as f:
                raw = json.loads(await f.read() or "{}")
            self._sessions = {
                session_id: SessionRecord.model_validate(data)
                for session_id, data in raw.items()
            }

        if self._messages_path.exists():
            async with aiofiles.open(self._messages_path, 'r', encoding='utf-8') as f:
                async for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    self._messages.append(MessageRecord.model_validate_json(line))

        self._last_id = max((m.id for m in self._messages), default=0)
        logger.info(
            f"Session store loaded: {len(self._sessions)} sessions, "
            f"{len(self._messages)} messages from {self.base_dir}"
        )

    async def _write_sessions(self, sessions: Dict[str, SessionRecord]) -> None:
        payload = {
            session_id: record.model_dump(mode="json")
            for session_id, record in sessions.items()
        }
        tmp_path = self._sessions_path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(payload, indent=2, ensure_ascii=False))
        await aiofiles.os.replace(tmp_path, self._sessions_path)

    async def save_session(
        self,
        session_id: str,
        title: Optional[str] = None,
        status: Optional[SessionStatus] = None,
        author: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> SessionRecord:
        if not session_id:
            raise StorageError("Session ID is required")

        await self._ensure_loaded()
        async with self._lock:
            existing = self._sessions.get(session_id)
            if existing:
                record = existing.model_copy(update={
                    "title": title if title is not None else existing.title,
                    "status": SessionStatus(status) if status is not None else existing.status,
                    "author": author if author is not None else existing.author,
                })
            else:
                record = SessionRecord(
                    session_id=session_id,
                    title=title,
                    status=SessionStatus(status) if status is not None else SessionStatus.ACTIVE,
                    author=author,
                    created_at=created_at or datetime.now(timezone.utc),
                )

            updated = {**self._sessions, session_id: record}
            try:
                await self._write_sessions(updated)
            except OSError as e:
                raise StorageError(f"Failed to save session {session_id}: {e}") from e
            self._sessions = updated

        logger.debug(
            f"{'Updated' if existing else 'Created'} session {session_id}: "
            f"title={record.title!r} status={record.status.value}"
        )
        return record

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        await self._ensure_loaded()
        return self._sessions.get(session_id)

    async def list_sessions(self) -> List[SessionRecord]:
        await self._ensure_loaded()
        return sorted(self._sessions.values(), key=lambda s: s.created_at, reverse=True)

    async def save_message(
        self,
        username: str,
        message: str,
        date: datetime,
        session_id: Optional[str] = None,
        chat_id: Optional[str] = None,
        session_title: Optional[str] = None,
    ) -> MessageRecord:
        await self._ensure_loaded()
        async with self._lock:
            if session_title is None and session_id in self._sessions:
                session_title = self._sessions[session_id].title

            record = MessageRecord(
                id=self._last_id + 1,
                session_id=session_id,
                chat_id=chat_id,
                session_title=session_title,
                date=date,
                username=username,
                message=message,
            )
            try:
                async with aiofiles.open(self._messages_path, 'a', encoding='utf-8') as f:
                    await f.write(record.model_dump_json() + "\n")
            except OSError as e:
                raise StorageError(f"Failed to save message: {e}") from e

            self._messages.append(record)
            self._last_id = record.id

        return record

    async def get_messages(self, chat_id: str = "all", limit: int = 100) -> List[MessageRecord]:
        await self._ensure_loaded()
        messages = self._messages
        if chat_id != "all":
            messages = [m for m in messages if m.chat_id == chat_id]
        return sorted(messages, key=lambda m: m.date, reverse=True)[:limit]

    async def get_messages_by_session(self, session_id: str) -> List[MessageRecord]:
        await self._ensure_loaded()
        return [m for m in self._messages if m.session_id == session_id]

    async def get_chat_ids(self) -> List[str]:
        await self._ensure_loaded()
        return list(dict.fromkeys(m.chat_id for m in self._messages if m.chat_id))

    async def get_session_details(self, session_id: str) -> Optional[SessionDetails]:
        await self._ensure_loaded()
        record = self._sessions.get(session_id)
        messages = [m for m in self._messages if m.session_id == session_id]

        if record is None and not messages:
            return None

        title = record.title if record else None
        if not title:
            title = next((m.session_title for m in messages if m.session_title), None)

        if record is not None:
            status = record.status
        else:
            # Legacy session known only from its messages
            status = SessionStatus.COMPLETED

        dates = [m.date for m in messages]
        return SessionDetails(
            session_id=session_id,
            title=title or session_id,
            status=status,
            author=record.author if record else None,
            created_at=record.created_at if record else None,
            start_date=min(dates) if dates else (record.created_at if record else None),
            end_date=max(dates) if dates else None,
            participants=list(dict.fromkeys(m.username for m in messages)),
            message_count=len(messages),
        )

    async def list_session_details(self) -> List[SessionDetails]:
        await self._ensure_loaded()
        session_ids = list(self._sessions)
        for m in self._messages:
            if m.session_id and m.session_id not in self._sessions and m.session_id not in session_ids:
                session_ids.append(m.session_id)

        details = []
        for session_id in session_ids:
            item = await self.get_session_details(session_id)
            if item:
                details.append(item)

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        details.sort(key=lambda d: d.start_date or epoch, reverse=True)
        return details

    async def find_stale_sessions(self, max_idle: timedelta, now: Optional[datetime] = None) -> List[str]:
        await self._ensure_loaded()
        cutoff = (now or datetime.now(timezone.utc)) - max_idle

        last_activity: Dict[str, datetime] = {}
        for m in self._messages:
            if m.session_id and (m.session_id not in last_activity or m.date > last_activity[m.session_id]):
                last_activity[m.session_id] = m.date

        return [
            record.session_id
            for record in self._sessions.values()
            if record.status == SessionStatus.ACTIVE
            and last_activity.get(record.session_id, record.created_at) < cutoff
        ]

    async def reset(self) -> Dict[str, int]:
        await self._ensure_loaded()
        async with self._lock:
            cleared = {"sessions": len(self._sessions), "messages": len(self._messages)}
            try:
                await self._write_sessions({})
                async with aiofiles.open(self._messages_path, 'w', encoding='utf-8') as f:
                    await f.write("")
            except OSError as e:
                raise StorageError(f"Failed to reset session store: {e}") from e
            self._sessions = {}
            self._messages = []
            self._last_id = 0

        logger.warning(
            f"Session store reset: {cleared['sessions']} sessions, {cleared['messages']} messages removed"
        )
        return cleared
