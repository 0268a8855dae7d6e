"""
Session Store Interface - Abstract base class for session/message persistence.
The recording bot and the web tier both go through this contract.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional, List, Dict

from ..models import SessionRecord, MessageRecord, SessionDetails, SessionStatus


class StorageError(Exception):
    """Raised when the store cannot complete a read or write."""


class SessionStoreInterface(ABC):
    """
    Durable record of recording sessions and their messages.
    The store is the single writer of session/message state.
    """

    @abstractmethod
    async def save_session(
        self,
        session_id: str,
        title: Optional[str] = None,
        status: Optional[SessionStatus] = None,
        author: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> SessionRecord:
        """
        Create or update a session row.

        Fields passed as None keep their stored value on update. A new row
        defaults to status ACTIVE and the current time.

        Args:
            session_id: Session identifier
            title: Session title
            status: New status
            author: Internal identity of the operator
            created_at: Creation timestamp (only used on insert)

        Returns:
            SessionRecord: The row as stored

        Raises:
            StorageError: If the row cannot be written
        """
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Get a session row, or None if it does not exist."""
        pass

    @abstractmethod
    async def list_sessions(self) -> List[SessionRecord]:
        """List all session rows, newest first."""
        pass

    @abstractmethod
    async def save_message(
        self,
        username: str,
        message: str,
        date: datetime,
        session_id: Optional[str] = None,
        chat_id: Optional[str] = None,
        session_title: Optional[str] = None,
    ) -> MessageRecord:
        """
        Persist a message and assign it the next monotonic id.

        Returns:
            MessageRecord: The stored message with its id

        Raises:
            StorageError: If the message cannot be written
        """
        pass

    @abstractmethod
    async def get_messages(self, chat_id: str = "all", limit: int = 100) -> List[MessageRecord]:
        """Latest messages (newest first), optionally filtered by chat id."""
        pass

    @abstractmethod
    async def get_messages_by_session(self, session_id: str) -> List[MessageRecord]:
        """All messages of a session in persistence order."""
        pass

    @abstractmethod
    async def get_chat_ids(self) -> List[str]:
        """Distinct chat ids that have messages."""
        pass

    @abstractmethod
    async def get_session_details(self, session_id: str) -> Optional[SessionDetails]:
        """Session row joined with participants, message count and date range."""
        pass

    @abstractmethod
    async def list_session_details(self) -> List[SessionDetails]:
        """Details for every known session, newest first."""
        pass

    @abstractmethod
    async def find_stale_sessions(self, max_idle: timedelta, now: Optional[datetime] = None) -> List[str]:
        """
        Active sessions with no activity for longer than max_idle.

        Activity is the latest message date, or the creation time for a
        session without messages.
        """
        pass

    @abstractmethod
    async def reset(self) -> Dict[str, int]:
        """
        Administrative purge of all sessions and messages.

        Returns:
            Dict: Number of sessions and messages removed
        """
        pass
