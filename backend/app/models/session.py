"""
Session Models - Recording sessions and the messages captured into them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    """Lifecycle status of a recording session."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"

    @classmethod
    def values(cls) -> List[str]:
        return [status.value for status in cls]


class SessionRecord(BaseModel):
    """Durable session row."""
    session_id: str
    title: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    author: Optional[str] = None  # internal identity, never sent to clients as-is
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MessageRecord(BaseModel):
    """Durable message row. Immutable once persisted."""
    id: int
    session_id: Optional[str] = None  # None for legacy unscoped messages
    chat_id: Optional[str] = None
    session_title: Optional[str] = None
    date: datetime
    username: str  # internal identity
    message: str


class SessionDetails(BaseModel):
    """Session row joined with values derived from its messages."""
    session_id: str
    title: str
    status: SessionStatus
    author: Optional[str] = None
    created_at: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    participants: List[str] = []
    message_count: int = 0


class StatusUpdate(BaseModel):
    """Body of PUT /session/{id}/status."""
    status: Optional[str] = None
