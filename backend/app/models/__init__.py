"""Models module."""

from .session import SessionStatus, SessionRecord, MessageRecord, SessionDetails, StatusUpdate
from .identity import DirectoryEntry, ResolvedIdentity

__all__ = [
    'SessionStatus', 'SessionRecord', 'MessageRecord', 'SessionDetails', 'StatusUpdate',
    'DirectoryEntry', 'ResolvedIdentity'
]
