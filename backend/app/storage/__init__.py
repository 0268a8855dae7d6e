"""Storage module - session/message persistence interface and implementations."""

from .interface import SessionStoreInterface, StorageError
from .local_storage import LocalSessionStore

__all__ = ['SessionStoreInterface', 'StorageError', 'LocalSessionStore']
