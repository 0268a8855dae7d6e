"""API module."""

from .messages import router as messages_router
from .sessions import router as sessions_router
from .directory import router as directory_router
from .admin import router as admin_router
from .telegram_webhook import router as telegram_router
from .realtime import router as realtime_router

__all__ = [
    'messages_router', 'sessions_router', 'directory_router', 'admin_router',
    'telegram_router', 'realtime_router',
]
