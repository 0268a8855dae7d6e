"""
Service container - wires the store, resolver, bus, events and bot together.
One instance lives on `app.state.services` for the lifetime of the process.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from ..bot.handlers import BotHandlers
from ..channels.notion import NotionDirectory
from ..channels.telegram import TelegramBot
from ..config import Settings
from ..core.identity import IdentityResolver
from ..core.recording import RecordingStateMachine
from ..realtime.bus import FanOutBus
from ..realtime.events import SessionEvents
from ..storage import LocalSessionStore, SessionStoreInterface

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: SessionStoreInterface
    resolver: IdentityResolver
    bus: FanOutBus
    events: SessionEvents
    machine: RecordingStateMachine
    directory: Optional[NotionDirectory] = None
    bot: Optional[TelegramBot] = None
    handlers: Optional[BotHandlers] = None


def build_services(
    settings: Settings,
    store: Optional[SessionStoreInterface] = None,
    directory: Optional[NotionDirectory] = None,
    bot: Optional[TelegramBot] = None,
) -> Services:
    """
    Build the application services from settings.

    Args:
        settings: Application settings
        store: Override the session store (tests)
        directory: Override the directory source (tests)
        bot: Override the Telegram client (tests)
    """
    if store is None:
        if settings.storage_type != "local":
            raise ValueError(f"Unsupported storage type: {settings.storage_type}")
        store = LocalSessionStore(settings.local_storage_path)

    if directory is None and settings.notion_token and settings.notion_database_id:
        directory = NotionDirectory(settings.notion_token, settings.notion_database_id)
    if directory is None:
        logger.warning("Notion directory not configured; identities resolve to themselves")

    resolver = IdentityResolver(
        directory,
        ttl_seconds=settings.directory_cache_ttl_seconds,
        fetch_timeout=settings.directory_fetch_timeout_seconds,
    )
    bus = FanOutBus(queue_size=settings.realtime_queue_size)
    events = SessionEvents(bus, store, resolver)
    machine = RecordingStateMachine(store, events, resolver)

    handlers = None
    if bot is None and settings.telegram_bot_token and not settings.telegram_disabled:
        bot = TelegramBot(settings.telegram_bot_token, webhook_secret=settings.telegram_webhook_secret)
    if bot is not None:
        handlers = BotHandlers(machine, bot, admin_users=settings.admin_telegram_users)
    else:
        logger.info("Telegram bot disabled")

    return Services(
        store=store,
        resolver=resolver,
        bus=bus,
        events=events,
        machine=machine,
        directory=directory,
        bot=bot,
        handlers=handlers,
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the process-wide services."""
    return request.app.state.services


async def fresh_resolver(request: Request) -> IdentityResolver:
    """FastAPI dependency returning a resolver whose snapshot is within TTL."""
    resolver = get_services(request).resolver
    await resolver.ensure_fresh()
    return resolver
