"""
Shared test fixtures and configuration.
"""

import asyncio
import os
from typing import Dict, Optional

import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOCAL_STORAGE_PATH", "/tmp/dialogs_test_data")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("TELEGRAM_DISABLED", "true")

from app.core.identity import DirectorySource, IdentityResolver  # noqa: E402
from app.core.recording import Operator, RecordingStateMachine  # noqa: E402
from app.models import DirectoryEntry  # noqa: E402
from app.realtime.bus import FanOutBus  # noqa: E402
from app.realtime.events import SessionEvents  # noqa: E402
from app.storage import LocalSessionStore  # noqa: E402

ADMIN_KEY = os.environ["ADMIN_API_KEY"]


def make_entry(name: str, override: Optional[str] = None, guest: bool = False, host: bool = False) -> DirectoryEntry:
    status = (["Guest"] if guest else []) + (["Host"] if host else [])
    return DirectoryEntry(original_name=name, override=override, is_guest=guest, is_host=host, status=status)


class FakeDirectory(DirectorySource):
    """In-memory directory with call counting and injectable latency/failure."""

    def __init__(self, entries: Optional[Dict[str, DirectoryEntry]] = None,
                 delay: float = 0.0, error: Optional[Exception] = None):
        self.entries = dict(entries or {})
        self.pages: Dict[str, dict] = {}
        self.delay = delay
        self.error = error
        self.calls = 0

    async def get_user_metadata(self) -> Dict[str, DirectoryEntry]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return dict(self.entries)

    async def get_page_by_title(self, title: str) -> Optional[dict]:
        return self.pages.get(title.lower())


def drain(subscriber) -> list:
    """Frames queued for a subscriber, in order."""
    frames = []
    while not subscriber.queue.empty():
        frames.append(subscriber.queue.get_nowait())
    return frames


def listen(bus: FanOutBus, *rooms: str):
    """Connect a recording subscriber to the given rooms."""
    async def send(frame):
        pass

    subscriber = bus.connect(send)
    for room in rooms:
        bus.join(subscriber.conn_id, room)
    return subscriber


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def directory():
    return FakeDirectory({
        "alice_internal": make_entry("alice_internal", "Alice", guest=True),
        "bob_h": make_entry("bob_h", "Robert", host=True),
        "carol": make_entry("carol"),
    })


@pytest.fixture
def store(tmp_path):
    return LocalSessionStore(str(tmp_path / "data"))


@pytest.fixture
def resolver(directory):
    return IdentityResolver(directory)


@pytest.fixture
def bus():
    return FanOutBus(queue_size=64)


@pytest.fixture
def events(bus, store, resolver):
    return SessionEvents(bus, store, resolver)


@pytest.fixture
def machine(store, events, resolver):
    return RecordingStateMachine(store, events, resolver)


@pytest.fixture
def alice():
    return Operator(chat_id="100", user_id="1", username="alice_internal", first_name="Alice I")


@pytest.fixture
def bob():
    return Operator(chat_id="200", user_id="2", username="bob_h", first_name="Bob")
