"""
Identity Resolver - maps internal usernames to public display identities.

The directory is fetched from an external source and cached as an
immutable snapshot. Lookups are pure functions of the current snapshot;
refreshes build a new snapshot and swap it in whole.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

from ..models import DirectoryEntry, ResolvedIdentity

logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    """Raised when the external directory cannot be read."""


class DirectorySource(ABC):
    """External source of identity metadata."""

    @abstractmethod
    async def get_user_metadata(self) -> Dict[str, DirectoryEntry]:
        """
        Fetch every person in the directory.

        Returns:
            Dict: Entries keyed by lowercase internal name

        Raises:
            DirectoryError: If the directory cannot be read
        """
        pass


class DirectorySnapshot:
    """
    Read-only view of the directory at one point in time.

    Holds the forward map (internal name -> entry) and two reverse indexes
    (override -> internal name, canonical name -> internal name), all
    keyed in lowercase.
    """

    def __init__(self, entries: Mapping[str, DirectoryEntry], fetched_at: float = 0.0):
        forward = {key.lower(): entry for key, entry in entries.items()}
        by_override: Dict[str, str] = {}
        by_name: Dict[str, str] = {}
        # Sorted so duplicate display names resolve the same way on every refresh
        for key in sorted(forward):
            entry = forward[key]
            if entry.override:
                by_override.setdefault(entry.override.lower(), entry.original_name)
            by_name.setdefault(entry.original_name.lower(), entry.original_name)

        self.entries: Mapping[str, DirectoryEntry] = MappingProxyType(forward)
        self._by_override = MappingProxyType(by_override)
        self._by_name = MappingProxyType(by_name)
        self.fetched_at = fetched_at

    def __len__(self) -> int:
        return len(self.entries)

    def lookup(self, internal_name: Optional[str]) -> Optional[DirectoryEntry]:
        if not internal_name:
            return None
        return self.entries.get(str(internal_name).lower())

    def reverse(self, display_name: Optional[str]) -> Optional[str]:
        if not display_name:
            return None
        key = display_name.lower()
        return self._by_override.get(key) or self._by_name.get(key)


class IdentityResolver:
    """
    Resolves internal identities against a TTL-cached directory snapshot.

    Concurrent refreshes collapse into one upstream fetch: callers that
    arrive while a fetch is in flight await the same task. A failed or
    timed-out fetch keeps the previous snapshot and retries after
    `retry_after_seconds`.
    """

    def __init__(
        self,
        source: Optional[DirectorySource] = None,
        ttl_seconds: float = 15 * 60,
        fetch_timeout: float = 10.0,
        retry_after_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            source: Directory to fetch from; None disables fetching entirely
            ttl_seconds: How long a snapshot is served before refreshing
            fetch_timeout: Upper bound on a single directory fetch
            retry_after_seconds: Back-off after a failed fetch
            clock: Monotonic time source
        """
        self._source = source
        self.ttl_seconds = ttl_seconds
        self.fetch_timeout = fetch_timeout
        self.retry_after_seconds = retry_after_seconds
        self._clock = clock

        self._snapshot = DirectorySnapshot({})
        self._expires_at = 0.0
        self._inflight: Optional[asyncio.Task] = None

    @property
    def snapshot(self) -> DirectorySnapshot:
        return self._snapshot

    def is_stale(self) -> bool:
        return self._source is not None and self._clock() >= self._expires_at

    async def ensure_fresh(self) -> DirectorySnapshot:
        """Refresh the snapshot if its TTL has passed, then return it."""
        if self.is_stale():
            await self._refresh()
        return self._snapshot

    async def force_refresh(self) -> DirectorySnapshot:
        """Administrative cache invalidation."""
        self._expires_at = 0.0
        if self._source is None:
            return self._snapshot
        await self._refresh()
        return self._snapshot

    async def _refresh(self) -> None:
        if self._inflight is None:
            task = asyncio.ensure_future(self._fetch())
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _fetch(self) -> None:
        started = self._clock()
        try:
            entries = await asyncio.wait_for(
                self._source.get_user_metadata(), timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Directory fetch timed out after {self.fetch_timeout}s; "
                f"serving {len(self._snapshot)} cached entries"
            )
            self._expires_at = self._clock() + self.retry_after_seconds
            return
        except Exception as e:
            logger.warning(
                f"Directory fetch failed: {e}; serving {len(self._snapshot)} cached entries"
            )
            self._expires_at = self._clock() + self.retry_after_seconds
            return

        self._snapshot = DirectorySnapshot(entries, fetched_at=started)
        self._expires_at = started + self.ttl_seconds
        logger.info(f"Directory refreshed: {len(self._snapshot)} entries")

    def resolve(self, internal_name: Optional[str]) -> ResolvedIdentity:
        """
        Resolve an internal name to its public identity.

        Falls back from the override to the directory's canonical name and,
        when the directory has no entry at all, to the internal name itself.
        """
        entry = self._snapshot.lookup(internal_name)
        if entry is None:
            return ResolvedIdentity(display_name=internal_name or "")
        return ResolvedIdentity(
            display_name=entry.display_name,
            is_guest=entry.is_guest,
            is_host=entry.is_host,
        )

    def reverse(self, display_name: Optional[str]) -> Optional[str]:
        """Map a public display name back to the internal name, if known."""
        return self._snapshot.reverse(display_name)

    def safe_metadata(self) -> Dict[str, Dict]:
        """
        Public directory view keyed by lowercase display name.
        Internal names never appear as keys or values.
        """
        safe: Dict[str, Dict] = {}
        for entry in self._snapshot.entries.values():
            display = entry.display_name
            safe[display.lower()] = {
                "displayName": display,
                "isGuest": entry.is_guest,
                "isHost": entry.is_host,
            }
        return safe

    def admin_metadata(self) -> Dict[str, Dict]:
        """
        Full directory view for administrators, including internal names.

        Returns:
            Dict: `byOriginal` keyed by internal name, `byDisplay` keyed by
            lowercase override for entries that have one
        """
        by_original: Dict[str, Dict] = {}
        by_display: Dict[str, Dict] = {}
        for key, entry in self._snapshot.entries.items():
            by_original[key] = {
                "originalName": entry.original_name,
                "displayName": entry.override,
                "isGuest": entry.is_guest,
                "isHost": entry.is_host,
            }
            if entry.override:
                by_display[entry.override.lower()] = {
                    "displayName": entry.override,
                    "isGuest": entry.is_guest,
                    "isHost": entry.is_host,
                    "originalName": entry.original_name,
                }
        return {"byOriginal": by_original, "byDisplay": by_display}
