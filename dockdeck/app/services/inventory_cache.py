from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from app.core.config import INVENTORY_CACHE_TTL_SECONDS, LOCAL_SERVER_ID

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    containers: list[dict[str, Any]] = field(default_factory=list)
    stats: list[dict[str, Any]] = field(default_factory=list)
    host_info: dict[str, Any] | None = None


@dataclass
class CachedSnapshot(Snapshot):
    age: float = 0.0


@dataclass
class CacheEntry:
    key: str
    snapshot: Snapshot
    fetched_at: float
    refreshing: bool = False


FetchFn = Callable[[], Awaitable[Snapshot]]


def server_cache_key(server: Any) -> str:
    """Stable cache identity for a target server.

    Accepts either a mapping or an object with ``is_local``, ``host`` and
    ``username`` attributes.
    """
    def _get(name: str) -> Any:
        if isinstance(server, dict):
            return server.get(name)
        return getattr(server, name, None)

    if _get("is_local"):
        return LOCAL_SERVER_ID
    return f"{_get('host') or ''}::{_get('username') or ''}"


class InventoryCache:
    """Stale-while-revalidate cache of Docker snapshots, one entry per server.

    A miss blocks on ``fetch``. A stale hit returns the old snapshot at once
    and schedules a single background refresh; refresh failures keep the
    stale snapshot and are only logged.
    """

    def __init__(
        self,
        ttl_seconds: float = INVENTORY_CACHE_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get_entry(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def _store(self, key: str, snapshot: Snapshot) -> CacheEntry:
        entry = CacheEntry(key=key, snapshot=snapshot, fetched_at=self._clock())
        self._entries[key] = entry
        return entry

    @staticmethod
    def _view(entry: CacheEntry, age: float) -> CachedSnapshot:
        snap = entry.snapshot
        return CachedSnapshot(
            containers=snap.containers,
            stats=snap.stats,
            host_info=snap.host_info,
            age=max(0.0, age),
        )

    async def get_data(self, key: str, fetch: FetchFn) -> CachedSnapshot:
        entry = self._entries.get(key)

        if entry is None:
            snapshot = await fetch()
            entry = self._store(key, snapshot)
            return self._view(entry, 0.0)

        age = self._clock() - entry.fetched_at
        if age < self._ttl_seconds:
            return self._view(entry, age)

        if not entry.refreshing:
            # flag is set before the task is scheduled so concurrent stale
            # reads in the same loop iteration see it
            entry.refreshing = True
            task = asyncio.create_task(
                self._refresh(key, entry, fetch), name=f"inventory-refresh:{key}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return self._view(entry, age)

    async def _refresh(self, key: str, entry: CacheEntry, fetch: FetchFn) -> None:
        try:
            snapshot = await fetch()
        except Exception as e:
            entry.refreshing = False
            logger.warning("Background cache refresh failed for %s: %s", key, e)
            return

        # an invalidate() during the refresh wins over the late result
        if self._entries.get(key) is not entry:
            logger.debug("Dropping refresh result for invalidated key %s", key)
            return
        self._store(key, snapshot)
        logger.debug("Inventory cache refreshed for %s", key)

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
            return
        self._entries.pop(key, None)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        entries = [
            {
                "server": key,
                "age": max(0.0, now - entry.fetched_at),
                "refreshing": entry.refreshing,
            }
            for key, entry in self._entries.items()
        ]
        return {"total_entries": len(self._entries), "entries": entries}

    async def wait_idle(self) -> None:
        """Wait for every in-flight background refresh to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
