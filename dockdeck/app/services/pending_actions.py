from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Callable, Literal, get_args

from app.core.config import PENDING_ACTION_TTL_SECONDS, PENDING_SWEEP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

PendingActionType = Literal["starting", "stopping", "restarting", "removing"]
PENDING_ACTION_TYPES: tuple[str, ...] = get_args(PendingActionType)


@dataclass(frozen=True, slots=True)
class PendingAction:
    action: str
    issued_at: float
    server_id: str
    container_id: str
    # wall-clock epoch seconds; issued_at is on the tracker's monotonic clock
    timestamp: float = 0.0

    def to_dict(self, *, now: float) -> dict[str, object]:
        return {
            "action": self.action,
            "timestamp": self.timestamp,
            "age": max(0.0, now - self.issued_at),
        }


class PendingActionTracker:
    """Short-lived markers for container actions that were just issued.

    Entries are best-effort UI hints: they expire after ``ttl_seconds`` and
    a newer action for the same container replaces the older one.
    """

    def __init__(
        self,
        ttl_seconds: float = PENDING_ACTION_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._actions: dict[tuple[str, str], PendingAction] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def now(self) -> float:
        return self._clock()

    def is_expired(self, pending: PendingAction, now: float) -> bool:
        return (now - pending.issued_at) >= self._ttl_seconds

    def set(self, server_id: str, container_id: str, action: str) -> PendingAction:
        if action not in PENDING_ACTION_TYPES:
            raise ValueError(f"unknown pending action: {action!r}")
        pending = PendingAction(
            action=action,
            issued_at=self._clock(),
            server_id=server_id,
            container_id=container_id,
            timestamp=time.time(),
        )
        self._actions[(server_id, container_id)] = pending
        return pending

    def get(self, server_id: str, container_id: str) -> PendingAction | None:
        key = (server_id, container_id)
        pending = self._actions.get(key)
        if pending is None:
            return None
        if self.is_expired(pending, self._clock()):
            del self._actions[key]
            return None
        return pending

    def for_server(self, server_id: str) -> dict[str, PendingAction]:
        now = self._clock()
        result: dict[str, PendingAction] = {}
        for key, pending in list(self._actions.items()):
            if pending.server_id != server_id:
                continue
            if self.is_expired(pending, now):
                del self._actions[key]
                continue
            result[pending.container_id] = pending
        return result

    def clear(self, server_id: str, container_id: str) -> None:
        self._actions.pop((server_id, container_id), None)

    def clear_all(self) -> None:
        self._actions.clear()

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, p in self._actions.items() if self.is_expired(p, now)]
        for key in expired:
            del self._actions[key]
        return len(expired)

    def stats(self) -> dict[str, object]:
        self.sweep()
        by_action = {name: 0 for name in PENDING_ACTION_TYPES}
        for pending in self._actions.values():
            by_action[pending.action] = by_action.get(pending.action, 0) + 1
        return {"total_pending": len(self._actions), "by_action": by_action}


@dataclass
class PendingActionSweeper:
    tracker: PendingActionTracker
    interval_seconds: float = PENDING_SWEEP_INTERVAL_SECONDS
    _task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="pending-action-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(float(self.interval_seconds))
            try:
                removed = self.tracker.sweep()
                if removed:
                    logger.debug("Swept %d expired pending actions", removed)
            except Exception:
                logger.exception("Pending action sweep failed")
