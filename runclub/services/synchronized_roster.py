"""Synchronized roster — subscribe, optimistically mutate, reconcile.

One instance per live view. The roster is always rebuilt wholesale from a
fresh fetch; there are two triggers for that fetch:

- a change-feed event on any of the watched tables (immediate), and
- a delayed re-fetch scheduled after every user action, whatever its
  outcome, which discards the optimistic delta the action applied.

Whichever lands last wins. Re-fetching is idempotent, so the redundant
one is harmless.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Iterable

from runclub.config import RECONCILE_DELAY_SECONDS
from runclub.services.change_feed import ChangeFeedListener
from runclub.services.roster import RosterStore
from runclub.supabase_client import DataService, ServiceError

logger = logging.getLogger(__name__)


class SynchronizedRoster:
    def __init__(
        self,
        data: DataService,
        fetch: Callable[[], Awaitable[list[dict]]],
        tables: Iterable[str],
        name: str = "roster",
        delay: float | None = None,
        on_change: Callable[[RosterStore], None] | None = None,
    ):
        self.name = name
        self.delay = RECONCILE_DELAY_SECONDS if delay is None else delay
        self.store = RosterStore(on_change)
        self.fetch_count = 0
        self._fetch = fetch
        self._alive = False
        self._timers: set[asyncio.Task] = set()
        suffix = uuid.uuid4().hex[:8]
        self.listeners = [
            ChangeFeedListener(data, table, f"{table}-changes-{name}-{suffix}", self._on_feed_event)
            for table in tables
        ]

    @property
    def alive(self) -> bool:
        return self._alive

    async def mount(self) -> "SynchronizedRoster":
        """Open the change feeds, then load the initial roster."""
        self._alive = True
        try:
            for listener in self.listeners:
                await listener.start()
        except Exception:
            await self.unmount()
            raise
        await self.refresh()
        return self

    async def unmount(self) -> None:
        """Release every listener and cancel pending delayed re-fetches."""
        self._alive = False
        for task in list(self._timers):
            task.cancel()
        self._timers.clear()
        for listener in self.listeners:
            await listener.stop()

    async def __aenter__(self) -> "SynchronizedRoster":
        return await self.mount()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()

    async def refresh(self) -> bool:
        """Re-fetch and replace the store. False if skipped, failed or discarded."""
        if not self._alive:
            return False
        self.fetch_count += 1
        try:
            entities = await self._fetch()
        except ServiceError as e:
            logger.warning("Refresh of %s failed: %s", self.name, e.message)
            return False
        if not self._alive:
            logger.debug("Discarding refresh of %s, view is gone", self.name)
            return False
        self.store.replace_all(entities)
        return True

    def apply_optimistic(self, entity_id: str, mutator: Callable[[dict], dict]) -> bool:
        if not self._alive:
            return False
        return self.store.apply_optimistic_delta(entity_id, mutator)

    def schedule_refresh(self, delay: float | None = None) -> asyncio.Task | None:
        """Re-fetch after ``delay`` seconds (default: the reconcile delay)."""
        if not self._alive:
            return None
        task = asyncio.get_running_loop().create_task(
            self._refresh_later(self.delay if delay is None else delay)
        )
        self._timers.add(task)
        task.add_done_callback(self._timer_done)
        return task

    def _timer_done(self, task: asyncio.Task) -> None:
        self._timers.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Delayed refresh of %s failed", self.name, exc_info=task.exception())

    async def _refresh_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.refresh()

    async def _on_feed_event(self, payload: dict) -> None:
        await self.refresh()
