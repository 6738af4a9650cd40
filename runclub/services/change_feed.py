"""Change feed listener — one realtime channel per (table, view)."""

import asyncio
import logging
from typing import Awaitable, Callable

from runclub.supabase_client import DataService

logger = logging.getLogger(__name__)


class ChangeFeedListener:
    """Invoke ``on_event`` for every row change in ``table``.

    Use as an async context manager. The realtime transport calls back
    synchronously and possibly from another thread, so events are hopped
    onto the owning loop. Once stopped, late events are dropped and any
    handler still running is cancelled.
    """

    def __init__(
        self,
        data: DataService,
        table: str,
        channel_name: str,
        on_event: Callable[[dict], Awaitable[None]],
        event: str = "*",
    ):
        self.table = table
        self.channel_name = channel_name
        self.event = event
        self._data = data
        self._on_event = on_event
        self._handle = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._active = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self._active

    async def start(self) -> None:
        if self._handle is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._active = True
        try:
            self._handle = await self._data.subscribe(
                self.channel_name, self.table, self._receive, self.event,
            )
        except Exception:
            self._active = False
            raise
        logger.info("Listening for %s changes on %s", self.table, self.channel_name)

    async def stop(self) -> None:
        self._active = False
        for task in list(self._tasks):
            task.cancel()
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await self._data.unsubscribe(handle)
        except Exception:
            logger.exception("Failed to remove channel %s", self.channel_name)
        else:
            logger.info("Stopped listening on %s", self.channel_name)

    async def __aenter__(self) -> "ChangeFeedListener":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _receive(self, payload: dict) -> None:
        if not self._active or self._loop is None:
            logger.debug("Dropping %s event after stop", self.table)
            return
        try:
            self._loop.call_soon_threadsafe(self._dispatch, payload)
        except RuntimeError:
            # loop already closed
            logger.debug("Dropping %s event, loop closed", self.table)

    def _dispatch(self, payload: dict) -> None:
        if not self._active:
            return
        logger.debug("Change on %s: %s", self.table, payload)
        task = self._loop.create_task(self._on_event(payload))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Change handler for %s failed", self.table, exc_info=task.exception())
