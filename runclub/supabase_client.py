"""Supabase connection and query helpers for the run club tables."""

import asyncio
import logging
from typing import Any, Callable

import httpx
from supabase import AsyncClient, PostgrestAPIError, acreate_client

from runclub.config import SUPABASE_SERVICE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)

PROFILES = "profiles"
CLUBS = "run_clubs"
MEMBERSHIPS = "run_club_memberships"
POSTS = "run_club_posts"
SUBSCRIPTIONS = "subscriptions"

# Postgres unique_violation
DUPLICATE_KEY_CODE = "23505"


class ServiceError(Exception):
    """A query or mutation against the data service failed."""

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.message = message
        self.code = code or ""


class DuplicateKeyError(ServiceError):
    """Insert rejected by a unique constraint."""


class DataService:
    """Async table query/mutation/subscription facade over a Supabase client.

    Takes any client exposing ``table()``, ``channel()`` and
    ``remove_channel()`` so tests can hand in an in-memory fake.
    """

    def __init__(self, client: AsyncClient):
        self.client = client

    # -----------------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------------

    def _table(self, name: str):
        """Return a table query builder."""
        return self.client.table(name)

    async def execute(self, query) -> Any:
        """Run a query builder, translating failures into ServiceError."""
        try:
            return await query.execute()
        except PostgrestAPIError as e:
            code = str(e.code or "")
            message = e.message or str(e)
            if code == DUPLICATE_KEY_CODE:
                raise DuplicateKeyError(message, code) from e
            raise ServiceError(message, code) from e
        except httpx.HTTPError as e:
            raise ServiceError(str(e) or e.__class__.__name__) from e

    @staticmethod
    def _apply_match(q, match: dict | None):
        """Apply equality filters; list/tuple/set values become IN filters."""
        for k, v in (match or {}).items():
            if isinstance(v, (list, tuple, set)):
                q = q.in_(k, list(v))
            else:
                q = q.eq(k, v)
        return q

    @staticmethod
    def _has_empty_in(match: dict | None) -> bool:
        return any(
            isinstance(v, (list, tuple, set)) and not v
            for v in (match or {}).values()
        )

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def select(self, table: str, columns: str = "*", match: dict | None = None,
                     order: str | None = None, order_desc: bool = False,
                     limit: int | None = None) -> list[dict]:
        """Select rows with optional filtering, ordering and limit."""
        if self._has_empty_in(match):
            return []
        q = self._apply_match(self._table(table).select(columns), match)
        if order:
            q = q.order(order, desc=order_desc)
        if limit:
            q = q.limit(limit)
        result = await self.execute(q)
        return result.data or []

    async def select_one(self, table: str, columns: str = "*",
                         match: dict | None = None) -> dict | None:
        """Select a single row."""
        rows = await self.select(table, columns, match, limit=1)
        return rows[0] if rows else None

    async def count(self, table: str, match: dict | None = None) -> int:
        """Count rows matching conditions."""
        if self._has_empty_in(match):
            return 0
        q = self._apply_match(self._table(table).select("*", count="exact", head=True), match)
        result = await self.execute(q)
        return result.count or 0

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    async def insert(self, table: str, data: dict) -> dict:
        """Insert a row and return it. Raises DuplicateKeyError on conflict."""
        result = await self.execute(self._table(table).insert(data))
        return result.data[0] if result.data else {}

    async def update(self, table: str, data: dict, match: dict) -> dict:
        """Update rows matching conditions."""
        q = self._apply_match(self._table(table).update(data), match)
        result = await self.execute(q)
        return result.data[0] if result.data else {}

    async def delete(self, table: str, match: dict) -> list[dict]:
        """Delete rows matching conditions."""
        q = self._apply_match(self._table(table).delete(), match)
        result = await self.execute(q)
        return result.data or []

    # -----------------------------------------------------------------------
    # Change feed
    # -----------------------------------------------------------------------

    async def subscribe(self, channel_name: str, table: str,
                        callback: Callable[[dict], None], event: str = "*"):
        """Open a realtime channel firing ``callback`` on row changes in ``table``."""
        channel = self.client.channel(channel_name)
        channel.on_postgres_changes(event, callback=callback, table=table, schema="public")
        await channel.subscribe()
        logger.debug("Subscribed %s to %s (%s)", channel_name, table, event)
        return channel

    async def unsubscribe(self, handle) -> None:
        """Close a channel opened by subscribe()."""
        await self.client.remove_channel(handle)

    async def close(self) -> None:
        await self.client.remove_all_channels()


_service: DataService | None = None
_service_lock = asyncio.Lock()


async def get_data_service() -> DataService:
    """Return the DataService singleton, creating the client on first use."""
    global _service
    if _service is None:
        async with _service_lock:
            if _service is None:
                if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
                    raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
                client = await acreate_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
                _service = DataService(client)
    return _service


async def close_data_service() -> None:
    """Release realtime channels held by the singleton, if it was created."""
    global _service
    if _service is not None:
        await _service.close()
        _service = None
