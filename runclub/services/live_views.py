"""Live views — explore, members, dashboard.

A live view lives exactly as long as one WebSocket connection. It owns a
SynchronizedRoster, turns client messages into actions and queues outgoing
messages (roster snapshots, notices) on ``outbox`` for the socket to drain.
"""

import asyncio
import logging

from runclub.config import SIGN_IN_PATH
from runclub.services import clubs
from runclub.services.notices import Notice
from runclub.services.profiles import get_role
from runclub.services.synchronized_roster import SynchronizedRoster
from runclub.supabase_client import MEMBERSHIPS, POSTS, SUBSCRIPTIONS, DataService, ServiceError

logger = logging.getLogger(__name__)


class LiveView:
    name = "view"
    tables: tuple[str, ...] = (MEMBERSHIPS,)
    requires_user = True

    def __init__(self, data: DataService, user: dict | None = None, delay: float | None = None):
        self.data = data
        self.user = user
        self.outbox: asyncio.Queue[dict] = asyncio.Queue()
        self._actions: set[asyncio.Task] = set()
        self.roster = SynchronizedRoster(
            data, self.fetch, self.tables,
            name=self.name, delay=delay, on_change=self._roster_changed,
        )

    async def fetch(self) -> list[dict]:
        raise NotImplementedError

    async def setup(self) -> None:
        """Per-view state loaded once before the roster mounts."""

    def visible_entities(self) -> list[dict]:
        return self.roster.store.entities

    def snapshot(self) -> dict:
        return {
            "type": "roster",
            "view": self.name,
            "entities": self.visible_entities(),
            "version": self.roster.store.version,
        }

    def actions(self) -> dict:
        return {"refresh": self._refresh}

    async def __aenter__(self) -> "LiveView":
        await self.setup()
        await self.roster.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        for task in list(self._actions):
            task.cancel()
        if self._actions:
            await asyncio.gather(*self._actions, return_exceptions=True)
        await self.roster.unmount()

    def submit(self, message: dict) -> asyncio.Task:
        """Run ``handle`` in the background so the socket keeps reading."""
        task = asyncio.get_running_loop().create_task(self.handle(message))
        self._actions.add(task)
        task.add_done_callback(self._action_done)
        return task

    def _action_done(self, task: asyncio.Task) -> None:
        self._actions.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Action on %s view failed", self.name, exc_info=task.exception())

    async def handle(self, message: dict) -> Notice | None:
        """Dispatch one client message; the resulting notice is also queued."""
        action = message.get("action", "")
        handler = self.actions().get(action)
        if handler is None:
            notice = Notice.error(f"Unknown action: {action}")
        else:
            notice = await handler(message)
        if notice is not None:
            self.outbox.put_nowait(notice.to_message())
        return notice

    def _push_snapshot(self) -> None:
        self.outbox.put_nowait(self.snapshot())

    def _roster_changed(self, store) -> None:
        self._push_snapshot()

    async def _refresh(self, message: dict) -> None:
        await self.roster.refresh()
        return None


class ExploreView(LiveView):
    """Public club directory with search and join."""

    name = "explore"
    requires_user = False

    def __init__(self, data: DataService, user: dict | None = None, delay: float | None = None):
        super().__init__(data, user, delay)
        self.query = ""
        self._joining: set[str] = set()

    async def fetch(self) -> list[dict]:
        return await clubs.fetch_explore_clubs(self.data)

    def visible_entities(self) -> list[dict]:
        return clubs.filter_clubs(self.roster.store.entities, self.query)

    def snapshot(self) -> dict:
        return {**super().snapshot(), "query": self.query}

    def actions(self) -> dict:
        return {**super().actions(), "join": self._join, "search": self._search}

    async def _join(self, message: dict) -> Notice | None:
        club_id = message.get("club_id")
        if not club_id:
            return Notice.error("club_id is required")
        if club_id in self._joining:
            return None
        self._joining.add(club_id)
        try:
            return await clubs.join_club(self.data, self.roster, club_id, self.user)
        finally:
            self._joining.discard(club_id)

    async def _search(self, message: dict) -> None:
        self.query = str(message.get("query") or "")
        self._push_snapshot()
        return None


class MembersView(LiveView):
    """Fellow runners (runner) or club members (leader)."""

    name = "members"

    def __init__(self, data: DataService, user: dict | None = None, delay: float | None = None):
        super().__init__(data, user, delay)
        self.role: str | None = None

    async def setup(self) -> None:
        try:
            self.role = await get_role(self.data, self.user["id"])
        except ServiceError as e:
            logger.warning("Role lookup failed for %s: %s", self.user["id"], e.message)

    async def fetch(self) -> list[dict]:
        return await clubs.fetch_member_rosters(self.data, self.user["id"], self.role)

    def snapshot(self) -> dict:
        return {**super().snapshot(), "role": self.role}

    def actions(self) -> dict:
        return {**super().actions(), "remove_member": self._remove_member}

    async def _remove_member(self, message: dict) -> Notice:
        if self.role != "leader":
            return Notice.error("Only club leaders can remove members.")
        club_id = message.get("club_id")
        member_id = message.get("member_id")
        if not club_id or not member_id:
            return Notice.error("club_id and member_id are required")
        return await clubs.remove_member(self.data, self.roster, club_id, member_id, self.user)


class DashboardView(LiveView):
    """A leader's clubs: member counts, latest posts, posting."""

    name = "dashboard"
    tables = (MEMBERSHIPS, POSTS)

    def __init__(self, data: DataService, user: dict | None = None, delay: float | None = None):
        super().__init__(data, user, delay)
        self.plan_type = "free"

    async def setup(self) -> None:
        try:
            subscription = await self.data.select_one(
                SUBSCRIPTIONS, "plan_type", match={"user_id": self.user["id"]},
            )
        except ServiceError as e:
            logger.warning("Subscription lookup failed for %s: %s", self.user["id"], e.message)
            return
        if subscription:
            self.plan_type = subscription.get("plan_type") or "free"

    async def fetch(self) -> list[dict]:
        return await clubs.fetch_leader_dashboard(self.data, self.user["id"])

    def snapshot(self) -> dict:
        return {**super().snapshot(), "plan_type": self.plan_type}

    def actions(self) -> dict:
        return {**super().actions(), "create_post": self._create_post}

    async def _create_post(self, message: dict) -> Notice | None:
        club_id = message.get("club_id")
        content = message.get("content") or ""
        if not club_id or not content.strip():
            return None
        try:
            post = await clubs.create_post(self.data, club_id, content, self.user["id"])
        except ServiceError as e:
            logger.warning("Error creating post on club %s: %s", club_id, e.message)
            self.roster.schedule_refresh()
            return Notice.error(clubs.POST_FAILED)
        if post is None:
            return Notice.error("You can only post to clubs you lead.")
        await self.roster.refresh()
        return Notice.success("Post published.")


VIEWS = {
    ExploreView.name: ExploreView,
    MembersView.name: MembersView,
    DashboardView.name: DashboardView,
}


def sign_in_notice() -> Notice:
    return Notice.redirect(SIGN_IN_PATH)
