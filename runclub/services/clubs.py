"""Clubs service — roster fetchers and the membership/post actions."""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone

from runclub.config import SIGN_IN_PATH
from runclub.services.notices import Notice
from runclub.services.roster import increment_member_count
from runclub.services.synchronized_roster import SynchronizedRoster
from runclub.supabase_client import (
    CLUBS, MEMBERSHIPS, POSTS, PROFILES, SUBSCRIPTIONS,
    DataService, DuplicateKeyError, ServiceError,
)

logger = logging.getLogger(__name__)

DAYS_OF_WEEK = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
DISTANCE_OPTIONS = ["5km", "6km", "7km", "8km", "9km", "10km", "20km"]
LATEST_POSTS_LIMIT = 5

ALREADY_MEMBER = "You are already a member of this club."
JOINED = "Successfully joined the club!"
JOIN_FAILED = "Error joining club. Please try again."
REMOVE_FAILED = "Error removing member. Please try again."
POST_FAILED = "Error creating post. Please try again."
FREE_PLAN_LIMIT = "Free plan leaders can only create one club. Upgrade to Pro to create more clubs!"


class ClubLimitError(Exception):
    """Free-plan leader already owns a club."""


# ---------------------------------------------------------------------------
# Roster fetchers
# ---------------------------------------------------------------------------

async def _member_count(data: DataService, club_id: str) -> int:
    """Membership count for one club; 0 if the count query fails."""
    try:
        return await data.count(MEMBERSHIPS, {"club_id": club_id})
    except ServiceError as e:
        logger.warning("Error counting memberships for club %s: %s", club_id, e.message)
        return 0


async def _profiles_by_id(data: DataService, ids, columns: str = "id, full_name, avatar_url") -> dict:
    rows = await data.select(PROFILES, columns, match={"id": sorted(set(ids))})
    return {p["id"]: p for p in rows}


async def fetch_explore_clubs(data: DataService) -> list[dict]:
    """All clubs, newest first, with leader name and live member count."""
    clubs = await data.select(
        CLUBS,
        "id, name, description, location, leader_id, created_at",
        order="created_at", order_desc=True,
    )
    leaders = await _profiles_by_id(
        data, [c["leader_id"] for c in clubs if c.get("leader_id")], "id, full_name",
    )
    counts = await asyncio.gather(*(_member_count(data, c["id"]) for c in clubs))

    return [
        {
            "id": club["id"],
            "name": club.get("name") or "",
            "description": club.get("description") or "",
            "location": club.get("location") or "",
            "leader": {"full_name": (leaders.get(club.get("leader_id")) or {}).get("full_name", "")},
            "member_count": count,
        }
        for club, count in zip(clubs, counts)
    ]


async def fetch_member_rosters(data: DataService, user_id: str, role: str | None) -> list[dict]:
    """Clubs with their member lists.

    Runners see the clubs they belong to; leaders see the clubs they lead.
    Memberships whose profile is missing are skipped.
    """
    if role == "runner":
        own = await data.select(MEMBERSHIPS, "club_id", match={"runner_id": user_id})
        clubs = await data.select(
            CLUBS, "id, name, created_at",
            match={"id": [m["club_id"] for m in own]},
            order="created_at", order_desc=True,
        )
    else:
        clubs = await data.select(
            CLUBS, "id, name, created_at",
            match={"leader_id": user_id},
            order="created_at", order_desc=True,
        )

    memberships = await data.select(
        MEMBERSHIPS, "club_id, runner_id, created_at",
        match={"club_id": [c["id"] for c in clubs]},
        order="created_at",
    )
    profiles = await _profiles_by_id(data, [m["runner_id"] for m in memberships])

    by_club = defaultdict(list)
    for m in memberships:
        profile = profiles.get(m["runner_id"])
        if profile is None:
            continue
        by_club[m["club_id"]].append({
            "id": profile["id"],
            "full_name": profile.get("full_name") or "",
            "avatar_url": profile.get("avatar_url"),
            "joined_at": m.get("created_at"),
        })

    return [
        {
            "id": club["id"],
            "name": club.get("name") or "",
            "members": by_club.get(club["id"], []),
            "member_count": len(by_club.get(club["id"], [])),
        }
        for club in clubs
    ]


async def fetch_leader_dashboard(data: DataService, user_id: str) -> list[dict]:
    """A leader's clubs with member counts and their latest posts."""
    clubs = await data.select(
        CLUBS, "id, name, description, location, created_at",
        match={"leader_id": user_id},
        order="created_at", order_desc=True,
    )
    posts = await data.select(
        POSTS, "id, club_id, content, created_at",
        match={"club_id": [c["id"] for c in clubs]},
        order="created_at", order_desc=True,
    )
    counts = await asyncio.gather(*(_member_count(data, c["id"]) for c in clubs))

    by_club = defaultdict(list)
    for post in posts:
        if len(by_club[post["club_id"]]) < LATEST_POSTS_LIMIT:
            by_club[post["club_id"]].append({
                "id": post["id"],
                "content": post.get("content") or "",
                "created_at": post.get("created_at"),
            })

    return [
        {
            "id": club["id"],
            "name": club.get("name") or "",
            "description": club.get("description") or "",
            "location": club.get("location") or "",
            "member_count": count,
            "latest_posts": by_club.get(club["id"], []),
        }
        for club, count in zip(clubs, counts)
    ]


def filter_clubs(clubs: list[dict], query: str) -> list[dict]:
    """Case-insensitive match on name, description or location."""
    q = (query or "").strip().lower()
    if not q:
        return clubs
    return [
        c for c in clubs
        if q in (c.get("name") or "").lower()
        or q in (c.get("description") or "").lower()
        or q in (c.get("location") or "").lower()
    ]


# ---------------------------------------------------------------------------
# Membership actions
# ---------------------------------------------------------------------------

async def find_membership(data: DataService, club_id: str, runner_id: str) -> dict | None:
    return await data.select_one(
        MEMBERSHIPS, "id", match={"club_id": club_id, "runner_id": runner_id},
    )


async def join_club(data: DataService, roster: SynchronizedRoster,
                    club_id: str, user: dict | None) -> Notice:
    """Join a club: pre-check, insert, optimistic +1, delayed reconcile.

    A failed pre-check is treated as "not a member"; a concurrent duplicate
    insert is then caught by the unique constraint and reported the same way
    as the pre-check hit.
    """
    if not user:
        return Notice.redirect(SIGN_IN_PATH)

    try:
        existing = await find_membership(data, club_id, user["id"])
    except ServiceError as e:
        logger.warning("Membership pre-check failed for club %s: %s", club_id, e.message)
        existing = None
    if existing:
        return Notice.info(ALREADY_MEMBER)

    try:
        await data.insert(MEMBERSHIPS, {"club_id": club_id, "runner_id": user["id"]})
    except DuplicateKeyError:
        logger.info("Duplicate join for club %s by %s", club_id, user["id"])
        notice = Notice.info(ALREADY_MEMBER)
    except ServiceError as e:
        logger.warning("Error inserting membership for club %s: %s", club_id, e.message)
        notice = Notice.error(JOIN_FAILED)
    else:
        roster.apply_optimistic(club_id, increment_member_count)
        notice = Notice.success(JOINED)

    roster.schedule_refresh()
    return notice


async def remove_member(data: DataService, roster: SynchronizedRoster,
                        club_id: str, member_id: str, user: dict) -> Notice:
    """Leader removes a runner. No optimistic delta; reconciliation only."""
    try:
        club = await data.select_one(CLUBS, "id, leader_id", match={"id": club_id})
        if not club or club.get("leader_id") != user["id"]:
            return Notice.error("Only the club leader can remove members.")
        await data.delete(MEMBERSHIPS, {"club_id": club_id, "runner_id": member_id})
    except ServiceError as e:
        logger.warning("Error removing member %s from club %s: %s", member_id, club_id, e.message)
        notice = Notice.error(REMOVE_FAILED)
    else:
        notice = Notice.success("Member removed.")

    roster.schedule_refresh()
    return notice


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------

async def create_post(data: DataService, club_id: str, content: str, author_id: str) -> dict | None:
    """Insert a post on a club the author leads. None for empty input or foreign club."""
    content = (content or "").strip()
    if not club_id or not content:
        return None
    club = await data.select_one(CLUBS, "id, leader_id", match={"id": club_id})
    if not club or club.get("leader_id") != author_id:
        return None
    return await data.insert(POSTS, {
        "club_id": club_id,
        "content": content,
        "author_id": author_id,
    })


async def get_posts_feed(data: DataService, user_id: str, role: str | None,
                         limit: int = 100) -> list[dict]:
    """Posts from the caller's clubs (joined for runners, led for leaders)."""
    if role == "runner":
        rows = await data.select(MEMBERSHIPS, "club_id", match={"runner_id": user_id})
        club_ids = [r["club_id"] for r in rows]
    else:
        rows = await data.select(CLUBS, "id", match={"leader_id": user_id})
        club_ids = [r["id"] for r in rows]

    posts = await data.select(
        POSTS, "id, club_id, author_id, content, created_at",
        match={"club_id": club_ids},
        order="created_at", order_desc=True, limit=limit,
    )
    clubs = {c["id"]: c for c in await data.select(CLUBS, "id, name", match={"id": club_ids})}
    authors = await _profiles_by_id(data, [p["author_id"] for p in posts if p.get("author_id")], "id, full_name")

    return [
        {
            "id": post["id"],
            "content": post.get("content") or "",
            "created_at": post.get("created_at"),
            "club": {
                "id": post["club_id"],
                "name": (clubs.get(post["club_id"]) or {}).get("name", ""),
            },
            "author": {"full_name": (authors.get(post.get("author_id")) or {}).get("full_name", "")},
        }
        for post in posts
    ]


# ---------------------------------------------------------------------------
# Club creation
# ---------------------------------------------------------------------------

def validate_club_form(form: dict) -> dict:
    """Normalize the create-club form. Raises ValueError on bad input."""
    cleaned = {}
    for field in ("name", "description", "location"):
        value = str(form.get(field) or "").strip()
        if not value:
            raise ValueError(f"{field} is required")
        cleaned[field] = value

    days = form.get("meeting_days") or []
    if not isinstance(days, list) or not days:
        raise ValueError("meeting_days must list at least one day")
    unknown = [d for d in days if d not in DAYS_OF_WEEK]
    if unknown:
        raise ValueError(f"Unknown meeting days: {', '.join(map(str, unknown))}")
    cleaned["meeting_days"] = [d for d in DAYS_OF_WEEK if d in days]

    distance = form.get("distance") or ""
    if distance and distance not in DISTANCE_OPTIONS:
        raise ValueError(f"distance must be one of {', '.join(DISTANCE_OPTIONS)}")
    cleaned["distance"] = distance

    for field in ("start_time", "end_time", "start_location", "end_location", "route_details"):
        cleaned[field] = str(form.get(field) or "").strip()
    return cleaned


async def create_club(data: DataService, leader_id: str, form: dict) -> dict:
    """Create a club. Free-plan leaders may only own one."""
    cleaned = validate_club_form(form)

    subscription = await data.select_one(SUBSCRIPTIONS, "plan_type", match={"user_id": leader_id})
    if subscription and subscription.get("plan_type") == "free":
        if await data.count(CLUBS, {"leader_id": leader_id}) > 0:
            raise ClubLimitError(FREE_PLAN_LIMIT)

    club = await data.insert(CLUBS, {
        **cleaned,
        "leader_id": leader_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
    })
    logger.info("Club %s created by %s", club.get("id"), leader_id)
    return club
