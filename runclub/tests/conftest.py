"""Shared fixtures for Run Club tests.

Provides:
- fake_db: in-memory async fake of the Supabase client (query builder chain,
  unique constraints, realtime channels that fire on every mutation)
- data: a DataService wired to fake_db
- fake_auth / identity: in-memory auth backend and the IdentityService over it
- client: FastAPI TestClient with both services overridden
- sample data factories for profiles, clubs, memberships, posts
"""

import asyncio
import os
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from supabase import AuthError, PostgrestAPIError

# Set env vars before any runclub imports
os.environ.setdefault("SUPABASE_URL", "https://fake.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "fake-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "fake-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fake")

from runclub.identity import IdentityService  # noqa: E402
from runclub.supabase_client import DataService  # noqa: E402

UNIQUE_KEYS = {
    "profiles": ("id",),
    "subscriptions": ("user_id",),
    "run_club_memberships": ("club_id", "runner_id"),
}


def run(coro):
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# In-memory fake Supabase
# ---------------------------------------------------------------------------

class FakeQueryResult:
    def __init__(self, data=None, count=None):
        self.data = data or []
        self.count = count


class FakeQueryBuilder:
    """Mimics the supabase-py async query builder chain."""

    def __init__(self, db, table_name):
        self._db = db
        self._table = table_name
        self._filters = []
        self._order_col = None
        self._order_desc = False
        self._limit_val = None
        self._count_mode = None
        self._head = False
        self._insert_data = None
        self._update_data = None
        self._delete_mode = False

    def select(self, columns="*", count=None, head=None):
        self._count_mode = count
        self._head = bool(head)
        return self

    def insert(self, data):
        self._insert_data = data
        return self

    def update(self, data):
        self._update_data = data
        return self

    def delete(self):
        self._delete_mode = True
        return self

    def eq(self, col, val):
        self._filters.append(("eq", col, val))
        return self

    def in_(self, col, values):
        self._filters.append(("in", col, list(values)))
        return self

    def order(self, col, desc=False):
        self._order_col = col
        self._order_desc = desc
        return self

    def limit(self, n):
        self._limit_val = n
        return self

    def _match(self, row):
        for op, col, val in self._filters:
            row_val = row.get(col)
            if op == "eq" and row_val != val:
                return False
            if op == "in" and row_val not in val:
                return False
        return True

    def _op(self):
        if self._insert_data is not None:
            return "insert"
        if self._update_data is not None:
            return "update"
        if self._delete_mode:
            return "delete"
        return "count" if self._count_mode else "select"

    async def execute(self):
        # Yield like a network round trip so concurrent callers interleave
        await asyncio.sleep(0)
        op = self._op()
        self._db.calls.append((op, self._table))
        code = self._db.failures.get((op, self._table))
        if code:
            raise PostgrestAPIError({"message": f"forced {op} failure", "code": code})

        table = self._db.store[self._table]

        if op == "insert":
            row = dict(self._insert_data)
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            keys = UNIQUE_KEYS.get(self._table)
            if keys and any(all(r.get(k) == row.get(k) for k in keys) for r in table):
                raise PostgrestAPIError({
                    "message": f'duplicate key value violates unique constraint "{self._table}_key"',
                    "code": "23505",
                })
            table.append(row)
            self._db.emit(self._table, "INSERT", row)
            return FakeQueryResult(data=[dict(row)])

        if op == "update":
            updated = []
            for row in table:
                if self._match(row):
                    row.update(self._update_data)
                    updated.append(dict(row))
                    self._db.emit(self._table, "UPDATE", row)
            return FakeQueryResult(data=updated)

        if op == "delete":
            removed = [r for r in table if self._match(r)]
            table[:] = [r for r in table if not self._match(r)]
            for row in removed:
                self._db.emit(self._table, "DELETE", row)
            return FakeQueryResult(data=removed)

        rows = [dict(r) for r in table if self._match(r)]
        if self._order_col:
            rows.sort(key=lambda r: r.get(self._order_col) or "", reverse=self._order_desc)
        total = len(rows)
        if self._limit_val is not None:
            rows = rows[:self._limit_val]
        return FakeQueryResult(
            data=[] if self._head else rows,
            count=total if self._count_mode else None,
        )


class FakeChannel:
    """Mimics a realtime channel: one postgres_changes binding."""

    def __init__(self, db, name):
        self._db = db
        self.name = name
        self.event = None
        self.table = None
        self.callback = None
        self.subscribed = False

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.event = event
        self.table = table
        self.callback = callback
        return self

    async def subscribe(self):
        self.subscribed = True
        self._db.channels.append(self)
        return self


class FakeDB:
    """In-memory store keyed by table name, plus realtime channels."""

    def __init__(self):
        self.store = defaultdict(list)
        self.channels = []
        self.removed_channels = []
        self.failures = {}
        self.calls = []

    def table(self, name):
        return FakeQueryBuilder(self, name)

    def channel(self, name):
        return FakeChannel(self, name)

    async def remove_channel(self, channel):
        if channel in self.channels:
            self.channels.remove(channel)
        channel.subscribed = False
        self.removed_channels.append(channel)

    async def remove_all_channels(self):
        for channel in list(self.channels):
            await self.remove_channel(channel)

    def emit(self, table, event_type, record):
        payload = {
            "data": {"schema": "public", "table": table, "type": event_type, "record": dict(record)},
            "ids": [],
        }
        for channel in list(self.channels):
            if channel.table in (table, "*") and channel.event in ("*", event_type):
                channel.callback(payload)

    def count_calls(self, op, table):
        return sum(1 for c in self.calls if c == (op, table))


# ---------------------------------------------------------------------------
# In-memory fake auth
# ---------------------------------------------------------------------------

class FakeAuthError(AuthError):
    def __init__(self, message, code=None):
        Exception.__init__(self, message)
        self.message = message
        self.code = code


class FakeAdmin:
    def __init__(self, auth):
        self._auth = auth
        self.deleted = []

    async def delete_user(self, user_id):
        self.deleted.append(user_id)
        self._auth.users = {e: u for e, u in self._auth.users.items() if u.id != user_id}

    async def sign_out(self, jwt, scope="global"):
        if jwt not in self._auth.tokens:
            raise FakeAuthError("invalid JWT")
        del self._auth.tokens[jwt]


class FakeAuth:
    """Mimics the gotrue async client surface IdentityService uses."""

    def __init__(self):
        self.users = {}      # email -> user
        self.passwords = {}  # email -> password
        self.tokens = {}     # access token -> user
        self.session = None
        self.listeners = []
        self.admin = FakeAdmin(self)
        self.closed = False

    def issue(self, user_id=None, email="runner@example.com", role="runner", full_name="Test Runner"):
        """Register a user and return a valid access token for them."""
        user = SimpleNamespace(
            id=user_id or str(uuid.uuid4()),
            email=email,
            user_metadata={"role": role, "full_name": full_name},
        )
        self.users[email] = user
        token = f"token-{user.id}"
        self.tokens[token] = user
        return token

    def _new_session(self, user):
        token = f"token-{user.id}"
        self.tokens[token] = user
        return SimpleNamespace(
            access_token=token, refresh_token=f"refresh-{user.id}",
            expires_at=2_000_000_000, user=user,
        )

    def _notify(self, event, session):
        for cb in list(self.listeners):
            cb(event, session)

    async def sign_up(self, credentials):
        email = credentials["email"]
        if email in self.users:
            raise FakeAuthError("User already registered", "user_already_exists")
        if len(credentials["password"]) < 6:
            raise FakeAuthError("Password should be at least 6 characters", "weak_password")
        user = SimpleNamespace(
            id=str(uuid.uuid4()), email=email,
            user_metadata=credentials.get("options", {}).get("data", {}),
        )
        self.users[email] = user
        self.passwords[email] = credentials["password"]
        self.session = self._new_session(user)
        self._notify("SIGNED_IN", self.session)
        return SimpleNamespace(user=user, session=self.session)

    async def sign_in_with_password(self, credentials):
        email = credentials["email"]
        if email not in self.users or self.passwords.get(email) != credentials["password"]:
            raise FakeAuthError("Invalid login credentials", "invalid_credentials")
        self.session = self._new_session(self.users[email])
        self._notify("SIGNED_IN", self.session)
        return SimpleNamespace(user=self.users[email], session=self.session)

    async def get_session(self):
        return self.session

    async def get_user(self, jwt=None):
        if jwt is None:
            return SimpleNamespace(user=self.session.user) if self.session else None
        if jwt not in self.tokens:
            raise FakeAuthError("invalid JWT: unable to parse or verify signature", "bad_jwt")
        return SimpleNamespace(user=self.tokens[jwt])

    async def sign_out(self):
        self.session = None
        self._notify("SIGNED_OUT", None)

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)
        return SimpleNamespace(unsubscribe=lambda: self.listeners.remove(callback))

    async def close(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_db():
    return FakeDB()


@pytest.fixture
def data(fake_db):
    return DataService(fake_db)


@pytest.fixture
def fake_auth():
    return FakeAuth()


@pytest.fixture
def identity(fake_auth):
    return IdentityService(fake_auth, admin=fake_auth.admin)


@pytest.fixture
def client(data, identity):
    """Sync test client for the FastAPI app with faked Supabase."""
    from fastapi.testclient import TestClient

    from runclub.app import create_app
    from runclub.identity import get_identity_service
    from runclub.supabase_client import get_data_service

    @asynccontextmanager
    async def noop_lifespan(app):
        yield

    app = create_app()
    app.router.lifespan_context = noop_lifespan
    app.dependency_overrides[get_data_service] = lambda: data
    app.dependency_overrides[get_identity_service] = lambda: identity

    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

def _now():
    return datetime.now(timezone.utc).isoformat()


def make_profile(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "role": "runner",
        "full_name": "Test Runner",
        "avatar_url": None,
        "created_at": _now(),
        "updated_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_club(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "name": "Morning Joggers Club",
        "description": "Easy miles before work",
        "location": "Central Park, New York",
        "leader_id": str(uuid.uuid4()),
        "meeting_days": ["Tuesday", "Thursday"],
        "start_time": "06:30",
        "end_time": "07:30",
        "start_location": "Bethesda Fountain",
        "end_location": "Bethesda Fountain",
        "route_details": "Loop",
        "distance": "5km",
        "created_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_membership(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "club_id": str(uuid.uuid4()),
        "runner_id": str(uuid.uuid4()),
        "created_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_post(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "club_id": str(uuid.uuid4()),
        "author_id": str(uuid.uuid4()),
        "content": "Long run Saturday, meet at 7",
        "created_at": _now(),
    }
    defaults.update(overrides)
    return defaults
