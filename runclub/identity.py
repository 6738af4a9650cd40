"""Supabase auth wrapper — sign-up, sign-in, session lookup."""

import logging
from typing import Any, AsyncIterator, Callable

from fastapi import Depends

from supabase import AuthError, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from runclub.config import SUPABASE_ANON_KEY, SUPABASE_URL
from runclub.supabase_client import DataService, get_data_service

logger = logging.getLogger(__name__)

ROLES = ("runner", "leader")


class IdentityError(Exception):
    """An auth call was rejected (bad credentials, weak password, ...)."""


def _user_dict(user) -> dict | None:
    """Flatten a gotrue User into the plain dict the services work with."""
    if user is None:
        return None
    metadata = getattr(user, "user_metadata", None) or {}
    return {
        "id": user.id,
        "email": getattr(user, "email", "") or "",
        "role": metadata.get("role"),
        "full_name": metadata.get("full_name", ""),
    }


def _session_dict(session) -> dict | None:
    if session is None:
        return None
    return {
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "expires_at": session.expires_at,
        "user": _user_dict(session.user),
    }


class IdentityService:
    """Async facade over a Supabase auth client.

    ``auth`` is the per-request anon-key auth client (its session state is
    never shared between users); ``admin`` is the service-role admin API,
    used to end sessions by token and to roll back a half-finished sign-up.
    """

    def __init__(self, auth, admin=None):
        self._auth = auth
        self._admin = admin

    async def get_session(self) -> dict | None:
        try:
            session = await self._auth.get_session()
        except AuthError as e:
            raise IdentityError(e.message) from e
        return _session_dict(session)

    async def get_user(self, jwt: str | None = None) -> dict | None:
        """Resolve the user behind ``jwt`` (or the current session). None if invalid."""
        try:
            response = await self._auth.get_user(jwt)
        except AuthError as e:
            logger.info("Token rejected: %s", e.message)
            return None
        return _user_dict(response.user) if response else None

    async def sign_up(self, email: str, password: str, full_name: str, role: str) -> dict:
        """Create an auth user carrying full_name/role metadata."""
        try:
            response = await self._auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": {"full_name": full_name, "role": role}},
            })
        except AuthError as e:
            raise IdentityError(e.message) from e
        return {"user": _user_dict(response.user), "session": _session_dict(response.session)}

    async def sign_in_with_password(self, email: str, password: str) -> dict:
        try:
            response = await self._auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except AuthError as e:
            raise IdentityError(e.message) from e
        return {"user": _user_dict(response.user), "session": _session_dict(response.session)}

    async def sign_out(self, jwt: str | None = None) -> None:
        """End the session behind ``jwt`` (admin API), else the client's own."""
        try:
            if jwt and self._admin is not None:
                await self._admin.sign_out(jwt)
            else:
                await self._auth.sign_out()
        except AuthError as e:
            raise IdentityError(e.message) from e

    def on_auth_state_change(self, callback: Callable[[str, Any], None]):
        """Register ``callback(event, session)``; returns a handle with unsubscribe()."""
        return self._auth.on_auth_state_change(callback)

    async def delete_user(self, user_id: str) -> None:
        if self._admin is None:
            raise IdentityError("Admin API not configured")
        try:
            await self._admin.delete_user(user_id)
        except AuthError as e:
            raise IdentityError(e.message) from e


async def get_identity_service(
    data: DataService = Depends(get_data_service),
) -> AsyncIterator[IdentityService]:
    """Yield an IdentityService on a fresh anon client, closed after the request."""
    if not SUPABASE_URL or not SUPABASE_ANON_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
    client = await acreate_client(
        SUPABASE_URL,
        SUPABASE_ANON_KEY,
        options=AsyncClientOptions(persist_session=False, auto_refresh_token=False),
    )
    try:
        yield IdentityService(client.auth, admin=data.client.auth.admin)
    finally:
        await client.auth.close()
