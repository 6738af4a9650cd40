"""Profiles service — sign-up, profile lookup, stats, settings."""

import logging
from datetime import datetime, timezone

from runclub.identity import ROLES, IdentityError, IdentityService
from runclub.supabase_client import (
    CLUBS, MEMBERSHIPS, PROFILES, SUBSCRIPTIONS,
    DataService, DuplicateKeyError, ServiceError,
)

logger = logging.getLogger(__name__)

_MAX_NAME_LEN = 200


def redirect_for_role(role: str | None) -> str:
    """Landing page after sign-up/sign-in."""
    return "/explore" if role == "runner" else "/dashboard"


async def get_role(data: DataService, user_id: str) -> str | None:
    profile = await data.select_one(PROFILES, "role", match={"id": user_id})
    return profile.get("role") if profile else None


async def get_profile(data: DataService, user: dict) -> dict | None:
    """Profile row plus subscription and the auth email."""
    profile = await data.select_one(PROFILES, match={"id": user["id"]})
    if not profile:
        return None
    subscription = await data.select_one(
        SUBSCRIPTIONS,
        "plan_type, stripe_customer_id, stripe_subscription_id",
        match={"user_id": user["id"]},
    )
    return {
        **profile,
        "email": user.get("email", ""),
        "subscription": subscription or {
            "plan_type": "free",
            "stripe_customer_id": None,
            "stripe_subscription_id": None,
        },
    }


async def profile_stats(data: DataService, user_id: str) -> dict:
    return {
        "clubs_joined": await data.count(MEMBERSHIPS, {"runner_id": user_id}),
        "clubs_created": await data.count(CLUBS, {"leader_id": user_id}),
    }


async def update_full_name(data: DataService, user_id: str, full_name: str) -> dict:
    full_name = (full_name or "").strip()[:_MAX_NAME_LEN]
    if not full_name:
        raise ValueError("full_name is required")
    return await data.update(PROFILES, {
        "full_name": full_name,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }, {"id": user_id})


async def register_user(identity: IdentityService, data: DataService, email: str,
                        password: str, full_name: str, role: str) -> dict:
    """Sign up and create the profile + free subscription rows.

    An existing profile (a returning user signing up again) is left as is.
    If the profile insert fails for any other reason the new auth user is
    deleted so the sign-up can be retried cleanly.
    """
    if role not in ROLES:
        raise ValueError(f"role must be one of {', '.join(ROLES)}")
    full_name = (full_name or "").strip()[:_MAX_NAME_LEN]
    if not email or not password or not full_name:
        raise ValueError("email, password and full_name are required")

    result = await identity.sign_up(email, password, full_name, role)
    user = result["user"]
    if not user or not user.get("id"):
        raise IdentityError("User creation failed")

    existing = await data.select_one(PROFILES, "id", match={"id": user["id"]})
    if not existing:
        try:
            await data.insert(PROFILES, {
                "id": user["id"],
                "full_name": full_name,
                "role": role,
            })
        except DuplicateKeyError:
            logger.info("Profile for %s already exists", user["id"])
        except ServiceError:
            logger.exception("Profile creation failed for %s", user["id"])
            await identity.delete_user(user["id"])
            raise

    try:
        await data.insert(SUBSCRIPTIONS, {"user_id": user["id"], "plan_type": "free"})
    except DuplicateKeyError:
        pass
    except ServiceError as e:
        # get_profile reports a missing row as the free plan
        logger.warning("Free subscription row not created for %s: %s", user["id"], e.message)

    return {"user": user, "session": result.get("session"), "redirect_to": redirect_for_role(role)}
