"""Billing routes — Stripe checkout and customer portal."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException

from runclub.services.billing import BillingError, create_checkout_session, create_portal_session
from runclub.services.profiles import get_profile
from runclub.session import current_user
from runclub.supabase_client import DataService, ServiceError, get_data_service

router = APIRouter(prefix="/api")


async def _profile_or_404(data: DataService, user: dict) -> dict:
    try:
        profile = await get_profile(data, user)
    except ServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.post("/create-checkout-session")
async def checkout_session(
    user: dict = Depends(current_user),
    data: DataService = Depends(get_data_service),
):
    profile = await _profile_or_404(data, user)
    if profile["subscription"].get("plan_type") == "pro":
        raise HTTPException(status_code=400, detail="Already subscribed to Pro")
    try:
        return await asyncio.to_thread(
            create_checkout_session, user["id"], profile.get("role", ""), user.get("email", ""),
        )
    except BillingError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/create-portal-session")
async def portal_session(
    user: dict = Depends(current_user),
    data: DataService = Depends(get_data_service),
):
    profile = await _profile_or_404(data, user)
    customer_id = profile["subscription"].get("stripe_customer_id")
    if not customer_id:
        raise HTTPException(status_code=400, detail="No subscription to manage")
    try:
        return await asyncio.to_thread(create_portal_session, customer_id)
    except BillingError as e:
        raise HTTPException(status_code=502, detail=str(e))
