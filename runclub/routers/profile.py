"""Profile routes — read profile + stats, update display name."""

from fastapi import APIRouter, Depends, HTTPException, Request

from runclub.services.profiles import get_profile, profile_stats, update_full_name
from runclub.session import current_user, json_body
from runclub.supabase_client import DataService, ServiceError, get_data_service

router = APIRouter(prefix="/api/profile")


@router.get("")
async def read_profile(
    user: dict = Depends(current_user),
    data: DataService = Depends(get_data_service),
):
    try:
        profile = await get_profile(data, user)
        if not profile:
            raise HTTPException(status_code=404, detail="Profile not found")
        stats = await profile_stats(data, user["id"])
    except ServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return {"profile": profile, "stats": stats}


@router.patch("")
async def edit_profile(
    request: Request,
    user: dict = Depends(current_user),
    data: DataService = Depends(get_data_service),
):
    body = await json_body(request)
    try:
        profile = await update_full_name(data, user["id"], str(body.get("full_name", "")))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ServiceError:
        raise HTTPException(status_code=502, detail="Failed to update profile. Please try again.")
    return {"status": "ok", "profile": profile}
