"""Club routes — create a club, read the posts feed."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from runclub.services.clubs import ClubLimitError, create_club, get_posts_feed
from runclub.services.profiles import get_role
from runclub.session import current_user, json_body
from runclub.supabase_client import DataService, ServiceError, get_data_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.post("/clubs")
async def club_create(
    request: Request,
    user: dict = Depends(current_user),
    data: DataService = Depends(get_data_service),
):
    body = await json_body(request)
    try:
        role = await get_role(data, user["id"])
        if role != "leader":
            raise HTTPException(status_code=403, detail="Only club leaders can create clubs")
        club = await create_club(data, user["id"], body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ClubLimitError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ServiceError as e:
        logger.warning("Club creation failed for %s: %s", user["id"], e.message)
        raise HTTPException(status_code=502, detail=e.message)

    return JSONResponse({"status": "created", "club": club, "redirect_to": "/dashboard"},
                        status_code=201)


@router.get("/posts")
async def posts_feed(
    limit: int = Query(100, ge=1, le=500),
    user: dict = Depends(current_user),
    data: DataService = Depends(get_data_service),
):
    try:
        role = await get_role(data, user["id"])
        posts = await get_posts_feed(data, user["id"], role, limit=limit)
    except ServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return {"posts": posts}
