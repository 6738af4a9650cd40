"""Auth routes — sign-up, sign-in, sign-out."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from runclub.identity import IdentityError, IdentityService, get_identity_service
from runclub.services.profiles import get_role, redirect_for_role, register_user
from runclub.session import json_body, request_token
from runclub.supabase_client import DataService, ServiceError, get_data_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth")


@router.post("/signup")
async def signup(
    request: Request,
    identity: IdentityService = Depends(get_identity_service),
    data: DataService = Depends(get_data_service),
):
    body = await json_body(request)
    try:
        result = await register_user(
            identity, data,
            email=str(body.get("email", "")).strip().lower(),
            password=str(body.get("password", "")),
            full_name=str(body.get("full_name") or body.get("fullName") or ""),
            role=str(body.get("role", "")),
        )
    except (ValueError, IdentityError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ServiceError as e:
        raise HTTPException(status_code=500, detail=f"Failed to create profile: {e.message}")

    return JSONResponse(
        {"success": True, "user": result["user"], "session": result["session"],
         "redirect_to": result["redirect_to"]},
        status_code=201,
    )


@router.post("/signin")
async def signin(
    request: Request,
    identity: IdentityService = Depends(get_identity_service),
    data: DataService = Depends(get_data_service),
):
    body = await json_body(request)
    email = str(body.get("email", "")).strip().lower()
    password = str(body.get("password", ""))
    if not email or not password:
        raise HTTPException(status_code=400, detail="email and password are required")

    try:
        result = await identity.sign_in_with_password(email, password)
        session = await identity.get_session() or result["session"]
    except IdentityError as e:
        raise HTTPException(status_code=400, detail=str(e))

    user = result["user"]
    try:
        role = await get_role(data, user["id"])
    except ServiceError as e:
        logger.warning("Role lookup failed for %s: %s", user["id"], e.message)
        role = user.get("role")

    return {"user": user, "session": session, "redirect_to": redirect_for_role(role)}


@router.post("/signout")
async def signout(
    token: str = Depends(request_token),
    identity: IdentityService = Depends(get_identity_service),
):
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        await identity.sign_out(token)
    except IdentityError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "signed_out"}
