"""Request auth — resolve the Supabase user behind a bearer token or cookie."""

from fastapi import Depends, Header, HTTPException, Request, WebSocket

from runclub.identity import IdentityService, get_identity_service

ACCESS_COOKIE = "sb-access-token"


def _bearer(authorization: str) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    return token.strip() if scheme.lower() == "bearer" else ""


def request_token(request: Request, authorization: str = Header("")) -> str:
    """Access token from the Authorization header, else the session cookie."""
    return _bearer(authorization) or request.cookies.get(ACCESS_COOKIE, "")


async def optional_user(
    token: str = Depends(request_token),
    identity: IdentityService = Depends(get_identity_service),
) -> dict | None:
    if not token:
        return None
    return await identity.get_user(token)


async def current_user(user: dict | None = Depends(optional_user)) -> dict:
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


async def websocket_user(websocket: WebSocket, identity: IdentityService) -> dict | None:
    """Browsers cannot set headers on a WebSocket; accept a query param or cookie."""
    token = (
        websocket.query_params.get("access_token")
        or _bearer(websocket.headers.get("authorization", ""))
        or websocket.cookies.get(ACCESS_COOKIE, "")
    )
    if not token:
        return None
    return await identity.get_user(token)


async def json_body(request: Request) -> dict:
    """Parse a JSON object body; 400 on anything else."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    return body
