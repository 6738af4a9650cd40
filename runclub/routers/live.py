"""Live view sockets — /live/explore, /live/members, /live/dashboard."""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from runclub.identity import IdentityService, get_identity_service
from runclub.services.live_views import VIEWS, sign_in_notice
from runclub.services.notices import Notice
from runclub.session import websocket_user
from runclub.supabase_client import DataService, get_data_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/live")

# Close codes in the 4000-4999 application range
CLOSE_UNAUTHORIZED = 4401
CLOSE_NOT_FOUND = 4404


async def _drain(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Forward queued view messages to the socket until it goes away."""
    while True:
        message = await outbox.get()
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError):
            return


async def _receive_message(websocket: WebSocket) -> dict | None:
    """Next client message as a JSON object, or None if the frame is not one."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    raw = message.get("text")
    if raw is None:
        raw = message.get("bytes") or b""
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


@router.websocket("/{view_name}")
async def live_view(
    websocket: WebSocket,
    view_name: str,
    data: DataService = Depends(get_data_service),
    identity: IdentityService = Depends(get_identity_service),
):
    view_cls = VIEWS.get(view_name)
    if view_cls is None:
        await websocket.close(code=CLOSE_NOT_FOUND)
        return

    await websocket.accept()
    user = await websocket_user(websocket, identity)
    if view_cls.requires_user and not user:
        await websocket.send_json(sign_in_notice().to_message())
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return

    view = view_cls(data, user)
    async with view:
        logger.info("Live view %s mounted for %s", view_name, user["id"] if user else "anonymous")
        sender = asyncio.create_task(_drain(websocket, view.outbox))
        try:
            while True:
                message = await _receive_message(websocket)
                if message is None:
                    view.outbox.put_nowait(Notice.error("Invalid message").to_message())
                    continue
                view.submit(message)
        except WebSocketDisconnect:
            logger.info("Live view %s disconnected", view_name)
        finally:
            sender.cancel()
