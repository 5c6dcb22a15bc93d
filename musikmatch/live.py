# musikmatch/live.py
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, WebSocketException, status
from pydantic import ValidationError

from .deps import Viewer, open_store, viewer_from_token
from .errors import ValidationFailed
from .gig_screen import GigDetailScreen
from .models import ApplicationStatus, LiveCommand

log = logging.getLogger("uvicorn.error")

router = APIRouter(tags=["live"])


# Browsers cannot set headers on a WebSocket, so the token rides in the query.
async def get_ws_viewer(token: Optional[str] = Query(default=None)) -> Optional[Viewer]:
    if not token:
        return None
    try:
        return await viewer_from_token(token)
    except HTTPException as e:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=str(e.detail))


async def get_ws_store(viewer: Optional[Viewer] = Depends(get_ws_viewer)):
    async with open_store(viewer) as store:
        yield store


async def dispatch(screen: GigDetailScreen, command: LiveCommand) -> None:
    if command.action == "edit":
        screen.contacts_or_raise().edit(command.field or "", command.value or "")
    elif command.action == "edit_message":
        screen.contacts_or_raise().edit_message(command.value or "")
    elif command.action == "apply":
        await screen.apply()
    elif command.action == "draft":
        screen.conversations_or_raise().set_draft(_application_id(command), command.value or "")
    elif command.action == "send":
        await screen.send(_application_id(command), command.value)
    elif command.action == "set_status":
        if command.status is None:
            raise ValidationFailed("status is required")
        await screen.set_status(_application_id(command), ApplicationStatus(command.status))


def _application_id(command: LiveCommand) -> int:
    if command.application_id is None:
        raise ValidationFailed("application_id is required")
    return command.application_id


async def _push_state(websocket: WebSocket, screen: GigDetailScreen, dirty: asyncio.Event) -> None:
    while True:
        await dirty.wait()
        dirty.clear()
        await websocket.send_json(screen.state().model_dump(mode="json"))


@router.websocket("/gigs/{gig_id}/live")
async def gig_live(
    websocket: WebSocket,
    gig_id: int,
    viewer: Optional[Viewer] = Depends(get_ws_viewer),
    store=Depends(get_ws_store),
):
    await websocket.accept()
    screen = GigDetailScreen(store, viewer, gig_id, websocket.app.state.contact_updates, live=True)
    dirty = asyncio.Event()
    screen.on_change(dirty.set)
    sender: Optional[asyncio.Task] = None
    try:
        await screen.run(screen.load())
        dirty.set()
        sender = asyncio.create_task(_push_state(websocket, screen, dirty))
        while True:
            data = await websocket.receive_json()
            try:
                command = LiveCommand.model_validate(data)
            except ValidationError as e:
                screen.notice = f"Invalid command: {e.errors()[0]['msg']}"
            else:
                await screen.run(dispatch(screen, command))
            dirty.set()
    except WebSocketDisconnect:
        log.info(f"gig {gig_id}: live view closed")
    finally:
        if sender is not None:
            sender.cancel()
        await screen.close()
