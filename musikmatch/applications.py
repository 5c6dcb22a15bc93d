# musikmatch/applications.py
from typing import List

from fastapi import APIRouter, Depends

from .conversations import ConversationLog
from .deps import Viewer, get_store, get_viewer
from .errors import NotFound, StoreError, ValidationFailed
from .models import ApplicationSummary, Message, MessageIn
from .profiles import require_profile

router = APIRouter(prefix="/applications", tags=["applications"])


@router.get("/mine", response_model=List[ApplicationSummary])
async def my_applications(viewer: Viewer = Depends(get_viewer), store=Depends(get_store)):
    await require_profile(store, viewer, "musician", "Only musicians have their own applications.")
    return await store.list_musician_applications(viewer.id)


@router.delete("/{application_id}")
async def delete_application(application_id: int, viewer: Viewer = Depends(get_viewer), store=Depends(get_store)):
    if not await store.delete_application(application_id, viewer.id):
        raise NotFound("Application not found or not yours")
    return {"ok": True}


@router.get("/{application_id}/messages", response_model=List[Message])
async def list_messages(application_id: int, viewer: Viewer = Depends(get_viewer), store=Depends(get_store)):
    conversation = ConversationLog(store, viewer.id)
    messages = await conversation.load_history(application_id)
    if conversation.error(application_id):
        raise StoreError(conversation.error(application_id))
    return messages


@router.post("/{application_id}/messages", response_model=Message)
async def send_message(
    application_id: int,
    payload: MessageIn,
    viewer: Viewer = Depends(get_viewer),
    store=Depends(get_store),
):
    # row-level security decides who may post on an application
    conversation = ConversationLog(store, viewer.id)
    message = await conversation.send(application_id, payload.body)
    if message is None:
        raise ValidationFailed("Message is empty.")
    return message
