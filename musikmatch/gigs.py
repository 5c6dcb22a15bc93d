# musikmatch/gigs.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from .contact_sync import ContactBroadcast
from .deps import Viewer, get_contact_updates, get_optional_viewer, get_store, get_viewer
from .errors import NotFound
from .gig_screen import GigDetailScreen
from .models import ApplicationStatus, ApplyIn, Gig, GigIn, GigScreenState, MyGig, StatusIn
from .profiles import require_profile

log = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/gigs", tags=["gigs"])


@router.get("", response_model=List[Gig])
async def list_gigs(store=Depends(get_store)):
    return await store.list_gigs()


@router.post("", response_model=Gig)
async def create_gig(payload: GigIn, viewer: Viewer = Depends(get_viewer), store=Depends(get_store)):
    await require_profile(store, viewer, "venue", "Only venues can create gigs.")
    gig = await store.create_gig(viewer.id, payload)
    log.info(f"gig {gig.id} created by {viewer.id}")
    return gig


@router.get("/mine", response_model=List[MyGig])
async def my_gigs(viewer: Viewer = Depends(get_viewer), store=Depends(get_store)):
    await require_profile(store, viewer, "venue", "Only venues have their own gigs.")
    gigs = await store.list_venue_gigs(viewer.id)
    counts = await store.application_counts(g.id for g in gigs)
    return [MyGig(**g.model_dump(), application_count=counts.get(g.id, 0)) for g in gigs]


@router.delete("/{gig_id}")
async def delete_gig(gig_id: int, viewer: Viewer = Depends(get_viewer), store=Depends(get_store)):
    if not await store.delete_gig(gig_id, viewer.id):
        raise NotFound("Gig not found or not yours")
    return {"ok": True}


# ──────────────────────────────────────────────────────────────────────────────
# Gig detail: one short-lived screen per request
# ──────────────────────────────────────────────────────────────────────────────
async def _with_screen(store, viewer, gig_id, contact_updates, action=None) -> GigScreenState:
    screen = GigDetailScreen(store, viewer, gig_id, contact_updates)
    try:
        await screen.load()
        if action is not None:
            await action(screen)
        return screen.state()
    finally:
        await screen.close()


@router.get("/{gig_id}", response_model=GigScreenState)
async def gig_detail(
    gig_id: int,
    viewer: Optional[Viewer] = Depends(get_optional_viewer),
    store=Depends(get_store),
    contact_updates: ContactBroadcast = Depends(get_contact_updates),
):
    return await _with_screen(store, viewer, gig_id, contact_updates)


@router.post("/{gig_id}/apply", response_model=GigScreenState)
async def apply(
    gig_id: int,
    payload: ApplyIn,
    viewer: Viewer = Depends(get_viewer),
    store=Depends(get_store),
    contact_updates: ContactBroadcast = Depends(get_contact_updates),
):
    async def _apply(screen: GigDetailScreen):
        await screen.apply(payload)

    return await _with_screen(store, viewer, gig_id, contact_updates, _apply)


@router.post("/{gig_id}/applications/{application_id}/status", response_model=GigScreenState)
async def set_status(
    gig_id: int,
    application_id: int,
    payload: StatusIn,
    viewer: Viewer = Depends(get_viewer),
    store=Depends(get_store),
    contact_updates: ContactBroadcast = Depends(get_contact_updates),
):
    async def _set(screen: GigDetailScreen):
        await screen.set_status(application_id, ApplicationStatus(payload.status))

    return await _with_screen(store, viewer, gig_id, contact_updates, _set)
