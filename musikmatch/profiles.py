# musikmatch/profiles.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from .contact_sync import ContactBroadcast
from .deps import Viewer, get_contact_updates, get_store, get_viewer
from .errors import OnboardingRequired, PermissionDenied, ValidationFailed
from .models import ContactIn, OnboardingIn, Profile

log = logging.getLogger("uvicorn.error")

router = APIRouter(tags=["profiles"])


async def require_profile(store, viewer: Viewer, role: Optional[str] = None, denied: str = "") -> Profile:
    profile = await store.get_profile(viewer.id)
    if profile is None:
        raise OnboardingRequired("Complete onboarding first.")
    if role is not None and profile.role != role:
        raise PermissionDenied(denied or f"Only {role}s can do that.")
    return profile


@router.post("/onboarding", response_model=Profile)
async def onboard(payload: OnboardingIn, viewer: Viewer = Depends(get_viewer), store=Depends(get_store)):
    if await store.get_profile(viewer.id) is not None:
        raise ValidationFailed("Profile already exists.")
    return await store.create_profile(viewer.id, payload.role, payload.display_name)


@router.get("/me", response_model=Profile)
async def me(viewer: Viewer = Depends(get_viewer), store=Depends(get_store)):
    return await require_profile(store, viewer)


@router.put("/me/contact", response_model=Profile)
async def save_contact(
    payload: ContactIn,
    viewer: Viewer = Depends(get_viewer),
    store=Depends(get_store),
    contact_updates: ContactBroadcast = Depends(get_contact_updates),
):
    profile = await require_profile(store, viewer)
    contact = payload.snapshot()
    saved = await store.update_profile_contact(viewer.id, contact)
    if saved is None:
        raise PermissionDenied("Could not save contact details on the profile (no permission).")

    if profile.role == "musician":
        # venues read the snapshot on the application, keep those in step
        n = await store.propagate_contact(viewer.id, saved)
        log.info(f"contact details of {viewer.id} copied to {n} applications")
        contact_updates.publish(viewer.id, saved)

    return profile.model_copy(update={"contact_email": saved.email, "contact_phone": saved.phone})


@router.get("/musicians", response_model=List[Profile])
async def list_musicians(
    music_type: Optional[str] = Query(default=None),
    min_rating: float = Query(default=0, ge=0),
    bankid_only: bool = Query(default=False),
    viewer: Viewer = Depends(get_viewer),
    store=Depends(get_store),
):
    await require_profile(store, viewer, "venue", "Only venues can browse musicians.")
    return await store.list_profiles(
        "musician", music_type=music_type, min_rating=min_rating or None, bankid_only=bankid_only
    )


@router.get("/venues", response_model=List[Profile])
async def list_venues(viewer: Viewer = Depends(get_viewer), store=Depends(get_store)):
    await require_profile(store, viewer, "musician", "Only musicians can browse venues.")
    venues = await store.list_profiles("venue")
    # venues only expose their name
    return [Profile(id=v.id, role=v.role, display_name=v.display_name) for v in venues]
