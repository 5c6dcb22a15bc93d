# musikmatch/deps.py
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException, Request
from supabase import AsyncClient, AsyncClientOptions, acreate_client

from .auth import verify_token
from .contact_sync import ContactBroadcast
from .store import SupabaseStore


@dataclass(frozen=True)
class Viewer:
    """The signed-in user a request or screen acts for."""

    id: str
    email: Optional[str]
    token: str


# ──────────────────────────────────────────────────────────────────────────────
# Supabase client (anon key + the user's token so RLS applies)
# Env vars:
#   SUPABASE_URL=https://YOUR-PROJECT-REF.supabase.co
#   SUPABASE_ANON_KEY=eyJhbGciOiJI...
# ──────────────────────────────────────────────────────────────────────────────
async def create_supabase(token: Optional[str] = None) -> AsyncClient:
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_ANON_KEY")
    if not url or not key:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_ANON_KEY")
    if not token:
        return await acreate_client(url, key)
    client = await acreate_client(
        url, key, options=AsyncClientOptions(headers={"Authorization": f"Bearer {token}"})
    )
    await client.realtime.set_auth(token)
    return client


@asynccontextmanager
async def open_store(viewer: Optional["Viewer"]) -> AsyncIterator[SupabaseStore]:
    client = await create_supabase(viewer.token if viewer else None)
    try:
        yield SupabaseStore(client)
    finally:
        await client.remove_all_channels()


async def viewer_from_token(token: str) -> Viewer:
    user = await verify_token(token)
    return Viewer(id=user["id"], email=user.get("email"), token=token)


async def get_optional_viewer(
    authorization: Optional[str] = Header(default=None),
) -> Optional[Viewer]:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return await viewer_from_token(authorization.split(" ", 1)[1])


async def get_viewer(viewer: Optional[Viewer] = Depends(get_optional_viewer)) -> Viewer:
    if viewer is None:
        raise HTTPException(status_code=401, detail="Sign in required")
    return viewer


async def get_store(viewer: Optional[Viewer] = Depends(get_optional_viewer)):
    async with open_store(viewer) as store:
        yield store


def get_contact_updates(request: Request) -> ContactBroadcast:
    return request.app.state.contact_updates
