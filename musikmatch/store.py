# musikmatch/store.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type, TypeVar

import httpx
from postgrest.exceptions import APIError
from pydantic import BaseModel, ValidationError
from supabase import AsyncClient

from .errors import MalformedRow, NotFound, StoreError
from .models import (
    Application,
    ApplicationStatus,
    ApplicationSummary,
    ContactSnapshot,
    Gig,
    GigIn,
    Message,
    Profile,
)

log = logging.getLogger("uvicorn.error")

M = TypeVar("M", bound=BaseModel)

PROFILE_COLS = "id,role,display_name,contact_email,contact_phone,music_type,rating,bankid_verified"
GIG_COLS = "id,venue_id,title,description,city,start_time,duration_minutes,budget_min,budget_max,image_url"
APPLICATION_COLS = "id,gig_id,musician_id,message,status,created_at,contact_email,contact_phone"
MESSAGE_COLS = "id,application_id,sender_id,body,created_at"


def parse_row(model: Type[M], row: Any) -> M:
    """Validate one remote row; anything that does not fit the schema is rejected."""
    try:
        return model.model_validate(row)
    except ValidationError as e:
        raise MalformedRow(f"Malformed {model.__name__} row: {e.errors()[0]['msg']}") from e


def parse_rows(model: Type[M], rows: Optional[Iterable[Any]]) -> List[M]:
    return [parse_row(model, r) for r in rows or []]


# ──────────────────────────────────────────────────────────────────────────────
# Live feed
# ──────────────────────────────────────────────────────────────────────────────
class MessageFeed:
    """Cancellable stream of inserted `application_messages` rows.

    The realtime callback pushes raw records in; consumers iterate with
    ``async for``. Iteration stops once the feed is closed.
    """

    _CLOSED = object()

    def __init__(self, name: str, on_close: Optional[Callable[[], Awaitable[None]]] = None):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self.closed = False

    def push(self, record: Any) -> None:
        if self.closed:
            return
        try:
            message = parse_row(Message, record)
        except MalformedRow as e:
            log.warning(f"[{self.name}] dropped live row: {e.message}")
            return
        self._queue.put_nowait(message)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Message:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(self._CLOSED)
        if self._on_close is not None:
            await self._on_close()


def _record_from_payload(payload: Any) -> Any:
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and "record" in data:
        return data["record"]
    return payload.get("new") or payload.get("record")


# ──────────────────────────────────────────────────────────────────────────────
# Supabase-backed store
# ──────────────────────────────────────────────────────────────────────────────
class SupabaseStore:
    """All table, RPC and realtime access, as the signed-in user."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def _execute(self, query, what: str):
        try:
            return await query.execute()
        except APIError as e:
            log.warning(f"{what} failed: {e.message}")
            raise StoreError(e.message or f"{what} failed") from e
        except httpx.HTTPError as e:
            log.warning(f"{what} failed: {e}")
            raise StoreError(f"{what} failed: {e}") from e

    async def _first(self, query, what: str) -> Optional[Dict[str, Any]]:
        resp = await self._execute(query.limit(1), what)
        rows = resp.data or []
        return rows[0] if rows else None

    # profiles ----------------------------------------------------------------
    async def get_profile(self, user_id: str) -> Optional[Profile]:
        row = await self._first(
            self.client.table("profiles").select(PROFILE_COLS).eq("id", user_id),
            "profiles select",
        )
        return parse_row(Profile, row) if row else None

    async def create_profile(self, user_id: str, role: str, display_name: str) -> Profile:
        resp = await self._execute(
            self.client.table("profiles").insert(
                {"id": user_id, "role": role, "display_name": display_name}
            ),
            "profiles insert",
        )
        rows = resp.data or []
        if not rows:
            raise StoreError("Profile insert returned no row")
        return parse_row(Profile, rows[0])

    async def update_profile_contact(
        self, user_id: str, contact: ContactSnapshot
    ) -> Optional[ContactSnapshot]:
        """Returns the saved snapshot, or None when no row was updated (RLS)."""
        resp = await self._execute(
            self.client.table("profiles")
            .update({"contact_email": contact.email, "contact_phone": contact.phone})
            .eq("id", user_id),
            "profiles update",
        )
        rows = resp.data or []
        return ContactSnapshot.of(rows[0]) if rows else None

    async def list_profiles(
        self,
        role: str,
        music_type: Optional[str] = None,
        min_rating: Optional[float] = None,
        bankid_only: bool = False,
    ) -> List[Profile]:
        q = self.client.table("profiles").select(PROFILE_COLS).eq("role", role)
        if music_type:
            q = q.eq("music_type", music_type)
        if min_rating:
            q = q.gte("rating", min_rating)
        if bankid_only:
            q = q.eq("bankid_verified", True)
        resp = await self._execute(
            q.order("display_name", desc=False, nullsfirst=False), "profiles select"
        )
        return parse_rows(Profile, resp.data)

    async def display_names(self, user_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        resp = await self._execute(
            self.client.table("profiles").select("id,display_name").in_("id", ids),
            "profiles select",
        )
        return {r["id"]: r.get("display_name") for r in resp.data or []}

    # gigs --------------------------------------------------------------------
    async def get_gig(self, gig_id: int) -> Gig:
        row = await self._first(
            self.client.table("gigs").select(GIG_COLS).eq("id", gig_id), "gigs select"
        )
        if not row:
            raise NotFound(f"Gig {gig_id} not found")
        return parse_row(Gig, row)

    async def list_gigs(self) -> List[Gig]:
        resp = await self._execute(
            self.client.table("gigs").select(GIG_COLS).order("start_time", desc=False),
            "gigs select",
        )
        return parse_rows(Gig, resp.data)

    async def list_venue_gigs(self, venue_id: str) -> List[Gig]:
        resp = await self._execute(
            self.client.table("gigs")
            .select(GIG_COLS)
            .eq("venue_id", venue_id)
            .order("start_time", desc=True),
            "gigs select",
        )
        return parse_rows(Gig, resp.data)

    async def create_gig(self, venue_id: str, payload: GigIn) -> Gig:
        resp = await self._execute(
            self.client.table("gigs").insert(payload.row(venue_id)), "gigs insert"
        )
        rows = resp.data or []
        if not rows:
            raise StoreError("Gig insert returned no row")
        return parse_row(Gig, rows[0])

    async def delete_gig(self, gig_id: int, venue_id: str) -> bool:
        resp = await self._execute(
            self.client.table("gigs").delete().eq("id", gig_id).eq("venue_id", venue_id),
            "gigs delete",
        )
        return bool(resp.data)

    async def application_counts(self, gig_ids: Iterable[int]) -> Dict[int, int]:
        ids = list(gig_ids)
        if not ids:
            return {}
        resp = await self._execute(
            self.client.table("applications").select("gig_id").in_("gig_id", ids),
            "applications select",
        )
        counts: Dict[int, int] = {}
        for r in resp.data or []:
            counts[r["gig_id"]] = counts.get(r["gig_id"], 0) + 1
        return counts

    # applications ------------------------------------------------------------
    async def current_application(self, gig_id: int, musician_id: str) -> Optional[Application]:
        # duplicates are not prevented upstream; the most recent one wins
        row = await self._first(
            self.client.table("applications")
            .select(APPLICATION_COLS)
            .eq("gig_id", gig_id)
            .eq("musician_id", musician_id)
            .order("created_at", desc=True),
            "applications select",
        )
        return parse_row(Application, row) if row else None

    async def list_gig_applications(self, gig_id: int) -> List[Application]:
        resp = await self._execute(
            self.client.table("applications")
            .select(APPLICATION_COLS)
            .eq("gig_id", gig_id)
            .order("created_at", desc=True),
            "applications select",
        )
        return parse_rows(Application, resp.data)

    async def list_musician_applications(self, musician_id: str) -> List[ApplicationSummary]:
        resp = await self._execute(
            self.client.table("applications")
            .select("id,gig_id,status,message,created_at,gigs(title,city,start_time)")
            .eq("musician_id", musician_id)
            .order("created_at", desc=True),
            "applications select",
        )
        return parse_rows(ApplicationSummary, resp.data)

    async def insert_application(
        self, gig_id: int, musician_id: str, message: Optional[str], contact: ContactSnapshot
    ) -> Application:
        resp = await self._execute(
            self.client.table("applications").insert(
                {
                    "gig_id": gig_id,
                    "musician_id": musician_id,
                    "message": message,
                    "contact_email": contact.email,
                    "contact_phone": contact.phone,
                }
            ),
            "applications insert",
        )
        rows = resp.data or []
        if not rows:
            raise StoreError("Application insert returned no row")
        return parse_row(Application, rows[0])

    async def update_application(
        self, application_id: int, message: Optional[str], contact: ContactSnapshot
    ) -> Optional[Application]:
        resp = await self._execute(
            self.client.table("applications")
            .update(
                {
                    "message": message,
                    "contact_email": contact.email,
                    "contact_phone": contact.phone,
                }
            )
            .eq("id", application_id),
            "applications update",
        )
        rows = resp.data or []
        return parse_row(Application, rows[0]) if rows else None

    async def propagate_contact(self, musician_id: str, contact: ContactSnapshot) -> int:
        resp = await self._execute(
            self.client.table("applications")
            .update({"contact_email": contact.email, "contact_phone": contact.phone})
            .eq("musician_id", musician_id),
            "applications update",
        )
        return len(resp.data or [])

    async def delete_application(self, application_id: int, musician_id: str) -> bool:
        resp = await self._execute(
            self.client.table("applications")
            .delete()
            .eq("id", application_id)
            .eq("musician_id", musician_id),
            "applications delete",
        )
        return bool(resp.data)

    async def set_application_status(
        self, application_id: int, status: ApplicationStatus
    ) -> None:
        await self._execute(
            self.client.rpc(
                "set_application_status",
                {"p_application_id": application_id, "p_status": status.value},
            ),
            "set_application_status",
        )

    # messages ----------------------------------------------------------------
    async def list_messages(self, application_id: int) -> List[Message]:
        resp = await self._execute(
            self.client.table("application_messages")
            .select(MESSAGE_COLS)
            .eq("application_id", application_id)
            .order("created_at", desc=False),
            "application_messages select",
        )
        return parse_rows(Message, resp.data)

    async def insert_message(self, application_id: int, sender_id: str, body: str) -> Message:
        resp = await self._execute(
            self.client.table("application_messages").insert(
                {"application_id": application_id, "sender_id": sender_id, "body": body}
            ),
            "application_messages insert",
        )
        rows = resp.data or []
        if not rows:
            raise StoreError("Message insert returned no row")
        return parse_row(Message, rows[0])

    async def subscribe_messages(self, viewer_id: str) -> MessageFeed:
        name = f"application_messages:{viewer_id}"
        channel = self.client.channel(name)

        async def _remove():
            await self.client.remove_channel(channel)
            log.info(f"[{name}] channel removed")

        feed = MessageFeed(name, on_close=_remove)
        channel.on_postgres_changes(
            "INSERT",
            schema="public",
            table="application_messages",
            callback=lambda payload: feed.push(_record_from_payload(payload)),
        )
        try:
            await channel.subscribe()
        except Exception as e:
            raise StoreError(f"Live message feed unavailable: {e}") from e
        log.info(f"[{name}] channel subscribed")
        return feed
