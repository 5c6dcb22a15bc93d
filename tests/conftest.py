import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from musikmatch.errors import NotFound, StoreError
from musikmatch.models import (
    Application,
    ApplicationStatus,
    ApplicationSummary,
    ContactSnapshot,
    Gig,
    GigIn,
    Message,
    Profile,
)
from musikmatch.store import MessageFeed

VENUE_ID = "00000000-0000-0000-0000-0000000000v1"
MUSICIAN_ID = "00000000-0000-0000-0000-0000000000m1"
OTHER_MUSICIAN_ID = "00000000-0000-0000-0000-0000000000m2"
T0 = datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def message(id: int, application_id: int = 1, minutes: int = 0, body: str = "hi", sender: str = MUSICIAN_ID) -> Message:
    return Message(id=id, application_id=application_id, sender_id=sender, body=body, created_at=at(minutes))


async def settle() -> None:
    """Let the feed pump task drain what was pushed."""
    for _ in range(5):
        await asyncio.sleep(0)


class FakeStore:
    """In-memory stand-in for SupabaseStore. `fail[name] = "msg"` makes that call fail."""

    def __init__(self):
        self.profiles: Dict[str, Profile] = {}
        self.gigs: Dict[int, Gig] = {}
        self.applications: Dict[int, Application] = {}
        self.messages: List[Message] = []
        self.feeds: List[MessageFeed] = []
        self.calls: List[str] = []
        self.fail: Dict[str, str] = {}
        self.deny_profile_update = False
        self.deny_application_update = False
        self.held: Dict[str, asyncio.Event] = {}
        self._ids = 100
        self._clock = 1000

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise StoreError(self.fail[name])

    def hold(self, name: str) -> asyncio.Event:
        """Make `name` wait, after it is recorded in `calls`, until the returned event is set."""
        self.held[name] = asyncio.Event()
        return self.held[name]

    async def _wait(self, name: str) -> None:
        if name in self.held:
            await self.held[name].wait()

    def _next_id(self) -> int:
        self._ids += 1
        return self._ids

    def _now(self) -> datetime:
        self._clock += 1
        return at(self._clock)

    def count(self, name: str) -> int:
        return self.calls.count(name)

    # seeding helpers -------------------------------------------------------
    def add_profile(self, id: str, role: str, **kw) -> Profile:
        self.profiles[id] = Profile(id=id, role=role, **kw)
        return self.profiles[id]

    def add_gig(self, id: int = 42, venue_id: str = VENUE_ID, **kw) -> Gig:
        kw.setdefault("title", "Acoustic night")
        kw.setdefault("start_time", T0)
        kw.setdefault("duration_minutes", 120)
        self.gigs[id] = Gig(id=id, venue_id=venue_id, **kw)
        return self.gigs[id]

    def add_application(self, id: int, gig_id: int = 42, musician_id: str = MUSICIAN_ID, minutes: int = 0, **kw) -> Application:
        self.applications[id] = Application(
            id=id, gig_id=gig_id, musician_id=musician_id, created_at=at(minutes), **kw
        )
        return self.applications[id]

    @property
    def live_feed(self) -> MessageFeed:
        return self.feeds[-1]

    # profiles --------------------------------------------------------------
    async def get_profile(self, user_id: str) -> Optional[Profile]:
        self._call("get_profile")
        return self.profiles.get(user_id)

    async def create_profile(self, user_id: str, role: str, display_name: str) -> Profile:
        self._call("create_profile")
        return self.add_profile(user_id, role, display_name=display_name)

    async def update_profile_contact(self, user_id: str, contact: ContactSnapshot) -> Optional[ContactSnapshot]:
        self._call("update_profile_contact")
        if self.deny_profile_update or user_id not in self.profiles:
            return None
        p = self.profiles[user_id]
        self.profiles[user_id] = p.model_copy(update={"contact_email": contact.email, "contact_phone": contact.phone})
        return ContactSnapshot(email=contact.email, phone=contact.phone)

    async def list_profiles(self, role, music_type=None, min_rating=None, bankid_only=False) -> List[Profile]:
        self._call("list_profiles")
        rows = [p for p in self.profiles.values() if p.role == role]
        if music_type:
            rows = [p for p in rows if p.music_type == music_type]
        if min_rating:
            rows = [p for p in rows if (p.rating or 0) >= min_rating]
        if bankid_only:
            rows = [p for p in rows if p.bankid_verified]
        return sorted(rows, key=lambda p: p.display_name or "")

    async def display_names(self, user_ids) -> Dict[str, Optional[str]]:
        self._call("display_names")
        return {i: self.profiles[i].display_name for i in set(user_ids) if i in self.profiles}

    # gigs ------------------------------------------------------------------
    async def get_gig(self, gig_id: int) -> Gig:
        self._call("get_gig")
        if gig_id not in self.gigs:
            raise NotFound(f"Gig {gig_id} not found")
        return self.gigs[gig_id]

    async def list_gigs(self) -> List[Gig]:
        self._call("list_gigs")
        return sorted(self.gigs.values(), key=lambda g: g.start_time)

    async def list_venue_gigs(self, venue_id: str) -> List[Gig]:
        self._call("list_venue_gigs")
        return sorted((g for g in self.gigs.values() if g.venue_id == venue_id), key=lambda g: g.start_time, reverse=True)

    async def create_gig(self, venue_id: str, payload: GigIn) -> Gig:
        self._call("create_gig")
        row = payload.row(venue_id)
        row["id"] = self._next_id()
        gig = Gig.model_validate(row)
        self.gigs[gig.id] = gig
        return gig

    async def delete_gig(self, gig_id: int, venue_id: str) -> bool:
        self._call("delete_gig")
        gig = self.gigs.get(gig_id)
        if gig is None or gig.venue_id != venue_id:
            return False
        del self.gigs[gig_id]
        return True

    async def application_counts(self, gig_ids) -> Dict[int, int]:
        self._call("application_counts")
        ids = set(gig_ids)
        counts: Dict[int, int] = {}
        for a in self.applications.values():
            if a.gig_id in ids:
                counts[a.gig_id] = counts.get(a.gig_id, 0) + 1
        return counts

    # applications ----------------------------------------------------------
    async def current_application(self, gig_id: int, musician_id: str) -> Optional[Application]:
        self._call("current_application")
        rows = [a for a in self.applications.values() if a.gig_id == gig_id and a.musician_id == musician_id]
        return max(rows, key=lambda a: a.created_at) if rows else None

    async def list_gig_applications(self, gig_id: int) -> List[Application]:
        self._call("list_gig_applications")
        rows = [a for a in self.applications.values() if a.gig_id == gig_id]
        return sorted(rows, key=lambda a: a.created_at, reverse=True)

    async def list_musician_applications(self, musician_id: str) -> List[ApplicationSummary]:
        self._call("list_musician_applications")
        out = []
        for a in self.applications.values():
            if a.musician_id != musician_id:
                continue
            gig = self.gigs.get(a.gig_id)
            out.append(
                ApplicationSummary.model_validate(
                    {
                        "id": a.id,
                        "gig_id": a.gig_id,
                        "status": a.status,
                        "message": a.message,
                        "created_at": a.created_at,
                        "gigs": {"title": gig.title, "city": gig.city, "start_time": gig.start_time} if gig else None,
                    }
                )
            )
        return out

    async def insert_application(self, gig_id, musician_id, message, contact) -> Application:
        self._call("insert_application")
        app = Application(
            id=self._next_id(),
            gig_id=gig_id,
            musician_id=musician_id,
            message=message,
            status=ApplicationStatus.pending,
            created_at=self._now(),
            contact_email=contact.email,
            contact_phone=contact.phone,
        )
        self.applications[app.id] = app
        return app

    async def update_application(self, application_id, message, contact) -> Optional[Application]:
        self._call("update_application")
        if self.deny_application_update or application_id not in self.applications:
            return None
        app = self.applications[application_id].model_copy(
            update={"message": message, "contact_email": contact.email, "contact_phone": contact.phone}
        )
        self.applications[application_id] = app
        return app

    async def propagate_contact(self, musician_id: str, contact: ContactSnapshot) -> int:
        self._call("propagate_contact")
        n = 0
        for i, a in list(self.applications.items()):
            if a.musician_id == musician_id:
                self.applications[i] = a.model_copy(update={"contact_email": contact.email, "contact_phone": contact.phone})
                n += 1
        return n

    async def delete_application(self, application_id: int, musician_id: str) -> bool:
        self._call("delete_application")
        app = self.applications.get(application_id)
        if app is None or app.musician_id != musician_id:
            return False
        del self.applications[application_id]
        return True

    async def set_application_status(self, application_id: int, status: ApplicationStatus) -> None:
        self._call("set_application_status")
        await self._wait("set_application_status")
        app = self.applications[application_id]
        self.applications[application_id] = app.model_copy(update={"status": status})

    # messages --------------------------------------------------------------
    async def list_messages(self, application_id: int) -> List[Message]:
        self._call("list_messages")
        await self._wait("list_messages")
        rows = [m for m in self.messages if m.application_id == application_id]
        return sorted(rows, key=lambda m: m.created_at)

    async def insert_message(self, application_id: int, sender_id: str, body: str) -> Message:
        self._call("insert_message")
        m = Message(id=self._next_id(), application_id=application_id, sender_id=sender_id, body=body, created_at=self._now())
        self.messages.append(m)
        return m

    async def subscribe_messages(self, viewer_id: str) -> MessageFeed:
        self._call("subscribe_messages")
        await self._wait("subscribe_messages")
        feed = MessageFeed(f"application_messages:{viewer_id}")
        self.feeds.append(feed)
        return feed


@pytest.fixture
def store() -> FakeStore:
    s = FakeStore()
    s.add_profile(VENUE_ID, "venue", display_name="Cafe Sakura")
    s.add_profile(MUSICIAN_ID, "musician", display_name="Lucas Trio", contact_email="lucas@trio.se", contact_phone="+4670000")
    s.add_profile(OTHER_MUSICIAN_ID, "musician", display_name="Ada")
    s.add_gig(42)
    return s


async def until(predicate, rounds: int = 100) -> None:
    """Yield to the loop until `predicate()` holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")
