# musikmatch/gig_screen.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from .contact_sync import ContactBroadcast, ContactSynchronizer
from .conversations import ConversationLog
from .deps import Viewer
from .errors import MusikmatchError, OnboardingRequired, PermissionDenied, StoreError, ValidationFailed
from .models import (
    Application,
    ApplicationStatus,
    ApplyIn,
    ContactSnapshot,
    Gig,
    GigScreenState,
    Message,
    Profile,
)

log = logging.getLogger("uvicorn.error")

# pending is the only state that can be left
TRANSITIONS = {
    ApplicationStatus.pending: {ApplicationStatus.accepted, ApplicationStatus.rejected},
    ApplicationStatus.accepted: set(),
    ApplicationStatus.rejected: set(),
}


class GigDetailScreen:
    """State behind one viewer looking at one gig.

    Lives for one request or one WebSocket connection. Only a ``live`` screen
    holds the realtime message feed and listens for contact updates; a
    request-scoped one renders once. ``close()`` must be called when the view
    goes away so both are released.
    """

    def __init__(
        self,
        store,
        viewer: Optional[Viewer],
        gig_id: int,
        contact_updates: Optional[ContactBroadcast] = None,
        live: bool = False,
    ):
        self.store = store
        self.viewer = viewer
        self.gig_id = gig_id
        self.contact_updates = contact_updates
        self.live = live
        self.gig: Optional[Gig] = None
        self.profile: Optional[Profile] = None
        self.applications: List[Application] = []
        self.notice: Optional[str] = None
        self.conversations: Optional[ConversationLog] = None
        self.contacts: Optional[ContactSynchronizer] = None
        self.active = True
        self._unsubscribe_contact: Optional[Callable[[], None]] = None
        self._listeners: List[Callable[[], None]] = []

    # ── derived ───────────────────────────────────────────────────────────────
    @property
    def role(self) -> Optional[str]:
        return self.profile.role if self.profile else None

    @property
    def is_owner(self) -> bool:
        return (
            self.profile is not None
            and self.gig is not None
            and self.profile.role == "venue"
            and self.gig.venue_id == self.profile.id
        )

    @property
    def my_application(self) -> Optional[Application]:
        return self.contacts.application if self.contacts else None

    @property
    def application_ids(self) -> List[int]:
        if self.applications:
            return [a.id for a in self.applications]
        if self.my_application is not None:
            return [self.my_application.id]
        return []

    def on_change(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _changed(self, *_) -> None:
        if not self.active:
            return
        for cb in list(self._listeners):
            cb()

    # ── load ──────────────────────────────────────────────────────────────────
    async def load(self) -> None:
        if self.viewer is None:
            gig = await self.store.get_gig(self.gig_id)
            if self.active:
                self.gig = gig
            return

        profile, gig = await asyncio.gather(
            self.store.get_profile(self.viewer.id),
            self.store.get_gig(self.gig_id),
        )
        if not self.active:
            return
        if profile is None:
            raise OnboardingRequired("Complete onboarding before opening gigs.")

        self.profile = profile
        self.gig = gig
        self.conversations = ConversationLog(self.store, self.viewer.id)
        self.conversations.add_observer(self._changed)

        if self.is_owner:
            await self._load_owner_view()
        elif profile.role == "musician":
            await self._load_musician_view()

        await self._watch()

    async def _watch(self) -> None:
        """Follow new messages on the viewer's applications.

        A failed subscription is logged and noted, and the screen stays usable.
        """
        if not self.live or not self.active:
            return
        try:
            await self.conversations.watch(self.application_ids)
        except StoreError as e:
            log.warning(f"gig {self.gig_id}: live messages unavailable: {e.message}")
            self.notice = " ".join(filter(None, [self.notice, "Live updates are unavailable."]))

    async def _load_owner_view(self) -> None:
        apps = await self.store.list_gig_applications(self.gig_id)
        try:
            names = await self.store.display_names(a.musician_id for a in apps if a.musician_id)
        except StoreError as e:
            log.warning(f"gig {self.gig_id}: musician names unavailable: {e.message}")
            names = {}
        if not self.active:
            return
        self.applications = [
            a.model_copy(update={"musician_name": names.get(a.musician_id)}) for a in apps
        ]
        await asyncio.gather(*(self.conversations.load_history(a.id) for a in self.applications))

    async def _load_musician_view(self) -> None:
        self.contacts = ContactSynchronizer(self.store, self.profile, self.gig_id, self.conversations)
        current = await self.store.current_application(self.gig_id, self.profile.id)
        if not self.active:
            return
        self.contacts.seed(self.profile.contact, current)
        if current is not None:
            await self.conversations.load_history(current.id)
        if self.live and self.active and self.contact_updates is not None:
            self._unsubscribe_contact = self.contact_updates.subscribe(
                self.profile.id, self._external_contact_update
            )

    def _external_contact_update(self, contact: ContactSnapshot) -> None:
        if not self.active or self.contacts is None:
            return
        self.contacts.on_external_contact_update(contact)
        self._changed()

    # ── actions ───────────────────────────────────────────────────────────────
    def _require_viewer(self) -> Viewer:
        if self.viewer is None or self.conversations is None:
            raise PermissionDenied("Sign in to continue.")
        return self.viewer

    def conversations_or_raise(self) -> ConversationLog:
        self._require_viewer()
        return self.conversations

    def contacts_or_raise(self) -> ContactSynchronizer:
        self._require_viewer()
        if self.contacts is None:
            raise PermissionDenied("Only musicians can apply.")
        return self.contacts

    async def apply(self, form: Optional[ApplyIn] = None) -> Application:
        self.contacts_or_raise()
        had_application = self.my_application is not None
        self.notice = None
        result = await self.contacts.submit(form)
        self.notice = "Application updated." if had_application else "Application sent."
        await self._watch()
        self._changed()
        return result

    async def send(self, application_id: int, body: Optional[str] = None) -> Optional[Message]:
        self._require_viewer()
        if application_id not in self.application_ids:
            raise PermissionDenied("You are not part of that application.")
        return await self.conversations.send(application_id, body)

    async def set_status(self, application_id: int, status: ApplicationStatus) -> Application:
        self.notice = None
        if not self.is_owner:
            raise PermissionDenied("You can only change status on your own gigs.")
        idx = next((i for i, a in enumerate(self.applications) if a.id == application_id), None)
        if idx is None:
            raise ValidationFailed(f"Application {application_id} is not on this gig.")
        current = self.applications[idx]
        if status not in TRANSITIONS[current.status]:
            raise ValidationFailed(
                f"Cannot change an application from {current.status.value} to {status.value}."
            )

        await self.store.set_application_status(application_id, status)
        log.info(f"gig {self.gig_id}: application {application_id} {current.status.value} -> {status.value}")
        updated = current.model_copy(update={"status": status})
        if self.active:
            self.applications[idx] = updated
            self._changed()
        return updated

    async def run(self, action) -> Optional[object]:
        """Run an action, turning any failure into the user-visible notice."""
        try:
            return await action
        except MusikmatchError as e:
            self.notice = e.message
            self._changed()
            return None

    # ── teardown / render ─────────────────────────────────────────────────────
    async def close(self) -> None:
        self.active = False
        if self._unsubscribe_contact is not None:
            self._unsubscribe_contact()
            self._unsubscribe_contact = None
        if self.conversations is not None:
            await self.conversations.close()

    def state(self) -> GigScreenState:
        conv = self.conversations
        return GigScreenState(
            gig=self.gig,
            role=self.role,
            viewer_id=self.viewer.id if self.viewer else None,
            is_owner=self.is_owner,
            applications=[a.for_owner() for a in self.applications],
            my_application=self.my_application,
            form=self.contacts.form_state() if self.contacts else None,
            messages=conv.snapshot() if conv else {},
            drafts=conv.drafts() if conv else {},
            message_errors=conv.errors() if conv else {},
            notice=self.notice,
        )
