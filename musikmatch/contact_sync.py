# musikmatch/contact_sync.py
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from .conversations import ConversationLog
from .errors import PermissionDenied, ValidationFailed
from .models import Application, ApplyIn, ContactFormState, ContactSnapshot, Profile

log = logging.getLogger("uvicorn.error")

CONTACT_FIELDS = ("email", "phone")


class FieldState(str, Enum):
    unedited = "unedited"
    touched = "touched"


# ──────────────────────────────────────────────────────────────────────────────
# Profile-level contact updates, fanned out to open gig screens
# ──────────────────────────────────────────────────────────────────────────────
class ContactBroadcast:
    def __init__(self):
        self._listeners: Dict[str, List[Callable[[ContactSnapshot], None]]] = {}

    def subscribe(self, user_id: str, callback: Callable[[ContactSnapshot], None]) -> Callable[[], None]:
        self._listeners.setdefault(user_id, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(user_id, [])
            if callback in listeners:
                listeners.remove(callback)
            if not listeners:
                self._listeners.pop(user_id, None)

        return unsubscribe

    def publish(self, user_id: str, contact: ContactSnapshot) -> int:
        listeners = list(self._listeners.get(user_id, []))
        for cb in listeners:
            try:
                cb(contact)
            except Exception:
                log.exception(f"contact update listener failed for {user_id}")
        return len(listeners)

    def listener_count(self, user_id: str) -> int:
        return len(self._listeners.get(user_id, []))


# ──────────────────────────────────────────────────────────────────────────────
# Apply form
# ──────────────────────────────────────────────────────────────────────────────
class ContactSynchronizer:
    """Keeps the apply form, the profile defaults and the application snapshot
    in step without overwriting a field the musician is editing.

    Each contact field is either *unedited* (shows a fallback, external
    updates may replace it) or *touched* (typed into since the last seed or
    save, external updates are ignored).
    """

    def __init__(self, store, profile: Profile, gig_id: int, conversations: ConversationLog):
        self.store = store
        self.profile = profile
        self.gig_id = gig_id
        self.conversations = conversations
        self.application: Optional[Application] = None
        self.message = ""
        self.values: Dict[str, str] = {f: "" for f in CONTACT_FIELDS}
        self.states: Dict[str, FieldState] = {f: FieldState.unedited for f in CONTACT_FIELDS}

    def seed(self, defaults: ContactSnapshot, application: Optional[Application]) -> None:
        snapshot = application.contact if application else ContactSnapshot()
        self.application = application
        self.message = (application.message if application else None) or ""
        self.values = {
            "email": snapshot.email or defaults.email or "",
            "phone": snapshot.phone or defaults.phone or "",
        }
        self.states = {f: FieldState.unedited for f in CONTACT_FIELDS}

    def edit(self, field: str, value: str) -> None:
        if field not in CONTACT_FIELDS:
            raise ValidationFailed(f"Unknown contact field: {field}")
        self.values[field] = value
        self.states[field] = FieldState.touched

    def edit_message(self, text: str) -> None:
        self.message = text

    def on_external_contact_update(self, defaults: ContactSnapshot) -> None:
        incoming = {"email": defaults.email or "", "phone": defaults.phone or ""}
        for f in CONTACT_FIELDS:
            if self.states[f] is FieldState.unedited:
                self.values[f] = incoming[f]

    def touched(self) -> List[str]:
        return [f for f in CONTACT_FIELDS if self.states[f] is FieldState.touched]

    def form_state(self) -> ContactFormState:
        return ContactFormState(
            message=self.message,
            email=self.values["email"],
            phone=self.values["phone"],
            touched=self.touched(),
        )

    async def submit(self, form: Optional[ApplyIn] = None) -> Application:
        if self.profile.role != "musician":
            raise PermissionDenied("Only musicians can apply.")

        if form is None:
            try:
                form = ApplyIn(message=self.message, email=self.values["email"], phone=self.values["phone"])
            except ValidationError as e:
                raise ValidationFailed(f"Invalid contact details: {e.errors()[0]['msg']}")
        contact = ContactSnapshot(email=form.email, phone=form.phone)
        message = (form.message or "").strip() or None
        musician_id = self.profile.id

        # re-read so a status change made elsewhere is not overwritten
        current = await self.store.current_application(self.gig_id, musician_id)
        if current is not None and current.status.resolved:
            raise ValidationFailed(f"The application is already {current.status.value}.")

        saved = await self.store.update_profile_contact(musician_id, contact)
        if saved is None:
            raise PermissionDenied("Could not save contact details on the profile (no permission).")

        if current is not None:
            result = await self.store.update_application(current.id, message, contact)
            if result is None:
                raise PermissionDenied("Could not update the application (no permission).")
        else:
            result = await self.store.insert_application(self.gig_id, musician_id, message, contact)

        self.profile = self.profile.model_copy(
            update={"contact_email": saved.email, "contact_phone": saved.phone}
        )
        self.seed(saved, result)
        await self.conversations.load_history(result.id)
        return result
