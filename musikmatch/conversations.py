# musikmatch/conversations.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Set

from .errors import StoreError
from .models import Message
from .store import MessageFeed

log = logging.getLogger("uvicorn.error")


def merge_messages(existing: Iterable[Message], incoming: Iterable[Message]) -> List[Message]:
    """Concatenate, drop repeated ids (first one wins), then order by created_at.

    ``sorted`` is stable, so messages sharing a timestamp keep arrival order.
    """
    seen: Set[int] = set()
    merged: List[Message] = []
    for m in list(existing) + list(incoming):
        if m.id in seen:
            continue
        seen.add(m.id)
        merged.append(m)
    return sorted(merged, key=lambda m: m.created_at)


class ConversationLog:
    """Per-application message logs for one viewer.

    Messages arrive from ``load_history`` (bulk fetch) and from the live feed;
    both paths go through the same id dedup, so a message delivered twice, or
    once by each path, is kept exactly once.
    """

    def __init__(self, store, viewer_id: str):
        self.store = store
        self.viewer_id = viewer_id
        self._logs: Dict[int, List[Message]] = {}
        self._errors: Dict[int, Optional[str]] = {}
        self._drafts: Dict[int, str] = {}
        self._observers: List[Callable[[int], None]] = []
        self._watched: Set[int] = set()
        self._feed: Optional[MessageFeed] = None
        self._pump: Optional[asyncio.Task] = None
        self._closed = False

    # ── reads ─────────────────────────────────────────────────────────────────
    def messages(self, application_id: int) -> List[Message]:
        return list(self._logs.get(application_id, []))

    def error(self, application_id: int) -> Optional[str]:
        return self._errors.get(application_id)

    def draft(self, application_id: int) -> str:
        return self._drafts.get(application_id, "")

    def snapshot(self) -> Dict[int, List[Message]]:
        return {k: list(v) for k, v in self._logs.items()}

    def drafts(self) -> Dict[int, str]:
        return {k: v for k, v in self._drafts.items() if v}

    def errors(self) -> Dict[int, str]:
        return {k: v for k, v in self._errors.items() if v}

    @property
    def subscribed(self) -> bool:
        return self._feed is not None

    # ── observers ─────────────────────────────────────────────────────────────
    def add_observer(self, callback: Callable[[int], None]) -> None:
        self._observers.append(callback)

    def _notify(self, application_id: int) -> None:
        for cb in list(self._observers):
            cb(application_id)

    # ── writes ────────────────────────────────────────────────────────────────
    async def load_history(self, application_id: int) -> List[Message]:
        try:
            fetched = await self.store.list_messages(application_id)
        except StoreError as e:
            if not self._closed:
                self._errors[application_id] = e.message
                self._notify(application_id)
            return self.messages(application_id)

        if self._closed:
            return fetched
        self._logs[application_id] = merge_messages(self._logs.get(application_id, []), fetched)
        self._errors[application_id] = None
        self._notify(application_id)
        return self.messages(application_id)

    def append_live(self, message: Message) -> bool:
        """Add one message unless its id is already logged. Returns True if added."""
        if self._closed:
            return False
        existing = self._logs.get(message.application_id, [])
        if any(m.id == message.id for m in existing):
            return False
        self._logs[message.application_id] = merge_messages(existing, [message])
        self._notify(message.application_id)
        return True

    def set_draft(self, application_id: int, text: str) -> None:
        self._drafts[application_id] = text

    async def send(self, application_id: int, body: Optional[str] = None) -> Optional[Message]:
        text = self.draft(application_id) if body is None else body
        trimmed = text.strip()
        if not trimmed:
            return None

        try:
            message = await self.store.insert_message(application_id, self.viewer_id, trimmed)
        except StoreError as e:
            self._errors[application_id] = e.message
            self._notify(application_id)
            raise

        self.append_live(message)
        self._drafts[application_id] = ""
        self._errors[application_id] = None
        return message

    # ── live subscription ─────────────────────────────────────────────────────
    async def watch(self, application_ids: Iterable[int]) -> None:
        """Hold a live subscription while there is something to watch."""
        self._watched = set(application_ids)
        if self._closed:
            return
        if self._watched and self._feed is None:
            feed = await self.store.subscribe_messages(self.viewer_id)
            if self._closed or self._feed is not None:
                await feed.aclose()
                return
            self._feed = feed
            self._pump = asyncio.create_task(self._consume(feed))
        elif not self._watched and self._feed is not None:
            await self._release()

    async def _consume(self, feed: MessageFeed) -> None:
        async for message in feed:
            if message.application_id in self._watched:
                self.append_live(message)

    async def _release(self) -> None:
        feed, pump = self._feed, self._pump
        self._feed, self._pump = None, None
        if feed is not None:
            await feed.aclose()
        if pump is not None:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass

    async def close(self) -> None:
        self._closed = True
        self._watched = set()
        await self._release()
