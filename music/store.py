"""In-memory store of conversations awaiting a song selection."""
from __future__ import annotations

import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Iterable, Optional

from metrics import set_pending

from .errors import InvalidSelection
from .schemas import SongCandidate
from .timers import Clock, MonotonicClock

log = logging.getLogger("music.store")

PLATFORM = "telegram"


def conversation_key(chat_id: int, user_id: Optional[int], *, group_wide: bool = False) -> str:
    """Key owning a pending selection: per user, or per chat when ``group_wide``."""

    if group_wide or user_id is None:
        return f"{PLATFORM}:{chat_id}"
    return f"{PLATFORM}:{chat_id}:{user_id}"


@dataclass(slots=True)
class PendingSelection:
    conversation_key: str
    chat_id: int
    owner_user_id: Optional[int]
    keyword: str
    current_page: int
    candidates: tuple[SongCandidate, ...]
    created_at: float = 0.0
    outstanding_menu_message_ids: set[int] = field(default_factory=set)
    version: int = 0

    def candidate(self, number: int) -> Optional[SongCandidate]:
        """Return the candidate for a 1-based menu number."""

        if 1 <= number <= len(self.candidates):
            return self.candidates[number - 1]
        return None

    def require(self, number: int) -> SongCandidate:
        candidate = self.candidate(number)
        if candidate is None:
            raise InvalidSelection(number, len(self.candidates))
        return candidate


@dataclass(frozen=True, slots=True)
class ExpiryTicket:
    key: str
    version: int


class PendingSelectionStore:
    """Holds one :class:`PendingSelection` per conversation key.

    Every mutation bumps ``version`` so timers scheduled for an older state
    can tell they are stale. Callers serialise work per key through
    :meth:`locked`, which forgets the lock of a key once nobody holds or
    awaits it and no selection is pending for it.
    """

    def __init__(self, timeout_seconds: float, clock: Optional[Clock] = None) -> None:
        self.timeout_seconds = float(timeout_seconds)
        self._clock: Clock = clock or MonotonicClock()
        self._items: Dict[str, PendingSelection] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}
        self._versions = itertools.count(1)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def keys(self) -> Iterable[str]:
        return tuple(self._items)

    def lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def locked(self, key: str) -> AsyncIterator[None]:
        lock = self.lock(key)
        self._lock_holders[key] = self._lock_holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            holders = self._lock_holders.pop(key, 1) - 1
            if holders > 0:
                self._lock_holders[key] = holders
            elif key not in self._items:
                self._locks.pop(key, None)

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    def _bump(self, selection: PendingSelection) -> PendingSelection:
        selection.version = next(self._versions)
        return selection

    def _changed(self) -> None:
        set_pending(len(self._items))

    def is_expired(self, selection: PendingSelection) -> bool:
        return self._clock.now() - selection.created_at > self.timeout_seconds

    def get(self, key: str) -> Optional[PendingSelection]:
        selection = self._items.get(key)
        if selection is None:
            return None
        if self.is_expired(selection):
            log.info("music.store.expired", extra={"meta": {"key": key, "version": selection.version}})
            self.discard(key)
            return None
        return selection

    def put(self, selection: PendingSelection) -> PendingSelection:
        previous = self._items.get(selection.conversation_key)
        if previous is not None:
            log.debug(
                "music.store.replaced",
                extra={"meta": {"key": selection.conversation_key, "version": previous.version}},
            )
        selection.created_at = self._clock.now()
        self._items[selection.conversation_key] = self._bump(selection)
        self._changed()
        return selection

    def turn_page(
        self,
        key: str,
        page: int,
        candidates: Iterable[SongCandidate],
        menu_message_ids: Iterable[int] = (),
    ) -> Optional[PendingSelection]:
        selection = self._items.get(key)
        if selection is None:
            return None
        selection.current_page = int(page)
        selection.candidates = tuple(candidates)
        selection.outstanding_menu_message_ids = set(menu_message_ids)
        selection.created_at = self._clock.now()
        return self._bump(selection)

    def refresh(self, key: str) -> Optional[PendingSelection]:
        selection = self._items.get(key)
        if selection is None:
            return None
        selection.created_at = self._clock.now()
        return self._bump(selection)

    def discard(self, key: str) -> Optional[PendingSelection]:
        selection = self._items.pop(key, None)
        if key not in self._lock_holders:
            self._locks.pop(key, None)
        self._changed()
        return selection

    def ticket(self, selection: PendingSelection) -> ExpiryTicket:
        return ExpiryTicket(selection.conversation_key, selection.version)

    def expire_if_current(self, ticket: ExpiryTicket) -> Optional[PendingSelection]:
        """Discard the selection only if it is still the one ``ticket`` was issued for."""

        selection = self._items.get(ticket.key)
        if selection is None or selection.version != ticket.version:
            return None
        return self.discard(ticket.key)


__all__ = [
    "ExpiryTicket",
    "PLATFORM",
    "PendingSelection",
    "PendingSelectionStore",
    "conversation_key",
]
