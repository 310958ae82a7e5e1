"""Delayed deletion of menus, tips, user input and voice messages."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from .timers import Scheduler

log = logging.getLogger("music.retraction")

Deleter = Callable[[int, int], Awaitable[bool]]


class RetractionCategory(str, Enum):
    MENU = "menu"
    TIP = "tip"
    USER_INPUT = "user_input"
    VOICE = "voice"


@dataclass(frozen=True, slots=True)
class RetractionPolicy:
    """Which message categories get deleted once a selection completes."""

    menu: bool = True
    tip: bool = True
    user_input: bool = True
    voice: bool = False
    delay_seconds: float = 0.0
    only_after_success: bool = False
    keep_menu_on_failure: bool = False

    def enabled(self, category: RetractionCategory) -> bool:
        return bool(getattr(self, RetractionCategory(category).value))

    def allows(self, category: RetractionCategory, succeeded: bool) -> bool:
        category = RetractionCategory(category)
        if not self.enabled(category):
            return False
        if self.only_after_success and not succeeded:
            return False
        if category is RetractionCategory.MENU and self.keep_menu_on_failure and not succeeded:
            return False
        return True


class RetractionScheduler:
    """Deletes chat messages now or after a delay, never raising."""

    def __init__(self, deleter: Deleter, scheduler: Scheduler) -> None:
        self._deleter = deleter
        self._scheduler = scheduler

    async def schedule_retract(
        self,
        chat_id: int,
        message_ids: Iterable[Optional[int]],
        delay_seconds: float = 0.0,
    ) -> None:
        ids = [int(mid) for mid in message_ids if mid is not None]
        if not ids:
            return
        if delay_seconds <= 0:
            await self._delete_all(chat_id, ids)
            return

        async def _fire() -> None:
            await self._delete_all(chat_id, ids)

        self._scheduler.call_later(delay_seconds, _fire, name=f"music-retract:{chat_id}")
        log.debug(
            "music.retract.scheduled",
            extra={"meta": {"chat_id": chat_id, "count": len(ids), "delay": delay_seconds}},
        )

    async def _delete_all(self, chat_id: int, message_ids: list[int]) -> None:
        for message_id in message_ids:
            try:
                await self._deleter(chat_id, message_id)
            except Exception as exc:
                log.debug(
                    "music.retract.failed",
                    extra={"meta": {"chat_id": chat_id, "message_id": message_id, "err": repr(exc)}},
                )


__all__ = [
    "Deleter",
    "RetractionCategory",
    "RetractionPolicy",
    "RetractionScheduler",
]
