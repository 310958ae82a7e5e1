"""Search, paging and selection flow for the music command."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol

from metrics import record_delivery, record_selection
from texts import t

from .cache import cache_key
from .client import MusicApiClient
from .config import MusicConfig
from .delivery import AudioDeliveryPipeline, DeliveryOutcome, DeliveryStatus, VoiceSender
from .errors import InvalidSelection, MusicError, ResolveError, UpstreamError
from .menu import MenuContent, MenuRenderer
from .resolver import DirectLinkResolver
from .retraction import RetractionCategory, RetractionScheduler
from .schemas import SongCandidate
from .store import ExpiryTicket, PendingSelection, PendingSelectionStore, conversation_key
from .timers import Scheduler

log = logging.getLogger("music.conversation")


class Transport(VoiceSender, Protocol):
    """Chat-bound message transport."""

    async def send_text(self, text: str) -> list[int]:
        ...

    async def send_photo(self, image: bytes, *, caption: Optional[str] = None) -> int:
        ...

    async def delete_message(self, message_id: int) -> bool:
        ...


TransportFactory = Callable[[int], Transport]


@dataclass(frozen=True, slots=True)
class IncomingText:
    chat_id: int
    user_id: Optional[int]
    text: str
    message_id: Optional[int] = None


class TextOutcome(str, Enum):
    NOT_PENDING = "not_pending"
    PASSTHROUGH = "passthrough"
    EXIT = "exit"
    PAGE = "page"
    PAGE_EMPTY = "page_empty"
    PAGE_FIRST = "page_first"
    PAGE_FAILED = "page_failed"
    SELECTED = "selected"
    DELIVERY_FAILED = "delivery_failed"
    INVALID = "invalid"

    @property
    def consumed(self) -> bool:
        return self not in (TextOutcome.NOT_PENDING, TextOutcome.PASSTHROUGH)


def _parse_index(text: str) -> Optional[int]:
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


class ConversationStateMachine:
    """Drives one pending selection per conversation key.

    ``start`` runs the first search and stores the pending selection. Later
    texts go through ``handle_text``; anything that is not an exit word, a
    paging word or a menu number passes through untouched so other handlers
    can see it. All work for a key runs under the store's per-key lock.
    """

    def __init__(
        self,
        config: MusicConfig,
        *,
        store: PendingSelectionStore,
        client: MusicApiClient,
        resolver: DirectLinkResolver,
        pipeline: AudioDeliveryPipeline,
        renderer: MenuRenderer,
        scheduler: Scheduler,
        transport_factory: TransportFactory,
    ) -> None:
        self.config = config
        self.store = store
        self._client = client
        self._resolver = resolver
        self._pipeline = pipeline
        self._renderer = renderer
        self._scheduler = scheduler
        self._transport_factory = transport_factory
        self._retractor = RetractionScheduler(self._delete, scheduler)

    def key_for(self, chat_id: int, user_id: Optional[int]) -> str:
        return conversation_key(chat_id, user_id, group_wide=self.config.conversation.group_wide)

    async def _delete(self, chat_id: int, message_id: int) -> bool:
        return await self._transport_factory(chat_id).delete_message(message_id)

    async def start(
        self,
        chat_id: int,
        user_id: Optional[int],
        keyword: str,
    ) -> Optional[PendingSelection]:
        """Search page one for ``keyword`` and await a selection on success.

        A failed or empty search leaves any previous selection for the key
        untouched.
        """

        transport = self._transport_factory(chat_id)
        keyword = (keyword or "").strip()
        if not keyword:
            await transport.send_text(t("music.usage", command=self.config.commands[0]))
            return None

        key = self.key_for(chat_id, user_id)
        async with self.store.locked(key):
            try:
                candidates = await self._client.search(keyword, 1)
            except UpstreamError:
                record_selection("search_failed")
                await transport.send_text(t("music.search.failed"))
                return None
            if not candidates:
                record_selection("search_empty")
                await transport.send_text(t("music.search.empty", keyword=keyword))
                return None

            menu_ids = await self._send_menu(transport, await self._renderer.render(keyword, 1, candidates))
            selection = self.store.put(
                PendingSelection(
                    conversation_key=key,
                    chat_id=chat_id,
                    owner_user_id=user_id,
                    keyword=keyword,
                    current_page=1,
                    candidates=tuple(candidates),
                    outstanding_menu_message_ids=set(menu_ids),
                )
            )
            self._schedule_expiry(selection)
            record_selection("started")
            log.info(
                "music.conversation.started",
                extra={"meta": {"key": key, "count": len(candidates), "version": selection.version}},
            )
            return selection

    async def handle_text(self, incoming: IncomingText) -> TextOutcome:
        key = self.key_for(incoming.chat_id, incoming.user_id)
        if key not in self.store:
            return TextOutcome.NOT_PENDING
        async with self.store.locked(key):
            selection = self.store.get(key)
            if selection is None:
                return TextOutcome.NOT_PENDING
            outcome = await self._dispatch(selection, incoming)
        if outcome is not TextOutcome.PASSTHROUGH:
            record_selection(outcome.value)
        return outcome

    async def _dispatch(self, selection: PendingSelection, incoming: IncomingText) -> TextOutcome:
        conversation = self.config.conversation
        text = incoming.text.strip()
        if conversation.is_exit(text):
            return await self._exit(selection, incoming)
        if conversation.is_next(text):
            return await self._turn_page(selection, incoming, selection.current_page + 1)
        if conversation.is_prev(text):
            if selection.current_page <= 1:
                await self._transport_factory(selection.chat_id).send_text(t("music.page.first"))
                return TextOutcome.PAGE_FIRST
            return await self._turn_page(selection, incoming, selection.current_page - 1)
        index = _parse_index(text)
        if index is None:
            return TextOutcome.PASSTHROUGH
        try:
            selection.require(index)
        except InvalidSelection as exc:
            if conversation.invalid_index != "report":
                return TextOutcome.PASSTHROUGH
            return await self._reject(selection, exc)
        return await self.select(selection, index, incoming)

    async def _reject(self, selection: PendingSelection, error: InvalidSelection) -> TextOutcome:
        self.store.discard(selection.conversation_key)
        await self._transport_factory(selection.chat_id).send_text(
            t("music.selection.invalid", index=error.index, count=error.available)
        )
        await self._retract(selection.chat_id, RetractionCategory.MENU, selection.outstanding_menu_message_ids, False)
        log.info("music.conversation.invalid", extra={"meta": {"key": selection.conversation_key, "err": str(error)}})
        return TextOutcome.INVALID

    async def _exit(self, selection: PendingSelection, incoming: IncomingText) -> TextOutcome:
        self.store.discard(selection.conversation_key)
        await self._transport_factory(selection.chat_id).send_text(t("music.exit.ack"))
        await self._retract(selection.chat_id, RetractionCategory.MENU, selection.outstanding_menu_message_ids, True)
        await self._retract(selection.chat_id, RetractionCategory.USER_INPUT, [incoming.message_id], True)
        log.info("music.conversation.exit", extra={"meta": {"key": selection.conversation_key}})
        return TextOutcome.EXIT

    async def _turn_page(self, selection: PendingSelection, incoming: IncomingText, page: int) -> TextOutcome:
        transport = self._transport_factory(selection.chat_id)
        try:
            candidates = await self._client.search(selection.keyword, page)
        except UpstreamError:
            await transport.send_text(t("music.page.failed"))
            return TextOutcome.PAGE_FAILED
        if not candidates:
            await transport.send_text(t("music.page.no_more"))
            return TextOutcome.PAGE_EMPTY

        previous_menu = set(selection.outstanding_menu_message_ids)
        menu_ids = await self._send_menu(
            transport,
            await self._renderer.render(selection.keyword, page, candidates),
        )
        updated = self.store.turn_page(selection.conversation_key, page, candidates, menu_ids)
        if updated is not None:
            self._schedule_expiry(updated)
        await self._retract(selection.chat_id, RetractionCategory.MENU, previous_menu, True)
        await self._retract(selection.chat_id, RetractionCategory.USER_INPUT, [incoming.message_id], True)
        log.info(
            "music.conversation.page",
            extra={"meta": {"key": selection.conversation_key, "page": page, "count": len(candidates)}},
        )
        return TextOutcome.PAGE

    async def select(
        self,
        selection: PendingSelection,
        number: int,
        incoming: Optional[IncomingText] = None,
    ) -> TextOutcome:
        """Resolve and deliver the candidate shown as ``number`` in the menu."""

        candidate = selection.candidate(number)
        if candidate is None:
            return TextOutcome.PASSTHROUGH
        transport = self._transport_factory(selection.chat_id)
        key = selection.conversation_key
        menu_ids = set(selection.outstanding_menu_message_ids)
        tip_ids: list[int] = []
        outcome = self._pipeline.precheck(candidate.duration_seconds)
        if outcome is not None:
            record_delivery(outcome.status.value, outcome.path)
        else:
            if self.config.conversation.generation_tip:
                tip_ids = await transport.send_text(self.config.conversation.generation_tip)
            outcome = await self._resolve_and_deliver(candidate, transport)
        succeeded = outcome.ok
        if not succeeded and outcome.message:
            await transport.send_text(outcome.message)

        if succeeded or not self.config.retraction.keep_menu_on_failure:
            self.store.discard(key)
        else:
            refreshed = self.store.refresh(key)
            if refreshed is not None:
                self._schedule_expiry(refreshed)

        delay = self.config.retraction.delay_seconds
        await self._retract(selection.chat_id, RetractionCategory.MENU, menu_ids, succeeded, delay)
        await self._retract(selection.chat_id, RetractionCategory.TIP, tip_ids, succeeded, delay)
        if incoming is not None:
            await self._retract(selection.chat_id, RetractionCategory.USER_INPUT, [incoming.message_id], succeeded, delay)
        if succeeded:
            await self._retract(selection.chat_id, RetractionCategory.VOICE, outcome.message_ids, succeeded, delay)

        log.info(
            "music.conversation.selected",
            extra={
                "meta": {
                    "key": key,
                    "number": number,
                    "song_id": candidate.id,
                    "status": outcome.status.value,
                    "path": outcome.path,
                }
            },
        )
        return TextOutcome.SELECTED if succeeded else TextOutcome.DELIVERY_FAILED

    async def _resolve_and_deliver(self, candidate: SongCandidate, transport: Transport) -> DeliveryOutcome:
        delivery = self.config.delivery
        try:
            resolved = await self._resolver.resolve(
                candidate,
                self.config.api.quality,
                require_direct_link=delivery.requires_direct_link,
            )
        except ResolveError as exc:
            key = "music.resolve.fragile" if exc.fragile_only else "music.resolve.failed"
            return _failed(t(key))
        except MusicError as exc:
            log.warning("music.conversation.resolve_error", extra={"meta": {"err": repr(exc)}})
            return _failed(t("music.search.failed"))
        return await self._pipeline.deliver(
            resolved,
            candidate.duration_seconds,
            transport=transport,
            cache_key=cache_key(candidate.source, candidate.resolve_id, resolved.bitrate_used),
            title=candidate.title,
            performer=candidate.artist or None,
        )

    async def _send_menu(self, transport: Transport, content: MenuContent) -> list[int]:
        if content.image:
            try:
                return [await transport.send_photo(content.image, caption=content.caption or None)]
            except Exception as exc:
                log.warning("music.menu.photo_failed", extra={"meta": {"err": repr(exc)}})
        return await transport.send_text(content.text)

    async def _retract(
        self,
        chat_id: int,
        category: RetractionCategory,
        message_ids: Iterable[Optional[int]],
        succeeded: bool,
        delay: Optional[float] = None,
    ) -> None:
        if not self.config.retraction.allows(category, succeeded):
            return
        if delay is None:
            delay = self.config.retraction.delay_seconds
        await self._retractor.schedule_retract(chat_id, message_ids, delay)

    def _schedule_expiry(self, selection: PendingSelection) -> None:
        ticket = self.store.ticket(selection)
        chat_id = selection.chat_id

        async def _fire() -> None:
            await self.expire(ticket, chat_id)

        self._scheduler.call_later(
            self.store.timeout_seconds,
            _fire,
            name=f"music-expiry:{ticket.key}:{ticket.version}",
        )

    async def expire(self, ticket: ExpiryTicket, chat_id: int) -> bool:
        """Drop the selection ``ticket`` was issued for, if it is still current."""

        async with self.store.locked(ticket.key):
            expired = self.store.expire_if_current(ticket)
        if expired is None:
            return False
        record_selection("expired")
        log.info("music.conversation.expired", extra={"meta": {"key": ticket.key, "version": ticket.version}})
        if self.config.conversation.timeout_notice:
            try:
                await self._transport_factory(chat_id).send_text(t("music.timeout"))
            except Exception as exc:
                log.debug("music.conversation.notice_failed", extra={"meta": {"err": repr(exc)}})
        if self.config.retraction.enabled(RetractionCategory.MENU):
            await self._retractor.schedule_retract(chat_id, expired.outstanding_menu_message_ids, 0)
        return True


def _failed(message: str) -> DeliveryOutcome:
    return DeliveryOutcome(DeliveryStatus.FAILED, message)


__all__ = [
    "ConversationStateMachine",
    "IncomingText",
    "TextOutcome",
    "Transport",
    "TransportFactory",
]
