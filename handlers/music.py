"""Telegram handlers for the music search command and its text replies."""
from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

from telegram import Bot, Update
from telegram.ext import ApplicationHandlerStop, BaseHandler, CommandHandler, ContextTypes, MessageHandler, filters

from music.conversation import ConversationStateMachine, IncomingText, TextOutcome
from texts import t
from utils.logging_extra import build_log_extra
from utils.safe_send import safe_delete_message, safe_send_photo, safe_send_text, safe_send_voice

logger = logging.getLogger(__name__)

_machine: Optional[ConversationStateMachine] = None


class TelegramTransport:
    """Transport bound to one chat, sending through ``telegram.Bot``."""

    def __init__(self, bot: Bot, chat_id: int, *, as_voice: bool = True) -> None:
        self.bot = bot
        self.chat_id = chat_id
        self.as_voice = as_voice

    async def send_text(self, text: str) -> list[int]:
        messages = await safe_send_text(self.bot, self.chat_id, text)
        return [message.message_id for message in messages]

    async def send_photo(self, image: bytes, *, caption: Optional[str] = None) -> int:
        message = await safe_send_photo(self.bot, self.chat_id, image, caption=caption)
        return message.message_id

    async def send_voice(
        self,
        source: Union[str, bytes],
        *,
        title: Optional[str] = None,
        performer: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> int:
        message = await safe_send_voice(
            self.bot,
            self.chat_id,
            source,
            as_voice=self.as_voice,
            title=title,
            performer=performer,
            duration=duration,
        )
        return message.message_id

    async def delete_message(self, message_id: int) -> bool:
        return await safe_delete_message(self.bot, self.chat_id, message_id)


def configure_music(machine: Optional[ConversationStateMachine]) -> None:
    """Install the state machine used by the music handlers."""

    global _machine
    _machine = machine


def get_machine() -> ConversationStateMachine:
    if _machine is None:
        raise RuntimeError("music handlers are not configured")
    return _machine


async def music_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle ``/music <keyword>``."""

    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None:
        return
    user = update.effective_user
    keyword = " ".join(context.args or []).strip()
    logger.info("music.command", extra=build_log_extra(update, keyword_len=len(keyword)))
    machine = get_machine()
    try:
        await machine.start(chat.id, user.id if user else None, keyword)
    except Exception:
        logger.exception("music.command.failed", extra=build_log_extra(update))
        await safe_send_text(context.bot, chat.id, t("music.error.generic"))


async def music_text_handler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Intercept paging, exit and selection replies of a pending search.

    Texts that do not belong to a pending selection return normally so the
    update reaches handlers in later groups.
    """

    message = update.effective_message
    chat = update.effective_chat
    if message is None or chat is None or not message.text:
        return
    user = update.effective_user
    incoming = IncomingText(
        chat_id=chat.id,
        user_id=user.id if user else None,
        text=message.text,
        message_id=message.message_id,
    )
    machine = get_machine()
    try:
        outcome = await machine.handle_text(incoming)
    except Exception:
        logger.exception("music.text.failed", extra=build_log_extra(update))
        await safe_send_text(context.bot, chat.id, t("music.error.generic"))
        raise ApplicationHandlerStop
    if outcome is TextOutcome.NOT_PENDING:
        return
    logger.debug("music.text.handled", extra=build_log_extra(update, outcome=outcome.value))
    if outcome.consumed:
        raise ApplicationHandlerStop


def build_music_handlers(commands: Sequence[str]) -> list[BaseHandler]:
    return [
        CommandHandler(list(commands), music_command),
        MessageHandler(filters.TEXT & ~filters.COMMAND, music_text_handler),
    ]


__all__ = [
    "TelegramTransport",
    "build_music_handlers",
    "configure_music",
    "get_machine",
    "music_command",
    "music_text_handler",
]
