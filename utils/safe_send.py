"""Utilities for delivering and retracting Telegram messages."""

from __future__ import annotations

import io
import logging
from typing import Iterable, Optional, Union

from telegram import Bot, Message
from telegram.error import BadRequest, Forbidden

from utils.logging_extra import build_log_extra

logger = logging.getLogger(__name__)

TELEGRAM_TEXT_LIMIT = 4096
TELEGRAM_CAPTION_LIMIT = 1024

AudioSource = Union[str, bytes]


def _chunk_text(text: str, *, limit: int) -> Iterable[str]:
    """Yield safe chunks for Telegram send operations."""

    if not text:
        yield ""
        return

    start = 0
    text_len = len(text)
    while start < text_len:
        end = min(start + limit, text_len)
        if end < text_len:
            split = text.rfind("\n", start, end)
            if split <= start:
                split = text.rfind(" ", start, end)
            if split <= start:
                split = end
        else:
            split = end
        yield text[start:split]
        start = split


async def safe_send_text(
    bot: Bot,
    chat_id: int,
    text: str,
    *,
    reply_to_message_id: Optional[int] = None,
    chunk_limit: int = 3500,
) -> list[Message]:
    """Send plain text, slicing long payloads into chunks.

    Only the first chunk replies to ``reply_to_message_id``. Errors propagate to
    the caller.
    """

    sent: list[Message] = []
    for index, chunk in enumerate(_chunk_text(text, limit=min(chunk_limit, TELEGRAM_TEXT_LIMIT))):
        message = await bot.send_message(
            chat_id=chat_id,
            text=chunk,
            disable_web_page_preview=True,
            reply_to_message_id=reply_to_message_id if index == 0 else None,
        )
        sent.append(message)
    return sent


async def safe_send_photo(
    bot: Bot,
    chat_id: int,
    photo: bytes,
    *,
    caption: Optional[str] = None,
    filename: str = "menu.png",
) -> Message:
    payload = io.BytesIO(photo)
    payload.name = filename
    if caption and len(caption) > TELEGRAM_CAPTION_LIMIT:
        caption = caption[: TELEGRAM_CAPTION_LIMIT - 1] + "…"
    return await bot.send_photo(chat_id=chat_id, photo=payload, caption=caption)


async def safe_send_voice(
    bot: Bot,
    chat_id: int,
    source: AudioSource,
    *,
    as_voice: bool = True,
    title: Optional[str] = None,
    performer: Optional[str] = None,
    duration: Optional[int] = None,
) -> Message:
    """Send ``source`` (a URL or encoded bytes) as a voice note or an audio track."""

    if isinstance(source, (bytes, bytearray)):
        payload: Union[str, io.BytesIO] = io.BytesIO(bytes(source))
        payload.name = "voice.ogg" if as_voice else "track.ogg"
    else:
        payload = source
    if as_voice:
        return await bot.send_voice(chat_id=chat_id, voice=payload, duration=duration)
    return await bot.send_audio(
        chat_id=chat_id,
        audio=payload,
        title=title,
        performer=performer,
        duration=duration,
    )


async def safe_delete_message(bot: Bot, chat_id: int, message_id: int) -> bool:
    """Delete a message while suppressing common Telegram errors."""

    try:
        await bot.delete_message(chat_id, message_id)
        return True
    except BadRequest as exc:
        message = str(exc).lower()
        if "message to delete not found" in message or "message can't be deleted" in message:
            logger.debug(
                "safe_delete.skip",
                extra=build_log_extra(chat_id=chat_id, message_id=message_id, error=str(exc)),
            )
            return False
        logger.debug(
            "safe_delete.bad_request",
            extra=build_log_extra(chat_id=chat_id, message_id=message_id, error=str(exc)),
        )
        return False
    except Forbidden as exc:
        logger.debug(
            "safe_delete.forbidden",
            extra=build_log_extra(chat_id=chat_id, message_id=message_id, error=str(exc)),
        )
        return False
    except Exception as exc:  # pragma: no cover - network issues
        logger.warning(
            "safe_delete.error",
            extra=build_log_extra(chat_id=chat_id, message_id=message_id, error=repr(exc)),
        )
        return False


__all__ = [
    "AudioSource",
    "safe_delete_message",
    "safe_send_photo",
    "safe_send_text",
    "safe_send_voice",
]
