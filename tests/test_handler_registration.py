"""Tests for Telegram handler registration and the music text interceptor."""

import asyncio
import os
import sys
from types import SimpleNamespace

import pytest
from telegram.ext import AIORateLimiter, ApplicationBuilder, ApplicationHandlerStop, CommandHandler, MessageHandler

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from tests.music_test_utils import build_harness, make_config  # noqa: E402

import bot  # noqa: E402
from handlers import music as music_handlers  # noqa: E402
from handlers.music import TelegramTransport, configure_music, music_command, music_text_handler  # noqa: E402


def _build_application():
    application = (
        ApplicationBuilder().token("123:ABC").rate_limiter(AIORateLimiter()).build()
    )
    return application


def _update(text: str, *, chat_id: int = 100, user_id: int = 7, message_id: int = 900) -> SimpleNamespace:
    message = SimpleNamespace(text=text, message_id=message_id, chat_id=chat_id)
    return SimpleNamespace(
        effective_user=SimpleNamespace(id=user_id, language_code="ru"),
        effective_chat=SimpleNamespace(id=chat_id, type="private"),
        effective_message=message,
        message=message,
    )


class FakeBot:
    def __init__(self) -> None:
        self.sent: list[dict[str, object]] = []
        self.voices: list[dict[str, object]] = []
        self.audios: list[dict[str, object]] = []
        self.deleted: list[tuple[int, int]] = []
        self._next_message_id = 100

    def _message(self) -> SimpleNamespace:
        self._next_message_id += 1
        return SimpleNamespace(message_id=self._next_message_id)

    async def send_message(self, **kwargs):  # type: ignore[override]
        self.sent.append(kwargs)
        return self._message()

    async def send_voice(self, **kwargs):  # type: ignore[override]
        self.voices.append(kwargs)
        return self._message()

    async def send_audio(self, **kwargs):  # type: ignore[override]
        self.audios.append(kwargs)
        return self._message()

    async def delete_message(self, chat_id, message_id):  # type: ignore[override]
        self.deleted.append((chat_id, message_id))
        return True


@pytest.fixture(autouse=True)
def _reset_machine():
    yield
    configure_music(None)


def test_music_handlers_registered_in_group_zero() -> None:
    application = _build_application()
    runtime = bot.build_runtime(application.bot, make_config())
    configure_music(runtime.machine)

    bot.register_handlers(application, ("music", "song"))

    group = application.handlers[0]
    commands = [h for h in group if isinstance(h, CommandHandler)]
    texts = [h for h in group if isinstance(h, MessageHandler)]
    assert len(commands) == 1
    assert commands[0].commands == frozenset({"music", "song"})
    assert len(texts) == 1
    assert texts[0].callback is music_text_handler


def test_command_starts_search_with_joined_args() -> None:
    harness = build_harness()
    configure_music(harness.machine)
    ctx = SimpleNamespace(bot=FakeBot(), args=["daft", "punk"])

    asyncio.run(music_command(_update("/music daft punk"), ctx))

    assert harness.client.search_calls == [("daft punk", 1)]
    assert "1. Song 1" in harness.transport.texts[0]


def test_text_handler_consumes_selection_and_stops_propagation() -> None:
    harness = build_harness()
    configure_music(harness.machine)
    ctx = SimpleNamespace(bot=FakeBot(), args=[])

    asyncio.run(harness.machine.start(100, 7, "hit"))
    with pytest.raises(ApplicationHandlerStop):
        asyncio.run(music_text_handler(_update("1"), ctx))

    assert harness.transport.voices


def test_text_handler_lets_unrelated_text_through() -> None:
    harness = build_harness()
    configure_music(harness.machine)
    ctx = SimpleNamespace(bot=FakeBot(), args=[])

    assert asyncio.run(music_text_handler(_update("1"), ctx)) is None

    asyncio.run(harness.machine.start(100, 7, "hit"))
    assert asyncio.run(music_text_handler(_update("just chatting"), ctx)) is None
    assert harness.client.url_calls == []


def test_unconfigured_handlers_fail_loudly() -> None:
    ctx = SimpleNamespace(bot=FakeBot(), args=["x"])
    with pytest.raises(RuntimeError):
        asyncio.run(music_command(_update("/music x"), ctx))


def test_telegram_transport_sends_and_deletes() -> None:
    fake_bot = FakeBot()
    transport = TelegramTransport(fake_bot, 55, as_voice=True)

    async def scenario():
        ids = await transport.send_text("menu")
        voice_id = await transport.send_voice("https://cdn.example/a.mp3", duration=12)
        deleted = await transport.delete_message(ids[0])
        return ids, voice_id, deleted

    ids, voice_id, deleted = asyncio.run(scenario())

    assert fake_bot.sent[0]["chat_id"] == 55
    assert fake_bot.sent[0]["text"] == "menu"
    assert fake_bot.voices == [{"chat_id": 55, "voice": "https://cdn.example/a.mp3", "duration": 12}]
    assert voice_id == ids[0] + 1
    assert deleted is True
    assert fake_bot.deleted == [(55, ids[0])]


def test_telegram_transport_can_send_audio_bytes() -> None:
    fake_bot = FakeBot()
    transport = TelegramTransport(fake_bot, 55, as_voice=False)

    asyncio.run(transport.send_voice(b"ogg", title="Song", performer="Band"))

    assert fake_bot.voices == []
    payload = fake_bot.audios[0]
    assert payload["title"] == "Song"
    assert payload["performer"] == "Band"
    assert payload["audio"].read() == b"ogg"


def test_module_exposes_configured_machine() -> None:
    harness = build_harness()
    configure_music(harness.machine)
    assert music_handlers.get_machine() is harness.machine
