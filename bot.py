# -*- coding: utf-8 -*-
# Music voice bot (PTB 21.x)
import logging
import os

from core.settings import reload_settings
from logging_utils import init_logging

reload_settings()

os.environ.setdefault("PYTHONUNBUFFERED", "1")

import asyncio
import functools
import signal
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Optional

from telegram import Bot, BotCommand, Update
from telegram.ext import AIORateLimiter, ApplicationBuilder, ContextTypes

from core.settings import settings as app_settings
from handlers.music import TelegramTransport, build_music_handlers, configure_music
from metrics import start_metrics_server
from music.cache import VoiceCache
from music.client import MusicApiClient
from music.codecs import build_codecs, ffmpeg_available
from music.config import MusicConfig
from music.conversation import ConversationStateMachine
from music.delivery import AudioDeliveryPipeline
from music.http import HttpClient
from music.image_menu import PlaywrightMenuImageRenderer, build_image_renderer, playwright_installed
from music.menu import MenuRenderer
from music.resolver import DirectLinkResolver
from music.store import PendingSelectionStore
from music.timers import AsyncioScheduler, Clock, Scheduler

log = logging.getLogger("bot")

HANDLERS_FLAG = "music.handlers_registered"
CACHE_SWEEP_INTERVAL = 600.0


@dataclass
class MusicRuntime:
    machine: ConversationStateMachine
    http: HttpClient
    scheduler: Scheduler
    cache: VoiceCache
    image_renderer: Optional[PlaywrightMenuImageRenderer] = None

    async def aclose(self) -> None:
        if isinstance(self.scheduler, AsyncioScheduler):
            await self.scheduler.shutdown()
        if self.image_renderer is not None:
            with suppress(Exception):
                await self.image_renderer.close()
        await self.http.aclose()


def build_runtime(
    bot: Bot,
    config: Optional[MusicConfig] = None,
    *,
    scheduler: Optional[Scheduler] = None,
    clock: Optional[Clock] = None,
) -> MusicRuntime:
    """Wire the music components for ``bot``."""

    config = config or MusicConfig.from_settings()
    scheduler = scheduler or AsyncioScheduler()
    http = HttpClient(
        connect_timeout=config.api.connect_timeout,
        read_timeout=config.api.read_timeout,
        retry_attempts=config.api.retry_attempts,
        retry_base_delay=config.api.retry_base_delay,
    )
    client = MusicApiClient(http, config.api)
    resolver = DirectLinkResolver(
        client,
        ladder=config.api.ladder,
        fragile_fallback=config.delivery.fragile_fallback,
    )
    transcoder, encoder = build_codecs(
        config.delivery.ffmpeg_bin,
        sample_rate=config.delivery.sample_rate,
        bitrate=config.delivery.voice_bitrate,
        timeout=config.delivery.ffmpeg_timeout,
    )
    cache = VoiceCache(config.delivery.tmp_dir, config.delivery.cache_ttl_seconds)
    pipeline = AudioDeliveryPipeline(
        http,
        transcoder,
        encoder,
        config.delivery,
        cache=cache,
        download_timeout=config.api.download_timeout,
    )
    image_renderer = build_image_renderer(
        config.conversation.image_menu,
        width=config.image.width,
        timeout_ms=config.image.timeout_ms,
    )
    renderer = MenuRenderer(config.conversation, source=config.api.source, image_renderer=image_renderer)
    store = PendingSelectionStore(config.conversation.wait_timeout, clock=clock)

    def transport_factory(chat_id: int) -> TelegramTransport:
        return TelegramTransport(bot, chat_id, as_voice=config.delivery.as_voice)

    machine = ConversationStateMachine(
        config,
        store=store,
        client=client,
        resolver=resolver,
        pipeline=pipeline,
        renderer=renderer,
        scheduler=scheduler,
        transport_factory=transport_factory,
    )
    return MusicRuntime(
        machine=machine,
        http=http,
        scheduler=scheduler,
        cache=cache,
        image_renderer=image_renderer,
    )


def dependency_report(config: MusicConfig) -> dict[str, Any]:
    ffmpeg_ok = ffmpeg_available(config.delivery.ffmpeg_bin)
    report = {
        "ffmpeg": ffmpeg_ok,
        "playwright": playwright_installed(),
        "transcode_required": config.delivery.mode != "link" or config.delivery.force_transcode,
        "image_menu": config.conversation.image_menu,
    }
    if report["transcode_required"] and not ffmpeg_ok:
        log.warning("deps.ffmpeg_missing", extra={"meta": {"ffmpeg_bin": config.delivery.ffmpeg_bin}})
    if config.conversation.image_menu and not report["playwright"]:
        log.warning("deps.playwright_missing")
    log.info("deps.report", extra={"meta": report})
    return report


def register_handlers(application: Any, commands: Any) -> None:
    for handler in build_music_handlers(commands):
        application.add_handler(handler, group=0)


async def error_handler(update: Optional[object], context: ContextTypes.DEFAULT_TYPE) -> None:
    log.exception("Unhandled error: %s", context.error, exc_info=context.error)
    if isinstance(update, Update) and update.effective_chat:
        with suppress(Exception):
            await context.bot.send_message(update.effective_chat.id, "⚠️ Системная ошибка. Попробуйте ещё раз.")


async def _sweep_cache_forever(cache: VoiceCache, interval: float = CACHE_SWEEP_INTERVAL) -> None:
    while True:
        try:
            await asyncio.to_thread(cache.sweep)
        except Exception:
            log.warning("cache.sweep_failed", exc_info=True)
        await asyncio.sleep(interval)


# ==========================
#   Entry (PTB 21.x)
# ==========================
async def run_bot_async() -> None:
    token = app_settings.TELEGRAM_TOKEN
    if not token:
        raise RuntimeError("TELEGRAM_TOKEN is not set")

    config = MusicConfig.from_settings(app_settings)
    dependency_report(config)

    application = (
        ApplicationBuilder()
        .token(token)
        .rate_limiter(AIORateLimiter())
        .concurrent_updates(True)
        .build()
    )

    runtime = build_runtime(application.bot, config)
    configure_music(runtime.machine)
    if not application.bot_data.get(HANDLERS_FLAG):
        register_handlers(application, config.commands)
        application.bot_data[HANDLERS_FLAG] = True
    application.add_error_handler(error_handler)

    try:
        start_metrics_server(int(app_settings.METRICS_PORT))
    except OSError as exc:
        log.warning("metrics.server.failed", extra={"meta": {"err": repr(exc)}})

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def request_shutdown(sig: Optional[signal.Signals]) -> None:
        signal_name = getattr(sig, "name", None) or (str(sig) if sig else "external")
        log.info("shutdown.requested", extra={"meta": {"signal": signal_name}})
        if not stop_event.is_set():
            loop.call_soon_threadsafe(stop_event.set)

    managed_signals: list[signal.Signals] = []
    for sig_name in ("SIGTERM", "SIGINT"):
        if not hasattr(signal, sig_name):
            continue
        sig = getattr(signal, sig_name)
        try:
            loop.add_signal_handler(sig, functools.partial(request_shutdown, sig))
            managed_signals.append(sig)
        except (NotImplementedError, RuntimeError):
            continue

    initialized = False
    started = False
    updater = application.updater
    sweeper: Optional[asyncio.Task[None]] = None
    try:
        await application.initialize()
        initialized = True

        try:
            await application.bot.set_my_commands(
                [BotCommand(config.commands[0], "🎧 Найти песню и получить голосовое")]
            )
        except Exception as exc:
            log.warning("Failed to set bot commands: %s", exc)

        try:
            await application.bot.delete_webhook(drop_pending_updates=True)
        except Exception as exc:
            log.warning("Delete webhook failed: %s", exc)

        await application.start()
        started = True
        if updater is None:
            raise RuntimeError("Application updater is not available")

        if runtime.cache.enabled:
            sweeper = asyncio.create_task(_sweep_cache_forever(runtime.cache), name="music-cache-sweep")

        await updater.start_polling(allowed_updates=Update.ALL_TYPES, drop_pending_updates=True)
        handler_count = sum(len(group) for group in application.handlers.values())
        log.info(
            "[BOT READY] handlers=%d mode=polling",
            handler_count,
            extra={"meta": config.summary()},
        )
        await stop_event.wait()
    except asyncio.CancelledError:
        log.info("run_bot_async.cancelled")
        raise
    finally:
        if sweeper is not None:
            sweeper.cancel()
        if updater is not None and updater.running:
            try:
                await updater.stop()
            except Exception:
                log.warning("Updater stop raised", exc_info=True)
        if started:
            with suppress(Exception):
                await application.stop()
        if initialized:
            with suppress(Exception):
                await application.shutdown()
        await runtime.aclose()
        configure_music(None)
        for sig in managed_signals:
            with suppress(Exception):
                loop.remove_signal_handler(sig)


def main() -> None:
    init_logging("bot")
    asyncio.run(run_bot_async())


if __name__ == "__main__":
    main()
