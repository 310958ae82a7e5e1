"""Delivery of resolved audio as a Telegram voice note or audio track."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Union

from metrics import record_delivery
from texts import format_duration, t

from .cache import VoiceCache
from .codecs import Transcoder, VoiceEncoder
from .config import DeliveryConfig
from .errors import CapabilityUnavailable, DurationExceeded, MusicError
from .http import HttpClient
from .schemas import ResolvedAudio

log = logging.getLogger("music.delivery")


class VoiceSender(Protocol):
    async def send_voice(
        self,
        source: Union[str, bytes],
        *,
        title: Optional[str] = None,
        performer: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> int:
        ...


class DeliveryStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    DURATION_EXCEEDED = "duration_exceeded"
    CAPABILITY_UNAVAILABLE = "capability_unavailable"


@dataclass(slots=True)
class DeliveryOutcome:
    status: DeliveryStatus
    message: str = ""
    message_ids: list[int] = field(default_factory=list)
    path: str = ""
    error: Optional[MusicError] = None

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.OK


def exceeds_duration(duration_seconds: Optional[int], limit_seconds: int) -> bool:
    return bool(limit_seconds) and duration_seconds is not None and duration_seconds > limit_seconds


def check_duration(duration_seconds: Optional[int], limit_seconds: int) -> None:
    if exceeds_duration(duration_seconds, limit_seconds):
        raise DurationExceeded(int(duration_seconds or 0), limit_seconds)


class AudioDeliveryPipeline:
    """Sends a resolved track either as a link or as re-encoded bytes.

    Link mode hands the URL to Telegram untouched unless transcoding is forced
    or the format is one Telegram cannot play. Every other path downloads,
    transcodes to mono WAV and encodes an OGG/Opus voice note. Failures are
    reported through :class:`DeliveryOutcome`, never raised.
    """

    def __init__(
        self,
        http: HttpClient,
        transcoder: Transcoder,
        encoder: VoiceEncoder,
        config: DeliveryConfig,
        *,
        cache: Optional[VoiceCache] = None,
        download_timeout: Optional[float] = None,
    ) -> None:
        self._http = http
        self._transcoder = transcoder
        self._encoder = encoder
        self._config = config
        self._cache = cache
        self._download_timeout = download_timeout

    def needs_transcode(self, resolved: ResolvedAudio) -> bool:
        if self._config.mode != "link" or self._config.force_transcode:
            return True
        return resolved.likely_fragile_format

    def precheck(self, duration_seconds: Optional[int]) -> Optional[DeliveryOutcome]:
        """Reject tracks that are known to be too long before any transfer."""

        try:
            check_duration(duration_seconds, self._config.max_duration_seconds)
        except DurationExceeded as exc:
            return DeliveryOutcome(
                DeliveryStatus.DURATION_EXCEEDED,
                t(
                    "music.delivery.duration",
                    duration=format_duration(exc.duration_seconds),
                    limit=format_duration(exc.limit_seconds),
                ),
                error=exc,
            )
        return None

    async def deliver(
        self,
        resolved: ResolvedAudio,
        duration_seconds: Optional[int],
        *,
        transport: VoiceSender,
        cache_key: Optional[str] = None,
        title: Optional[str] = None,
        performer: Optional[str] = None,
    ) -> DeliveryOutcome:
        started = time.monotonic()
        outcome = await self._deliver(
            resolved,
            duration_seconds,
            transport=transport,
            cache_key=cache_key,
            title=title,
            performer=performer,
        )
        elapsed = time.monotonic() - started
        record_delivery(outcome.status.value, outcome.path, elapsed if outcome.ok else None)
        log.info(
            "music.delivery.done",
            extra={
                "meta": {
                    "status": outcome.status.value,
                    "path": outcome.path,
                    "br": resolved.bitrate_used,
                    "elapsed_ms": int(elapsed * 1000),
                }
            },
        )
        return outcome

    async def _deliver(
        self,
        resolved: ResolvedAudio,
        duration_seconds: Optional[int],
        *,
        transport: VoiceSender,
        cache_key: Optional[str],
        title: Optional[str],
        performer: Optional[str],
    ) -> DeliveryOutcome:
        rejected = self.precheck(duration_seconds)
        if rejected is not None:
            return rejected

        send_kwargs = {"title": title, "performer": performer, "duration": duration_seconds}

        if not self.needs_transcode(resolved):
            try:
                message_id = await transport.send_voice(resolved.url, **send_kwargs)
            except Exception as exc:
                log.warning("music.delivery.link_failed", extra={"meta": {"err": repr(exc)}})
                return DeliveryOutcome(DeliveryStatus.FAILED, t("music.delivery.failed_link"), path="link")
            return DeliveryOutcome(DeliveryStatus.OK, message_ids=[message_id], path="link")

        cached = None
        if self._cache is not None and cache_key:
            cached = await asyncio.to_thread(self._cache.get, cache_key)
        if cached:
            try:
                message_id = await transport.send_voice(cached, **send_kwargs)
            except Exception as exc:
                log.warning("music.delivery.cache_send_failed", extra={"meta": {"err": repr(exc)}})
                return DeliveryOutcome(DeliveryStatus.FAILED, t("music.delivery.failed"), path="cache")
            return DeliveryOutcome(DeliveryStatus.OK, message_ids=[message_id], path="cache")

        if not self._transcoder.available or not self._encoder.available:
            log.warning("music.delivery.capability_missing")
            missing = "transcoder" if not self._transcoder.available else "voice encoder"
            return DeliveryOutcome(
                DeliveryStatus.CAPABILITY_UNAVAILABLE,
                t("music.delivery.capability"),
                path="buffer",
                error=CapabilityUnavailable(missing),
            )

        try:
            payload = await self._http.get_binary(
                resolved.url,
                timeout=self._download_timeout,
                max_bytes=self._config.max_download_bytes,
            )
            wav = await self._transcoder.transcode(payload)
            voice = await self._encoder.encode(wav)
        except CapabilityUnavailable as exc:
            return DeliveryOutcome(
                DeliveryStatus.CAPABILITY_UNAVAILABLE,
                t("music.delivery.capability"),
                path="buffer",
                error=exc,
            )
        except Exception as exc:
            log.warning("music.delivery.convert_failed", extra={"meta": {"err": repr(exc)}})
            return DeliveryOutcome(DeliveryStatus.FAILED, t("music.delivery.failed"), path="buffer")

        if self._cache is not None and cache_key:
            await asyncio.to_thread(self._cache.put, cache_key, voice)

        try:
            message_id = await transport.send_voice(voice, **send_kwargs)
        except Exception as exc:
            log.warning("music.delivery.send_failed", extra={"meta": {"err": repr(exc)}})
            return DeliveryOutcome(DeliveryStatus.FAILED, t("music.delivery.failed"), path="buffer")
        return DeliveryOutcome(DeliveryStatus.OK, message_ids=[message_id], path="buffer")


__all__ = [
    "AudioDeliveryPipeline",
    "DeliveryOutcome",
    "DeliveryStatus",
    "VoiceSender",
    "check_duration",
    "exceeds_duration",
]
