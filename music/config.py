"""Immutable runtime configuration for the music command."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from core.settings import QUALITY_LADDER, Settings

from .retraction import RetractionPolicy


@dataclass(frozen=True, slots=True)
class ApiConfig:
    base_url: str
    source: str = "netease"
    page_size: int = 20
    quality: int = 320
    connect_timeout: float = 10.0
    read_timeout: float = 15.0
    download_timeout: float = 30.0
    retry_attempts: int = 3
    retry_base_delay: float = 0.8
    ladder: tuple[int, ...] = QUALITY_LADDER


@dataclass(frozen=True, slots=True)
class ConversationConfig:
    next_page: str = "далее"
    prev_page: str = "назад"
    exit_commands: tuple[str, ...] = ("0",)
    wait_timeout: float = 45.0
    invalid_index: str = "ignore"
    timeout_notice: bool = False
    group_wide: bool = False
    show_exit_tip: bool = False
    image_menu: bool = False
    generation_tip: str = ""

    def is_exit(self, text: str) -> bool:
        lowered = text.strip().lower()
        return any(lowered == command.lower() for command in self.exit_commands)

    def is_next(self, text: str) -> bool:
        return text.strip().lower() == self.next_page.lower()

    def is_prev(self, text: str) -> bool:
        return text.strip().lower() == self.prev_page.lower()


@dataclass(frozen=True, slots=True)
class DeliveryConfig:
    send_as: str = "voice"
    mode: str = "link"
    force_transcode: bool = False
    fragile_fallback: bool = True
    max_duration_seconds: int = 900
    max_download_bytes: int = 50 * 1024 * 1024
    tmp_dir: str = "/tmp/music-voice"
    cache_ttl_seconds: int = 0
    ffmpeg_bin: str = "ffmpeg"
    sample_rate: int = 48000
    voice_bitrate: str = "64k"
    ffmpeg_timeout: float = 60.0

    @property
    def as_voice(self) -> bool:
        return self.send_as != "audio"

    @property
    def requires_direct_link(self) -> bool:
        """Whether a resolved URL is normally sent to Telegram untouched."""

        return self.mode == "link" and not self.force_transcode


@dataclass(frozen=True, slots=True)
class ImageMenuConfig:
    width: int = 720
    timeout_ms: int = 15000


@dataclass(frozen=True, slots=True)
class MusicConfig:
    commands: tuple[str, ...]
    api: ApiConfig
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    retraction: RetractionPolicy = field(default_factory=RetractionPolicy)
    image: ImageMenuConfig = field(default_factory=ImageMenuConfig)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MusicConfig":
        if settings is None:
            from core.settings import settings as current

            settings = current
        api = ApiConfig(
            base_url=settings.MUSIC_API_BASE,
            source=settings.MUSIC_SOURCE,
            page_size=int(settings.MUSIC_PAGE_SIZE),
            quality=int(settings.MUSIC_QUALITY),
            connect_timeout=float(settings.HTTP_TIMEOUT_CONNECT),
            read_timeout=float(settings.HTTP_TIMEOUT_READ),
            download_timeout=float(settings.HTTP_DOWNLOAD_TIMEOUT),
            retry_attempts=int(settings.HTTP_RETRY_ATTEMPTS),
            retry_base_delay=float(settings.HTTP_RETRY_BASE_DELAY),
        )
        conversation = ConversationConfig(
            next_page=settings.MUSIC_NEXT_PAGE,
            prev_page=settings.MUSIC_PREV_PAGE,
            exit_commands=settings.exit_commands(),
            wait_timeout=float(settings.MUSIC_WAIT_TIMEOUT),
            invalid_index=settings.MUSIC_INVALID_INDEX,
            timeout_notice=bool(settings.MUSIC_TIMEOUT_NOTICE),
            group_wide=bool(settings.MUSIC_GROUP_WIDE),
            show_exit_tip=bool(settings.MUSIC_MENU_EXIT_TIP),
            image_menu=bool(settings.MUSIC_IMAGE_MENU),
            generation_tip=settings.MUSIC_GENERATION_TIP,
        )
        delivery = DeliveryConfig(
            send_as=settings.MUSIC_SEND_AS,
            mode=settings.MUSIC_DELIVERY_MODE,
            force_transcode=bool(settings.MUSIC_FORCE_TRANSCODE),
            fragile_fallback=bool(settings.MUSIC_FRAGILE_FALLBACK),
            max_duration_seconds=int(settings.MUSIC_MAX_DURATION_SEC),
            max_download_bytes=int(settings.MUSIC_MAX_DOWNLOAD_MB) * 1024 * 1024,
            tmp_dir=settings.MUSIC_TMP_DIR,
            cache_ttl_seconds=int(settings.MUSIC_CACHE_MINUTES) * 60,
            ffmpeg_bin=settings.FFMPEG_BIN,
            sample_rate=int(settings.MUSIC_SAMPLE_RATE),
            voice_bitrate=settings.MUSIC_VOICE_BITRATE,
            ffmpeg_timeout=float(settings.MUSIC_FFMPEG_TIMEOUT),
        )
        retraction = RetractionPolicy(
            menu=bool(settings.MUSIC_RECALL_MENU),
            tip=bool(settings.MUSIC_RECALL_TIP),
            user_input=bool(settings.MUSIC_RECALL_USER_INPUT),
            voice=bool(settings.MUSIC_RECALL_VOICE),
            delay_seconds=float(settings.MUSIC_RECALL_DELAY_SEC),
            only_after_success=bool(settings.MUSIC_RECALL_ONLY_AFTER_SUCCESS),
            keep_menu_on_failure=bool(settings.MUSIC_KEEP_MENU_ON_FAILURE),
        )
        image = ImageMenuConfig(
            width=int(settings.MUSIC_IMAGE_WIDTH),
            timeout_ms=int(settings.MUSIC_IMAGE_TIMEOUT_MS),
        )
        return cls(
            commands=settings.command_names(),
            api=api,
            conversation=conversation,
            delivery=delivery,
            retraction=retraction,
            image=image,
        )

    def summary(self) -> dict[str, Any]:
        return {
            "commands": list(self.commands),
            "source": self.api.source,
            "quality": self.api.quality,
            "mode": self.delivery.mode,
            "send_as": self.delivery.send_as,
            "force_transcode": self.delivery.force_transcode,
            "group_wide": self.conversation.group_wide,
            "image_menu": self.conversation.image_menu,
        }


__all__ = [
    "ApiConfig",
    "ConversationConfig",
    "DeliveryConfig",
    "ImageMenuConfig",
    "MusicConfig",
]
