"""Centralised application configuration and environment validation."""

from __future__ import annotations

import logging
from typing import Any, Literal, Mapping, MutableMapping, Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("settings")


QUALITY_LADDER: tuple[int, ...] = (999, 740, 320, 192, 128)

_SECRET_FIELDS = {
    "TELEGRAM_TOKEN",
}

_SUMMARY_FIELDS = (
    "MUSIC_API_BASE",
    "MUSIC_SOURCE",
    "MUSIC_QUALITY",
    "MUSIC_DELIVERY_MODE",
    "MUSIC_SEND_AS",
    "MUSIC_FORCE_TRANSCODE",
    "MUSIC_IMAGE_MENU",
    "MUSIC_GROUP_WIDE",
    "MUSIC_WAIT_TIMEOUT",
)


def _mask(value: Optional[str]) -> str:
    if not value:
        return ""
    text = str(value).strip()
    if len(text) <= 4:
        return text
    return f"***{text[-4:]}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    TELEGRAM_TOKEN: str = Field(default="")

    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=False)
    MAX_IN_LOG_BODY: int = Field(default=2048, ge=256, le=65536)
    METRICS_PORT: int = Field(default=0, ge=0, le=65535)

    HTTP_TIMEOUT_CONNECT: float = Field(default=10.0, ge=0.1, le=300.0)
    HTTP_TIMEOUT_READ: float = Field(default=15.0, ge=1.0, le=600.0)
    HTTP_DOWNLOAD_TIMEOUT: float = Field(default=30.0, ge=1.0, le=900.0)
    HTTP_RETRY_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    HTTP_RETRY_BASE_DELAY: float = Field(default=0.8, ge=0.0, le=30.0)

    MUSIC_COMMAND: str = Field(default="music")
    MUSIC_COMMAND_ALIASES: str = Field(default="song")
    MUSIC_API_BASE: str = Field(default="https://music-api.gdstudio.xyz/api.php")
    MUSIC_SOURCE: Literal["netease", "tencent", "kugou", "kuwo", "migu", "baidu"] = Field(
        default="netease"
    )
    MUSIC_PAGE_SIZE: int = Field(default=20, ge=5, le=50)
    MUSIC_QUALITY: int = Field(default=320)
    MUSIC_WAIT_TIMEOUT: int = Field(default=45, ge=10, le=180)

    MUSIC_NEXT_PAGE: str = Field(default="далее")
    MUSIC_PREV_PAGE: str = Field(default="назад")
    MUSIC_EXIT_COMMANDS: str = Field(default="0,выход,стоп")
    MUSIC_MENU_EXIT_TIP: bool = Field(default=False)
    MUSIC_IMAGE_MENU: bool = Field(default=False)
    MUSIC_INVALID_INDEX: Literal["ignore", "report"] = Field(default="ignore")
    MUSIC_TIMEOUT_NOTICE: bool = Field(default=False)
    MUSIC_GROUP_WIDE: bool = Field(default=False)

    MUSIC_SEND_AS: Literal["voice", "audio"] = Field(default="voice")
    MUSIC_DELIVERY_MODE: Literal["link", "buffer"] = Field(default="link")
    MUSIC_FORCE_TRANSCODE: bool = Field(default=False)
    MUSIC_FRAGILE_FALLBACK: bool = Field(default=True)
    MUSIC_MAX_DURATION_SEC: int = Field(default=900, ge=0, le=24 * 3600)
    MUSIC_MAX_DOWNLOAD_MB: int = Field(default=50, ge=1, le=2000)
    MUSIC_TMP_DIR: str = Field(default="/tmp/music-voice")
    MUSIC_CACHE_MINUTES: int = Field(default=120, ge=0, le=1440)

    MUSIC_GENERATION_TIP: str = Field(default="Готовлю голосовое…")
    MUSIC_RECALL_MENU: bool = Field(default=True)
    MUSIC_RECALL_TIP: bool = Field(default=True)
    MUSIC_RECALL_USER_INPUT: bool = Field(default=True)
    MUSIC_RECALL_VOICE: bool = Field(default=False)
    MUSIC_RECALL_DELAY_SEC: float = Field(default=0.0, ge=0.0, le=3600.0)
    MUSIC_RECALL_ONLY_AFTER_SUCCESS: bool = Field(default=False)
    MUSIC_KEEP_MENU_ON_FAILURE: bool = Field(default=False)

    FFMPEG_BIN: str = Field(default="ffmpeg")
    MUSIC_SAMPLE_RATE: int = Field(default=48000, ge=8000, le=96000)
    MUSIC_VOICE_BITRATE: str = Field(default="64k")
    MUSIC_FFMPEG_TIMEOUT: float = Field(default=60.0, ge=1.0, le=600.0)

    MUSIC_IMAGE_WIDTH: int = Field(default=720, ge=240, le=2048)
    MUSIC_IMAGE_TIMEOUT_MS: int = Field(default=15000, ge=1000, le=120000)

    @field_validator(
        "TELEGRAM_TOKEN",
        "MUSIC_API_BASE",
        "MUSIC_NEXT_PAGE",
        "MUSIC_PREV_PAGE",
        "MUSIC_GENERATION_TIP",
        "FFMPEG_BIN",
        mode="before",
    )
    def _strip_text(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("MUSIC_COMMAND", mode="before")
    def _normalize_command(cls, value: Any) -> str:
        text = str(value or "music").strip().lstrip("/").lower()
        return text or "music"

    @field_validator("LOG_LEVEL", mode="before")
    def _normalize_level(cls, value: Any) -> str:
        if value is None:
            return "INFO"
        text = str(value).strip().upper()
        if text not in logging._nameToLevel:  # type: ignore[attr-defined]
            return "INFO"
        return text

    @field_validator("MUSIC_QUALITY", mode="before")
    def _coerce_quality(cls, value: Any) -> int:
        try:
            quality = int(str(value).strip())
        except (TypeError, ValueError):
            raise ValueError("MUSIC_QUALITY must be an integer bitrate")
        if quality <= 0:
            raise ValueError("MUSIC_QUALITY must be positive")
        return quality

    @model_validator(mode="after")
    def _post_init(self) -> "Settings":
        if not self.MUSIC_API_BASE:
            msg = "MUSIC_API_BASE must not be empty"
            logger.error(msg)
            raise RuntimeError(msg)
        if not self.MUSIC_NEXT_PAGE or not self.MUSIC_PREV_PAGE:
            msg = "Paging commands must not be empty"
            logger.error(msg)
            raise RuntimeError(msg)
        if self.MUSIC_NEXT_PAGE == self.MUSIC_PREV_PAGE:
            msg = "MUSIC_NEXT_PAGE and MUSIC_PREV_PAGE must differ"
            logger.error(msg)
            raise RuntimeError(msg)
        if self.MUSIC_QUALITY not in QUALITY_LADDER:
            logger.warning(
                "music quality is off the ladder, resolution starts at the nearest lower tier",
                extra={"meta": {"quality": self.MUSIC_QUALITY, "ladder": list(QUALITY_LADDER)}},
            )
        return self

    def exit_commands(self) -> tuple[str, ...]:
        return _split_csv(self.MUSIC_EXIT_COMMANDS)

    def command_names(self) -> tuple[str, ...]:
        names = [self.MUSIC_COMMAND]
        for alias in _split_csv(self.MUSIC_COMMAND_ALIASES):
            alias = alias.lstrip("/").lower()
            if alias and alias not in names:
                names.append(alias)
        return tuple(names)

    def configuration_summary(self) -> Mapping[str, Any]:
        keys: MutableMapping[str, Any] = {name: getattr(self, name) for name in _SUMMARY_FIELDS}
        keys["commands"] = list(self.command_names())
        for secret in sorted(_SECRET_FIELDS):
            keys[secret] = _mask(getattr(self, secret, None))
        return keys

    def critical_variables(self) -> Mapping[str, str]:
        return {
            "TELEGRAM_TOKEN": _mask(self.TELEGRAM_TOKEN),
            "MUSIC_API_BASE": self.MUSIC_API_BASE,
            "FFMPEG_BIN": self.FFMPEG_BIN,
        }


def _split_csv(raw: str) -> tuple[str, ...]:
    items = []
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if item and item not in items:
            items.append(item)
    return tuple(items)


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:  # pragma: no cover - fail fast
        errors = []
        for entry in exc.errors():
            loc = "::".join(str(part) for part in entry.get("loc", ()))
            msg = entry.get("msg", "invalid value")
            errors.append(f"{loc}: {msg}")
        message = "Invalid configuration: " + ", ".join(errors)
        logger.error(message)
        raise RuntimeError(message) from exc


settings = _load_settings()


def reload_settings() -> Settings:
    """Reload settings from the environment and the `.env` file."""

    global settings
    settings = _load_settings()
    return settings


__all__ = [
    "QUALITY_LADDER",
    "Settings",
    "settings",
    "reload_settings",
]
