"""Public handler shortcuts."""

from .music import (
    TelegramTransport,
    build_music_handlers,
    configure_music,
    music_command,
    music_text_handler,
)

__all__ = [
    "TelegramTransport",
    "build_music_handlers",
    "configure_music",
    "music_command",
    "music_text_handler",
]
