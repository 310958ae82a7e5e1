import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from core.settings import QUALITY_LADDER, Settings  # noqa: E402
from music.config import MusicConfig  # noqa: E402
from music.retraction import RetractionCategory  # noqa: E402


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults_describe_link_delivery_of_voice_notes() -> None:
    current = _settings()

    assert current.MUSIC_DELIVERY_MODE == "link"
    assert current.MUSIC_SEND_AS == "voice"
    assert current.MUSIC_QUALITY in QUALITY_LADDER
    assert current.MUSIC_NEXT_PAGE != current.MUSIC_PREV_PAGE


def test_command_names_strip_slashes_and_dedupe() -> None:
    current = _settings(MUSIC_COMMAND="/Music", MUSIC_COMMAND_ALIASES="song, /track, music,")

    assert current.command_names() == ("music", "song", "track")


def test_exit_commands_split_from_csv() -> None:
    current = _settings(MUSIC_EXIT_COMMANDS=" 0 , выход,,0")

    assert current.exit_commands() == ("0", "выход")


def test_equal_paging_words_are_rejected() -> None:
    with pytest.raises(RuntimeError):
        _settings(MUSIC_NEXT_PAGE="ещё", MUSIC_PREV_PAGE="ещё")


def test_non_positive_quality_is_rejected() -> None:
    with pytest.raises(Exception):
        _settings(MUSIC_QUALITY="0")


def test_off_ladder_quality_is_accepted() -> None:
    assert _settings(MUSIC_QUALITY=256).MUSIC_QUALITY == 256


def test_configuration_summary_masks_token() -> None:
    current = _settings(TELEGRAM_TOKEN="123456:SECRETVALUE")

    summary = current.configuration_summary()

    assert summary["TELEGRAM_TOKEN"] == "***ALUE"
    assert "SECRETVALUE" not in str(summary)
    assert summary["commands"] == list(current.command_names())


def test_music_config_maps_environment_settings() -> None:
    current = _settings(
        MUSIC_CACHE_MINUTES=5,
        MUSIC_MAX_DOWNLOAD_MB=3,
        MUSIC_DELIVERY_MODE="buffer",
        MUSIC_SEND_AS="audio",
        MUSIC_RECALL_VOICE=True,
        MUSIC_RECALL_DELAY_SEC=2.5,
        MUSIC_WAIT_TIMEOUT=60,
        MUSIC_GROUP_WIDE=True,
    )

    config = MusicConfig.from_settings(current)

    assert config.delivery.cache_ttl_seconds == 300
    assert config.delivery.max_download_bytes == 3 * 1024 * 1024
    assert config.delivery.mode == "buffer"
    assert not config.delivery.as_voice
    assert not config.delivery.requires_direct_link
    assert config.retraction.enabled(RetractionCategory.VOICE)
    assert config.retraction.delay_seconds == 2.5
    assert config.conversation.wait_timeout == 60.0
    assert config.conversation.group_wide
    assert config.api.ladder == QUALITY_LADDER
    assert config.commands == current.command_names()


def test_forced_transcode_disables_direct_link_requirement() -> None:
    config = MusicConfig.from_settings(_settings(MUSIC_FORCE_TRANSCODE=True))

    assert config.delivery.mode == "link"
    assert not config.delivery.requires_direct_link


def test_reload_settings_reads_current_environment(monkeypatch) -> None:
    from core import settings as settings_module

    monkeypatch.setenv("MUSIC_PAGE_SIZE", "7")
    try:
        reloaded = settings_module.reload_settings()
        assert reloaded.MUSIC_PAGE_SIZE == 7
        assert settings_module.settings is reloaded
    finally:
        monkeypatch.delenv("MUSIC_PAGE_SIZE")
        settings_module.reload_settings()
