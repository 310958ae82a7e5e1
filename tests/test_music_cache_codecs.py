import asyncio
import os
import sys
import time

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import tests.music_test_utils  # noqa: E402,F401
from music.cache import VoiceCache, cache_key  # noqa: E402
from music.codecs import UnavailableTranscoder, UnavailableVoiceEncoder, build_codecs  # noqa: E402
from music.errors import CapabilityUnavailable  # noqa: E402


def test_cache_key_is_stable_md5() -> None:
    key = cache_key("netease", "123", 320)
    assert key == cache_key("netease", "123", 320)
    assert key != cache_key("netease", "123", 192)
    assert len(key) == 32


def test_cache_roundtrip_and_expiry(tmp_path) -> None:
    cache = VoiceCache(tmp_path / "voice", ttl_seconds=60)
    key = cache_key("netease", "1", 320)
    assert cache.get(key) is None

    path = cache.put(key, b"ogg")
    assert path is not None and path.exists()
    assert cache.get(key) == b"ogg"

    assert cache.get(key, now=time.time() + 120) is None
    assert not path.exists()


def test_sweep_removes_only_expired_entries(tmp_path) -> None:
    cache = VoiceCache(tmp_path, ttl_seconds=60)
    old = cache.put("old", b"1")
    fresh = cache.put("fresh", b"2")
    past = time.time() - 3600
    os.utime(old, (past, past))

    assert cache.sweep() == 1
    assert not old.exists()
    assert fresh.exists()


def test_disabled_cache_stores_nothing(tmp_path) -> None:
    cache = VoiceCache(tmp_path, ttl_seconds=0)
    assert not cache.enabled
    assert cache.put("k", b"data") is None
    assert cache.get("k") is None


def test_missing_ffmpeg_yields_unavailable_codecs() -> None:
    transcoder, encoder = build_codecs(
        "definitely-not-a-real-ffmpeg-binary",
        sample_rate=48000,
        bitrate="64k",
        timeout=5,
    )
    assert isinstance(transcoder, UnavailableTranscoder)
    assert isinstance(encoder, UnavailableVoiceEncoder)
    assert not transcoder.available and not encoder.available

    with pytest.raises(CapabilityUnavailable):
        asyncio.run(transcoder.transcode(b"x"))
    with pytest.raises(CapabilityUnavailable):
        asyncio.run(encoder.encode(b"x"))
