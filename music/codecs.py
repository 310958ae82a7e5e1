"""Transcoding and voice encoding through the ffmpeg binary."""
from __future__ import annotations

import asyncio
import logging
import shutil
from asyncio.subprocess import PIPE
from contextlib import suppress
from typing import Protocol

from .errors import CapabilityUnavailable

log = logging.getLogger("music.codecs")


class Transcoder(Protocol):
    available: bool

    async def transcode(self, data: bytes) -> bytes:
        """Return mono WAV audio decoded from ``data``."""


class VoiceEncoder(Protocol):
    available: bool

    async def encode(self, wav: bytes) -> bytes:
        """Return an OGG/Opus voice note encoded from ``wav``."""


def ffmpeg_available(ffmpeg_bin: str) -> bool:
    return bool(ffmpeg_bin) and shutil.which(ffmpeg_bin) is not None


async def run_ffmpeg(ffmpeg_bin: str, input_bytes: bytes, args: list[str], timeout: float = 60.0) -> bytes:
    cmd = [ffmpeg_bin, "-hide_banner", "-loglevel", "error", *args]
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=PIPE,
        stdout=PIPE,
        stderr=PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(input_bytes), timeout=timeout)
    except asyncio.TimeoutError as exc:
        proc.kill()
        with suppress(Exception):
            await proc.communicate()
        raise RuntimeError("ffmpeg timeout") from exc

    if proc.returncode != 0:
        err_text = (stderr or b"").decode("utf-8", "ignore")
        log.warning(
            "ffmpeg failed",
            extra={"meta": {"code": proc.returncode, "stderr": err_text[:400]}},
        )
        raise RuntimeError(f"ffmpeg exited with code {proc.returncode}")
    if not stdout:
        raise RuntimeError("ffmpeg produced no output")
    return stdout


class FFmpegTranscoder:
    def __init__(self, ffmpeg_bin: str = "ffmpeg", *, sample_rate: int = 48000, timeout: float = 60.0) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.sample_rate = int(sample_rate)
        self.timeout = float(timeout)
        self.available = ffmpeg_available(ffmpeg_bin)

    async def transcode(self, data: bytes) -> bytes:
        args = ["-i", "pipe:0", "-vn", "-ac", "1", "-ar", str(self.sample_rate), "-f", "wav", "pipe:1"]
        return await run_ffmpeg(self.ffmpeg_bin, data, args, timeout=self.timeout)


class OpusVoiceEncoder:
    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        *,
        bitrate: str = "64k",
        timeout: float = 60.0,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.bitrate = bitrate
        self.timeout = float(timeout)
        self.available = ffmpeg_available(ffmpeg_bin)

    async def encode(self, wav: bytes) -> bytes:
        args = [
            "-f",
            "wav",
            "-i",
            "pipe:0",
            "-c:a",
            "libopus",
            "-b:a",
            self.bitrate,
            "-application",
            "audio",
            "-f",
            "ogg",
            "pipe:1",
        ]
        return await run_ffmpeg(self.ffmpeg_bin, wav, args, timeout=self.timeout)


class UnavailableTranscoder:
    available = False

    async def transcode(self, data: bytes) -> bytes:
        raise CapabilityUnavailable("transcoder")


class UnavailableVoiceEncoder:
    available = False

    async def encode(self, wav: bytes) -> bytes:
        raise CapabilityUnavailable("voice encoder")


def build_codecs(ffmpeg_bin: str, *, sample_rate: int, bitrate: str, timeout: float) -> tuple[Transcoder, VoiceEncoder]:
    """Return ffmpeg backed codecs, or the unavailable variants when ffmpeg is missing."""

    if not ffmpeg_available(ffmpeg_bin):
        log.warning("music.codecs.unavailable", extra={"meta": {"ffmpeg_bin": ffmpeg_bin}})
        return UnavailableTranscoder(), UnavailableVoiceEncoder()
    return (
        FFmpegTranscoder(ffmpeg_bin, sample_rate=sample_rate, timeout=timeout),
        OpusVoiceEncoder(ffmpeg_bin, bitrate=bitrate, timeout=timeout),
    )


__all__ = [
    "FFmpegTranscoder",
    "OpusVoiceEncoder",
    "Transcoder",
    "UnavailableTranscoder",
    "UnavailableVoiceEncoder",
    "VoiceEncoder",
    "build_codecs",
    "ffmpeg_available",
    "run_ffmpeg",
]
