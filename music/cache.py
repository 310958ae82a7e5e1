"""On-disk cache of encoded voice notes."""
from __future__ import annotations

import hashlib
import logging
import time
from pathlib import Path
from typing import Optional

log = logging.getLogger("music.cache")

_SUFFIX = ".ogg"


def cache_key(source: str, song_id: str, bitrate: int) -> str:
    return hashlib.md5(f"{source}:{song_id}:{bitrate}".encode("utf-8")).hexdigest()


class VoiceCache:
    """Keeps encoded voice bytes in ``directory`` for ``ttl_seconds``.

    A TTL of zero disables the cache entirely. Expiry is judged by file
    modification time, so entries survive restarts of the bot process.
    """

    def __init__(self, directory: str | Path, ttl_seconds: int) -> None:
        self.directory = Path(directory)
        self.ttl_seconds = max(0, int(ttl_seconds))

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}{_SUFFIX}"

    def _expired(self, path: Path, now: float) -> bool:
        try:
            return now - path.stat().st_mtime > self.ttl_seconds
        except FileNotFoundError:
            return True

    def get(self, key: str, now: Optional[float] = None) -> Optional[bytes]:
        if not self.enabled:
            return None
        path = self._path(key)
        if not path.exists():
            return None
        timestamp = now if now is not None else time.time()
        if self._expired(path, timestamp):
            path.unlink(missing_ok=True)
            return None
        try:
            return path.read_bytes()
        except OSError as exc:
            log.warning("music.cache.read_failed", extra={"meta": {"path": str(path), "err": repr(exc)}})
            return None

    def put(self, key: str, data: bytes) -> Optional[Path]:
        if not self.enabled or not data:
            return None
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".part")
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as exc:
            log.warning("music.cache.write_failed", extra={"meta": {"path": str(path), "err": repr(exc)}})
            return None
        return path

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove expired entries and return how many were deleted."""

        if not self.directory.exists():
            return 0
        timestamp = now if now is not None else time.time()
        removed = 0
        for entry in self.directory.glob(f"*{_SUFFIX}"):
            if not self.enabled or self._expired(entry, timestamp):
                try:
                    entry.unlink()
                except FileNotFoundError:  # pragma: no cover - race with other cleanup
                    continue
                removed += 1
        if removed:
            log.info("music.cache.sweep", extra={"meta": {"removed": removed}})
        return removed


__all__ = ["VoiceCache", "cache_key"]
