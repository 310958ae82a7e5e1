"""Exceptions raised by the music command pipeline."""
from __future__ import annotations

from typing import Optional, Sequence


class MusicError(RuntimeError):
    """Base error for music search, resolution and delivery failures."""


class UpstreamError(MusicError):
    """Raised when the aggregator API fails, times out or returns garbage."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ResolveError(MusicError):
    """Raised when no bitrate tier yields a usable playable URL."""

    def __init__(
        self,
        message: str,
        *,
        attempted: Sequence[int] = (),
        fragile_only: bool = False,
    ) -> None:
        super().__init__(message)
        self.attempted = tuple(attempted)
        self.fragile_only = fragile_only


class CapabilityUnavailable(MusicError):
    """Raised when a transcoder or voice encoder is required but not configured."""

    def __init__(self, capability: str) -> None:
        super().__init__(f"{capability} is not available")
        self.capability = capability


class DurationExceeded(MusicError):
    def __init__(self, duration_seconds: int, limit_seconds: int) -> None:
        super().__init__(f"track lasts {duration_seconds}s, limit is {limit_seconds}s")
        self.duration_seconds = duration_seconds
        self.limit_seconds = limit_seconds


class InvalidSelection(MusicError):
    def __init__(self, index: int, available: int) -> None:
        super().__init__(f"selection {index} is outside 1..{available}")
        self.index = index
        self.available = available


__all__ = [
    "CapabilityUnavailable",
    "DurationExceeded",
    "InvalidSelection",
    "MusicError",
    "ResolveError",
    "UpstreamError",
]
