"""Data models and payload normalisation for the aggregator API."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence
from urllib.parse import urlparse

FRAGILE_EXTENSIONS = frozenset({"wma", "asf", "wmv"})
_MILLISECONDS_THRESHOLD = 10_000

_ID_KEYS = ("id", "songid", "rid", "hash", "mid")
_TITLE_KEYS = ("name", "songname", "title")
_ARTIST_KEYS = ("artist", "singer", "author", "artists")
_ALBUM_KEYS = ("album", "albumname")
_DURATION_KEYS = ("duration", "dt", "interval", "time")
_ALT_ID_KEYS = ("url_id",)


@dataclass(frozen=True, slots=True)
class SongCandidate:
    """One search result as shown in the menu."""

    id: str
    title: str
    artist: str = ""
    album: str = ""
    duration_seconds: Optional[int] = None
    alternate_resolve_id: Optional[str] = None
    source: str = ""

    @property
    def resolve_id(self) -> str:
        return self.alternate_resolve_id or self.id


@dataclass(frozen=True, slots=True)
class ResolvedAudio:
    url: str
    bitrate_used: int
    likely_fragile_format: bool = False
    reported_bitrate: Optional[int] = None
    size_bytes: Optional[int] = None
    attempted: tuple[int, ...] = field(default_factory=tuple)


def _decode(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", "ignore")
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return None
    return raw


def _bare_list(raw: Any) -> Optional[list]:
    return raw if isinstance(raw, list) else None


def _key_list(*path: str) -> Callable[[Any], Optional[list]]:
    def _matcher(raw: Any) -> Optional[list]:
        node = raw
        for key in path:
            if not isinstance(node, Mapping):
                return None
            node = node.get(key)
        return node if isinstance(node, list) else None

    _matcher.__name__ = "match_" + "_".join(path)
    return _matcher


SHAPE_MATCHERS: tuple[Callable[[Any], Optional[list]], ...] = (
    _bare_list,
    _key_list("data"),
    _key_list("result"),
    _key_list("result", "list"),
    _key_list("result", "songs"),
    _key_list("songs"),
)


def extract_items(raw: Any) -> list:
    """Return the first list any shape matcher finds in ``raw``."""

    decoded = _decode(raw)
    if decoded is None:
        return []
    for matcher in SHAPE_MATCHERS:
        items = matcher(decoded)
        if items is not None:
            return items
    return []


def _first(data: Mapping[str, Any], keys: Sequence[str]) -> Any | None:
    for key in keys:
        if key in data and data[key] not in (None, "", [], {}):
            return data[key]
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Mapping):
        value = value.get("name") or value.get("title") or ""
    return str(value).strip()


def _flatten_artist(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        names = [_text(item) for item in value]
        return " / ".join(name for name in names if name)
    return _text(value)


def parse_duration(value: Any) -> Optional[int]:
    """Seconds from a duration field; values above 10000 are milliseconds."""

    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    if number > _MILLISECONDS_THRESHOLD:
        return int(number) // 1000
    return int(number)


def normalize_item(item: Any, *, source: str = "") -> Optional[SongCandidate]:
    if not isinstance(item, Mapping):
        return None
    identifier = _text(_first(item, _ID_KEYS))
    title = _text(_first(item, _TITLE_KEYS))
    if not identifier or not title:
        return None
    alternate = _text(_first(item, _ALT_ID_KEYS)) or None
    item_source = _text(item.get("source")) or source
    return SongCandidate(
        id=identifier,
        title=title,
        artist=_flatten_artist(_first(item, _ARTIST_KEYS)),
        album=_text(_first(item, _ALBUM_KEYS)),
        duration_seconds=parse_duration(_first(item, _DURATION_KEYS)),
        alternate_resolve_id=alternate,
        source=item_source,
    )


def normalize_search_payload(raw: Any, *, source: str = "") -> list[SongCandidate]:
    candidates: list[SongCandidate] = []
    for item in extract_items(raw):
        candidate = normalize_item(item, source=source)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    text = value.strip()
    return text.startswith("http://") or text.startswith("https://")


def extract_url(raw: Any) -> Optional[str]:
    """Find the playable URL in a resolve payload, if any."""

    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", "ignore")
    if isinstance(raw, str):
        if _is_http_url(raw):
            return raw.strip()
        raw = _decode(raw)
    if not isinstance(raw, Mapping):
        return None
    candidates: Iterable[Any] = (
        raw.get("url"),
        raw.get("data", {}).get("url") if isinstance(raw.get("data"), Mapping) else None,
        raw.get("result", {}).get("url") if isinstance(raw.get("result"), Mapping) else None,
        raw.get("data") if isinstance(raw.get("data"), str) else None,
    )
    for value in candidates:
        if _is_http_url(value):
            return value.strip()
    return None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        number = int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def extract_metadata(raw: Any) -> dict[str, Any]:
    """Reported bitrate, size and type from a resolve payload."""

    data = _decode(raw) if isinstance(raw, (str, bytes, bytearray)) else raw
    if not isinstance(data, Mapping):
        return {}
    nested = data.get("data") if isinstance(data.get("data"), Mapping) else {}
    merged = {**nested, **data}
    return {
        "bitrate": _int_or_none(merged.get("br")),
        "size": _int_or_none(merged.get("size")),
        "type": _text(merged.get("type")).lower() or None,
    }


def is_fragile_url(url: str, reported_type: Optional[str] = None) -> bool:
    if reported_type and reported_type.lower().lstrip(".") in FRAGILE_EXTENSIONS:
        return True
    path = urlparse(url).path
    if "." not in path.rsplit("/", 1)[-1]:
        return False
    extension = path.rsplit(".", 1)[-1].lower()
    return extension in FRAGILE_EXTENSIONS


__all__ = [
    "FRAGILE_EXTENSIONS",
    "ResolvedAudio",
    "SHAPE_MATCHERS",
    "SongCandidate",
    "extract_items",
    "extract_metadata",
    "extract_url",
    "is_fragile_url",
    "normalize_item",
    "normalize_search_payload",
    "parse_duration",
]
