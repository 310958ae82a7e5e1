"""Client for GD Studio compatible music aggregator APIs."""
from __future__ import annotations

import logging
import time
from typing import Any, Optional

from metrics import record_search

from .config import ApiConfig
from .errors import UpstreamError
from .http import HttpClient
from .schemas import SongCandidate, normalize_search_payload

log = logging.getLogger("music.client")


def build_search_params(keyword: str, page: int, page_size: int, source: str) -> dict[str, Any]:
    return {
        "types": "search",
        "source": source,
        "name": keyword,
        "count": int(page_size),
        "pages": max(1, int(page)),
    }


def build_url_params(resolve_id: str, bitrate: int, source: str) -> dict[str, Any]:
    return {
        "types": "url",
        "source": source,
        "id": resolve_id,
        "br": int(bitrate),
    }


class MusicApiClient:
    """Issues search and url lookups against the configured aggregator."""

    def __init__(self, http: HttpClient, config: ApiConfig) -> None:
        self._http = http
        self._config = config

    @property
    def config(self) -> ApiConfig:
        return self._config

    async def search(
        self,
        keyword: str,
        page: int = 1,
        page_size: Optional[int] = None,
        source: Optional[str] = None,
    ) -> list[SongCandidate]:
        keyword = (keyword or "").strip()
        if not keyword:
            return []
        source = source or self._config.source
        params = build_search_params(keyword, page, page_size or self._config.page_size, source)
        started = time.monotonic()
        try:
            raw = await self._http.get_json(self._config.base_url, params=params)
        except UpstreamError:
            record_search("error")
            log.warning(
                "music.search.failed",
                extra={"meta": {"keyword_len": len(keyword), "page": page, "source": source}},
            )
            raise
        candidates = normalize_search_payload(raw, source=source)
        record_search("ok" if candidates else "empty")
        log.info(
            "music.search.ok",
            extra={
                "meta": {
                    "page": page,
                    "source": source,
                    "count": len(candidates),
                    "elapsed_ms": int((time.monotonic() - started) * 1000),
                }
            },
        )
        return candidates

    async def fetch_url(self, resolve_id: str, bitrate: int, source: Optional[str] = None) -> Any:
        """Return the raw url-lookup payload for one bitrate tier."""

        params = build_url_params(resolve_id, bitrate, source or self._config.source)
        return await self._http.get_json(self._config.base_url, params=params)

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = ["MusicApiClient", "build_search_params", "build_url_params"]
