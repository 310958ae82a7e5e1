"""Direct link resolution walking the bitrate ladder downwards."""
from __future__ import annotations

import logging
from typing import Optional, Sequence

from core.settings import QUALITY_LADDER
from metrics import record_resolve

from .client import MusicApiClient
from .errors import ResolveError, UpstreamError
from .schemas import ResolvedAudio, SongCandidate, extract_metadata, extract_url, is_fragile_url

log = logging.getLogger("music.resolver")


def ladder_from(requested: int, ladder: Sequence[int] = QUALITY_LADDER) -> tuple[int, ...]:
    """Tiers to try, starting at the highest tier not above ``requested``.

    A request below every tier tries only the lowest one.
    """

    tiers = sorted({int(tier) for tier in ladder}, reverse=True)
    if not tiers:
        return ()
    allowed = tuple(tier for tier in tiers if tier <= int(requested))
    return allowed or (tiers[-1],)


class DirectLinkResolver:
    def __init__(
        self,
        client: MusicApiClient,
        *,
        ladder: Sequence[int] = QUALITY_LADDER,
        fragile_fallback: bool = True,
    ) -> None:
        self._client = client
        self._ladder = tuple(ladder)
        self._fragile_fallback = fragile_fallback

    async def resolve(
        self,
        candidate: SongCandidate,
        requested_quality: int,
        *,
        require_direct_link: bool,
        source: Optional[str] = None,
    ) -> ResolvedAudio:
        """Return the first usable URL found while descending the ladder.

        Upstream errors and empty answers on a tier count as misses. When
        ``require_direct_link`` is set and fragile fallback is on, Windows
        media containers are skipped as well because Telegram cannot play
        them from a link.
        """

        attempted: list[int] = []
        fragile_hits = 0
        source = source or candidate.source or None
        for tier in ladder_from(requested_quality, self._ladder):
            attempted.append(tier)
            try:
                raw = await self._client.fetch_url(candidate.resolve_id, tier, source)
            except UpstreamError as exc:
                record_resolve("error", tier)
                log.info(
                    "music.resolve.tier_error",
                    extra={"meta": {"id": candidate.resolve_id, "br": tier, "err": str(exc)}},
                )
                continue
            url = extract_url(raw)
            if not url:
                record_resolve("empty", tier)
                continue
            meta = extract_metadata(raw)
            fragile = is_fragile_url(url, meta.get("type"))
            if fragile and require_direct_link and self._fragile_fallback:
                fragile_hits += 1
                record_resolve("fragile", tier)
                log.info(
                    "music.resolve.fragile_skip",
                    extra={"meta": {"id": candidate.resolve_id, "br": tier}},
                )
                continue
            record_resolve("ok", tier)
            log.info(
                "music.resolve.ok",
                extra={
                    "meta": {
                        "id": candidate.resolve_id,
                        "br": tier,
                        "attempted": attempted,
                        "fragile": fragile,
                    }
                },
            )
            return ResolvedAudio(
                url=url,
                bitrate_used=tier,
                likely_fragile_format=fragile,
                reported_bitrate=meta.get("bitrate"),
                size_bytes=meta.get("size"),
                attempted=tuple(attempted),
            )

        log.warning(
            "music.resolve.failed",
            extra={"meta": {"id": candidate.resolve_id, "attempted": attempted, "fragile": fragile_hits}},
        )
        raise ResolveError(
            "no playable url on any bitrate tier",
            attempted=attempted,
            fragile_only=fragile_hits > 0,
        )


__all__ = ["DirectLinkResolver", "ladder_from"]
