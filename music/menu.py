"""Text and optional image rendering of a search result page."""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from texts import format_duration, t

from .config import ConversationConfig
from .schemas import SongCandidate

log = logging.getLogger("music.menu")


class MenuImageRenderer(Protocol):
    available: bool

    async def render_html(self, markup: str) -> bytes:
        """Return a PNG screenshot of ``markup``."""


class UnavailableImageRenderer:
    available = False

    async def render_html(self, markup: str) -> bytes:
        raise RuntimeError("image renderer is not configured")


@dataclass(frozen=True, slots=True)
class MenuContent:
    text: str
    image: Optional[bytes] = None
    caption: str = ""


def format_candidate_line(number: int, candidate: SongCandidate) -> str:
    line = f"{number}. {candidate.title}"
    if candidate.artist:
        line += f" - {candidate.artist}"
    duration = format_duration(candidate.duration_seconds)
    if duration:
        line += f" ({duration})"
    return line


_HTML_TEMPLATE = """<!doctype html>
<html><head><meta charset="utf-8"><style>
body {{ margin: 0; padding: 24px; background: #17212b; color: #f5f5f5;
       font-family: -apple-system, "Segoe UI", Roboto, sans-serif; font-size: 20px; }}
h1 {{ font-size: 22px; margin: 0 0 16px; color: #6ab3f3; }}
ol {{ margin: 0; padding-left: 36px; }}
li {{ margin: 6px 0; }}
.artist {{ color: #aab4bf; }}
.duration {{ color: #7d8b99; font-size: 16px; }}
.hints {{ margin-top: 16px; color: #aab4bf; font-size: 16px; }}
</style></head><body>
<h1>{header}</h1>
<ol>{items}</ol>
<div class="hints">{hints}</div>
</body></html>
"""


class MenuRenderer:
    """Builds the numbered song list and, when enabled, its PNG rendition."""

    def __init__(
        self,
        config: ConversationConfig,
        *,
        source: str = "",
        image_renderer: Optional[MenuImageRenderer] = None,
    ) -> None:
        self._config = config
        self._source = source
        self._image_renderer = image_renderer or UnavailableImageRenderer()

    @property
    def image_enabled(self) -> bool:
        return self._config.image_menu and bool(getattr(self._image_renderer, "available", False))

    def header(self, keyword: str, page: int) -> str:
        return t("music.menu.header", keyword=keyword, source=self._source or "music", page=page)

    def hints(self, count: int) -> list[str]:
        lines = [
            t("music.menu.hint_select", count=count),
            t(
                "music.menu.hint_paging",
                next_page=self._config.next_page,
                prev_page=self._config.prev_page,
            ),
        ]
        if self._config.show_exit_tip and self._config.exit_commands:
            lines.append(t("music.menu.hint_exit", exit_command=self._config.exit_commands[0]))
        return lines

    def render_text(self, keyword: str, page: int, candidates: Sequence[SongCandidate]) -> str:
        lines = [self.header(keyword, page), ""]
        lines.extend(format_candidate_line(number, item) for number, item in enumerate(candidates, start=1))
        lines.append("")
        lines.extend(self.hints(len(candidates)))
        return "\n".join(lines)

    def render_html(self, keyword: str, page: int, candidates: Sequence[SongCandidate]) -> str:
        items = []
        for candidate in candidates:
            parts = [html.escape(candidate.title)]
            if candidate.artist:
                parts.append(f'<span class="artist"> - {html.escape(candidate.artist)}</span>')
            duration = format_duration(candidate.duration_seconds)
            if duration:
                parts.append(f' <span class="duration">({duration})</span>')
            items.append(f"<li>{''.join(parts)}</li>")
        hints = "<br>".join(html.escape(line) for line in self.hints(len(candidates)))
        return _HTML_TEMPLATE.format(
            header=html.escape(self.header(keyword, page)),
            items="".join(items),
            hints=hints,
        )

    async def render(self, keyword: str, page: int, candidates: Sequence[SongCandidate]) -> MenuContent:
        text = self.render_text(keyword, page, candidates)
        if not self.image_enabled:
            return MenuContent(text=text)
        try:
            image = await self._image_renderer.render_html(self.render_html(keyword, page, candidates))
        except Exception as exc:
            log.warning("music.menu.image_failed", extra={"meta": {"err": repr(exc)}})
            return MenuContent(text=text)
        if not image:
            return MenuContent(text=text)
        caption = "\n".join([self.header(keyword, page), *self.hints(len(candidates))])
        return MenuContent(text=text, image=image, caption=caption)


__all__ = [
    "MenuContent",
    "MenuImageRenderer",
    "MenuRenderer",
    "UnavailableImageRenderer",
    "format_candidate_line",
]
