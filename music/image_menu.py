"""PNG rendering of the song menu through headless Chromium."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

try:  # pragma: no cover - optional dependency
    from playwright.async_api import async_playwright
except Exception:  # pragma: no cover - playwright is an optional extra
    async_playwright = None  # type: ignore[assignment]

log = logging.getLogger("music.image_menu")


def playwright_installed() -> bool:
    return async_playwright is not None


class PlaywrightMenuImageRenderer:
    """Screenshots HTML menus with a lazily started, shared Chromium instance."""

    def __init__(self, *, width: int = 720, timeout_ms: int = 15000) -> None:
        self.width = int(width)
        self.timeout_ms = int(timeout_ms)
        self.available = playwright_installed()
        self._playwright: Any = None
        self._browser: Any = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self) -> Any:
        if async_playwright is None:
            raise RuntimeError("playwright is not installed")
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=["--no-sandbox", "--disable-dev-shm-usage"],
                )
                log.info("music.image_menu.browser_started")
        return self._browser

    async def render_html(self, markup: str) -> bytes:
        browser = await self._ensure_browser()
        page = await browser.new_page(viewport={"width": self.width, "height": 200})
        try:
            await page.set_content(markup, timeout=self.timeout_ms)
            return await page.screenshot(full_page=True, type="png", timeout=self.timeout_ms)
        finally:
            await page.close()

    async def close(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:  # pragma: no cover - shutdown path
                log.debug("music.image_menu.close_failed", extra={"meta": {"err": repr(exc)}})
        if playwright is not None:
            await playwright.stop()


def build_image_renderer(enabled: bool, *, width: int, timeout_ms: int) -> Optional[PlaywrightMenuImageRenderer]:
    if not enabled:
        return None
    if not playwright_installed():
        log.warning("music.image_menu.unavailable", extra={"meta": {"reason": "playwright missing"}})
        return None
    return PlaywrightMenuImageRenderer(width=width, timeout_ms=timeout_ms)


__all__ = ["PlaywrightMenuImageRenderer", "build_image_renderer", "playwright_installed"]
