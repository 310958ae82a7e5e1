#!/usr/bin/env python3
"""Environment and connectivity preflight checks for the music voice bot."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from typing import Optional

import requests
from dotenv import load_dotenv

LOG = logging.getLogger("preflight")
logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

DEFAULT_API_BASE = "https://music-api.gdstudio.xyz/api.php"
PROBE_KEYWORD = "hello"


def _load_env() -> None:
    """Load .env file if present."""

    load_dotenv(override=False)


class CheckError(RuntimeError):
    """Custom error with friendly output."""


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if value is not None and value.strip():
        return value.strip()
    raise CheckError(f"Environment variable {name} is required")


def _flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in {"1", "true", "yes", "on"}


def _check_telegram(token: str) -> str:
    url = f"https://api.telegram.org/bot{token}/getMe"
    try:
        resp = requests.get(url, timeout=10)
    except requests.RequestException as exc:
        raise CheckError(f"Telegram getMe failed: {exc.__class__.__name__}") from exc
    try:
        data = resp.json()
    except ValueError as exc:
        raise CheckError(f"Telegram getMe invalid JSON: status={resp.status_code}") from exc
    if resp.status_code != 200 or not data.get("ok"):
        raise CheckError(f"Telegram getMe error: status={resp.status_code} resp={json.dumps(data, ensure_ascii=False)}")
    return f"@{data.get('result', {}).get('username')}"


def _check_ffmpeg(binary: str, *, required: bool) -> str:
    path = shutil.which(binary)
    if path is None:
        if required:
            raise CheckError(f"{binary} not found but buffer delivery or forced transcode is enabled")
        return "missing (link mode only)"
    try:
        proc = subprocess.run([path, "-hide_banner", "-encoders"], capture_output=True, timeout=15, check=False)
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise CheckError(f"{binary} failed to start: {exc}") from exc
    if b"libopus" not in proc.stdout:
        raise CheckError(f"{binary} has no libopus encoder")
    return path


def _check_playwright(*, required: bool) -> str:
    try:
        import playwright  # type: ignore  # noqa: F401
    except ImportError as exc:
        if required:
            raise CheckError("MUSIC_IMAGE_MENU is on but playwright is not installed") from exc
        return "not installed"
    return "installed"


def _check_upstream(base_url: str, source: str) -> str:
    params = {"types": "search", "source": source, "name": PROBE_KEYWORD, "count": 1, "pages": 1}
    try:
        resp = requests.get(base_url, params=params, timeout=15)
    except requests.RequestException as exc:
        raise CheckError(f"Music API request failed: {exc.__class__.__name__}") from exc
    if resp.status_code != 200:
        raise CheckError(f"Music API error: status={resp.status_code}")
    try:
        data = resp.json()
    except ValueError as exc:
        raise CheckError(f"Music API returned non-JSON body: {resp.text[:200]}") from exc
    count: Optional[int] = len(data) if isinstance(data, list) else None
    return f"ok (items={count if count is not None else 'unknown'})"


def main() -> int:
    _load_env()

    try:
        token = _require_env("TELEGRAM_TOKEN")
        base_url = (os.getenv("MUSIC_API_BASE") or DEFAULT_API_BASE).strip()
        source = (os.getenv("MUSIC_SOURCE") or "netease").strip()
        needs_ffmpeg = (
            (os.getenv("MUSIC_DELIVERY_MODE") or "link").strip().lower() == "buffer"
            or _flag("MUSIC_FORCE_TRANSCODE")
        )

        ffmpeg_status = _check_ffmpeg((os.getenv("FFMPEG_BIN") or "ffmpeg").strip(), required=needs_ffmpeg)
        playwright_status = _check_playwright(required=_flag("MUSIC_IMAGE_MENU"))
        upstream_status = _check_upstream(base_url, source)
        telegram_status = _check_telegram(token)
    except CheckError as exc:
        LOG.error("%s", exc)
        return 1

    LOG.info(
        "Preflight succeeded: ffmpeg=%s, playwright=%s, music_api=%s, telegram=%s",
        ffmpeg_status,
        playwright_status,
        upstream_status,
        telegram_status,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
