"""Utilities for structured JSON logging with secret redaction."""
from __future__ import annotations

import json
import logging
import os
import re
import threading
from datetime import datetime, timezone
from typing import Any, Mapping

from core.settings import settings

MAX_IN_LOG_BODY = int(settings.MAX_IN_LOG_BODY)

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

_JSON_ENABLED = bool(settings.LOG_JSON)
_DEFAULT_LEVEL = settings.LOG_LEVEL

_SECRET_ENV_KEYS = {"TELEGRAM_TOKEN"}
_SECRET_SUFFIXES = ("_TOKEN", "_KEY", "_SECRET")

_SECRET_VALUES_LOCK = threading.Lock()
_SECRET_VALUES: set[str] = set()


def _is_secret_name(name: str) -> bool:
    upper = name.upper()
    return upper.endswith(_SECRET_SUFFIXES) or upper in _SECRET_ENV_KEYS


def refresh_secret_cache() -> None:
    """Reload the cached secret values from the environment."""

    with _SECRET_VALUES_LOCK:
        _SECRET_VALUES.clear()
        for name, value in os.environ.items():
            if value and _is_secret_name(name):
                _SECRET_VALUES.add(value)
        if settings.TELEGRAM_TOKEN:
            _SECRET_VALUES.add(settings.TELEGRAM_TOKEN)


refresh_secret_cache()


def _truncate(value: str) -> str:
    if len(value) <= MAX_IN_LOG_BODY:
        return value
    return value[:MAX_IN_LOG_BODY] + "…(truncated)"


_TOKEN_QUERY_RE = re.compile(r"(token=)([^&\s]+)", re.IGNORECASE)
_BOT_TOKEN_RE = re.compile(r"(/bot)(\d+:[A-Za-z0-9_-]+)")


def redact_text(value: str) -> str:
    if not value:
        return value
    with _SECRET_VALUES_LOCK:
        secrets = list(_SECRET_VALUES)
    for secret in secrets:
        if secret and secret in value:
            value = value.replace(secret, "***")
    value = _TOKEN_QUERY_RE.sub(r"\1***", value)
    value = _BOT_TOKEN_RE.sub(r"\1***", value)
    return value


def _sanitize(value: Any) -> Any:
    if isinstance(value, str):
        return _truncate(redact_text(value))
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    if isinstance(value, Mapping):
        return {str(key): _sanitize(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_sanitize(item) for item in value]
    return value


class JsonFormatter(logging.Formatter):
    """Format log records into JSON with structured metadata."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        message = _truncate(redact_text(message))
        meta: dict[str, Any] = {}
        extra_meta = getattr(record, "meta", None)
        if isinstance(extra_meta, Mapping):
            meta.update(_sanitize(dict(extra_meta)))
        elif extra_meta is not None:
            meta["extra"] = _sanitize(extra_meta)

        meta.setdefault("logger", record.name)
        meta.setdefault("module", record.module)
        meta.setdefault("pid", os.getpid())

        if record.exc_info:
            try:
                exc_text = self.formatException(record.exc_info)
            except Exception:  # pragma: no cover - defensive
                exc_text = "exception"
            meta["exc_info"] = _truncate(redact_text(exc_text))

        data = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "msg": message,
            "meta": meta,
        }
        return json.dumps(data, ensure_ascii=False, default=str)


class PlainFormatter(logging.Formatter):
    """Human readable formatter that appends ``meta`` as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extra_meta = getattr(record, "meta", None)
        if isinstance(extra_meta, Mapping) and extra_meta:
            pairs = " ".join(f"{key}={_sanitize(val)}" for key, val in extra_meta.items())
            base = f"{base} | {pairs}"
        return redact_text(base)


_CONFIGURED = False
_CONFIG_LOCK = threading.Lock()


def _resolve_level(name: str | None) -> int:
    if not name:
        name = _DEFAULT_LEVEL
    normalized = str(name).strip().upper() or "INFO"
    return _LEVEL_MAP.get(normalized, logging.INFO)


def init_logging(app_name: str, level: str | None = None, *, json_logs: bool | None = None) -> None:
    """Configure root logging according to runtime configuration."""

    effective_level = _resolve_level(level)
    use_json = _JSON_ENABLED if json_logs is None else bool(json_logs)

    global _CONFIGURED
    with _CONFIG_LOCK:
        if not _CONFIGURED:
            handler = logging.StreamHandler()
            if use_json:
                handler.setFormatter(JsonFormatter())
            else:
                handler.setFormatter(
                    PlainFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
                )
            root = logging.getLogger()
            root.handlers.clear()
            root.addHandler(handler)
            root.setLevel(effective_level)
            logging.captureWarnings(True)
            for noisy in (
                "httpx",
                "httpcore",
                "telegram",
                "apscheduler",
                "asyncio",
            ):
                logging.getLogger(noisy).setLevel(logging.WARNING)
            _CONFIGURED = True
        else:
            logging.getLogger().setLevel(effective_level)

    logger = logging.getLogger(app_name)
    log_level = max(logging.INFO, effective_level)
    logger.log(
        log_level,
        "configuration summary",
        extra={"meta": settings.configuration_summary()},
    )
    logger.log(
        log_level,
        "configuration critical",
        extra={"meta": settings.critical_variables()},
    )


__all__ = [
    "JsonFormatter",
    "PlainFormatter",
    "init_logging",
    "redact_text",
    "refresh_secret_cache",
]
