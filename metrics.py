"""Prometheus metrics for the music voice bot."""
from __future__ import annotations

import logging
import os
import time
from typing import Iterable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, start_http_server

REGISTRY = CollectorRegistry()

_ENV = (os.getenv("APP_ENV") or "prod").strip() or "prod"
_SERVICE = "music-bot"

log = logging.getLogger("metrics")


def _labels(service: str = _SERVICE) -> dict[str, str]:
    return {"env": _ENV, "service": service}


music_search_total = Counter(
    "music_search_total",
    "Aggregator searches grouped by outcome",
    labelnames=("result", "env", "service"),
    registry=REGISTRY,
)

music_resolve_total = Counter(
    "music_resolve_total",
    "Direct link lookups grouped by outcome and bitrate tier",
    labelnames=("result", "bitrate", "env", "service"),
    registry=REGISTRY,
)

music_delivery_total = Counter(
    "music_delivery_total",
    "Audio deliveries grouped by status and path",
    labelnames=("status", "path", "env", "service"),
    registry=REGISTRY,
)

music_selection_total = Counter(
    "music_selection_total",
    "Handled conversation inputs grouped by outcome",
    labelnames=("outcome", "env", "service"),
    registry=REGISTRY,
)

music_delivery_seconds = Histogram(
    "music_delivery_seconds",
    "Duration from selection to delivered voice",
    labelnames=("env", "service"),
    registry=REGISTRY,
)

music_pending_selections = Gauge(
    "music_pending_selections",
    "Conversations currently awaiting a selection",
    registry=REGISTRY,
)

process_uptime_seconds = Gauge(
    "process_uptime_seconds",
    "Process uptime in seconds",
    registry=REGISTRY,
)

_START_TIME = time.time()


def record_search(result: str) -> None:
    music_search_total.labels(result=result, **_labels()).inc()


def record_resolve(result: str, bitrate: int | str) -> None:
    music_resolve_total.labels(result=result, bitrate=str(bitrate), **_labels()).inc()


def record_delivery(status: str, path: str, seconds: float | None = None) -> None:
    music_delivery_total.labels(status=status, path=path or "none", **_labels()).inc()
    if seconds is not None:
        music_delivery_seconds.labels(**_labels()).observe(max(0.0, seconds))


def record_selection(outcome: str) -> None:
    music_selection_total.labels(outcome=outcome, **_labels()).inc()


def set_pending(count: int) -> None:
    music_pending_selections.set(max(0, int(count)))


def render_metrics() -> bytes:
    """Return the current metrics payload in Prometheus text format."""

    process_uptime_seconds.set(max(0.0, time.time() - _START_TIME))
    return generate_latest(REGISTRY)


def start_metrics_server(port: int) -> bool:
    if port <= 0:
        return False
    start_http_server(port, registry=REGISTRY)
    log.info("metrics.server.started", extra={"meta": {"port": port}})
    return True


__all__: Iterable[str] = [
    "REGISTRY",
    "music_delivery_seconds",
    "music_delivery_total",
    "music_pending_selections",
    "music_resolve_total",
    "music_search_total",
    "music_selection_total",
    "process_uptime_seconds",
    "record_delivery",
    "record_resolve",
    "record_search",
    "record_selection",
    "render_metrics",
    "set_pending",
    "start_metrics_server",
]
