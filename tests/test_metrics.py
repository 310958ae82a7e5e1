import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from metrics import (  # noqa: E402
    record_delivery,
    record_resolve,
    record_search,
    record_selection,
    render_metrics,
    set_pending,
    start_metrics_server,
)


def test_metrics_payload_lists_music_counters() -> None:
    record_search("ok")
    record_resolve("hit", 320)
    record_delivery("ok", "link", seconds=0.4)
    record_selection("selected")
    set_pending(2)

    payload = render_metrics().decode("utf-8")

    assert "music_search_total" in payload
    assert 'result="hit"' in payload
    assert 'bitrate="320"' in payload
    assert 'path="link"' in payload
    assert 'service="music-bot"' in payload
    assert "music_delivery_seconds_bucket" in payload
    assert "music_pending_selections 2.0" in payload
    assert "process_uptime_seconds" in payload


def test_metrics_server_disabled_for_port_zero() -> None:
    assert start_metrics_server(0) is False
