import os
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Optional


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


os.environ.setdefault("TELEGRAM_TOKEN", "dummy-token")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from music.config import ApiConfig, ConversationConfig, DeliveryConfig, MusicConfig  # noqa: E402
from music.conversation import ConversationStateMachine  # noqa: E402
from music.delivery import AudioDeliveryPipeline  # noqa: E402
from music.errors import UpstreamError  # noqa: E402
from music.menu import MenuRenderer  # noqa: E402
from music.resolver import DirectLinkResolver  # noqa: E402
from music.retraction import RetractionPolicy  # noqa: E402
from music.schemas import SongCandidate  # noqa: E402
from music.store import PendingSelectionStore  # noqa: E402


def song(number: int, *, title: Optional[str] = None, artist: str = "", duration: Optional[int] = None) -> SongCandidate:
    return SongCandidate(
        id=f"id{number}",
        title=title or f"Song {number}",
        artist=artist,
        duration_seconds=duration,
        source="netease",
    )


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def now(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeScheduler:
    """Records delayed callbacks; tests fire them explicitly."""

    def __init__(self) -> None:
        self.calls: list[SimpleNamespace] = []

    def call_later(self, delay, callback, *, name=""):
        handle = SimpleNamespace(delay=delay, callback=callback, name=name, cancelled=False)
        handle.cancel = lambda: setattr(handle, "cancelled", True)
        self.calls.append(handle)
        return handle

    def named(self, prefix: str) -> list[SimpleNamespace]:
        return [call for call in self.calls if call.name.startswith(prefix)]

    async def fire(self, handle: SimpleNamespace) -> None:
        if not handle.cancelled:
            await handle.callback()

    async def fire_all(self, prefix: str = "") -> None:
        for handle in list(self.calls):
            if handle.name.startswith(prefix):
                await self.fire(handle)


class FakeTransport:
    def __init__(self) -> None:
        self.texts: list[str] = []
        self.photos: list[dict[str, Any]] = []
        self.voices: list[dict[str, Any]] = []
        self.deleted: list[int] = []
        self.fail_voice: Optional[Exception] = None
        self.fail_photo: Optional[Exception] = None
        self._next_id = 500

    def _id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def send_text(self, text: str) -> list[int]:
        self.texts.append(text)
        return [self._id()]

    async def send_photo(self, image: bytes, *, caption: Optional[str] = None) -> int:
        if self.fail_photo is not None:
            raise self.fail_photo
        self.photos.append({"image": image, "caption": caption})
        return self._id()

    async def send_voice(self, source, *, title=None, performer=None, duration=None) -> int:
        if self.fail_voice is not None:
            raise self.fail_voice
        self.voices.append({"source": source, "title": title, "performer": performer, "duration": duration})
        return self._id()

    async def delete_message(self, message_id: int) -> bool:
        self.deleted.append(message_id)
        return True


class FakeApiClient:
    """Stands in for ``MusicApiClient`` with canned pages and url answers."""

    def __init__(
        self,
        pages: Optional[dict[int, list[SongCandidate]]] = None,
        urls: Optional[dict[int, Any]] = None,
    ) -> None:
        self.pages = pages or {}
        self.urls = urls or {}
        self.search_calls: list[tuple[str, int]] = []
        self.url_calls: list[tuple[str, int]] = []
        self.search_error: Optional[Exception] = None

    async def search(self, keyword, page=1, page_size=None, source=None):
        self.search_calls.append((keyword, page))
        if self.search_error is not None:
            raise self.search_error
        return list(self.pages.get(page, []))

    async def fetch_url(self, resolve_id, bitrate, source=None):
        self.url_calls.append((resolve_id, bitrate))
        answer = self.urls.get(bitrate)
        if isinstance(answer, Exception):
            raise answer
        if answer is None:
            return {"url": ""}
        return answer


class FakeHttp:
    def __init__(self, payload: bytes = b"mp3-bytes") -> None:
        self.payload = payload
        self.binary_calls: list[dict[str, Any]] = []
        self.error: Optional[Exception] = None

    async def get_binary(self, url, headers=None, timeout=None, max_bytes=None):
        self.binary_calls.append({"url": url, "timeout": timeout, "max_bytes": max_bytes})
        if self.error is not None:
            raise self.error
        return self.payload

    async def aclose(self) -> None:
        return None


class FakeTranscoder:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.calls: list[bytes] = []

    async def transcode(self, data: bytes) -> bytes:
        self.calls.append(data)
        return b"wav:" + data


class FakeEncoder:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.calls: list[bytes] = []

    async def encode(self, wav: bytes) -> bytes:
        self.calls.append(wav)
        return b"ogg:" + wav


def make_config(
    *,
    conversation: Optional[ConversationConfig] = None,
    delivery: Optional[DeliveryConfig] = None,
    retraction: Optional[RetractionPolicy] = None,
    quality: int = 320,
) -> MusicConfig:
    return MusicConfig(
        commands=("music",),
        api=ApiConfig(base_url="https://music.example/api.php", quality=quality, retry_base_delay=0.0),
        conversation=conversation or ConversationConfig(exit_commands=("0", "выход"), wait_timeout=45.0),
        delivery=delivery or DeliveryConfig(),
        retraction=retraction or RetractionPolicy(),
    )


class Harness(SimpleNamespace):
    machine: ConversationStateMachine


def build_harness(
    *,
    pages: Optional[dict[int, list[SongCandidate]]] = None,
    urls: Optional[dict[int, Any]] = None,
    config: Optional[MusicConfig] = None,
    transcoder_available: bool = True,
    image_renderer: Any = None,
    transport_factory: Optional[Callable[[int], Any]] = None,
) -> Harness:
    config = config or make_config()
    clock = FakeClock()
    scheduler = FakeScheduler()
    transport = FakeTransport()
    client = FakeApiClient(
        pages if pages is not None else {1: [song(1), song(2)]},
        urls if urls is not None else {320: {"url": "https://cdn.example/a.mp3"}},
    )
    http = FakeHttp()
    transcoder = FakeTranscoder(transcoder_available)
    encoder = FakeEncoder(transcoder_available)
    resolver = DirectLinkResolver(client, ladder=config.api.ladder, fragile_fallback=config.delivery.fragile_fallback)
    pipeline = AudioDeliveryPipeline(http, transcoder, encoder, config.delivery)
    store = PendingSelectionStore(config.conversation.wait_timeout, clock=clock)
    renderer = MenuRenderer(config.conversation, source="netease", image_renderer=image_renderer)
    machine = ConversationStateMachine(
        config,
        store=store,
        client=client,
        resolver=resolver,
        pipeline=pipeline,
        renderer=renderer,
        scheduler=scheduler,
        transport_factory=transport_factory or (lambda _chat_id: transport),
    )
    return Harness(
        machine=machine,
        store=store,
        clock=clock,
        scheduler=scheduler,
        transport=transport,
        client=client,
        http=http,
        transcoder=transcoder,
        encoder=encoder,
        config=config,
    )


__all__ = [
    "FakeApiClient",
    "FakeClock",
    "FakeEncoder",
    "FakeHttp",
    "FakeScheduler",
    "FakeTranscoder",
    "FakeTransport",
    "ROOT",
    "UpstreamError",
    "build_harness",
    "make_config",
    "song",
]
