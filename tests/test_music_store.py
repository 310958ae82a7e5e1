import asyncio
import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from tests.music_test_utils import FakeClock, song  # noqa: E402
from music.errors import InvalidSelection  # noqa: E402
from music.store import PendingSelection, PendingSelectionStore, conversation_key  # noqa: E402


def _selection(key: str = "telegram:1:2") -> PendingSelection:
    return PendingSelection(
        conversation_key=key,
        chat_id=1,
        owner_user_id=2,
        keyword="hit",
        current_page=1,
        candidates=(song(1), song(2)),
        outstanding_menu_message_ids={10},
    )


def test_conversation_keys() -> None:
    assert conversation_key(1, 2) == "telegram:1:2"
    assert conversation_key(1, 2, group_wide=True) == "telegram:1"
    assert conversation_key(1, None) == "telegram:1"


def test_candidate_lookup_is_one_based() -> None:
    selection = _selection()
    assert selection.candidate(1).id == "id1"
    assert selection.candidate(2).id == "id2"
    assert selection.candidate(0) is None
    assert selection.candidate(3) is None


def test_require_rejects_numbers_outside_the_menu() -> None:
    selection = _selection()
    assert selection.require(2).id == "id2"
    with pytest.raises(InvalidSelection) as info:
        selection.require(3)
    assert (info.value.index, info.value.available) == (3, 2)


def test_expired_selection_is_discarded_on_read() -> None:
    clock = FakeClock()
    store = PendingSelectionStore(45, clock=clock)
    store.put(_selection())

    clock.advance(45)
    assert store.get("telegram:1:2") is not None
    clock.advance(1)
    assert store.get("telegram:1:2") is None
    assert len(store) == 0


def test_every_mutation_bumps_version() -> None:
    clock = FakeClock()
    store = PendingSelectionStore(45, clock=clock)
    selection = store.put(_selection())
    first = selection.version

    clock.advance(30)
    store.turn_page("telegram:1:2", 2, [song(3)], [11])
    assert selection.version > first
    assert selection.current_page == 2
    assert selection.outstanding_menu_message_ids == {11}
    assert selection.created_at == clock.now()

    second = selection.version
    store.refresh("telegram:1:2")
    assert selection.version > second


def test_stale_ticket_does_not_expire_newer_state() -> None:
    store = PendingSelectionStore(45, clock=FakeClock())
    old = store.put(_selection())
    stale = store.ticket(old)
    replacement = store.put(_selection())

    assert store.expire_if_current(stale) is None
    assert store.get("telegram:1:2") is replacement

    assert store.expire_if_current(store.ticket(replacement)) is replacement
    assert "telegram:1:2" not in store


def test_locks_are_per_key() -> None:
    store = PendingSelectionStore(45, clock=FakeClock())

    async def scenario():
        first = store.lock("telegram:1:2")
        assert store.lock("telegram:1:2") is first
        assert store.lock("telegram:1:3") is not first
        async with first:
            assert first.locked()
            assert not store.lock("telegram:1:3").locked()

    asyncio.run(scenario())


def test_locked_forgets_idle_keys_without_selection() -> None:
    store = PendingSelectionStore(45, clock=FakeClock())

    async def scenario():
        async with store.locked("telegram:1:2"):
            store.put(_selection())
        assert store.active_locks == 1

        async with store.locked("telegram:1:2"):
            store.discard("telegram:1:2")
            assert store.active_locks == 1
        assert store.active_locks == 0

    asyncio.run(scenario())


def test_locked_keeps_lock_while_others_wait() -> None:
    store = PendingSelectionStore(45, clock=FakeClock())
    order: list[str] = []

    async def worker(name: str, release: asyncio.Event) -> None:
        async with store.locked("telegram:1:2"):
            order.append(name)
            await release.wait()

    async def scenario():
        release = asyncio.Event()
        first = asyncio.create_task(worker("first", release))
        await asyncio.sleep(0)
        second = asyncio.create_task(worker("second", release))
        await asyncio.sleep(0)
        assert store.active_locks == 1
        release.set()
        await asyncio.gather(first, second)

    asyncio.run(scenario())

    assert order == ["first", "second"]
    assert store.active_locks == 0
