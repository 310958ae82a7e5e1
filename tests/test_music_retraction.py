import asyncio
import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from tests.music_test_utils import FakeScheduler  # noqa: E402
from music.retraction import RetractionCategory, RetractionPolicy, RetractionScheduler  # noqa: E402
from music.timers import AsyncioScheduler  # noqa: E402


def test_policy_gate() -> None:
    policy = RetractionPolicy(menu=True, tip=True, user_input=False, voice=True)
    assert policy.allows(RetractionCategory.MENU, True)
    assert policy.allows(RetractionCategory.MENU, False)
    assert not policy.allows(RetractionCategory.USER_INPUT, True)
    assert policy.allows("voice", True)


def test_only_after_success() -> None:
    policy = RetractionPolicy(only_after_success=True)
    assert policy.allows(RetractionCategory.TIP, True)
    assert not policy.allows(RetractionCategory.TIP, False)


def test_keep_menu_on_failure_only_affects_menu() -> None:
    policy = RetractionPolicy(keep_menu_on_failure=True)
    assert not policy.allows(RetractionCategory.MENU, False)
    assert policy.allows(RetractionCategory.MENU, True)
    assert policy.allows(RetractionCategory.TIP, False)


def test_zero_delay_deletes_immediately_and_swallows_errors() -> None:
    deleted = []

    async def deleter(chat_id: int, message_id: int) -> bool:
        if message_id == 2:
            raise RuntimeError("message can't be deleted")
        deleted.append((chat_id, message_id))
        return True

    scheduler = FakeScheduler()
    retractor = RetractionScheduler(deleter, scheduler)
    asyncio.run(retractor.schedule_retract(7, [1, 2, None, 3], 0))

    assert deleted == [(7, 1), (7, 3)]
    assert scheduler.calls == []


def test_delayed_retraction_goes_through_scheduler() -> None:
    deleted = []

    async def deleter(chat_id: int, message_id: int) -> bool:
        deleted.append(message_id)
        return True

    scheduler = FakeScheduler()
    retractor = RetractionScheduler(deleter, scheduler)

    async def scenario():
        await retractor.schedule_retract(7, [5], 30)
        assert deleted == []
        assert scheduler.calls[0].delay == 30
        await scheduler.fire_all()

    asyncio.run(scenario())
    assert deleted == [5]


def test_asyncio_scheduler_runs_callbacks() -> None:
    fired = []

    async def scenario():
        scheduler = AsyncioScheduler()

        async def callback() -> None:
            fired.append("x")

        async def broken() -> None:
            raise RuntimeError("ignored")

        scheduler.call_later(0.01, callback, name="ok")
        scheduler.call_later(0, broken, name="broken")
        scheduler.call_later(60, callback, name="late")
        await asyncio.sleep(0.05)
        assert scheduler.pending == 1
        await scheduler.shutdown()
        assert scheduler.pending == 0

    asyncio.run(scenario())
    assert fired == ["x"]
