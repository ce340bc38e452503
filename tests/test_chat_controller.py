"""
Tests for the chat request lifecycle.

Time is faked: the controller gets a clock and a sleep that advance a
counter instead of waiting, so the typewriter and minimum delay run
instantly.
"""
import asyncio
import threading
from datetime import date

import pytest

from studypal.core.identity import Anonymous, Authenticated
from studypal.core.plan_limits import Plan
from studypal.schemas.chat import ImageAttachment
from studypal.services.ai_service import AIServiceError
from studypal.services.anonymous_usage_service import LocalUsageBackend, MemoryStorage
from studypal.services.chat_controller import (
    ChatController,
    RevealSettings,
    STORAGE_WARNING,
    TIMEOUT_WARNING,
)
from studypal.services.usage_service import UsageLedger, UsageResult, UsageSnapshot

DAY = date(2026, 3, 14)
DEVICE = Anonymous(device_id="device-1")


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []
        self.on_sleep = None

    def clock(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep:
            self.on_sleep(len(self.sleeps))
        await asyncio.sleep(0)


class ControlledDispatch:
    """AI stand-in whose replies are released by the test."""

    def __init__(self):
        self.calls = []
        self.pending = []

    async def __call__(self, transcript):
        self.calls.append(transcript)
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future


def instant(reply):
    calls = []

    async def dispatch(transcript):
        calls.append(transcript)
        return reply

    dispatch.calls = calls
    return dispatch


class BrokenStorage(MemoryStorage):
    def set_item(self, key, value):
        raise OSError("disk full")


def make_ledger(storage=None):
    # Remote is unused for anonymous identities
    return UsageLedger(
        remote=None,
        local=LocalUsageBackend(storage or MemoryStorage()),
        today=lambda: DAY,
    )


def make_controller(dispatch, ledger=None, identity=DEVICE, fake_time=None, **settings):
    fake_time = fake_time or FakeTime()
    options = {"dispatch_timeout": None}
    options.update(settings)
    return ChatController(
        identity,
        ledger or make_ledger(),
        dispatch,
        plan_source=lambda identity: Plan.FREE,
        settings=RevealSettings(**options),
        sleep=fake_time.sleep,
        clock=fake_time.clock,
    )


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


def use_up(ledger, count, identity=DEVICE):
    for _ in range(count):
        assert ledger.record_question(identity, Plan.FREE).success


def test_reply_is_typed_out_after_minimum_delay():
    fake_time = FakeTime()
    dispatch = instant("Hi, you!")
    controller = make_controller(dispatch, fake_time=fake_time)

    handle = asyncio.run(controller.submit("Say hi"))

    assert handle.request_id == 1
    assert [m.role for m in controller.messages] == ["user", "assistant"]
    assert controller.messages[-1].content == "Hi, you!"
    # Minimum delay first, then one pause per character
    assert fake_time.sleeps[0] == pytest.approx(2.0)
    assert len(fake_time.sleeps) == 1 + len("Hi, you!")
    assert fake_time.sleeps[3] == pytest.approx(0.12)  # after the comma
    assert fake_time.sleeps[-1] == pytest.approx(0.25)  # after "!"
    assert controller.usage.questions_asked == 1
    assert not controller.is_dispatching
    assert not controller.is_revealing
    assert controller.pending_request_id is None


def test_slow_reply_skips_minimum_delay():
    fake_time = FakeTime()

    async def slow(transcript):
        fake_time.now += 3.0
        return "ok"

    controller = make_controller(slow, fake_time=fake_time)
    asyncio.run(controller.submit("Question"))

    assert fake_time.sleeps[0] != pytest.approx(2.0)
    assert len(fake_time.sleeps) == len("ok")


def test_long_reply_is_shown_at_once():
    fake_time = FakeTime()
    reply = " ".join(["word"] * 60)
    controller = make_controller(instant(reply), fake_time=fake_time)

    asyncio.run(controller.submit("Explain everything"))

    assert controller.messages[-1].content == reply
    assert fake_time.sleeps == [pytest.approx(2.0)]


def test_empty_submit_does_nothing():
    dispatch = instant("unused")
    controller = make_controller(dispatch)

    assert asyncio.run(controller.submit("   ")) is None
    assert controller.messages == []
    assert dispatch.calls == []


def test_draft_and_attachment_are_sent_and_cleared():
    dispatch = instant("It is a triangle.")
    controller = make_controller(dispatch)
    controller.draft = "What shape is this?"
    controller.attachment = ImageAttachment(data_url="data:image/png;base64,AAAA", name="hw.png")

    asyncio.run(controller.submit())

    sent = dispatch.calls[0][-1]
    assert sent.content == "What shape is this?"
    assert sent.image.name == "hw.png"
    assert controller.draft == ""
    assert controller.attachment is None


def test_limit_blocks_dispatch():
    ledger = make_ledger()
    use_up(ledger, 5)
    dispatch = instant("unused")
    controller = make_controller(dispatch, ledger=ledger)

    asyncio.run(controller.submit("One more?"))

    assert dispatch.calls == []
    assert len(controller.messages) == 1
    notice = controller.messages[0]
    assert notice.local_only
    assert "daily limit of 5 questions" in notice.content
    assert "Sign up" in notice.content
    assert controller.usage.remaining == 0
    assert not controller.is_dispatching


def test_last_question_then_blocked():
    """Free device at 4/5 asks once more, then is stopped before dispatch."""
    ledger = make_ledger()
    use_up(ledger, 4)
    dispatch = instant("Sure.")
    controller = make_controller(dispatch, ledger=ledger)

    asyncio.run(controller.submit("Last one"))
    assert len(dispatch.calls) == 1
    assert controller.usage.questions_asked == 5
    assert controller.usage.remaining == 0

    asyncio.run(controller.submit("And another"))
    assert len(dispatch.calls) == 1
    assert "(5/5 used)" in controller.messages[-1].content


def test_cancel_during_dispatch_discards_reply():
    dispatch = ControlledDispatch()
    ledger = make_ledger()
    controller = make_controller(dispatch, ledger=ledger)

    async def scenario():
        task = asyncio.create_task(controller.submit("What is 2+2?"))
        await settle()
        assert controller.is_dispatching

        controller.cancel()
        assert not controller.is_dispatching
        assert controller.stop_requested

        dispatch.pending[0].set_result("4")
        await task

    asyncio.run(scenario())

    assert [m.role for m in controller.messages] == ["user"]
    # The question was already counted and is not refunded
    assert ledger.get_usage(DEVICE, Plan.FREE).usage.questions_asked == 1


def test_cancel_during_dispatch_discards_failure():
    dispatch = ControlledDispatch()
    controller = make_controller(dispatch)

    async def scenario():
        task = asyncio.create_task(controller.submit("Question"))
        await settle()
        controller.cancel()
        dispatch.pending[0].set_exception(AIServiceError("busy"))
        await task

    asyncio.run(scenario())

    assert [m.role for m in controller.messages] == ["user"]


def test_superseded_reply_is_discarded():
    dispatch = ControlledDispatch()
    controller = make_controller(dispatch)

    async def scenario():
        first = asyncio.create_task(controller.submit("First question"))
        await settle()
        controller.cancel()
        second = asyncio.create_task(controller.submit("Second question"))
        await settle()
        second_id = controller.pending_request_id

        dispatch.pending[0].set_result("Old answer")
        await first
        # The old request finishing leaves the new one in charge
        assert controller.pending_request_id == second_id
        assert controller.is_dispatching

        dispatch.pending[1].set_result("New answer")
        await second

    asyncio.run(scenario())

    replies = [m.content for m in controller.messages if m.role == "assistant"]
    assert replies == ["New answer"]


def test_stop_during_reveal_shows_full_reply():
    fake_time = FakeTime()
    reply = "Photosynthesis turns light into sugar."
    controller = make_controller(instant(reply), fake_time=fake_time)

    def stop_after_a_few_letters(sleep_count):
        if sleep_count == 5:
            controller.cancel()

    fake_time.on_sleep = stop_after_a_few_letters
    asyncio.run(controller.submit("What is photosynthesis?"))

    assert controller.messages[-1].content == reply
    assert len(fake_time.sleeps) == 5
    assert not controller.is_revealing


def test_failure_posts_local_notice_and_keeps_charge():
    ledger = make_ledger()

    async def failing(transcript):
        raise AIServiceError("The AI service is busy right now. Please try again in a moment.")

    controller = make_controller(failing, ledger=ledger)
    asyncio.run(controller.submit("Help"))

    notice = controller.messages[-1]
    assert notice.role == "assistant"
    assert notice.local_only
    assert notice.content.startswith("⚠️ The AI service is busy")
    assert controller.usage.questions_asked == 1


def test_notices_are_not_sent_to_the_ai():
    ledger = make_ledger()
    calls = []

    async def fail_then_answer(transcript):
        calls.append(transcript)
        if len(calls) == 1:
            raise ConnectionError("offline")
        return "Answer"

    controller = make_controller(fail_then_answer, ledger=ledger)
    asyncio.run(controller.submit("First"))
    asyncio.run(controller.submit("Second"))

    assert [m.content for m in calls[1]] == ["First", "Second"]
    assert all(not m.local_only for m in calls[1])


def test_timeout_posts_notice():
    async def never(transcript):
        await asyncio.Event().wait()

    controller = make_controller(never, dispatch_timeout=0.01)
    asyncio.run(controller.submit("Hello?"))

    assert controller.messages[-1].content == TIMEOUT_WARNING
    assert not controller.is_dispatching


def test_storage_failure_blocks_dispatch():
    dispatch = instant("unused")
    controller = make_controller(dispatch, ledger=make_ledger(BrokenStorage()))

    asyncio.run(controller.submit("Question"))

    assert dispatch.calls == []
    assert controller.messages[-1].content == STORAGE_WARNING


def test_new_chat_clears_transcript_and_cancels():
    dispatch = ControlledDispatch()
    controller = make_controller(dispatch)

    async def scenario():
        task = asyncio.create_task(controller.submit("Question"))
        await settle()
        controller.new_chat()
        dispatch.pending[0].set_result("Answer")
        await task

    asyncio.run(scenario())

    assert controller.messages == []
    assert controller.pending_request_id is None


def test_state_snapshot_and_listener():
    snapshots = []
    controller = make_controller(instant("ok"))
    controller.on_change = lambda c: snapshots.append(c.state())

    asyncio.run(controller.submit("Hi"))

    assert any(s["is_dispatching"] for s in snapshots)
    final = snapshots[-1]
    assert final["messages"][-1]["content"] == "ok"
    assert final["usage"]["questions_asked"] == 1
    assert final["pending_request_id"] is None


def test_paid_user_limit_notice_suggests_next_plan():
    user = Authenticated(user_id="user-1")

    class FakeRemote:
        def get_usage(self, identity, plan, day):
            return UsageResult.ok(UsageSnapshot.build(150, plan, day.isoformat()))

        def record_question(self, identity, plan, day):
            raise AssertionError("should not record past the limit")

    ledger = UsageLedger(remote=FakeRemote(), local=None, today=lambda: DAY)
    dispatch = instant("unused")
    controller = ChatController(
        user, ledger, dispatch,
        plan_source=lambda identity: Plan.GOLD,
        settings=RevealSettings(dispatch_timeout=None),
        sleep=FakeTime().sleep,
    )

    asyncio.run(controller.submit("More please"))

    assert dispatch.calls == []
    assert "Gold Member" in controller.messages[-1].content
    assert "Upgrade to Diamond" in controller.messages[-1].content


def test_refresh_usage_reads_in_a_worker_thread():
    ledger = make_ledger()
    use_up(ledger, 2)
    lookups = []

    def plan_source(identity):
        lookups.append(threading.get_ident())
        return Plan.FREE

    controller = make_controller(instant("unused"), ledger=ledger)
    controller.plan_source = plan_source

    usage = asyncio.run(controller.refresh_usage())

    assert usage.questions_asked == 2
    assert lookups and lookups[0] != threading.get_ident()


def test_refresh_keeps_counters_recorded_meanwhile():
    controller = make_controller(instant("ok"))
    release = threading.Event()

    def slow_read():
        release.wait(5)
        return UsageResult.ok(UsageSnapshot.build(0, Plan.FREE, DAY.isoformat()))

    controller._read_usage = slow_read

    async def scenario():
        refresh = asyncio.create_task(controller.refresh_usage())
        await settle()
        try:
            await controller.submit("Hi")
        finally:
            release.set()
        await refresh

    asyncio.run(scenario())

    assert controller.usage.questions_asked == 1
