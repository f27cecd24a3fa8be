import asyncio

import pytest

from scheduler import FeedScheduler


class CountingPass:
    def __init__(self, gate: asyncio.Event = None, fail: bool = False):
        self.calls = 0
        self.gate = gate
        self.fail = fail

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_start_twice_keeps_a_single_timer():
    scheduler = FeedScheduler(CountingPass())

    assert scheduler.start(60) is True
    timer = scheduler._timer
    assert scheduler.start(60) is False

    assert scheduler._timer is timer
    assert scheduler.is_running
    scheduler.stop()


@pytest.mark.asyncio
async def test_stop_twice_is_safe():
    scheduler = FeedScheduler(CountingPass())
    scheduler.start(60)

    assert scheduler.stop() is True
    assert scheduler.stop() is False
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_stop_without_start_is_a_no_op():
    assert FeedScheduler(CountingPass()).stop() is False


@pytest.mark.asyncio
async def test_ticks_run_passes_repeatedly():
    run_pass = CountingPass()
    scheduler = FeedScheduler(run_pass)

    scheduler.start(0.01)
    await asyncio.sleep(0.1)
    scheduler.stop()
    await scheduler.wait_idle()

    assert run_pass.calls >= 2


@pytest.mark.asyncio
async def test_first_tick_waits_one_interval():
    run_pass = CountingPass()
    scheduler = FeedScheduler(run_pass)

    scheduler.start(60)
    await asyncio.sleep(0.05)
    scheduler.stop()

    assert run_pass.calls == 0


@pytest.mark.asyncio
async def test_run_immediately_triggers_a_pass_at_start():
    run_pass = CountingPass()
    scheduler = FeedScheduler(run_pass)

    scheduler.start(60, run_immediately=True)
    await asyncio.sleep(0.05)
    scheduler.stop()
    await scheduler.wait_idle()

    assert run_pass.calls == 1


@pytest.mark.asyncio
async def test_tick_is_skipped_while_a_pass_is_in_flight():
    gate = asyncio.Event()
    run_pass = CountingPass(gate=gate)
    scheduler = FeedScheduler(run_pass)

    scheduler.start(0.01, run_immediately=True)
    await asyncio.sleep(0.1)

    assert run_pass.calls == 1
    assert scheduler.skipped_ticks >= 1

    scheduler.stop()
    gate.set()
    await scheduler.wait_idle()
    assert not scheduler.pass_in_flight


@pytest.mark.asyncio
async def test_stop_does_not_interrupt_running_pass():
    gate = asyncio.Event()
    finished = []

    async def run_pass():
        await gate.wait()
        finished.append(True)

    scheduler = FeedScheduler(run_pass)
    scheduler.start(60, run_immediately=True)
    await asyncio.sleep(0.01)
    scheduler.stop()
    gate.set()
    await scheduler.wait_idle()

    assert finished == [True]


@pytest.mark.asyncio
async def test_failing_pass_does_not_stop_the_timer():
    run_pass = CountingPass(fail=True)
    scheduler = FeedScheduler(run_pass)

    scheduler.start(0.01)
    await asyncio.sleep(0.1)

    assert scheduler.is_running
    assert run_pass.calls >= 2
    scheduler.stop()
    await scheduler.wait_idle()


def test_non_positive_interval_is_rejected():
    with pytest.raises(ValueError):
        FeedScheduler(CountingPass()).start(0)
