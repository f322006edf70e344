import asyncio
import time

import pytest

from tgthrottle.config import LimiterConfig, Strategy
from tgthrottle.errors import LimiterRejected
from tgthrottle.limiter import Limiter

# asyncio timers may fire up to a clock tick early
_SLACK = 0.005


async def _record(starts, value=None):
    starts.append(time.monotonic())
    return value


async def test_schedule_returns_result_and_propagates_errors():
    limiter = Limiter(LimiterConfig(max_concurrent=1))

    async def boom():
        raise ValueError("remote failure")

    assert await limiter.schedule(_record, [], "ok") == "ok"
    with pytest.raises(ValueError, match="remote failure"):
        await limiter.schedule(boom)
    assert limiter.running() == 0
    assert limiter.is_idle()


async def test_min_time_spaces_admissions():
    limiter = Limiter(LimiterConfig(min_time=0.05))
    starts = []

    await asyncio.gather(*(limiter.schedule(_record, starts) for _ in range(5)))

    gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
    assert len(gaps) == 4
    assert all(gap >= 0.05 - _SLACK for gap in gaps)


async def test_max_concurrent_caps_running_units():
    limiter = Limiter(LimiterConfig(max_concurrent=2))
    active = 0
    peak = 0

    async def work():
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1

    await asyncio.gather(*(limiter.schedule(work) for _ in range(6)))
    assert peak == 2


async def test_units_are_admitted_in_submission_order():
    limiter = Limiter(LimiterConfig(max_concurrent=1, min_time=0.01))
    order = []

    async def work(index):
        order.append(index)

    await asyncio.gather(*(limiter.schedule(work, index) for index in range(8)))
    assert order == list(range(8))


async def test_reservoir_waits_for_refresh():
    limiter = Limiter(
        LimiterConfig(reservoir=3, reservoir_refresh_amount=3, reservoir_refresh_interval=0.2)
    )
    created = time.monotonic()
    starts = []

    await asyncio.gather(*(limiter.schedule(_record, starts) for _ in range(5)))

    assert all(start - created < 0.1 for start in starts[:3])
    assert all(start - created >= 0.2 - _SLACK for start in starts[3:])
    assert limiter.current_reservoir() == 1


async def test_empty_reservoir_without_refresh_holds_work():
    limiter = Limiter(LimiterConfig(reservoir=1))
    starts = []

    await limiter.schedule(_record, starts)
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(limiter.schedule(_record, starts), timeout=0.05)
    assert len(starts) == 1
    assert limiter.queued() == 0


async def test_overflow_rejects_new_unit():
    limiter = Limiter(LimiterConfig(max_concurrent=1, high_water=0, strategy=Strategy.OVERFLOW))
    release = asyncio.Event()
    first = asyncio.ensure_future(limiter.schedule(release.wait))
    await asyncio.sleep(0)

    with pytest.raises(LimiterRejected) as exc:
        await limiter.schedule(_record, [])
    assert exc.value.reason == "overflow"
    assert exc.value.limiter == limiter.name

    release.set()
    await first


async def test_leak_drops_oldest_queued_unit():
    limiter = Limiter(LimiterConfig(max_concurrent=1, high_water=1, strategy=Strategy.LEAK))
    release = asyncio.Event()
    ran = []

    async def work(name):
        ran.append(name)

    first = asyncio.ensure_future(limiter.schedule(release.wait))
    await asyncio.sleep(0)
    second = asyncio.ensure_future(limiter.schedule(work, "second"))
    await asyncio.sleep(0)
    third = asyncio.ensure_future(limiter.schedule(work, "third"))
    await asyncio.sleep(0)

    release.set()
    await first
    await third
    with pytest.raises(LimiterRejected) as exc:
        await second
    assert exc.value.reason == "leak"
    assert ran == ["third"]


async def test_cancelled_queued_unit_never_runs():
    limiter = Limiter(LimiterConfig(max_concurrent=1))
    release = asyncio.Event()
    ran = []

    async def work():
        ran.append(True)

    first = asyncio.ensure_future(limiter.schedule(release.wait))
    await asyncio.sleep(0)
    queued = asyncio.ensure_future(limiter.schedule(work))
    await asyncio.sleep(0)
    assert limiter.queued() == 1

    queued.cancel()
    with pytest.raises(asyncio.CancelledError):
        await queued
    release.set()
    await first
    await asyncio.sleep(0.01)

    assert ran == []
    assert limiter.is_idle()


async def test_cancellation_reaches_admitted_work():
    limiter = Limiter(LimiterConfig(max_concurrent=1))
    started = asyncio.Event()
    cancelled = []

    async def work():
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    task = asyncio.ensure_future(limiter.schedule(work))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert cancelled == [True]
    assert limiter.running() == 0


async def test_chained_unit_waits_for_both_limiters():
    egress = Limiter(LimiterConfig(max_concurrent=1), name="egress")
    group = Limiter(LimiterConfig(max_concurrent=1), name="group:-1", chain=egress)
    release = asyncio.Event()
    ran = []

    async def work():
        ran.append(True)

    blocker = asyncio.ensure_future(egress.schedule(release.wait))
    await asyncio.sleep(0)
    chained = asyncio.ensure_future(group.schedule(work))
    await asyncio.sleep(0.01)

    assert group.running() == 1
    assert egress.queued() == 1
    assert ran == []

    release.set()
    await blocker
    await chained
    assert ran == [True]
    assert group.is_idle() and egress.is_idle()


async def test_stop_rejects_queued_and_new_work():
    limiter = Limiter(LimiterConfig(max_concurrent=1), name="inbound:1")
    release = asyncio.Event()
    first = asyncio.ensure_future(limiter.schedule(release.wait))
    await asyncio.sleep(0)
    queued = asyncio.ensure_future(limiter.schedule(_record, []))
    await asyncio.sleep(0)

    limiter.stop()
    with pytest.raises(LimiterRejected) as exc:
        await queued
    assert exc.value.reason == "stopped"
    with pytest.raises(LimiterRejected):
        await limiter.schedule(_record, [])

    release.set()
    await first
    assert limiter.stopped


async def test_queue_bound_applies_while_spacing_holds_the_queue():
    limiter = Limiter(LimiterConfig(min_time=0.05, high_water=2, strategy=Strategy.LEAK))
    ran = []
    peak = 0

    async def work(index):
        ran.append(index)

    tasks = []
    for index in range(6):
        tasks.append(asyncio.ensure_future(limiter.schedule(work, index)))
        await asyncio.sleep(0)
        peak = max(peak, limiter.queued())

    results = await asyncio.gather(*tasks, return_exceptions=True)

    assert peak <= 2
    assert ran == [0, 4, 5]
    assert [result.reason for result in results if isinstance(result, LimiterRejected)] == ["leak"] * 3


async def test_overflow_rejects_new_unit_during_spacing():
    limiter = Limiter(LimiterConfig(min_time=0.05, high_water=1, strategy=Strategy.OVERFLOW))
    await limiter.schedule(_record, [])
    queued = asyncio.ensure_future(limiter.schedule(_record, []))
    await asyncio.sleep(0)

    with pytest.raises(LimiterRejected) as exc:
        await limiter.schedule(_record, [])
    assert exc.value.reason == "overflow"
    await queued
