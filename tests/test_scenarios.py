"""End-to-end timing scenarios using the default configuration."""

import asyncio
import time

from tgthrottle.classifier import OutboundCall
from tgthrottle.throttler import Throttler

_SLACK = 0.005


def _sender(log):
    async def send():
        log.append(time.monotonic())
        return True

    return send


async def test_25_private_calls_fit_in_the_reservoir():
    throttler = Throttler()
    log = []

    calls = [throttler.call_api(OutboundCall("sendMessage", {"chat_id": 777}), _sender(log)) for _ in range(25)]
    assert all(await asyncio.gather(*calls))

    gaps = [later - earlier for earlier, later in zip(log, log[1:])]
    assert len(log) == 25
    assert all(gap >= 0.025 - _SLACK for gap in gaps)
    assert throttler.egress.current_reservoir() == 5


async def test_40_private_calls_wait_for_refill():
    throttler = Throttler()
    created = time.monotonic()
    log = []

    calls = [throttler.call_api(OutboundCall("sendMessage", {"chat_id": 777}), _sender(log)) for _ in range(40)]
    await asyncio.gather(*calls)

    offsets = [stamp - created for stamp in log]
    assert all(offset < 1.0 for offset in offsets[:30])
    assert all(offset >= 1.0 - _SLACK for offset in offsets[30:])


async def test_same_user_updates_respect_default_spacing():
    throttler = Throttler()
    starts = []

    async def handler():
        starts.append(time.monotonic())

    first = asyncio.ensure_future(throttler.handle_update("first", handler, user_id=100))
    await asyncio.sleep(0.01)
    second = asyncio.ensure_future(throttler.handle_update("second", handler, user_id=100))
    await asyncio.gather(first, second)

    assert starts[1] - starts[0] >= 0.333 - _SLACK


async def test_group_call_passes_group_then_egress():
    throttler = Throttler()
    log = []

    await asyncio.gather(
        *(throttler.call_api(OutboundCall("sendMessage", {"chat_id": -1001}), _sender(log)) for _ in range(3))
    )

    gaps = [later - earlier for earlier, later in zip(log, log[1:])]
    assert all(gap >= 0.333 - _SLACK for gap in gaps)
    assert throttler.groups.key("-1001").current_reservoir() == 17
    assert throttler.egress.current_reservoir() == 27


async def test_burst_from_one_user_keeps_at_most_three_pending():
    rejected = []

    async def on_rejected(context, continuation, error):
        rejected.append(context)

    throttler = Throttler(on_rejected=on_rejected)
    ran = []
    peak = 0

    def handler_for(name):
        async def handler():
            ran.append(name)

        return handler

    tasks = []
    for index in range(1, 11):
        name = f"e{index}"
        tasks.append(asyncio.ensure_future(throttler.handle_update(name, handler_for(name), user_id=1)))
        await asyncio.sleep(0.01)
        peak = max(peak, throttler.inbound.key("1").queued())

    await asyncio.gather(*tasks)

    assert peak <= 3
    assert rejected == [f"e{index}" for index in range(2, 8)]
    assert ran == ["e1", "e8", "e9", "e10"]
