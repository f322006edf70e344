import asyncio
import inspect

import pytest

from tgthrottle.config import LimiterConfig, Strategy, ThrottlerConfig
from tgthrottle.throttler import Throttler


@pytest.fixture()
def fast_config() -> ThrottlerConfig:
    """Small timings so ordering can be observed without slow tests."""

    return ThrottlerConfig(
        group=LimiterConfig(max_concurrent=1, min_time=0.05),
        out=LimiterConfig(min_time=0.01),
        inbound=LimiterConfig(max_concurrent=1, min_time=0.05, high_water=2, strategy=Strategy.LEAK),
    )


@pytest.fixture()
def rejections():
    """Collects ``(context, continuation, error)`` tuples passed to the rejection handler."""

    return []


@pytest.fixture()
def throttler(fast_config, rejections) -> Throttler:
    async def on_rejected(context, continuation, error):
        rejections.append((context, continuation, error))
        return "rejected"

    return Throttler(fast_config, on_rejected=on_rejected)


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Run async test functions without requiring pytest-asyncio plugin."""

    test_func = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_func):
        funcargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(test_func(**funcargs))
        finally:
            loop.close()
        return True
    return None
