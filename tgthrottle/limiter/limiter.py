"""Asyncio admission-control primitive used by every throttling tier."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, TypeVar

from tgthrottle.config import LimiterConfig, Strategy
from tgthrottle.errors import LimiterRejected
from tgthrottle.metrics import record_admission

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Job:
    __slots__ = ("future", "queued_at", "admitted_at")

    def __init__(self, future: "asyncio.Future[None]", queued_at: float) -> None:
        self.future = future
        self.queued_at = queued_at
        self.admitted_at: Optional[float] = None


class Limiter:
    """Queue work and run it once concurrency, spacing and reservoir allow.

    Every admission consumes one reservoir token and pushes the next possible
    admission ``min_time`` seconds into the future. Units are admitted strictly
    in submission order. When ``chain`` is given, admitted work is scheduled on
    that limiter too, while this limiter's concurrency slot stays occupied, so
    the unit has to pass both limiters in that order.
    """

    def __init__(
        self,
        config: LimiterConfig | None = None,
        *,
        name: str = "limiter",
        tier: str | None = None,
        chain: "Limiter | None" = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or LimiterConfig()
        self.name = name
        self.tier = tier or name
        self._chain = chain
        self._clock = clock
        self._queue: Deque[_Job] = deque()
        self._running = 0
        self._next_admission = 0.0
        self._reservoir = self.config.reservoir
        self._refreshed_at = clock()
        self._timer: asyncio.TimerHandle | None = None
        self._stopped = False

    def __repr__(self) -> str:
        return (
            f"Limiter(name={self.name!r}, running={self._running}, "
            f"queued={len(self._queue)}, reservoir={self._reservoir})"
        )

    @property
    def chain(self) -> "Limiter | None":
        return self._chain

    @property
    def stopped(self) -> bool:
        return self._stopped

    def running(self) -> int:
        return self._running

    def queued(self) -> int:
        return sum(1 for job in self._queue if not job.future.done())

    def current_reservoir(self) -> Optional[int]:
        self._refresh_reservoir(self._clock())
        return self._reservoir

    def is_idle(self) -> bool:
        return self._running == 0 and self.queued() == 0

    async def schedule(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` once admitted and return its result.

        Raises :class:`LimiterRejected` when the unit is refused or pushed out of
        the queue. Exceptions raised by ``fn`` propagate untouched.
        """

        job = self._submit()
        try:
            await job.future
        except asyncio.CancelledError:
            self._abandon(job)
            raise

        wait = None if job.admitted_at is None else job.admitted_at - job.queued_at
        record_admission(self.tier, wait)
        try:
            if self._chain is not None:
                return await self._chain.schedule(fn, *args, **kwargs)
            return await fn(*args, **kwargs)
        finally:
            self._release()

    def stop(self, *, drop_waiting: bool = True) -> None:
        """Refuse new work and, by default, reject everything still queued."""

        self._stopped = True
        if not drop_waiting:
            return
        self._cancel_timer()
        while self._queue:
            job = self._queue.popleft()
            if not job.future.done():
                job.future.set_exception(
                    LimiterRejected(
                        f"{self.name} stopped before the job was admitted",
                        limiter=self.name,
                        reason="stopped",
                    )
                )

    def _submit(self) -> _Job:
        if self._stopped:
            raise LimiterRejected(f"{self.name} has been stopped", limiter=self.name, reason="stopped")

        loop = asyncio.get_running_loop()
        now = self._clock()
        self._discard_settled()
        high_water = self.config.high_water
        if high_water is not None and len(self._queue) >= high_water and not self._can_start(now):
            if self.config.strategy is Strategy.OVERFLOW or not self._queue:
                logger.debug("Queue of %s is full, rejecting new job", self.name)
                raise LimiterRejected(
                    f"{self.name} queue is full (high_water={high_water})",
                    limiter=self.name,
                    reason="overflow",
                )
            oldest = self._queue.popleft()
            logger.debug("Queue of %s is full, dropping oldest job", self.name)
            oldest.future.set_exception(
                LimiterRejected(
                    f"{self.name} dropped a queued job to make room (high_water={high_water})",
                    limiter=self.name,
                    reason="leak",
                )
            )

        job = _Job(loop.create_future(), now)
        self._queue.append(job)
        self._drain()
        return job

    def _abandon(self, job: _Job) -> None:
        if job.admitted_at is not None:
            # Admitted in the same loop iteration the caller was cancelled.
            self._release()
            return
        if job in self._queue:
            self._queue.remove(job)
        self._drain()

    def _release(self) -> None:
        self._running -= 1
        self._drain()

    def _discard_settled(self) -> None:
        if any(job.future.done() for job in self._queue):
            self._queue = deque(job for job in self._queue if not job.future.done())

    def _refresh_reservoir(self, now: float) -> None:
        interval = self.config.reservoir_refresh_interval
        if interval is None:
            return
        elapsed = now - self._refreshed_at
        if elapsed >= interval:
            self._reservoir = self.config.reservoir_refresh_amount
            self._refreshed_at += (elapsed // interval) * interval

    def _has_capacity(self, now: float) -> bool:
        max_concurrent = self.config.max_concurrent
        if max_concurrent is not None and self._running >= max_concurrent:
            return False
        self._refresh_reservoir(now)
        return self._reservoir is None or self._reservoir > 0

    def _can_start(self, now: float) -> bool:
        return self._has_capacity(now) and self._next_admission <= now

    def _drain(self) -> None:
        self._cancel_timer()
        while self._queue:
            job = self._queue[0]
            if job.future.done():
                self._queue.popleft()
                continue

            now = self._clock()
            if not self._has_capacity(now):
                if self._reservoir == 0 and self.config.reservoir_refresh_interval is not None:
                    next_refresh = self._refreshed_at + self.config.reservoir_refresh_interval
                    self._wake_in(next_refresh - now)
                return

            delay = self._next_admission - now
            if delay > 0:
                self._wake_in(delay)
                return

            self._queue.popleft()
            self._running += 1
            if self._reservoir is not None:
                self._reservoir -= 1
            self._next_admission = now + self.config.min_time
            job.admitted_at = now
            job.future.set_result(None)

    def _wake_in(self, delay: float) -> None:
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(delay, 0.0), self._drain)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


__all__ = ["Limiter"]
