"""Exceptions raised by the throttler and routing of admission rejections."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from tgthrottle.metrics import record_rejection

logger = logging.getLogger(__name__)

Continuation = Callable[[], Awaitable[Any]]
RejectionHandler = Callable[[Any, Optional[Continuation], "LimiterRejected"], Awaitable[Any]]


class ThrottlerError(Exception):
    """Base class for errors produced by the throttling layer itself."""


class ThrottlerConfigError(ThrottlerError, ValueError):
    """Raised when the throttler is constructed with invalid settings."""


class LimiterRejected(ThrottlerError):
    """Raised when a limiter refuses to queue or run a unit of work.

    ``reason`` is one of ``overflow`` (the new unit did not fit), ``leak`` (the
    unit was the oldest queued one and was pushed out by a newer one) or
    ``stopped`` (the limiter was shut down).
    """

    def __init__(self, message: str, *, limiter: str, reason: str) -> None:
        super().__init__(message)
        self.limiter = limiter
        self.reason = reason


async def default_rejection_handler(
    context: Any, continuation: Optional[Continuation], error: LimiterRejected
) -> None:
    logger.warning("%s | %s", error.limiter, error)


class RejectionRouter:
    """Send admission rejections to a pluggable handler.

    Only :class:`LimiterRejected` ever reaches the router; failures raised by the
    scheduled work are left to propagate to the original caller.
    """

    def __init__(self, handler: RejectionHandler | None = None) -> None:
        self._handler = handler or default_rejection_handler

    @property
    def handler(self) -> RejectionHandler:
        return self._handler

    async def route(
        self,
        tier: str,
        context: Any,
        continuation: Optional[Continuation],
        error: LimiterRejected,
    ) -> Any:
        record_rejection(tier, error.reason)
        logger.debug(
            "Routing rejection", extra={"tier": tier, "limiter": error.limiter, "reason": error.reason}
        )
        return await self._handler(context, continuation, error)


__all__ = [
    "Continuation",
    "LimiterRejected",
    "RejectionHandler",
    "RejectionRouter",
    "ThrottlerConfigError",
    "ThrottlerError",
    "default_rejection_handler",
]
