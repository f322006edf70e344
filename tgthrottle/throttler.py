"""Traffic-shaping gateway between a Telegram bot and the Bot API.

A :class:`Throttler` owns three tiers:

* ``egress`` - one limiter for the bot's global outbound budget. Calls to
  private chats are scheduled on it directly.
* ``groups`` - one limiter per group chat. Every group limiter is built already
  chained to ``egress``, so a group call is paced per chat first and then by the
  global budget.
* ``inbound`` - one limiter per originating user (or chat) guarding handler
  invocation.

Admission rejections from any tier go to the configured rejection handler.
Everything else, including Bot API errors and handler exceptions, propagates to
the caller unchanged.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tgthrottle.classifier import CallClassifier, OutboundCall, Route, Tier
from tgthrottle.config import LimiterConfig, ThrottlerConfig
from tgthrottle.errors import Continuation, LimiterRejected, RejectionHandler, RejectionRouter
from tgthrottle.limiter import Limiter, LimiterGroup
from tgthrottle.metrics import record_bypass
from tgthrottle.scope import (
    ReplyWindow,
    UpdateScope,
    bind_reply_window,
    bind_update_scope,
    current_reply_window,
    current_update_scope,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def originator_key(user_id: Any = None, chat_id: Any = None) -> Optional[str]:
    """Key inbound admission by user, falling back to the chat."""

    if user_id is not None:
        return str(user_id)
    if chat_id is not None:
        return str(chat_id)
    return None


class Throttler:
    """Shape inbound updates and outbound Bot API calls for one bot process."""

    def __init__(
        self,
        config: ThrottlerConfig | None = None,
        *,
        on_rejected: RejectionHandler | None = None,
        classifier: CallClassifier | None = None,
    ) -> None:
        self.config = config or ThrottlerConfig()
        self.egress = Limiter(self.config.out, name="egress", tier="egress")
        self.groups = LimiterGroup(
            self.config.group,
            name="group",
            factory=self._chained_group_limiter,
            idle_timeout=self.config.group_idle_timeout,
        )
        self.inbound = LimiterGroup(
            self.config.inbound,
            name="inbound",
            idle_timeout=self.config.inbound_idle_timeout,
        )
        self.classifier = classifier or CallClassifier(
            inline_reply_methods=self.config.inline_reply_methods,
            group_exempt_methods=self.config.group_exempt_methods,
        )
        self.router = RejectionRouter(on_rejected)

    async def __aenter__(self) -> "Throttler":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _chained_group_limiter(self, key: str, config: LimiterConfig) -> Limiter:
        return Limiter(config, name=f"group:{key}", tier="group", chain=self.egress)

    def limiter_for(self, route: Route) -> Optional[Limiter]:
        if route.tier is Tier.GROUP:
            return self.groups.key(route.key)
        if route.tier is Tier.EGRESS:
            return self.egress
        return None

    def reply_window(self, *, enabled: bool = True) -> AbstractContextManager[ReplyWindow]:
        """Open a synchronous-reply window for the update handled in this context.

        Only the first inline-reply call made inside the window skips shaping;
        that call closes the window and later calls go through the tiers.
        """

        return bind_reply_window(ReplyWindow(enabled=enabled))

    async def call_api(self, call: OutboundCall, send: Callable[[], Awaitable[T]]) -> Any:
        """Run ``send`` once every tier on the call's route has admitted it."""

        window = current_reply_window()
        route = self.classifier.classify(call, window)
        limiter = self.limiter_for(route)
        if limiter is None:
            if route.reason == "reply_window" and window is not None:
                # The webhook response carries at most one reply.
                window.close()
            record_bypass(route.reason)
            return await send()

        logger.debug("Scheduling %s on %s", call.method, limiter.name)
        try:
            return await limiter.schedule(send)
        except LimiterRejected as exc:
            scope = current_update_scope()
            if scope is None:
                return await self.router.route(route.tier.value, None, None, exc)
            return await self.router.route(route.tier.value, scope.context, scope.continuation, exc)

    async def handle_update(
        self,
        context: Any,
        continuation: Continuation,
        *,
        user_id: Any = None,
        chat_id: Any = None,
    ) -> Any:
        """Invoke ``continuation`` once the originator's inbound limiter admits it."""

        scope = UpdateScope(context=context, continuation=continuation)
        key = originator_key(user_id, chat_id)
        if key is None:
            record_bypass("no_originator")
            return await self._continue(scope)

        limiter = self.inbound.key(key)
        try:
            return await limiter.schedule(self._continue, scope)
        except LimiterRejected as exc:
            # Rejections raised by the handler itself belong to the handler.
            if exc.limiter != limiter.name:
                raise
            return await self.router.route("inbound", context, continuation, exc)

    async def close(self) -> None:
        """Reject all queued work and refuse new work on every tier."""

        self.inbound.stop()
        self.groups.stop()
        self.egress.stop()
        logger.info("Throttler closed")

    @staticmethod
    async def _continue(scope: UpdateScope) -> Any:
        with bind_update_scope(scope):
            return await scope.continuation()


__all__ = ["Throttler", "originator_key"]
