"""aiogram middlewares that route updates and Bot API calls through a throttler."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.client.session.middlewares.base import BaseRequestMiddleware, NextRequestMiddlewareType
from aiogram.methods import TelegramMethod
from aiogram.methods.base import TelegramType
from aiogram.types import TelegramObject

from tgthrottle.classifier import OutboundCall
from tgthrottle.throttler import Throttler

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from aiogram import Bot, Dispatcher

logger = logging.getLogger(__name__)

Handler = Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]]


class ThrottlingMiddleware(BaseMiddleware):
    """Update outer middleware admitting handler invocation per originator.

    Relies on aiogram's built-in user context middleware, which runs first and
    stores ``event_from_user`` and ``event_chat`` in the handler data.
    """

    def __init__(self, throttler: Throttler) -> None:
        self._throttler = throttler

    async def __call__(self, handler: Handler, event: TelegramObject, data: Dict[str, Any]) -> Any:
        user = data.get("event_from_user")
        chat = data.get("event_chat")

        async def proceed() -> Any:
            return await handler(event, data)

        return await self._throttler.handle_update(
            event,
            proceed,
            user_id=getattr(user, "id", None),
            chat_id=getattr(chat, "id", None),
        )


class ThrottlingRequestMiddleware(BaseRequestMiddleware):
    """Bot session middleware pacing outgoing Bot API requests."""

    def __init__(self, throttler: Throttler) -> None:
        self._throttler = throttler

    async def __call__(
        self,
        make_request: NextRequestMiddlewareType[TelegramType],
        bot: "Bot",
        method: TelegramMethod[TelegramType],
    ) -> TelegramType:
        name = method.__api_method__
        field_name = self._throttler.classifier.destination_field(name)
        payload = {} if field_name is None else {field_name: getattr(method, field_name, None)}

        async def send() -> TelegramType:
            return await make_request(bot, method)

        return await self._throttler.call_api(OutboundCall(method=name, payload=payload), send)


def install_throttler(dispatcher: "Dispatcher", bot: "Bot", throttler: Throttler) -> None:
    """Register the throttler on the dispatcher and on the bot's session."""

    dispatcher.update.outer_middleware(ThrottlingMiddleware(throttler))
    bot.session.middleware(ThrottlingRequestMiddleware(throttler))
    logger.info("Throttler installed on dispatcher and bot session")


__all__ = ["ThrottlingMiddleware", "ThrottlingRequestMiddleware", "install_throttler"]
