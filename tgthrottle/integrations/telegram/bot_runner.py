"""Runtime helpers for running a throttled aiogram bot."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.types import Update

from tgthrottle.integrations.telegram.middleware import install_throttler
from tgthrottle.throttler import Throttler

logger = logging.getLogger(__name__)


Handler = Callable[..., Awaitable[Any]]


@dataclass
class TelegramBotRunner:
    """Thin bootstrapper around aiogram with the throttler pre-installed."""

    token: str | None = None
    throttler: Throttler = field(default_factory=Throttler)
    parse_mode: str | None = "HTML"
    aiohttp_timeout: float = 10.0
    handlers: List[tuple[str, Handler]] = field(default_factory=list)
    bot: Bot = field(init=False)
    dispatcher: Dispatcher = field(init=False)

    def __post_init__(self) -> None:
        self.token = self.token or os.getenv("TELEGRAM_BOT_TOKEN")
        if not self.token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN is not configured for bot runner")

        session = AiohttpSession(timeout=self.aiohttp_timeout)
        self.bot = Bot(
            token=self.token,
            session=session,
            default=DefaultBotProperties(parse_mode=self.parse_mode),
        )
        self.dispatcher = Dispatcher()
        install_throttler(self.dispatcher, self.bot, self.throttler)

        for event, handler in self.handlers:
            self.register_handler(event, handler)

    def register_handler(self, event: str, handler: Handler) -> None:
        """Attach ``handler`` to the dispatcher observer named ``event``.

        ``event`` is an observer attribute such as ``message`` or
        ``callback_query``.
        """

        if not hasattr(self.dispatcher, event):
            raise AttributeError(f"Unsupported aiogram dispatcher event: {event}")
        registry = getattr(self.dispatcher, event)
        registry.register(handler)

    async def handle_update(self, update: Update | dict[str, Any]) -> Any:
        if isinstance(update, dict):
            return await self.dispatcher.feed_webhook_update(self.bot, update)
        return await self.dispatcher.feed_update(self.bot, update)

    async def start_polling(self) -> None:
        await self.dispatcher.start_polling(self.bot)

    async def start_webhook(
        self,
        *,
        url: str,
        secret_token: str | None = None,
        drop_pending_updates: bool = True,
    ) -> None:
        await self.bot.set_webhook(url=url, secret_token=secret_token, drop_pending_updates=drop_pending_updates)

    async def shutdown(self) -> None:
        await self.throttler.close()
        await self.dispatcher.storage.close()
        await self.bot.session.close()
        logger.info("Bot runner shut down")


__all__ = ["TelegramBotRunner"]
