"""FastAPI application serving a throttled bot over webhooks."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import FastAPI

from tgthrottle.config import ThrottlerConfig
from tgthrottle.integrations.telegram.bot_runner import TelegramBotRunner
from tgthrottle.integrations.telegram.webhook import build_webhook_router
from tgthrottle.throttler import Throttler

logger = logging.getLogger(__name__)


def create_app(runner: TelegramBotRunner | None = None) -> FastAPI:
    """Build the webhook app; configuration comes from the environment by default."""

    if runner is None:
        runner = TelegramBotRunner(throttler=Throttler(ThrottlerConfig.from_env()))
    throttler = runner.throttler

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await runner.shutdown()

    app = FastAPI(title="tgthrottle webhook", lifespan=lifespan)

    async def feed_update(payload: Dict[str, Any]) -> Any:
        return await runner.handle_update(payload)

    app.include_router(
        build_webhook_router(
            feed_update,
            throttler,
            secret_token=os.getenv("TELEGRAM_WEBHOOK_SECRET"),
            path=os.getenv("TELEGRAM_WEBHOOK_PATH", "/telegram/webhook"),
        )
    )

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "group_limiters": len(throttler.groups),
            "inbound_limiters": len(throttler.inbound),
            "egress_queued": throttler.egress.queued(),
        }

    logger.info("Webhook app created")
    return app
