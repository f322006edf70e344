"""FastAPI webhook ingress that opens a reply window around each update."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from tgthrottle.throttler import Throttler

logger = logging.getLogger(__name__)

_TELEGRAM_SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

FeedUpdate = Callable[[Dict[str, Any]], Awaitable[Any]]


def verify_secret_token(headers: Mapping[str, str], expected_secret: str | None) -> bool:
    """Validate Telegram webhook secret token header.

    Telegram sends the opaque ``X-Telegram-Bot-Api-Secret-Token`` header with
    every webhook request when it is configured on ``setWebhook``. The header is
    a verbatim echo of the configured secret and should be compared using a
    timing-safe check.
    """

    if not expected_secret:
        return True
    provided = headers.get(_TELEGRAM_SECRET_HEADER)
    if provided is None:
        return False
    return hmac.compare_digest(provided, expected_secret)


def webhook_response(result: Any) -> Dict[str, Any]:
    """Render a handler result as the body Telegram executes as an inline reply."""

    if result is None:
        return {}
    if isinstance(result, Mapping):
        return dict(result)
    api_method = getattr(result, "__api_method__", None)
    if api_method is None:
        return {}
    return {"method": api_method, **result.model_dump(mode="json", exclude_none=True, exclude_defaults=True)}


def build_webhook_router(
    feed_update: FeedUpdate,
    throttler: Throttler,
    *,
    secret_token: str | None = None,
    path: str = "/telegram/webhook",
    reply_enabled: bool = True,
    expose_metrics: bool = True,
) -> APIRouter:
    """Create a router that feeds webhook updates to the bot.

    ``feed_update`` receives the raw update payload, for aiogram usually
    ``lambda payload: dispatcher.feed_webhook_update(bot, payload)``. Outbound
    calls made while it runs see an open reply window, which closes as soon as
    the response is produced.
    """

    router = APIRouter()

    @router.post(path)
    async def receive_update(request: Request) -> JSONResponse:
        if not verify_secret_token(request.headers, secret_token):
            logger.warning("Rejected webhook request with bad secret token")
            return JSONResponse(status_code=401, content={"error": "unauthorized"})

        payload = await request.json()
        with throttler.reply_window(enabled=reply_enabled):
            result = await feed_update(payload)
        return JSONResponse(content=webhook_response(result))

    if expose_metrics:

        @router.get("/metrics")
        async def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return router


__all__ = ["build_webhook_router", "verify_secret_token", "webhook_response"]
