"""Telegram host integrations: Bot API client, aiogram middlewares, webhook ingress."""

from .bot_api import CallInterceptor, TelegramBotAPI, TelegramBotAPIError
from .middleware import ThrottlingMiddleware, ThrottlingRequestMiddleware, install_throttler
from .webhook import build_webhook_router, verify_secret_token, webhook_response

__all__ = [
    "CallInterceptor",
    "TelegramBotAPI",
    "TelegramBotAPIError",
    "ThrottlingMiddleware",
    "ThrottlingRequestMiddleware",
    "build_webhook_router",
    "install_throttler",
    "verify_secret_token",
    "webhook_response",
]
