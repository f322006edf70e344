"""Async Telegram Bot API client whose calls can be routed through a throttler."""

from __future__ import annotations

import os
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from tgthrottle.classifier import OutboundCall

CallInterceptor = Callable[[OutboundCall, Callable[[], Awaitable[Any]]], Awaitable[Any]]


class TelegramBotAPIError(RuntimeError):
    """Raised when the Telegram Bot API returns an error response."""

    def __init__(self, method: str, description: str, *, status_code: int | None = None) -> None:
        message = f"Telegram Bot API call '{method}' failed: {description}"
        if status_code is not None:
            message = f"{message} (status={status_code})"
        super().__init__(message)
        self.method = method
        self.description = description
        self.status_code = status_code


class TelegramBotAPI:
    """Tiny async helper around the official Telegram Bot API endpoints.

    By default the bot token is loaded from the ``TELEGRAM_BOT_TOKEN``
    environment variable. Pass ``interceptor=throttler.call_api`` to have every
    call paced by a :class:`~tgthrottle.throttler.Throttler`; the interceptor
    receives the call record and a zero-argument coroutine function that
    performs the actual HTTP request.
    """

    def __init__(
        self,
        *,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        interceptor: CallInterceptor | None = None,
    ) -> None:
        token = token or os.getenv("TELEGRAM_BOT_TOKEN")
        if not token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN is not configured")

        self._token = token
        self._base_url = base_url or os.getenv("TELEGRAM_BOT_API_BASE", "https://api.telegram.org")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._interceptor = interceptor

    @property
    def base_url(self) -> str:
        return self._base_url.rstrip("/")

    def _method_path(self, method: str) -> str:
        return f"/bot{self._token}/{method}"

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()

    async def __aenter__(self) -> "TelegramBotAPI":
        self._ensure_client()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def call(
        self,
        method: str,
        *,
        params: Mapping[str, Any] | None = None,
        files: Mapping[str, Any] | None = None,
    ) -> Any:
        """Execute an arbitrary Bot API method and return the response payload."""

        async def send() -> Any:
            return await self._post(method, params, files)

        if self._interceptor is None:
            return await send()
        return await self._interceptor(OutboundCall(method=method, payload=dict(params or {})), send)

    async def _post(
        self,
        method: str,
        params: Mapping[str, Any] | None,
        files: Mapping[str, Any] | None,
    ) -> Any:
        client = self._ensure_client()
        response = await client.post(self._method_path(method), data=params, files=files)
        if response.status_code != 200:
            raise TelegramBotAPIError(method, response.text, status_code=response.status_code)

        payload = response.json()
        if not payload.get("ok"):
            description = payload.get("description", "unknown error")
            raise TelegramBotAPIError(method, description)
        return payload["result"]

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        *,
        parse_mode: str | None = None,
        disable_web_page_preview: bool | None = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a message to a chat with safe defaults."""

        params: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            params["parse_mode"] = parse_mode
        if disable_web_page_preview is not None:
            params["disable_web_page_preview"] = disable_web_page_preview
        if extra:
            params.update(extra)

        return await self.call("sendMessage", params=params)

    async def send_chat_action(self, chat_id: int | str, action: str = "typing") -> bool:
        return await self.call("sendChatAction", params={"chat_id": chat_id, "action": action})

    async def answer_callback_query(
        self, callback_query_id: str, *, text: str | None = None, show_alert: bool = False
    ) -> bool:
        params: Dict[str, Any] = {"callback_query_id": callback_query_id, "show_alert": show_alert}
        if text:
            params["text"] = text
        return await self.call("answerCallbackQuery", params=params)


__all__ = [
    "CallInterceptor",
    "TelegramBotAPI",
    "TelegramBotAPIError",
]
