"""Decide which throttling tier governs an outbound Bot API call."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from tgthrottle.config import GROUP_EXEMPT_METHODS, INLINE_REPLY_METHODS
from tgthrottle.scope import ReplyWindow

DEFAULT_DESTINATION_FIELD = "chat_id"

# Methods whose payload never names a chat.
_NO_DESTINATION: Dict[str, Optional[str]] = {
    method: None
    for method in (
        "answerCallbackQuery",
        "answerInlineQuery",
        "answerPreCheckoutQuery",
        "answerShippingQuery",
        "answerWebAppQuery",
        "getMe",
        "getUpdates",
        "getFile",
        "getUserProfilePhotos",
        "getWebhookInfo",
        "setWebhook",
        "deleteWebhook",
        "logOut",
        "close",
        "getMyCommands",
        "setMyCommands",
        "deleteMyCommands",
        "getStickerSet",
        "uploadStickerFile",
    )
}


class Tier(str, Enum):
    BYPASS = "bypass"
    EGRESS = "egress"
    GROUP = "group"


@dataclass(frozen=True)
class OutboundCall:
    """A single Bot API call on its way out."""

    method: str
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Route:
    tier: Tier
    reason: str
    chat_id: Optional[int] = None

    @property
    def key(self) -> str:
        return str(self.chat_id)


def parse_chat_id(value: Any) -> Optional[int]:
    """Return ``value`` as an integer chat id, or ``None`` if it is not numeric.

    Usernames such as ``"@channel"`` are valid destinations for Telegram but
    carry no numeric identity, so they cannot be paced per chat.
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        digits = text[1:] if text.startswith("-") else text
        if digits.isdigit():
            return int(text)
    return None


class CallClassifier:
    """Map outbound calls to a :class:`Route`."""

    def __init__(
        self,
        *,
        inline_reply_methods: Iterable[str] = INLINE_REPLY_METHODS,
        group_exempt_methods: Iterable[str] = GROUP_EXEMPT_METHODS,
        destination_fields: Mapping[str, Optional[str]] | None = None,
    ) -> None:
        self.inline_reply_methods: FrozenSet[str] = frozenset(inline_reply_methods)
        self.group_exempt_methods: FrozenSet[str] = frozenset(group_exempt_methods)
        self._destination_fields: Dict[str, Optional[str]] = dict(_NO_DESTINATION)
        if destination_fields:
            self._destination_fields.update(destination_fields)

    def destination_field(self, method: str) -> Optional[str]:
        return self._destination_fields.get(method, DEFAULT_DESTINATION_FIELD)

    def destination(self, call: OutboundCall) -> Optional[int]:
        field_name = self.destination_field(call.method)
        if field_name is None:
            return None
        return parse_chat_id(call.payload.get(field_name))

    def classify(self, call: OutboundCall, reply_window: ReplyWindow | None = None) -> Route:
        chat_id = self.destination(call)
        if chat_id is None:
            return Route(Tier.BYPASS, "no_destination")

        if (
            reply_window is not None
            and reply_window.is_open
            and call.method in self.inline_reply_methods
        ):
            return Route(Tier.BYPASS, "reply_window", chat_id)

        if chat_id > 0:
            return Route(Tier.EGRESS, "private", chat_id)
        if call.method in self.group_exempt_methods:
            return Route(Tier.EGRESS, "group_exempt", chat_id)
        return Route(Tier.GROUP, "group", chat_id)


__all__ = [
    "CallClassifier",
    "DEFAULT_DESTINATION_FIELD",
    "OutboundCall",
    "Route",
    "Tier",
    "parse_chat_id",
]
