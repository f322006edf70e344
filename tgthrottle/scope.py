"""Per-update state carried through context variables."""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from tgthrottle.errors import Continuation


@dataclass
class ReplyWindow:
    """Tracks whether the inbound webhook response is still open.

    While open, one reply can travel back on that response instead of going
    out as a separate Bot API request. Sending it closes the window.
    """

    enabled: bool = True
    closed: bool = False

    @property
    def is_open(self) -> bool:
        return self.enabled and not self.closed

    def close(self) -> None:
        self.closed = True


@dataclass(frozen=True)
class UpdateScope:
    """The update whose handler is currently running."""

    context: Any
    continuation: Optional[Continuation]


_reply_window: contextvars.ContextVar[Optional[ReplyWindow]] = contextvars.ContextVar(
    "tgthrottle_reply_window", default=None
)
_update_scope: contextvars.ContextVar[Optional[UpdateScope]] = contextvars.ContextVar(
    "tgthrottle_update_scope", default=None
)


def current_reply_window() -> Optional[ReplyWindow]:
    return _reply_window.get()


def current_update_scope() -> Optional[UpdateScope]:
    return _update_scope.get()


@contextmanager
def bind_reply_window(window: ReplyWindow) -> Iterator[ReplyWindow]:
    """Expose ``window`` to outbound calls made in this context, closing it on exit."""

    token = _reply_window.set(window)
    try:
        yield window
    finally:
        window.close()
        _reply_window.reset(token)


@contextmanager
def bind_update_scope(scope: UpdateScope) -> Iterator[UpdateScope]:
    token = _update_scope.set(scope)
    try:
        yield scope
    finally:
        _update_scope.reset(token)


__all__ = [
    "ReplyWindow",
    "UpdateScope",
    "bind_reply_window",
    "bind_update_scope",
    "current_reply_window",
    "current_update_scope",
]
