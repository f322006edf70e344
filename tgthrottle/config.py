"""Configuration models for the throttling gateway."""

from __future__ import annotations

import json
import logging
import os
from enum import Enum
from typing import Any, FrozenSet, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from tgthrottle.errors import ThrottlerConfigError

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    """What a limiter does once its queue is full."""

    LEAK = "leak"
    OVERFLOW = "overflow"


class LimiterConfig(BaseModel):
    """Immutable settings for a single limiter. Times are in seconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_concurrent: Optional[int] = Field(default=None, ge=1)
    min_time: float = Field(default=0.0, ge=0)
    reservoir: Optional[int] = Field(default=None, ge=0)
    reservoir_refresh_amount: Optional[int] = Field(default=None, ge=0)
    reservoir_refresh_interval: Optional[float] = Field(default=None, gt=0)
    high_water: Optional[int] = Field(default=None, ge=0)
    strategy: Strategy = Strategy.LEAK

    @model_validator(mode="after")
    def _check_refresh(self) -> "LimiterConfig":
        has_amount = self.reservoir_refresh_amount is not None
        has_interval = self.reservoir_refresh_interval is not None
        if has_amount != has_interval:
            raise ValueError(
                "reservoir_refresh_amount and reservoir_refresh_interval must be set together"
            )
        return self


DEFAULT_GROUP_CONFIG = LimiterConfig(
    max_concurrent=1,
    min_time=0.333,
    reservoir=20,
    reservoir_refresh_amount=20,
    reservoir_refresh_interval=60.0,
)

DEFAULT_OUT_CONFIG = LimiterConfig(
    min_time=0.025,
    reservoir=30,
    reservoir_refresh_amount=30,
    reservoir_refresh_interval=1.0,
)

DEFAULT_INBOUND_CONFIG = LimiterConfig(
    max_concurrent=1,
    min_time=0.333,
    high_water=3,
    strategy=Strategy.LEAK,
)

# Calls that can be answered on the still-open webhook response.
INLINE_REPLY_METHODS: FrozenSet[str] = frozenset(
    {
        "answerCallbackQuery",
        "answerInlineQuery",
        "answerPreCheckoutQuery",
        "answerShippingQuery",
        "answerWebAppQuery",
        "leaveChat",
        "deleteMessage",
        "sendChatAction",
    }
)

# Calls Telegram does not count against the per-group message limit.
GROUP_EXEMPT_METHODS: FrozenSet[str] = frozenset(
    {
        "sendChatAction",
        "deleteMessage",
        "deleteMessages",
        "getChat",
        "getChatAdministrators",
        "getChatMember",
        "getChatMemberCount",
        "leaveChat",
    }
)

_ENV_LIMITERS = {
    "group": ("TGTHROTTLE_GROUP", DEFAULT_GROUP_CONFIG),
    "out": ("TGTHROTTLE_OUT", DEFAULT_OUT_CONFIG),
    "inbound": ("TGTHROTTLE_INBOUND", DEFAULT_INBOUND_CONFIG),
}


class ThrottlerConfig(BaseModel):
    """Settings for all three tiers plus the routing tables."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    group: LimiterConfig = DEFAULT_GROUP_CONFIG
    out: LimiterConfig = DEFAULT_OUT_CONFIG
    inbound: LimiterConfig = DEFAULT_INBOUND_CONFIG
    inline_reply_methods: FrozenSet[str] = INLINE_REPLY_METHODS
    group_exempt_methods: FrozenSet[str] = GROUP_EXEMPT_METHODS
    group_idle_timeout: float = Field(default=300.0, gt=0)
    inbound_idle_timeout: float = Field(default=300.0, gt=0)

    @classmethod
    def build(cls, **values: Any) -> "ThrottlerConfig":
        """Validate ``values`` and raise :class:`ThrottlerConfigError` on failure."""

        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ThrottlerConfigError(str(exc)) from exc

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ThrottlerConfig":
        """Load overrides from ``TGTHROTTLE_*`` variables.

        Each limiter variable holds a JSON object whose keys are merged over the
        corresponding default, e.g. ``TGTHROTTLE_OUT='{"min_time": 0.05}'``.
        """

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field_name, (env_name, default) in _ENV_LIMITERS.items():
            raw = env.get(env_name, "").strip()
            if not raw:
                continue
            try:
                overrides = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ThrottlerConfigError(f"{env_name} is not valid JSON: {exc}") from exc
            if not isinstance(overrides, dict):
                raise ThrottlerConfigError(f"{env_name} must be a JSON object")
            values[field_name] = {**default.model_dump(), **overrides}
            logger.info("Loaded %s overrides from %s", field_name, env_name)

        idle_timeout = env.get("TGTHROTTLE_IDLE_TIMEOUT", "").strip()
        if idle_timeout:
            values["group_idle_timeout"] = idle_timeout
            values["inbound_idle_timeout"] = idle_timeout
        return cls.build(**values)


__all__ = [
    "DEFAULT_GROUP_CONFIG",
    "DEFAULT_INBOUND_CONFIG",
    "DEFAULT_OUT_CONFIG",
    "GROUP_EXEMPT_METHODS",
    "INLINE_REPLY_METHODS",
    "LimiterConfig",
    "Strategy",
    "ThrottlerConfig",
]
