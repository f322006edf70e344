"""Rate limiting gateway for Telegram bots."""

from .classifier import CallClassifier, OutboundCall, Route, Tier
from .config import LimiterConfig, Strategy, ThrottlerConfig
from .errors import LimiterRejected, ThrottlerConfigError, ThrottlerError
from .limiter import Limiter, LimiterGroup
from .scope import ReplyWindow, UpdateScope
from .throttler import Throttler

__all__ = [
    "CallClassifier",
    "Limiter",
    "LimiterConfig",
    "LimiterGroup",
    "LimiterRejected",
    "OutboundCall",
    "ReplyWindow",
    "Route",
    "Strategy",
    "Throttler",
    "ThrottlerConfig",
    "ThrottlerConfigError",
    "ThrottlerError",
    "Tier",
    "UpdateScope",
]
