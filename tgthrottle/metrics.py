"""Prometheus metric definitions and helpers for the throttler."""

from __future__ import annotations

from typing import Optional

from prometheus_client import Counter, Gauge, Histogram


ADMISSIONS_TOTAL = Counter(
    "tgthrottle_admissions_total",
    "Total number of units admitted, partitioned by tier.",
    ["tier"],
)

REJECTIONS_TOTAL = Counter(
    "tgthrottle_rejections_total",
    "Total number of admission rejections routed to the handler, partitioned by tier and reason.",
    ["tier", "reason"],
)

BYPASS_TOTAL = Counter(
    "tgthrottle_bypass_total",
    "Total number of calls or updates that skipped shaping, partitioned by reason.",
    ["reason"],
)

ADMISSION_WAIT_SECONDS = Histogram(
    "tgthrottle_admission_wait_seconds",
    "Time a unit spent queued before admission, partitioned by tier.",
    ["tier"],
)

REGISTRY_SIZE = Gauge(
    "tgthrottle_registry_limiters",
    "Number of live keyed limiters, partitioned by registry.",
    ["registry"],
)


def record_admission(tier: str, wait_seconds: Optional[float] = None) -> None:
    """Increment admission counters and optionally record the queue wait."""

    ADMISSIONS_TOTAL.labels(tier=tier).inc()
    if wait_seconds is not None:
        ADMISSION_WAIT_SECONDS.labels(tier=tier).observe(wait_seconds)


def record_rejection(tier: str, reason: str) -> None:
    """Increment counters for a rejection that reached the handler."""

    REJECTIONS_TOTAL.labels(tier=tier, reason=reason).inc()


def record_bypass(reason: str) -> None:
    """Increment counters for unshaped calls and updates."""

    BYPASS_TOTAL.labels(reason=reason).inc()


def record_registry_size(registry: str, size: int) -> None:
    REGISTRY_SIZE.labels(registry=registry).set(size)
