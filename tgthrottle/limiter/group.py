"""Registry of lazily created limiters, one per key."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List

from tgthrottle.config import LimiterConfig
from tgthrottle.limiter.limiter import Limiter
from tgthrottle.metrics import record_registry_size

logger = logging.getLogger(__name__)

LimiterFactory = Callable[[str, LimiterConfig], Limiter]


@dataclass
class RegistryEntry:
    key: str
    limiter: Limiter
    last_activity: float


class LimiterGroup:
    """Hand out one :class:`Limiter` per key, all sharing the same config.

    ``factory`` builds the limiter for a key the first time it is requested,
    which is where callers compose it with other limiters. Entries untouched for
    ``idle_timeout`` seconds and holding no queued or running work are evicted
    the next time the registry is accessed.
    """

    def __init__(
        self,
        config: LimiterConfig | None = None,
        *,
        name: str = "group",
        factory: LimiterFactory | None = None,
        idle_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or LimiterConfig()
        self.name = name
        self.idle_timeout = idle_timeout
        self._factory = factory or self._default_factory
        self._clock = clock
        self._entries: Dict[str, RegistryEntry] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> List[str]:
        return list(self._entries)

    def key(self, key: str) -> Limiter:
        """Return the limiter for ``key``, creating it on first use."""

        now = self._clock()
        self._sweep(now)
        entry = self._entries.get(key)
        if entry is None:
            limiter = self._factory(key, self.config)
            entry = RegistryEntry(key=key, limiter=limiter, last_activity=now)
            self._entries[key] = entry
            logger.debug("Created limiter for key %s in %s", key, self.name)
            record_registry_size(self.name, len(self._entries))
        else:
            entry.last_activity = now
        return entry.limiter

    def delete(self, key: str) -> bool:
        """Stop and forget the limiter for ``key``; return whether it existed."""

        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.limiter.stop()
        record_registry_size(self.name, len(self._entries))
        return True

    def stop(self, *, drop_waiting: bool = True) -> None:
        for entry in self._entries.values():
            entry.limiter.stop(drop_waiting=drop_waiting)

    def _default_factory(self, key: str, config: LimiterConfig) -> Limiter:
        return Limiter(config, name=f"{self.name}:{key}", tier=self.name, clock=self._clock)

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.idle_timeout / 2:
            return
        self._last_sweep = now
        expired = [
            key
            for key, entry in self._entries.items()
            if now - entry.last_activity >= self.idle_timeout and entry.limiter.is_idle()
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted %d idle limiters from %s", len(expired), self.name)
            record_registry_size(self.name, len(self._entries))


__all__ = ["LimiterFactory", "LimiterGroup", "RegistryEntry"]
