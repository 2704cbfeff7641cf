"""In-memory TTL cache for catalog payloads."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from .clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_STALE_WINDOW = 2 * 60.0

TRENDING_KEY = "trending-anime"


class ResourceClass(str, Enum):
    """Categories of cached data with their own lifetimes."""

    TRENDING = "trending"
    DETAILS = "details"
    EPISODES = "episodes"
    DEFAULT = "default"


DEFAULT_TTLS: dict[ResourceClass, float] = {
    ResourceClass.TRENDING: 10 * 60.0,
    ResourceClass.DETAILS: 30 * 60.0,
    ResourceClass.EPISODES: 5 * 60.0,
    ResourceClass.DEFAULT: 5 * 60.0,
}


def trending_key() -> str:
    return TRENDING_KEY


def details_key(anime_id: int | str) -> str:
    return f"anime-details-{anime_id}"


def episodes_key(anime_id: int | str) -> str:
    return f"episodes-{anime_id}"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached value together with its creation and expiry timestamps."""

    value: Any
    created_at: float
    expires_at: float

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheStore:
    """Keyed store with lazy expiry and regex-based invalidation.

    Values are handed out as-is; callers must treat them as read-only
    snapshots. Expired entries are only removed when read or invalidated.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        *,
        ttls: Mapping[ResourceClass | str, float] | None = None,
        stale_window: float = DEFAULT_STALE_WINDOW,
    ):
        self._clock = clock or SystemClock()
        self._entries: dict[str, CacheEntry] = {}
        self._ttls = dict(DEFAULT_TTLS)
        for name, seconds in (ttls or {}).items():
            if seconds <= 0:
                raise ValueError(f"TTL for {name!r} must be positive")
            self._ttls[ResourceClass(name)] = float(seconds)
        if stale_window <= 0:
            raise ValueError("Stale window must be positive")
        self._stale_window = float(stale_window)

    @property
    def default_ttl(self) -> float:
        return self._ttls[ResourceClass.DEFAULT]

    @property
    def stale_window(self) -> float:
        return self._stale_window

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        """Return the stored keys, expired entries included."""

        return list(self._entries)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key`` replacing any previous entry."""

        lifetime = self.default_ttl if ttl is None else float(ttl)
        if lifetime < 0:
            raise ValueError("TTL cannot be negative")
        if lifetime == 0:
            # Expires immediately: behave as if written and evicted at once.
            self._entries.pop(key, None)
            return
        now = self._clock.now()
        self._entries[key] = CacheEntry(
            value=value, created_at=now, expires_at=now + lifetime
        )

    def get_entry(self, key: str) -> CacheEntry | None:
        """Return the live entry for ``key`` evicting it when expired."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock.now()):
            del self._entries[key]
            logger.debug("Evicted expired cache entry %s", key)
            return None
        return entry

    def get(self, key: str) -> Any | None:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def is_stale(self, key: str, stale_window: float | None = None) -> bool:
        """Return True when ``key`` is missing, expired or past the stale window."""

        entry = self._entries.get(key)
        if entry is None:
            return True
        now = self._clock.now()
        if entry.is_expired(now):
            return True
        window = self._stale_window if stale_window is None else stale_window
        return entry.age(now) > window

    def invalidate(self, pattern: str | None = None) -> int:
        """Drop every key matching ``pattern``, or everything when omitted."""

        if not pattern:
            removed = len(self._entries)
            self._entries.clear()
            return removed
        regex = re.compile(pattern)
        matched = [key for key in self._entries if regex.search(key)]
        for key in matched:
            del self._entries[key]
        if matched:
            logger.debug("Invalidated %d cache entries for /%s/", len(matched), pattern)
        return len(matched)

    def clear(self) -> None:
        self._entries.clear()

    def get_ttl(self, resource_class: ResourceClass | str) -> float:
        """Return the lifetime configured for ``resource_class``."""

        try:
            return self._ttls[ResourceClass(resource_class)]
        except ValueError:
            return self.default_ttl
