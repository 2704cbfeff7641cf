"""Background refresh of cached catalog data with subscriber fan-out."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from .cache import CacheStore, ResourceClass, details_key, episodes_key, trending_key
from .clock import Clock, SystemClock, TimerHandle
from .errors import CallbackFailure, ProviderFetchFailure
from .services.provider import DataProvider

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[], Any]
Refresh = Callable[[], Awaitable["NotificationResult | None"]]

DEFAULT_INTERVALS: dict[ResourceClass, float] = {
    ResourceClass.TRENDING: 10 * 60.0,
    ResourceClass.DETAILS: 30 * 60.0,
    ResourceClass.EPISODES: 5 * 60.0,
}


@dataclass(frozen=True, slots=True)
class CallbackOutcome:
    """Result of invoking a single subscriber."""

    callback: UpdateCallback
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class NotificationResult:
    """Per-subscriber outcomes of one notification round for a key."""

    key: str
    outcomes: list[CallbackOutcome] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failures(self) -> list[CallbackOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


class UpdateScheduler:
    """Keeps cache keys warm with one recurring timer per key.

    Each ``start_*_updates`` call replaces the key's timer and adds the
    optional callback to the key's subscribers. Every refresh writes the
    cache first and only then notifies subscribers, in registration order.
    A failing fetch leaves the cache untouched and the timer running.

    Stopping a key does not cancel a refresh that is already in flight; that
    refresh still writes the cache and notifies whichever subscribers remain.
    """

    def __init__(
        self,
        cache: CacheStore,
        provider: DataProvider,
        clock: Clock | None = None,
        *,
        intervals: Mapping[ResourceClass | str, float] | None = None,
    ):
        self._cache = cache
        self._provider = provider
        self._clock = clock or SystemClock()
        self._intervals = dict(DEFAULT_INTERVALS)
        for name, seconds in (intervals or {}).items():
            if seconds <= 0:
                raise ValueError(f"Refresh interval for {name!r} must be positive")
            self._intervals[ResourceClass(name)] = float(seconds)
        self._timers: dict[str, TimerHandle] = {}
        # Dicts keep insertion order, giving ordered set semantics.
        self._callbacks: dict[str, dict[UpdateCallback, None]] = {}
        self._in_flight: dict[asyncio.Task[Any], str] = {}

    # Registration ---------------------------------------------------------

    def start_trending_updates(self, callback: UpdateCallback | None = None) -> str:
        """Refresh trending now and every trending interval afterwards."""

        key = trending_key()
        self._register(key, callback)
        self._dispatch(key, self.refresh_trending)
        self._schedule(key, ResourceClass.TRENDING, self.refresh_trending)
        return key

    def start_details_updates(
        self, anime_id: int | str, callback: UpdateCallback | None = None
    ) -> str:
        """Keep the details of ``anime_id`` warm, refreshing now if stale."""

        key = details_key(anime_id)

        async def refresh() -> NotificationResult | None:
            return await self.refresh_details(anime_id)

        self._register(key, callback)
        if self._cache.is_stale(key):
            self._dispatch(key, refresh)
        self._schedule(key, ResourceClass.DETAILS, refresh)
        return key

    def start_episodes_updates(
        self, anime_id: int | str, callback: UpdateCallback | None = None
    ) -> str:
        """Keep the episode list of ``anime_id`` warm, refreshing now if stale."""

        key = episodes_key(anime_id)

        async def refresh() -> NotificationResult | None:
            return await self.refresh_episodes(anime_id)

        self._register(key, callback)
        if self._cache.is_stale(key):
            self._dispatch(key, refresh)
        self._schedule(key, ResourceClass.EPISODES, refresh)
        return key

    def stop(self, key: str) -> None:
        """Cancel the timer for ``key`` and drop all of its subscribers."""

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._callbacks.pop(key, None)
        logger.debug("Stopped updates for %s", key)

    def stop_all(self) -> None:
        """Cancel every timer and forget every subscriber."""

        for timer in self._timers.values():
            timer.cancel()
        stopped = len(self._timers)
        self._timers.clear()
        self._callbacks.clear()
        logger.info("Stopped %d scheduled update(s)", stopped)

    def remove_callback(self, key: str, callback: UpdateCallback) -> None:
        """Unsubscribe ``callback``; the key keeps refreshing regardless."""

        callbacks = self._callbacks.get(key)
        if callbacks is not None:
            callbacks.pop(callback, None)

    # Introspection --------------------------------------------------------

    def is_tracking(self, key: str) -> bool:
        return key in self._timers

    def tracked_keys(self) -> list[str]:
        return sorted(self._timers)

    def callback_count(self, key: str) -> int:
        return len(self._callbacks.get(key, {}))

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def wait_idle(
        self, key: str | None = None, *, timeout: float | None = None
    ) -> bool:
        """Wait for dispatched refreshes, optionally only those for ``key``.

        Returns False when some refresh was still running after ``timeout``.
        """

        while True:
            tasks = {
                task
                for task, task_key in self._in_flight.items()
                if key is None or task_key == key
            }
            if not tasks:
                return True
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                return False

    # Refresh cycles -------------------------------------------------------

    async def refresh_trending(self) -> NotificationResult | None:
        return await self._refresh(
            trending_key(), ResourceClass.TRENDING, self._provider.fetch_trending
        )

    async def refresh_details(self, anime_id: int | str) -> NotificationResult | None:
        return await self._refresh(
            details_key(anime_id),
            ResourceClass.DETAILS,
            lambda: self._provider.fetch_details(anime_id),
            keep_on_absent=True,
        )

    async def refresh_episodes(self, anime_id: int | str) -> NotificationResult | None:
        return await self._refresh(
            episodes_key(anime_id),
            ResourceClass.EPISODES,
            lambda: self._provider.fetch_episodes(anime_id),
            keep_on_absent=True,
        )

    def notify(self, key: str) -> NotificationResult:
        """Invoke every subscriber of ``key`` capturing individual failures."""

        outcomes: list[CallbackOutcome] = []
        for callback in list(self._callbacks.get(key, {})):
            try:
                callback()
            except Exception as exc:
                outcomes.append(CallbackOutcome(callback, exc))
            else:
                outcomes.append(CallbackOutcome(callback))
        return NotificationResult(key=key, outcomes=outcomes)

    async def _refresh(
        self,
        key: str,
        resource: ResourceClass,
        fetch: Callable[[], Awaitable[Any]],
        *,
        keep_on_absent: bool = False,
    ) -> NotificationResult | None:
        logger.info("Refreshing %s", key)
        try:
            value = await fetch()
        except Exception as exc:
            logger.warning("%s", ProviderFetchFailure(key, exc))
            return None

        if value is None and keep_on_absent:
            logger.info("Provider returned nothing for %s, keeping cached entry", key)
            return None

        self._cache.set(key, value, self._cache.get_ttl(resource))
        result = self.notify(key)
        for failure in result.failures:
            logger.error(
                "%s",
                CallbackFailure(key, failure.error),
                exc_info=failure.error,
            )
        logger.info(
            "Refreshed %s, notified %d of %d subscriber(s)",
            key,
            result.delivered,
            len(result.outcomes),
        )
        return result

    # Internals ------------------------------------------------------------

    def _register(self, key: str, callback: UpdateCallback | None) -> None:
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()
        if callback is not None:
            self._callbacks.setdefault(key, {})[callback] = None

    def _schedule(self, key: str, resource: ResourceClass, refresh: Refresh) -> None:
        interval = self._intervals[resource]
        self._timers[key] = self._clock.call_every(
            interval, lambda: self._dispatch(key, refresh)
        )
        logger.debug("Scheduled %s every %.0fs", key, interval)

    def _dispatch(self, key: str, refresh: Refresh) -> asyncio.Task[Any]:
        task = asyncio.create_task(refresh())
        self._in_flight[task] = key
        task.add_done_callback(self._forget_task)
        return task

    def _forget_task(self, task: asyncio.Task[Any]) -> None:
        self._in_flight.pop(task, None)
