"""Process-wide container for the cache, provider and scheduler."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from .cache import CacheStore
from .clock import Clock, SystemClock
from .config import Settings
from .scheduler import UpdateScheduler
from .services.anilist import AniListClient
from .services.episodes import EpisodeClient
from .services.provider import AnimeDataProvider, DataProvider


@dataclass(slots=True)
class CoreContext:
    """Everything consumers need, built once per process and passed around."""

    settings: Settings
    clock: Clock
    cache: CacheStore
    provider: DataProvider
    scheduler: UpdateScheduler
    anilist: AniListClient | None = None
    episodes: EpisodeClient | None = None
    _closed: bool = False

    @classmethod
    def build(
        cls,
        settings: Settings,
        provider: DataProvider,
        *,
        clock: Clock | None = None,
        anilist: AniListClient | None = None,
        episodes: EpisodeClient | None = None,
    ) -> "CoreContext":
        """Wire a cache and scheduler around ``provider`` using ``settings``."""

        resolved_clock = clock or SystemClock()
        cache = CacheStore(
            resolved_clock,
            ttls=settings.ttl_map,
            stale_window=settings.stale_window_seconds,
        )
        scheduler = UpdateScheduler(
            cache,
            provider,
            resolved_clock,
            intervals=settings.interval_map,
        )
        return cls(
            settings=settings,
            clock=resolved_clock,
            cache=cache,
            provider=provider,
            scheduler=scheduler,
            anilist=anilist,
            episodes=episodes,
        )

    @classmethod
    def from_http_clients(
        cls,
        settings: Settings,
        anilist_http: httpx.AsyncClient,
        episode_http: httpx.AsyncClient,
        *,
        clock: Clock | None = None,
    ) -> "CoreContext":
        """Build the production context on top of shared httpx clients."""

        anilist = AniListClient(settings, anilist_http)
        episodes = EpisodeClient(settings, episode_http, anilist)
        provider = AnimeDataProvider(settings, anilist, episodes)
        return cls.build(
            settings, provider, clock=clock, anilist=anilist, episodes=episodes
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self, *, drain_timeout: float = 5.0) -> None:
        """Stop every scheduled update; repeated calls are no-ops."""

        if self._closed:
            return
        self._closed = True
        self.scheduler.stop_all()
        await self.scheduler.wait_idle(timeout=drain_timeout)
