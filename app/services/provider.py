"""Data provider interface consumed by the update scheduler."""

from __future__ import annotations

from typing import Protocol

from ..config import Settings
from ..models import AnimeInfo, Episode
from .anilist import AniListClient
from .episodes import EpisodeClient


class DataProvider(Protocol):
    """Fetch functions the scheduler calls on every refresh.

    Implementations either return a value or raise; the scheduler handles
    the failure.
    """

    async def fetch_trending(self) -> list[AnimeInfo]: ...

    async def fetch_details(self, anime_id: int | str) -> AnimeInfo | None: ...

    async def fetch_episodes(self, anime_id: int | str) -> list[Episode] | None: ...


class AnimeDataProvider:
    """Provider backed by AniList and the episode lookup service.

    Upstream failures are raised so a failed refresh never replaces a good
    cache entry with an empty one.
    """

    def __init__(
        self,
        settings: Settings,
        anilist: AniListClient,
        episodes: EpisodeClient,
    ):
        self._settings = settings
        self.anilist = anilist
        self.episodes = episodes

    async def fetch_trending(self) -> list[AnimeInfo]:
        return await self.anilist.fetch_trending(
            1, self._settings.trending_page_size, raise_on_error=True
        )

    async def fetch_details(self, anime_id: int | str) -> AnimeInfo | None:
        return await self.anilist.fetch_details(anime_id, raise_on_error=True)

    async def fetch_episodes(self, anime_id: int | str) -> list[Episode] | None:
        return await self.episodes.fetch_episodes(anime_id, raise_on_error=True)
