"""Helper client for the episode and streaming lookup service."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import UpstreamError
from ..models import Episode, StreamingData
from .anilist import AniListClient

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "episode-"
FALLBACK_EPISODE_COUNT = 12


def placeholder_episodes(count: int) -> list[Episode]:
    """Return numbered stand-in episodes for titles the service cannot find."""

    return [
        Episode(id=f"{PLACEHOLDER_PREFIX}{number}", number=number, title=f"Episode {number}")
        for number in range(1, max(count, 0) + 1)
    ]


class EpisodeClient:
    """Wrapper around a Consumet-compatible episode API.

    AniList ids are resolved to titles first, then matched against the
    episode service's search endpoint.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        anilist: AniListClient,
    ):
        self._settings = settings
        self._client = http_client
        self._anilist = anilist
        self._base_url = str(settings.episode_api_url).rstrip("/")

    async def search(
        self, title: str, *, raise_on_error: bool = False
    ) -> list[dict[str, Any]]:
        """Return raw search results for ``title``."""

        normalized = (title or "").strip()
        if not normalized:
            return []
        try:
            payload = await self._get(f"/search?q={quote(normalized, safe='')}")
            results = payload.get("results")
            if results is None:
                results = []
            if not isinstance(results, list):
                raise UpstreamError("episodes", "search results are not a list")
        except UpstreamError as exc:
            if raise_on_error:
                raise
            logger.warning("Episode search for %s failed: %s", normalized, exc)
            return []
        return [entry for entry in results if isinstance(entry, dict) and entry.get("id")]

    async def fetch_episodes(
        self, anime_id: int | str, *, raise_on_error: bool = False
    ) -> list[Episode] | None:
        """Return the episode list for an AniList id, ``None`` when AniList lacks it.

        Titles the episode service does not know get numbered placeholders.
        Lookup failures do too unless ``raise_on_error`` is set.
        """

        details = await self._anilist.fetch_details(anime_id, raise_on_error=raise_on_error)
        if details is None:
            logger.info("No AniList entry for %s, no episodes to list", anime_id)
            return None

        title = details.title.english or details.title.romaji or details.display_title()
        fallback_count = details.episodes or FALLBACK_EPISODE_COUNT
        try:
            matches = await self.search(title, raise_on_error=True)
            if not matches:
                logger.info("Episode service has no match for %s", title)
                return placeholder_episodes(fallback_count)
            show_id = str(matches[0]["id"])
            payload = await self._get(f"/info/{quote(show_id, safe='')}")
            entries = payload.get("episodes")
            if not isinstance(entries, list):
                raise UpstreamError("episodes", f"info for {show_id} is missing episodes")
        except UpstreamError as exc:
            if raise_on_error:
                raise
            logger.warning("Failed to fetch episodes for %s: %s", anime_id, exc)
            return placeholder_episodes(fallback_count)

        episodes: list[Episode] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                episodes.append(Episode.model_validate(entry))
            except ValidationError as exc:
                logger.debug("Skipping malformed episode for %s: %s", anime_id, exc)
        return episodes

    async def fetch_streaming(
        self, episode_id: str, *, raise_on_error: bool = False
    ) -> StreamingData | None:
        """Return playable sources for ``episode_id``, ``None`` when unknown."""

        normalized = (episode_id or "").strip()
        if not normalized or normalized.startswith(PLACEHOLDER_PREFIX):
            return None
        try:
            payload = await self._get(f"/watch/{quote(normalized, safe='')}")
            return StreamingData.model_validate(payload)
        except ValidationError as exc:
            if raise_on_error:
                raise UpstreamError(
                    "episodes", f"malformed streaming payload for {normalized}"
                ) from exc
            logger.warning("Malformed streaming payload for %s: %s", normalized, exc)
            return None
        except UpstreamError as exc:
            if exc.status_code == 404:
                return None
            if raise_on_error:
                raise
            logger.warning("Streaming lookup for %s failed: %s", normalized, exc)
            return None

    async def _get(self, path: str) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise UpstreamError("episodes", str(exc) or exc.__class__.__name__) from exc
        if response.status_code >= 400:
            raise UpstreamError(
                "episodes",
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError("episodes", "response was not JSON") from exc
        if not isinstance(payload, dict):
            raise UpstreamError("episodes", "unexpected response shape")
        return payload
