"""Client for the AniList GraphQL catalog."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import UpstreamError
from ..models import AnimeInfo

logger = logging.getLogger(__name__)

MEDIA_FIELDS = """
  id
  title { romaji english native }
  description
  coverImage { large medium }
  bannerImage
  genres
  status
  episodes
  averageScore
  seasonYear
  format
  studios { nodes { name } }
  relations {
    edges {
      node {
        id
        title { romaji english }
        coverImage { medium }
      }
      relationType
    }
  }
"""

TRENDING_QUERY = f"""
query ($page: Int, $perPage: Int) {{
  Page(page: $page, perPage: $perPage) {{
    media(type: ANIME, sort: TRENDING_DESC, status: RELEASING) {{
{MEDIA_FIELDS}
    }}
  }}
}}
"""

SEARCH_QUERY = f"""
query ($search: String, $page: Int, $perPage: Int) {{
  Page(page: $page, perPage: $perPage) {{
    media(type: ANIME, search: $search) {{
{MEDIA_FIELDS}
    }}
  }}
}}
"""

DETAILS_QUERY = f"""
query ($id: Int) {{
  Media(id: $id, type: ANIME) {{
{MEDIA_FIELDS}
  }}
}}
"""


class AniListClient:
    """Thin wrapper around the AniList GraphQL endpoint.

    Every public method degrades to an empty result when AniList misbehaves.
    Pass ``raise_on_error=True`` to receive an :class:`UpstreamError` instead,
    which lets background refreshes keep the previous cache entry.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._url = str(settings.anilist_api_url).rstrip("/")

    async def fetch_trending(
        self,
        page: int = 1,
        per_page: int = 20,
        *,
        raise_on_error: bool = False,
    ) -> list[AnimeInfo]:
        """Return the currently airing titles sorted by trend score."""

        try:
            data = await self._query(
                TRENDING_QUERY, {"page": page, "perPage": per_page}
            )
        except UpstreamError as exc:
            if raise_on_error:
                raise
            logger.warning("Failed to fetch trending anime: %s", exc)
            return []
        return self._parse_media_list(
            data, "trending", raise_on_error=raise_on_error
        )

    async def search(
        self,
        query: str,
        page: int = 1,
        per_page: int = 20,
        *,
        raise_on_error: bool = False,
    ) -> list[AnimeInfo]:
        """Return titles matching ``query``."""

        normalized = (query or "").strip()
        if not normalized:
            return []
        try:
            data = await self._query(
                SEARCH_QUERY,
                {"search": normalized, "page": page, "perPage": per_page},
            )
        except UpstreamError as exc:
            if raise_on_error:
                raise
            logger.warning("AniList search for %s failed: %s", normalized, exc)
            return []
        return self._parse_media_list(
            data, f"search {normalized!r}", raise_on_error=raise_on_error
        )

    async def fetch_details(
        self, anime_id: int | str, *, raise_on_error: bool = False
    ) -> AnimeInfo | None:
        """Return a single title or ``None`` when AniList does not know it."""

        try:
            media_id = int(anime_id)
        except (TypeError, ValueError):
            logger.info("Ignoring non-numeric AniList id %r", anime_id)
            return None

        try:
            data = await self._query(DETAILS_QUERY, {"id": media_id})
        except UpstreamError as exc:
            if exc.status_code == 404:
                return None
            if raise_on_error:
                raise
            logger.warning("Failed to fetch anime details for %s: %s", media_id, exc)
            return None

        media = data.get("Media")
        if not isinstance(media, dict):
            return None
        try:
            return AnimeInfo.model_validate(media)
        except ValidationError as exc:
            if raise_on_error:
                raise UpstreamError("anilist", f"malformed media {media_id}") from exc
            logger.warning("AniList returned malformed media %s: %s", media_id, exc)
            return None

    async def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                self._url,
                json={"query": query, "variables": variables},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamError("anilist", str(exc) or exc.__class__.__name__) from exc

        if response.status_code >= 400:
            raise UpstreamError(
                "anilist",
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError("anilist", "response was not JSON") from exc
        if not isinstance(payload, dict):
            raise UpstreamError("anilist", "unexpected response shape")

        errors = payload.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else {}
            message = first.get("message") if isinstance(first, dict) else None
            status = first.get("status") if isinstance(first, dict) else None
            raise UpstreamError(
                "anilist",
                f"GraphQL error: {message or 'unknown error'}",
                status_code=status if isinstance(status, int) else None,
            )

        data = payload.get("data")
        if not isinstance(data, dict):
            raise UpstreamError("anilist", "response is missing data")
        return data

    @staticmethod
    def _parse_media_list(
        data: dict[str, Any], context: str, *, raise_on_error: bool = False
    ) -> list[AnimeInfo]:
        page = data.get("Page")
        media = page.get("media") if isinstance(page, dict) else None
        if not isinstance(media, list):
            if raise_on_error:
                raise UpstreamError("anilist", "response is missing Page.media")
            logger.warning("AniList %s response is missing Page.media", context)
            return []
        items: list[AnimeInfo] = []
        for entry in media:
            if not isinstance(entry, dict):
                continue
            try:
                items.append(AnimeInfo.model_validate(entry))
            except ValidationError as exc:
                logger.debug("Skipping malformed AniList entry in %s: %s", context, exc)
        return items
