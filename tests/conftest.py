"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest


# Ensure the application package is importable when running tests without an
# editable install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.clock import ManualClock  # noqa: E402
from app.models import AnimeInfo, Episode  # noqa: E402


def make_anime(anime_id: int | str, title: str = "Sample") -> AnimeInfo:
    return AnimeInfo.model_validate({"id": anime_id, "title": {"romaji": title}})


class StubProvider:
    """In-memory provider recording every fetch it serves."""

    def __init__(self) -> None:
        self.trending: list[AnimeInfo] = [make_anime(1, "A"), make_anime(2, "B")]
        self.details: dict[str, AnimeInfo | None] = {}
        self.episodes: dict[str, list[Episode] | None] = {}
        self.failing: set[str] = set()
        self.calls: list[tuple[str, Any]] = []

    def _check(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))
        if name in self.failing:
            raise RuntimeError(f"{name} upstream down")

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def fetch_trending(self) -> list[AnimeInfo]:
        self._check("trending")
        return list(self.trending)

    async def fetch_details(self, anime_id: int | str) -> AnimeInfo | None:
        self._check("details", anime_id)
        return self.details.get(str(anime_id))

    async def fetch_episodes(self, anime_id: int | str) -> list[Episode] | None:
        self._check("episodes", anime_id)
        episodes = self.episodes.get(str(anime_id), [])
        return None if episodes is None else list(episodes)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"
