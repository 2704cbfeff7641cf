"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="AniPulse", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    anilist_api_url: HttpUrl = Field(
        default="https://graphql.anilist.co", alias="ANILIST_API_URL"
    )
    episode_api_url: HttpUrl = Field(
        default="https://api.consumet.org/anime/gogoanime", alias="EPISODE_API_URL"
    )
    trending_page_size: int = Field(
        default=24, alias="TRENDING_PAGE_SIZE", ge=1, le=50
    )
    warm_trending: bool = Field(default=True, alias="WARM_TRENDING")
    upstream_wait_seconds: float = Field(
        default=20.0, alias="UPSTREAM_WAIT", gt=0
    )

    stale_window_seconds: float = Field(default=120, alias="STALE_WINDOW", gt=0)
    trending_ttl_seconds: float = Field(default=600, alias="TRENDING_TTL", gt=0)
    details_ttl_seconds: float = Field(default=1_800, alias="DETAILS_TTL", gt=0)
    default_ttl_seconds: float = Field(default=300, alias="DEFAULT_TTL", gt=0)

    trending_interval_seconds: float = Field(
        default=600, alias="TRENDING_INTERVAL", gt=0
    )
    details_interval_seconds: float = Field(
        default=1_800, alias="DETAILS_INTERVAL", gt=0
    )
    episodes_interval_seconds: float = Field(
        default=300, alias="EPISODES_INTERVAL", gt=0
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("anilist_api_url", "episode_api_url", mode="before")
    @classmethod
    def _strip_url(cls, value: object) -> object:
        """Drop surrounding whitespace and trailing slashes from URLs."""

        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @property
    def ttl_map(self) -> dict[str, float]:
        """Return the per resource class cache lifetimes."""

        return {
            "trending": self.trending_ttl_seconds,
            "details": self.details_ttl_seconds,
            "episodes": self.default_ttl_seconds,
            "default": self.default_ttl_seconds,
        }

    @property
    def interval_map(self) -> dict[str, float]:
        """Return the per resource class refresh periods."""

        return {
            "trending": self.trending_interval_seconds,
            "details": self.details_interval_seconds,
            "episodes": self.episodes_interval_seconds,
        }

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
