"""Pydantic models describing anime catalog payloads."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class _UpstreamModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class MediaTitle(_UpstreamModel):
    romaji: str | None = None
    english: str | None = None
    native: str | None = None

    def preferred(self) -> str:
        """Return the best display title, English first."""

        for candidate in (self.english, self.romaji, self.native):
            if candidate and candidate.strip():
                return candidate.strip()
        return "Untitled"


class CoverImage(_UpstreamModel):
    large: str | None = None
    medium: str | None = None


class RelatedMedia(_UpstreamModel):
    id: str
    title: MediaTitle = Field(default_factory=MediaTitle)
    cover_image: CoverImage | None = Field(default=None, alias="coverImage")
    relation_type: str | None = Field(default=None, alias="relationType")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class AnimeInfo(_UpstreamModel):
    """A single AniList media entry."""

    id: str
    title: MediaTitle = Field(default_factory=MediaTitle)
    description: str | None = None
    cover_image: CoverImage = Field(default_factory=CoverImage, alias="coverImage")
    banner_image: str | None = Field(default=None, alias="bannerImage")
    genres: list[str] = Field(default_factory=list)
    status: str | None = None
    episodes: int | None = None
    average_score: int | None = Field(default=None, alias="averageScore")
    season_year: int | None = Field(default=None, alias="seasonYear")
    format: str | None = None
    studios: list[str] = Field(default_factory=list)
    relations: list[RelatedMedia] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value

    @field_validator("studios", mode="before")
    @classmethod
    def _flatten_studios(cls, value: object) -> object:
        """Accept AniList's ``{"nodes": [{"name": ...}]}`` connection shape."""

        if isinstance(value, dict):
            value = value.get("nodes") or []
        if isinstance(value, list):
            names: list[str] = []
            for node in value:
                name = node.get("name") if isinstance(node, dict) else node
                if isinstance(name, str) and name.strip():
                    names.append(name.strip())
            return names
        return value if value is not None else []

    @field_validator("relations", mode="before")
    @classmethod
    def _flatten_relations(cls, value: object) -> object:
        """Accept AniList's ``{"edges": [{"node": ..., "relationType": ...}]}``."""

        if isinstance(value, dict):
            edges = value.get("edges") or []
            flattened: list[dict[str, Any]] = []
            for edge in edges:
                if not isinstance(edge, dict) or not isinstance(edge.get("node"), dict):
                    continue
                flattened.append(
                    {**edge["node"], "relationType": edge.get("relationType")}
                )
            return flattened
        return value if value is not None else []

    @field_validator("genres", mode="before")
    @classmethod
    def _default_genres(cls, value: object) -> object:
        return value if value is not None else []

    def display_title(self) -> str:
        return self.title.preferred()


class Episode(_UpstreamModel):
    """One episode listed by the episode lookup service."""

    id: str
    number: int | float
    title: str | None = None
    image: str | None = None
    description: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class StreamingSource(_UpstreamModel):
    url: str
    quality: str | None = None
    is_m3u8: bool = Field(
        default=False,
        validation_alias=AliasChoices("isM3U8", "is_m3u8"),
        serialization_alias="isM3U8",
    )


class Subtitle(_UpstreamModel):
    url: str
    lang: str | None = None


class StreamingData(_UpstreamModel):
    """Playable sources for a single episode."""

    sources: list[StreamingSource] = Field(default_factory=list)
    subtitles: list[Subtitle] = Field(default_factory=list)

    @field_validator("sources", "subtitles", mode="before")
    @classmethod
    def _default_list(cls, value: object) -> object:
        return value if value is not None else []
