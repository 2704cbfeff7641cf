"""Entry point for the FastAPI-powered anime metadata service."""

from __future__ import annotations

import logging
import re
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware

from .cache import (
    CacheEntry,
    ResourceClass,
    details_key,
    episodes_key,
    trending_key,
)
from .config import settings
from .context import CoreContext
from .errors import UpstreamError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    headers = {"User-Agent": f"{settings.app_name} (anipulse)"}
    anilist_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0), headers=headers)
    )
    episode_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0), headers=headers)
    )
    context = CoreContext.from_http_clients(settings, anilist_http, episode_http)
    fastapi_app.state.context = context
    if settings.warm_trending:
        context.scheduler.start_trending_updates()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await context.aclose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Cached AniList metadata kept fresh by background polling",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_context(app: FastAPI) -> CoreContext:
    context = getattr(app.state, "context", None)
    if not isinstance(context, CoreContext):
        raise RuntimeError("Core context not initialised")
    return context


def _isoformat(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _entry_payload(context: CoreContext, key: str, entry: CacheEntry) -> dict[str, Any]:
    return {
        "key": key,
        "lastUpdated": _isoformat(entry.created_at),
        "expiresAt": _isoformat(entry.expires_at),
        "stale": context.cache.is_stale(key),
        "data": jsonable_encoder(entry.value, by_alias=True),
    }


def register_routes(fastapi_app: FastAPI) -> None:
    async def _serve(
        key: str,
        resource: ResourceClass,
        start_updates: Callable[[], str],
        fetch: Callable[[], Awaitable[Any]],
    ) -> dict[str, Any]:
        """Serve ``key`` from cache, warming it through the scheduler first.

        Updates started by this request are stopped again when the key turns
        out to be unknown or unreachable, so probing ids leaves no timers.
        """

        context = get_context(fastapi_app)
        scheduler = context.scheduler
        started = False
        if not scheduler.is_tracking(key):
            start_updates()
            started = True
            await scheduler.wait_idle(
                key, timeout=context.settings.upstream_wait_seconds
            )

        try:
            entry = context.cache.get_entry(key)
            if entry is None:
                try:
                    value = await fetch()
                except Exception as exc:
                    logger.warning("Direct fetch for %s failed: %s", key, exc)
                    raise HTTPException(
                        status_code=502, detail="Upstream catalog unavailable"
                    ) from exc
                if value is None:
                    raise HTTPException(status_code=404, detail=f"{key} not found")
                context.cache.set(key, value, context.cache.get_ttl(resource))
                entry = context.cache.get_entry(key)
                if entry is None:
                    raise HTTPException(status_code=404, detail=f"{key} not found")
        except HTTPException:
            if started:
                scheduler.stop(key)
            raise
        return _entry_payload(context, key, entry)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/trending")
    async def trending() -> dict[str, Any]:
        context = get_context(fastapi_app)
        return await _serve(
            trending_key(),
            ResourceClass.TRENDING,
            context.scheduler.start_trending_updates,
            context.provider.fetch_trending,
        )

    @fastapi_app.get("/anime/{anime_id}")
    async def anime_details(anime_id: int) -> dict[str, Any]:
        context = get_context(fastapi_app)
        return await _serve(
            details_key(anime_id),
            ResourceClass.DETAILS,
            lambda: context.scheduler.start_details_updates(anime_id),
            lambda: context.provider.fetch_details(anime_id),
        )

    @fastapi_app.get("/anime/{anime_id}/episodes")
    async def anime_episodes(anime_id: int) -> dict[str, Any]:
        context = get_context(fastapi_app)
        return await _serve(
            episodes_key(anime_id),
            ResourceClass.EPISODES,
            lambda: context.scheduler.start_episodes_updates(anime_id),
            lambda: context.provider.fetch_episodes(anime_id),
        )

    @fastapi_app.get("/episodes/{episode_id}/stream")
    async def episode_stream(episode_id: str) -> dict[str, Any]:
        context = get_context(fastapi_app)
        if context.episodes is None:
            raise HTTPException(status_code=503, detail="Episode service not configured")
        key = f"stream-{episode_id}"
        entry = context.cache.get_entry(key)
        if entry is None:
            try:
                streaming = await context.episodes.fetch_streaming(
                    episode_id, raise_on_error=True
                )
            except UpstreamError as exc:
                logger.warning("Streaming lookup for %s failed: %s", episode_id, exc)
                raise HTTPException(
                    status_code=502, detail="Episode service unavailable"
                ) from exc
            if streaming is None:
                raise HTTPException(status_code=404, detail="No streams for episode")
            context.cache.set(key, streaming, context.cache.get_ttl(ResourceClass.DEFAULT))
            entry = context.cache.get_entry(key)
            if entry is None:
                raise HTTPException(status_code=404, detail="No streams for episode")
        return _entry_payload(context, key, entry)

    @fastapi_app.get("/search")
    async def search(
        q: str = Query(..., min_length=1, max_length=100),
        page: int = Query(1, ge=1),
        per_page: int = Query(20, ge=1, le=50, alias="perPage"),
    ) -> dict[str, Any]:
        context = get_context(fastapi_app)
        if context.anilist is None:
            raise HTTPException(status_code=503, detail="Catalog search not configured")
        query = q.strip()
        if not query:
            raise HTTPException(status_code=400, detail="Search query may not be blank")
        key = f"search-{query.casefold()}-{page}-{per_page}"
        entry = context.cache.get_entry(key)
        if entry is None:
            try:
                results = await context.anilist.search(
                    query, page, per_page, raise_on_error=True
                )
            except UpstreamError as exc:
                logger.warning("Search for %r failed: %s", query, exc)
                raise HTTPException(
                    status_code=502, detail="Upstream catalog unavailable"
                ) from exc
            context.cache.set(key, results, context.cache.get_ttl(ResourceClass.DEFAULT))
            entry = context.cache.get_entry(key)
            if entry is None:
                raise HTTPException(status_code=404, detail="No results")
        return _entry_payload(context, key, entry)

    @fastapi_app.get("/updates")
    async def updates() -> dict[str, Any]:
        context = get_context(fastapi_app)
        scheduler = context.scheduler
        tracked: list[dict[str, Any]] = []
        for key in scheduler.tracked_keys():
            entry = context.cache.get_entry(key)
            tracked.append(
                {
                    "key": key,
                    "subscribers": scheduler.callback_count(key),
                    "cached": entry is not None,
                    "lastUpdated": _isoformat(entry.created_at) if entry else None,
                }
            )
        return {"updates": tracked, "inFlight": scheduler.in_flight}

    @fastapi_app.delete("/updates/{key}")
    async def stop_updates(key: str) -> dict[str, Any]:
        scheduler = get_context(fastapi_app).scheduler
        if not scheduler.is_tracking(key):
            raise HTTPException(status_code=404, detail=f"{key} is not being updated")
        scheduler.stop(key)
        return {"stopped": key}

    @fastapi_app.delete("/cache")
    async def invalidate_cache(
        pattern: str | None = Query(default=None, max_length=200),
    ) -> dict[str, Any]:
        context = get_context(fastapi_app)
        try:
            removed = context.cache.invalidate(pattern)
        except re.error as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"removed": removed}


app = create_app()
