"""Tests for the background update scheduler."""

from __future__ import annotations

import asyncio

from app.cache import CacheStore, details_key, episodes_key, trending_key
from app.clock import ManualClock
from app.models import AnimeInfo, Episode
from app.scheduler import UpdateScheduler


def build(clock: ManualClock, provider) -> tuple[CacheStore, UpdateScheduler]:
    cache = CacheStore(clock)
    return cache, UpdateScheduler(cache, provider, clock)


def test_trending_refreshes_on_every_start_but_keeps_one_timer(clock, provider) -> None:
    async def runner() -> None:
        cache, scheduler = build(clock, provider)

        scheduler.start_trending_updates()
        scheduler.start_trending_updates()
        await scheduler.wait_idle()

        assert provider.count("trending") == 2
        assert clock.active_timers == 1
        assert scheduler.tracked_keys() == [trending_key()]

        clock.advance(600)
        await scheduler.wait_idle()

        assert provider.count("trending") == 3
        assert [item.id for item in cache.get(trending_key())] == ["1", "2"]

    asyncio.run(runner())


def test_details_skip_immediate_fetch_when_cache_is_fresh(clock, provider) -> None:
    async def runner() -> None:
        cache, scheduler = build(clock, provider)
        cache.set(details_key(5), "warm", 1_800)

        scheduler.start_details_updates(5)
        await scheduler.wait_idle()
        assert provider.count("details") == 0

        clock.advance(1_799)
        await scheduler.wait_idle()
        assert provider.count("details") == 0

        clock.advance(1)
        await scheduler.wait_idle()
        assert provider.count("details") == 1

    asyncio.run(runner())


def test_details_fetch_immediately_when_stale(clock, provider) -> None:
    async def runner() -> None:
        cache, scheduler = build(clock, provider)
        provider.details["5"] = AnimeInfo.model_validate({"id": 5})
        cache.set(details_key(5), "old", 1_800)
        clock.advance(121)

        scheduler.start_details_updates(5)
        await scheduler.wait_idle()

        assert provider.count("details") == 1
        assert cache.get(details_key(5)).id == "5"

    asyncio.run(runner())


def test_episode_subscriber_notified_once_after_cache_write(clock, provider) -> None:
    async def runner() -> None:
        cache, scheduler = build(clock, provider)
        provider.episodes["42"] = [
            Episode(id="e1", number=1),
            Episode(id="e2", number=2),
        ]
        seen: list[list[str]] = []

        def on_update() -> None:
            seen.append([episode.id for episode in cache.get(episodes_key(42))])

        key = scheduler.start_episodes_updates(42, on_update)
        await scheduler.wait_idle()

        assert key == "episodes-42"
        assert [episode.id for episode in cache.get("episodes-42")] == ["e1", "e2"]
        assert seen == [["e1", "e2"]]

    asyncio.run(runner())


def test_failed_fetch_keeps_cache_and_skips_callbacks(clock, provider) -> None:
    async def runner() -> None:
        cache, scheduler = build(clock, provider)
        cache.set("anime-details-7", "previous", 1_800)
        clock.advance(200)
        before = cache.get_entry("anime-details-7")
        provider.failing.add("details")
        calls: list[int] = []

        scheduler.start_details_updates(7, lambda: calls.append(1))
        await scheduler.wait_idle()
        result = await scheduler.refresh_details(7)

        assert result is None
        assert cache.get_entry("anime-details-7") == before
        assert calls == []
        assert scheduler.is_tracking("anime-details-7")

        provider.failing.clear()
        provider.details["7"] = AnimeInfo.model_validate({"id": 7})
        clock.advance(1_800)
        await scheduler.wait_idle()

        assert cache.get("anime-details-7").id == "7"
        assert calls == [1]

    asyncio.run(runner())


def test_absent_details_leave_cache_untouched(clock, provider) -> None:
    async def runner() -> None:
        cache, scheduler = build(clock, provider)
        calls: list[int] = []
        scheduler.start_details_updates(99, lambda: calls.append(1))
        await scheduler.wait_idle()

        assert provider.count("details") == 1
        assert cache.get(details_key(99)) is None
        assert calls == []

    asyncio.run(runner())


def test_removed_callback_is_not_invoked_on_tick(clock, provider) -> None:
    async def runner() -> None:
        _, scheduler = build(clock, provider)
        calls: list[str] = []

        def first() -> None:
            calls.append("first")

        def second() -> None:
            calls.append("second")

        key = scheduler.start_episodes_updates("9", first)
        scheduler.start_episodes_updates("9", second)
        await scheduler.wait_idle()
        calls.clear()

        scheduler.remove_callback(key, first)
        clock.advance(300)
        await scheduler.wait_idle()

        assert calls == ["second"]

        scheduler.remove_callback(key, second)
        clock.advance(300)
        await scheduler.wait_idle()

        assert calls == ["second"]
        assert scheduler.is_tracking(key)
        # Two immediate refreshes (cache still cold on re-registration) and two ticks.
        assert provider.count("episodes") == 4

    asyncio.run(runner())


def test_duplicate_callback_registration_is_a_no_op(clock, provider) -> None:
    async def runner() -> None:
        _, scheduler = build(clock, provider)
        calls: list[int] = []

        def on_update() -> None:
            calls.append(1)

        scheduler.start_trending_updates(on_update)
        scheduler.start_trending_updates(on_update)
        assert scheduler.callback_count(trending_key()) == 1
        await scheduler.wait_idle()

        # Two immediate refreshes, one subscriber each time.
        assert calls == [1, 1]

    asyncio.run(runner())


def test_failing_callback_does_not_block_others(clock, provider) -> None:
    async def runner() -> None:
        _, scheduler = build(clock, provider)
        order: list[str] = []

        def broken() -> None:
            order.append("broken")
            raise ValueError("observer bug")

        def healthy() -> None:
            order.append("healthy")

        scheduler.start_episodes_updates(3, broken)
        scheduler.start_episodes_updates(3, healthy)
        await scheduler.wait_idle()
        order.clear()

        result = await scheduler.refresh_episodes(3)

        assert order == ["broken", "healthy"]
        assert result is not None
        assert result.delivered == 1
        assert [outcome.callback for outcome in result.failures] == [broken]
        assert isinstance(result.failures[0].error, ValueError)

    asyncio.run(runner())


def test_stop_all_silences_every_key(clock, provider) -> None:
    async def runner() -> None:
        _, scheduler = build(clock, provider)
        calls: list[int] = []
        scheduler.start_trending_updates(lambda: calls.append(1))
        scheduler.start_episodes_updates(1, lambda: calls.append(2))
        scheduler.start_details_updates(1, lambda: calls.append(3))
        await scheduler.wait_idle()
        fetches = len(provider.calls)
        calls.clear()

        scheduler.stop_all()
        clock.advance(24 * 60 * 60)
        await scheduler.wait_idle()

        assert len(provider.calls) == fetches
        assert calls == []
        assert scheduler.tracked_keys() == []
        assert clock.active_timers == 0

    asyncio.run(runner())


def test_stop_drops_timer_and_subscribers_but_not_in_flight_refresh(
    clock, provider
) -> None:
    async def runner() -> None:
        cache, scheduler = build(clock, provider)
        provider.episodes["4"] = [Episode(id="e1", number=1)]
        calls: list[int] = []

        key = scheduler.start_episodes_updates(4, lambda: calls.append(1))
        scheduler.stop(key)
        await scheduler.wait_idle()

        assert cache.get(key) is not None
        assert calls == []
        assert scheduler.is_tracking(key) is False
        assert scheduler.callback_count(key) == 0

        clock.advance(600)
        await scheduler.wait_idle()
        assert provider.count("episodes") == 1

    asyncio.run(runner())


def test_refresh_writes_with_resource_ttl(clock, provider) -> None:
    async def runner() -> None:
        cache, scheduler = build(clock, provider)

        await scheduler.refresh_trending()
        entry = cache.get_entry(trending_key())

        assert entry is not None
        assert entry.expires_at - entry.created_at == 600

    asyncio.run(runner())


def test_wait_idle_can_target_a_single_key(clock, provider) -> None:
    async def runner() -> None:
        _, scheduler = build(clock, provider)
        release = asyncio.Event()

        async def slow_trending():
            await release.wait()
            return []

        provider.fetch_trending = slow_trending
        scheduler.start_trending_updates()
        scheduler.start_episodes_updates(1)

        assert await scheduler.wait_idle(episodes_key(1)) is True
        assert await scheduler.wait_idle(timeout=0.01) is False
        assert scheduler.in_flight == 1

        release.set()
        assert await scheduler.wait_idle() is True

    asyncio.run(runner())


def test_expired_entry_refreshes_immediately_with_short_ttl(clock, provider) -> None:
    async def runner() -> None:
        cache = CacheStore(clock, ttls={"episodes": 60}, stale_window=120)
        scheduler = UpdateScheduler(cache, provider, clock)
        provider.episodes["8"] = [Episode(id="e1", number=1)]
        cache.set(episodes_key(8), [], cache.get_ttl("episodes"))
        clock.advance(90)

        scheduler.start_episodes_updates(8)
        await scheduler.wait_idle()

        assert provider.count("episodes") == 1
        assert [episode.id for episode in cache.get(episodes_key(8))] == ["e1"]

    asyncio.run(runner())


def test_absent_episodes_keep_cache_and_skip_callbacks(clock, provider) -> None:
    async def runner() -> None:
        cache, scheduler = build(clock, provider)
        provider.episodes["6"] = None
        cache.set(episodes_key(6), ["kept"], 300)
        calls: list[int] = []
        scheduler.start_episodes_updates(6, lambda: calls.append(1))

        assert await scheduler.refresh_episodes(6) is None
        assert cache.get(episodes_key(6)) == ["kept"]
        assert calls == []

    asyncio.run(runner())
