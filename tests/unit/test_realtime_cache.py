"""Unit tests for RealTimeRecommendationCache.

Expiry is driven by the FakeClock fixture, so nothing here sleeps.
"""

from __future__ import annotations

import asyncio
import datetime

import pytest

from src.models.interaction import InteractionType, MusicInteraction
from src.models.recommendation import TimeOfDay, UserActivityContext
from src.services.realtime_cache import RealTimeRecommendationCache, user_key_prefix
from tests.conftest import FakeClock


@pytest.fixture
def cache(clock: FakeClock) -> RealTimeRecommendationCache:
    return RealTimeRecommendationCache(clock=clock)


def _interaction(clock: FakeClock, song_id: int, minutes_ago: float = 0) -> MusicInteraction:
    return MusicInteraction(
        user_id=1,
        song_id=song_id,
        type=InteractionType.PLAYED_FULL,
        timestamp=clock.now - datetime.timedelta(minutes=minutes_ago),
    )


class TestScoreAdjustments:
    @pytest.mark.asyncio
    async def test_accumulates_and_clamps(self, cache: RealTimeRecommendationCache) -> None:
        assert await cache.adjust_song_score(1, 5, 2.0) == 1.0
        assert await cache.adjust_song_score(1, 5, -5.0) == -1.0
        assert await cache.get_song_score_adjustment(1, 5) == -1.0

    @pytest.mark.asyncio
    async def test_unknown_song_is_zero(self, cache: RealTimeRecommendationCache) -> None:
        assert await cache.get_song_score_adjustment(1, 999) == 0.0
        assert await cache.get_all_score_adjustments(1) == {}

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_not_lost(
        self, cache: RealTimeRecommendationCache
    ) -> None:
        await asyncio.gather(*(cache.adjust_song_score(1, 5, 0.01) for _ in range(50)))
        assert await cache.get_song_score_adjustment(1, 5) == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, cache: RealTimeRecommendationCache) -> None:
        await cache.adjust_song_score(1, 5, 0.4)
        assert await cache.get_song_score_adjustment(2, 5) == 0.0


class TestGenreAdjustments:
    @pytest.mark.asyncio
    async def test_no_adjustment_reads_zero(self, cache: RealTimeRecommendationCache) -> None:
        assert await cache.get_genre_adjustment(1, "Rock") == 0.0

    @pytest.mark.asyncio
    async def test_boost_is_readable_until_expiry(
        self, cache: RealTimeRecommendationCache, clock: FakeClock
    ) -> None:
        await cache.temporarily_boost_genre(1, "Rock", 0.3, 60)
        assert await cache.get_genre_adjustment(1, "Rock") == 0.3

        clock.advance(minutes=60)
        assert await cache.get_genre_adjustment(1, "Rock") == 0.0

    @pytest.mark.asyncio
    async def test_negative_duration_is_already_expired(
        self, cache: RealTimeRecommendationCache
    ) -> None:
        await cache.temporarily_boost_genre(1, "Rock", 0.3, -1)
        assert await cache.get_genre_adjustment(1, "Rock") == 0.0

    @pytest.mark.asyncio
    async def test_reduce_stores_negative_value(self, cache: RealTimeRecommendationCache) -> None:
        await cache.temporarily_reduce_genre(1, "Jazz", 0.5, 120)
        assert await cache.get_genre_adjustment(1, "Jazz") == -0.5


class TestInteractionHistory:
    @pytest.mark.asyncio
    async def test_recent_window(
        self, cache: RealTimeRecommendationCache, clock: FakeClock
    ) -> None:
        await cache.add_interaction_history(_interaction(clock, 1, minutes_ago=45))
        await cache.add_interaction_history(_interaction(clock, 2, minutes_ago=10))

        recent = await cache.get_recent_interactions(1, minutes=30)
        assert [i.song_id for i in recent] == [2]
        assert len(await cache.get_recent_interactions(1, minutes=60)) == 2

    @pytest.mark.asyncio
    async def test_history_capped_at_100(
        self, cache: RealTimeRecommendationCache, clock: FakeClock
    ) -> None:
        for song_id in range(120):
            await cache.add_interaction_history(_interaction(clock, song_id))

        recent = await cache.get_recent_interactions(1, minutes=5)
        assert len(recent) == 100
        assert recent[0].song_id == 20

    @pytest.mark.asyncio
    async def test_entries_older_than_two_hours_dropped(
        self, cache: RealTimeRecommendationCache, clock: FakeClock
    ) -> None:
        await cache.add_interaction_history(_interaction(clock, 1, minutes_ago=150))
        await cache.add_interaction_history(_interaction(clock, 2))

        stats = await cache.get_cache_stats()
        assert stats.recent_interactions == 1


class TestMood:
    @pytest.mark.asyncio
    async def test_mood_expires_after_two_hours(
        self, cache: RealTimeRecommendationCache, clock: FakeClock
    ) -> None:
        await cache.update_current_mood(1, energy=0.7, valence=0.4, timestamp=clock.now)

        clock.advance(minutes=119)
        mood = await cache.get_current_mood(1)
        assert mood is not None
        assert mood.energy == 0.7

        clock.advance(minutes=1)
        assert await cache.get_current_mood(1) is None

    @pytest.mark.asyncio
    async def test_unknown_user_has_no_mood(self, cache: RealTimeRecommendationCache) -> None:
        assert await cache.get_current_mood(42) is None


class TestContextPreferences:
    @pytest.mark.asyncio
    async def test_time_preference_grows_and_clamps(
        self, cache: RealTimeRecommendationCache
    ) -> None:
        await cache.update_time_based_preference(1, TimeOfDay.NIGHT, "Techno", 1.0)
        assert await cache.get_time_based_preference(1, TimeOfDay.NIGHT, "Techno") == (
            pytest.approx(0.1)
        )

        for _ in range(20):
            await cache.update_time_based_preference(1, TimeOfDay.NIGHT, "Techno", 1.0)
        assert await cache.get_time_based_preference(1, TimeOfDay.NIGHT, "Techno") == 1.0
        assert await cache.get_time_based_preference(1, TimeOfDay.MORNING, "Techno") == 0.0

    @pytest.mark.asyncio
    async def test_activity_preference_running_average(
        self, cache: RealTimeRecommendationCache
    ) -> None:
        activity = UserActivityContext.RUNNING
        await cache.update_activity_based_preference(1, activity, {"energy": 0.8})
        await cache.update_activity_based_preference(1, activity, {"energy": 0.4, "tempo": 170.0})

        prefs = await cache.get_activity_based_preferences(1, activity)
        assert prefs == {"energy": pytest.approx(0.6), "tempo": 170.0}


class TestFreshnessAndInvalidation:
    @pytest.mark.asyncio
    async def test_freshness_window(
        self, cache: RealTimeRecommendationCache, clock: FakeClock
    ) -> None:
        key = f"{user_key_prefix(1)}abc"
        assert not await cache.are_cached_recommendations_fresh(key)

        await cache.mark_cached_recommendations(key)
        clock.advance(minutes=4)
        assert await cache.are_cached_recommendations_fresh(key)

        clock.advance(minutes=1)
        assert not await cache.are_cached_recommendations_fresh(key)

    @pytest.mark.asyncio
    async def test_invalidate_forgets_user_keys_and_decays(
        self, cache: RealTimeRecommendationCache
    ) -> None:
        own, other = f"{user_key_prefix(1)}a", f"{user_key_prefix(12)}a"
        await cache.mark_cached_recommendations(own)
        await cache.mark_cached_recommendations(other)
        await cache.adjust_song_score(1, 5, 0.5)
        await cache.adjust_song_score(1, 6, 0.01)

        await cache.invalidate_recommendations(1)

        assert not await cache.are_cached_recommendations_fresh(own)
        assert await cache.are_cached_recommendations_fresh(other)
        assert await cache.get_all_score_adjustments(1) == {5: pytest.approx(0.45)}


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_drops_stale_state(
        self, cache: RealTimeRecommendationCache, clock: FakeClock
    ) -> None:
        await cache.temporarily_boost_genre(1, "Rock", 0.3, 10)
        await cache.update_current_mood(1, energy=0.5, valence=0.5, timestamp=clock.now)
        await cache.mark_cached_recommendations(f"{user_key_prefix(1)}a")
        await cache.add_interaction_history(_interaction(clock, 1))

        clock.advance(hours=5)
        await cache.cleanup()

        stats = await cache.get_cache_stats()
        assert stats.genre_adjustments == 0
        assert stats.cached_recommendations == 0
        assert stats.recent_interactions == 1
        assert cache._moods == {}
