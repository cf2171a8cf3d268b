"""Unit tests for HybridRecommendationEngine.

Strategies are replaced by stubs returning fixed candidates so the merge
arithmetic, cache gate and Daily Mix assembly can be checked exactly.
"""

from __future__ import annotations

import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from structlog.testing import capture_logs

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.recommendation_strategy import IRecommendationStrategy
from src.models.recommendation import (
    DailyMix,
    Recommendation,
    RecommendationReason,
    RecommendationRequest,
    TimeOfDay,
)
from src.providers.cache.memory_cache import MemoryCacheProvider
from src.services.realtime_cache import RealTimeRecommendationCache
from src.services.recommendation_engine import (
    DEFAULT_STRATEGY_WEIGHTS,
    HybridRecommendationEngine,
    build_cache_key,
)
from src.utils.errors import CacheError, ConfigurationError, StrategyError
from tests.conftest import FakeClock, make_recs


class StubStrategy(IRecommendationStrategy):
    """Returns a fixed candidate list and remembers every request."""

    def __init__(
        self,
        name: str,
        recommendations: list[Recommendation] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._name = name
        self._recommendations = recommendations or []
        self._error = error
        self.requests: list[RecommendationRequest] = []

    async def recommend(self, request: RecommendationRequest) -> list[Recommendation]:
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        return list(self._recommendations)

    def get_strategy_name(self) -> str:
        return self._name


@pytest.fixture
def realtime_cache(clock: FakeClock) -> RealTimeRecommendationCache:
    return RealTimeRecommendationCache(clock=clock)


@pytest.fixture
def cache_provider() -> MemoryCacheProvider:
    return MemoryCacheProvider(max_size=100, ttl=300)


def _engine(repository, realtime_cache, cache_provider, strategies, clock, **kwargs):
    return HybridRecommendationEngine(
        repository,
        realtime_cache,
        cache_provider,
        strategies=strategies,
        clock=clock,
        **kwargs,
    )


@pytest.fixture
def collaborative() -> StubStrategy:
    return StubStrategy(
        "CollaborativeFiltering",
        make_recs({1: 0.6}, RecommendationReason.COLLABORATIVE_FILTERING),
    )


@pytest.fixture
def content() -> StubStrategy:
    return StubStrategy(
        "ContentBased",
        make_recs({1: 0.8, 2: 0.5}, RecommendationReason.AUDIO_FEATURES),
    )


@pytest.fixture
def engine(mock_repository, realtime_cache, cache_provider, collaborative, content, clock):
    return _engine(mock_repository, realtime_cache, cache_provider, [collaborative, content], clock)


# ======================================================================
# build_cache_key
# ======================================================================


class TestBuildCacheKey:
    def test_key_is_deterministic_and_user_scoped(self) -> None:
        request = RecommendationRequest(user_id=7, seed_song_ids=[3, 4])
        assert build_cache_key(request) == build_cache_key(request.model_copy())
        assert build_cache_key(request).startswith("recommendations:7:")

    def test_exclusions_are_order_independent(self) -> None:
        first = RecommendationRequest(user_id=1, exclude_song_ids=frozenset({1, 2, 3}))
        second = RecommendationRequest(user_id=1, exclude_song_ids=frozenset({3, 2, 1}))
        assert build_cache_key(first) == build_cache_key(second)

    def test_distinguishing_fields_change_key(self, evening_context) -> None:
        base = RecommendationRequest(user_id=1)
        variants = [
            base.model_copy(update={"limit": 5}),
            base.model_copy(update={"context": evening_context}),
            base.model_copy(update={"seed_genres": ["Jazz"]}),
            base.model_copy(update={"seed_artist_ids": [5]}),
            base.model_copy(update={"exclude_song_ids": frozenset({9})}),
            base.model_copy(update={"popularity_bias": 0.9}),
        ]
        keys = {build_cache_key(base)} | {build_cache_key(v) for v in variants}
        assert len(keys) == len(variants) + 1


# ======================================================================
# Construction
# ======================================================================


class TestConstruction:
    def test_duplicate_strategy_names_rejected(
        self, mock_repository, realtime_cache, cache_provider, clock
    ) -> None:
        with pytest.raises(ConfigurationError, match="ContentBased"):
            _engine(
                mock_repository,
                realtime_cache,
                cache_provider,
                [StubStrategy("ContentBased"), StubStrategy("ContentBased")],
                clock,
            )

    def test_default_strategies_and_weights(
        self, mock_repository, realtime_cache, cache_provider
    ) -> None:
        engine = HybridRecommendationEngine(mock_repository, realtime_cache, cache_provider)
        assert engine.strategy_names == list(DEFAULT_STRATEGY_WEIGHTS)
        assert engine.weight_for("ContentBased") == 0.25

    def test_unknown_strategy_gets_default_weight(self, engine) -> None:
        assert engine.weight_for("Serendipity") == 0.1

    @pytest.mark.asyncio
    async def test_empty_strategy_list_runs_nothing(
        self, mock_repository, realtime_cache, cache_provider, clock
    ) -> None:
        engine = _engine(mock_repository, realtime_cache, cache_provider, [], clock)

        result = await engine.get_recommendations(RecommendationRequest(user_id=1))

        assert engine.strategy_names == []
        assert result.recommendations == []
        assert result.strategies == []


# ======================================================================
# Merge
# ======================================================================


class TestMerge:
    @pytest.mark.asyncio
    async def test_weighted_sum_and_highest_weight_reason(self, engine) -> None:
        result = await engine.get_recommendations(RecommendationRequest(user_id=1))

        assert result.song_ids == [1, 2]
        first, second = result.recommendations
        assert first.score == pytest.approx(0.41)
        assert second.score == pytest.approx(0.125)
        assert first.reason == RecommendationReason.COLLABORATIVE_FILTERING
        assert second.reason == RecommendationReason.AUDIO_FEATURES
        assert first.metadata["strategies"] == ["CollaborativeFiltering", "ContentBased"]
        assert result.strategies == ["CollaborativeFiltering", "ContentBased"]
        assert result.cache_hit is False

    @pytest.mark.asyncio
    async def test_custom_weights(
        self, mock_repository, realtime_cache, cache_provider, collaborative, content, clock
    ) -> None:
        engine = _engine(
            mock_repository, realtime_cache, cache_provider, [collaborative, content], clock,
            strategy_weights={"ContentBased": 1.0},
            default_weight=0.0,
        )

        result = await engine.get_recommendations(RecommendationRequest(user_id=1))

        assert [r.score for r in result.recommendations] == pytest.approx([0.8, 0.5])
        assert result.recommendations[0].reason == RecommendationReason.AUDIO_FEATURES

    @pytest.mark.asyncio
    async def test_failing_strategy_is_dropped(
        self, mock_repository, realtime_cache, cache_provider, content, clock
    ) -> None:
        broken = StubStrategy("CollaborativeFiltering", error=StrategyError("boom"))
        engine = _engine(mock_repository, realtime_cache, cache_provider, [broken, content], clock)

        result = await engine.get_recommendations(RecommendationRequest(user_id=1))

        assert result.strategies == ["ContentBased"]
        assert result.recommendations[0].score == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_one_failure_among_five_strategies(
        self, mock_repository, realtime_cache, cache_provider, clock
    ) -> None:
        reason = RecommendationReason.DISCOVERY
        strategies = [
            StubStrategy("CollaborativeFiltering", make_recs({1: 0.9}, reason)),
            StubStrategy("ContentBased", make_recs({2: 0.8}, reason)),
            StubStrategy("PopularityBased", error=RuntimeError("db down")),
            StubStrategy("ContextAware", make_recs({3: 0.7}, reason)),
            StubStrategy("Discovery", make_recs({4: 0.6}, reason)),
        ]
        engine = _engine(mock_repository, realtime_cache, cache_provider, strategies, clock)

        with capture_logs() as logs:
            result = await engine.get_recommendations(RecommendationRequest(user_id=1))

        assert result.strategies == [
            "CollaborativeFiltering", "ContentBased", "ContextAware", "Discovery",
        ]
        assert sorted(result.song_ids) == [1, 2, 3, 4]
        failures = [entry for entry in logs if entry["event"] == "strategy_failed"]
        assert len(failures) == 1
        assert failures[0]["name"] == "PopularityBased"
        assert failures[0]["error_type"] == "StrategyError"
        assert failures[0]["error"] == "[PopularityBased] RuntimeError: db down"

    @pytest.mark.asyncio
    async def test_empty_contributions_are_not_listed(
        self, mock_repository, realtime_cache, cache_provider, content, clock
    ) -> None:
        engine = _engine(
            mock_repository, realtime_cache, cache_provider,
            [StubStrategy("ContextAware"), content], clock,
        )
        result = await engine.get_recommendations(RecommendationRequest(user_id=1))
        assert result.strategies == ["ContentBased"]

    @pytest.mark.asyncio
    async def test_no_candidates_gives_empty_result(
        self, mock_repository, realtime_cache, cache_provider, clock
    ) -> None:
        engine = _engine(
            mock_repository, realtime_cache, cache_provider, [StubStrategy("ContextAware")], clock
        )
        result = await engine.get_recommendations(RecommendationRequest(user_id=1))
        assert result.recommendations == []
        assert result.strategies == []

    @pytest.mark.asyncio
    async def test_limit_and_exclusions(
        self, mock_repository, realtime_cache, cache_provider, clock
    ) -> None:
        strategy = StubStrategy("ContentBased", make_recs({i: 1.0 - i / 10 for i in range(1, 6)}))
        engine = _engine(mock_repository, realtime_cache, cache_provider, [strategy], clock)

        result = await engine.get_recommendations(
            RecommendationRequest(user_id=1, limit=2, exclude_song_ids=frozenset({1}))
        )

        assert result.song_ids == [2, 3]

    @pytest.mark.asyncio
    async def test_mainstream_boost_for_trending_songs(self, engine, mock_repository) -> None:
        mock_repository.get_trending_songs.return_value = [(2, 1.0)]

        result = await engine.get_recommendations(
            RecommendationRequest(user_id=1, popularity_bias=0.9)
        )

        scores = {r.song_id: r.score for r in result.recommendations}
        assert scores[2] == pytest.approx(0.125 * 1.4)
        assert scores[1] == pytest.approx(0.41)
        mock_repository.get_trending_songs.assert_awaited_once_with(limit=100)

    @pytest.mark.asyncio
    async def test_no_boost_at_neutral_bias(self, engine, mock_repository) -> None:
        await engine.get_recommendations(RecommendationRequest(user_id=1, popularity_bias=0.5))
        mock_repository.get_trending_songs.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_realtime_adjustments_applied_and_floored(
        self, engine, realtime_cache
    ) -> None:
        await realtime_cache.adjust_song_score(1, 2, 0.5)
        await realtime_cache.adjust_song_score(1, 1, -1.0)

        result = await engine.get_recommendations(RecommendationRequest(user_id=1))

        assert result.song_ids == [2, 1]
        assert [r.score for r in result.recommendations] == pytest.approx([0.625, 0.0])

    @pytest.mark.asyncio
    async def test_context_attached_to_results(self, engine, evening_context) -> None:
        result = await engine.get_contextual_recommendations(1, evening_context, limit=5)
        assert all(r.context == evening_context for r in result.recommendations)


# ======================================================================
# Cache gate
# ======================================================================


class TestCacheGate:
    @pytest.mark.asyncio
    async def test_second_identical_request_is_a_hit(self, engine, content) -> None:
        request = RecommendationRequest(user_id=1)

        first = await engine.get_recommendations(request)
        second = await engine.get_recommendations(request)

        assert second.cache_hit is True
        assert second.song_ids == first.song_ids
        assert second.strategies == first.strategies
        assert len(content.requests) == 1

    @pytest.mark.asyncio
    async def test_feedback_invalidates_cached_result(
        self, engine, content, realtime_cache
    ) -> None:
        request = RecommendationRequest(user_id=1)
        await engine.get_recommendations(request)

        await realtime_cache.invalidate_recommendations(1)
        result = await engine.get_recommendations(request)

        assert result.cache_hit is False
        assert len(content.requests) == 2

    @pytest.mark.asyncio
    async def test_stale_result_is_recomputed(self, engine, content, clock) -> None:
        request = RecommendationRequest(user_id=1)
        await engine.get_recommendations(request)

        clock.advance(minutes=5)
        result = await engine.get_recommendations(request)

        assert result.cache_hit is False
        assert len(content.requests) == 2

    @pytest.mark.asyncio
    async def test_read_failure_is_a_miss(
        self, mock_repository, realtime_cache, content, clock
    ) -> None:
        provider = MagicMock(spec=ICacheProvider)
        provider.get = AsyncMock(side_effect=CacheError("down", component="redis"))
        provider.set = AsyncMock(return_value=None)
        engine = _engine(mock_repository, realtime_cache, provider, [content], clock)
        request = RecommendationRequest(user_id=1)

        await engine.get_recommendations(request)
        result = await engine.get_recommendations(request)

        assert result.cache_hit is False
        assert result.song_ids == [1, 2]
        provider.get.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_write_failure_leaves_key_unmarked(
        self, mock_repository, realtime_cache, content, clock
    ) -> None:
        provider = MagicMock(spec=ICacheProvider)
        provider.get = AsyncMock(return_value=None)
        provider.set = AsyncMock(side_effect=CacheError("down", component="redis"))
        engine = _engine(mock_repository, realtime_cache, provider, [content], clock)
        request = RecommendationRequest(user_id=1)

        result = await engine.get_recommendations(request)

        assert result.song_ids == [1, 2]
        assert not await realtime_cache.are_cached_recommendations_fresh(build_cache_key(request))

    @pytest.mark.asyncio
    async def test_result_written_with_ttl(
        self, mock_repository, realtime_cache, content, clock
    ) -> None:
        provider = MagicMock(spec=ICacheProvider)
        provider.get = AsyncMock(return_value=None)
        provider.set = AsyncMock(return_value=None)
        engine = _engine(
            mock_repository, realtime_cache, provider, [content], clock, result_ttl_seconds=42
        )
        request = RecommendationRequest(user_id=1)

        await engine.get_recommendations(request)

        key, payload = provider.set.await_args.args
        assert key == build_cache_key(request)
        assert payload["strategies"] == ["ContentBased"]
        assert provider.set.await_args.kwargs == {"ttl": 42}


# ======================================================================
# Convenience requests
# ======================================================================


class TestConvenienceRequests:
    @pytest.mark.asyncio
    async def test_song_radio(self, engine, content) -> None:
        await engine.get_song_radio(1, 7)
        request = content.requests[-1]
        assert request.seed_song_ids == [7]
        assert request.limit == 50
        assert request.diversity_factor == 0.4

    @pytest.mark.asyncio
    async def test_playlist_continuation(self, engine, content) -> None:
        playlist = [1, 2, 3, 4, 5, 6, 7]

        result = await engine.get_playlist_continuation(1, playlist)

        request = content.requests[-1]
        assert request.seed_song_ids == [3, 4, 5, 6, 7]
        assert request.exclude_song_ids == frozenset(playlist)
        assert request.limit == 10
        assert result.recommendations == []


# ======================================================================
# Daily Mixes
# ======================================================================


def _many(start: int, count: int) -> list[Recommendation]:
    song_ids = range(start, start + count)
    return make_recs({song_id: 1.0 - i / 100 for i, song_id in enumerate(song_ids)})


@pytest.fixture
def mix_engine(mock_repository, realtime_cache, cache_provider, clock):
    strategies = [
        StubStrategy("ContentBased", _many(1, 40)),
        StubStrategy("Discovery", _many(500, 30)),
    ]
    return _engine(mock_repository, realtime_cache, cache_provider, strategies, clock)


class TestDailyMixes:
    @pytest.mark.asyncio
    async def test_no_profile_means_no_mixes(self, mix_engine, mock_repository) -> None:
        assert await mix_engine.generate_daily_mixes(1) == []
        mock_repository.store_daily_mix.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_full_set_generated_and_stored(
        self, mix_engine, mock_repository, taste_profile, clock
    ) -> None:
        mock_repository.get_user_taste_profile.return_value = taste_profile
        mock_repository.get_popular_in_genre.return_value = list(range(50))
        mock_repository.get_user_listening_patterns.return_value = {
            TimeOfDay.EVENING: list(range(100, 125)),
        }

        mixes = await mix_engine.generate_daily_mixes(1)

        assert [mix.id for mix in mixes] == [
            "daily-mix-1-top-hits",
            "daily-mix-1-genre-1",
            "daily-mix-1-genre-2",
            "daily-mix-1-genre-3",
            "daily-mix-1-discovery",
            "daily-mix-1-time-machine",
        ]
        assert [mix.genre for mix in mixes[1:4]] == ["Rock", "Jazz", "Electronic"]
        assert all(len(mix.song_ids) >= 20 for mix in mixes)
        assert len(mixes[0].song_ids) == 30
        assert mixes[4].song_ids[0] == 500
        assert mixes[0].expires_at == clock.now + datetime.timedelta(hours=24)
        assert mixes[4].expires_at == clock.now + datetime.timedelta(days=7)
        assert mixes[5].expires_at == clock.now + datetime.timedelta(days=3)
        assert mock_repository.store_daily_mix.await_count == 6

    @pytest.mark.asyncio
    async def test_small_pools_are_discarded(
        self, mix_engine, mock_repository, taste_profile
    ) -> None:
        mock_repository.get_user_taste_profile.return_value = taste_profile
        mock_repository.get_popular_in_genre.return_value = [1, 2, 3]
        mock_repository.get_user_listening_patterns.return_value = {TimeOfDay.NIGHT: [1, 2]}

        mixes = await mix_engine.generate_daily_mixes(1)

        assert [mix.id for mix in mixes] == ["daily-mix-1-top-hits", "daily-mix-1-discovery"]

    @pytest.mark.asyncio
    async def test_short_merged_result_is_discarded(
        self, mock_repository, realtime_cache, cache_provider, clock, taste_profile
    ) -> None:
        engine = _engine(
            mock_repository, realtime_cache, cache_provider,
            [StubStrategy("ContentBased", _many(1, 10))], clock,
        )
        mock_repository.get_user_taste_profile.return_value = taste_profile

        assert await engine.generate_daily_mixes(1) == []


def _stored_mix(clock: FakeClock, suffix: str, expires_in: datetime.timedelta) -> DailyMix:
    return DailyMix(
        id=f"daily-mix-1-{suffix}",
        user_id=1,
        name=suffix,
        description="",
        song_ids=list(range(20)),
        created_at=clock.now - datetime.timedelta(hours=1),
        expires_at=clock.now + expires_in,
    )


class TestRefreshDailyMixes:
    @pytest.mark.asyncio
    async def test_current_mixes_are_served(self, mix_engine, mock_repository, clock) -> None:
        stored = [_stored_mix(clock, "top-hits", datetime.timedelta(hours=2))]
        mock_repository.get_daily_mixes.return_value = stored

        refresh = await mix_engine.refresh_daily_mixes(1)

        assert refresh.mixes == stored
        assert (refresh.generated, refresh.cached) == (0, 1)
        mock_repository.get_user_taste_profile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_any_expired_mix_triggers_regeneration(
        self, mix_engine, mock_repository, clock, taste_profile
    ) -> None:
        mock_repository.get_daily_mixes.return_value = [
            _stored_mix(clock, "top-hits", datetime.timedelta(hours=2)),
            _stored_mix(clock, "discovery", datetime.timedelta(hours=-1)),
        ]
        mock_repository.get_user_taste_profile.return_value = taste_profile

        refresh = await mix_engine.refresh_daily_mixes(1)

        assert refresh.cached == 0
        assert refresh.generated == len(refresh.mixes) == 2
        assert all(not mix.is_expired(clock.now) for mix in refresh.mixes)

    @pytest.mark.asyncio
    async def test_force_refresh_skips_stored_mixes(
        self, mix_engine, mock_repository, taste_profile
    ) -> None:
        mock_repository.get_user_taste_profile.return_value = taste_profile

        refresh = await mix_engine.refresh_daily_mixes(1, force_refresh=True)

        mock_repository.get_daily_mixes.assert_not_awaited()
        assert refresh.generated == 2

    @pytest.mark.asyncio
    async def test_nothing_stored_and_no_profile(self, mix_engine) -> None:
        refresh = await mix_engine.refresh_daily_mixes(1)
        assert refresh.mixes == []
        assert (refresh.generated, refresh.cached) == (0, 0)
