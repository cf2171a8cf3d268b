"""Hybrid recommendation engine: concurrent strategies, one merged ranking.

Request flow for :meth:`HybridRecommendationEngine.get_recommendations`:

  1. CACHE GATE   -- build a deterministic key from the request.  The
                     persistent store is only consulted while the real-time
                     cache still vouches for the key (no feedback since it
                     was written, and younger than the freshness window).
  2. FAN-OUT      -- every strategy runs concurrently, bounded by a
                     semaphore.  A strategy that raises is logged and
                     contributes nothing; it never fails the request.
  3. MERGE        -- ``score[song] += strategy_score * weight(strategy)``,
                     an optional mainstream boost against the global
                     trending chart, then the user's real-time score
                     adjustment (clamped at zero).  The displayed reason is
                     the one from the highest-weighted contributor.
  4. PERSIST      -- the merged result is written back to the store and the
                     key is marked fresh.  Write failures are logged only.

Daily Mixes reuse the same pipeline with preset requests, plus two mixes
built outside the merge (Discovery, Time Machine).
"""

from __future__ import annotations

import asyncio
import datetime
import hashlib
import time
from collections import Counter
from typing import Callable, Mapping

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.recommendation_repository import IRecommendationRepository
from src.interfaces.recommendation_strategy import IRecommendationStrategy
from src.models.recommendation import (
    DailyMix,
    DailyMixRefresh,
    Recommendation,
    RecommendationContext,
    RecommendationReason,
    RecommendationRequest,
    RecommendationResult,
    UserTasteProfile,
)
from src.services.realtime_cache import RealTimeRecommendationCache, user_key_prefix
from src.services.strategies import (
    CollaborativeFilteringStrategy,
    ContentBasedStrategy,
    ContextAwareStrategy,
    DiscoveryStrategy,
    PopularityBasedStrategy,
)
from src.utils.concurrency import gather_settled
from src.utils.errors import CacheError, ConfigurationError, StrategyError
from src.utils.logging import get_logger, request_context

DEFAULT_STRATEGY_WEIGHTS: dict[str, float] = {
    "CollaborativeFiltering": 0.35,
    "ContentBased": 0.25,
    "PopularityBased": 0.15,
    "ContextAware": 0.15,
    "Discovery": 0.10,
}

_TRENDING_BOOST_POOL = 100

_MIX_LIMIT = 30
_GENRE_MIX_COUNT = 3
_GENRE_POOL_FETCH = 50
_DAILY = datetime.timedelta(hours=24)
_WEEKLY = datetime.timedelta(days=7)
_TIME_MACHINE_TTL = datetime.timedelta(days=3)

_DISCOVERY_STRATEGY = "Discovery"


def build_cache_key(request: RecommendationRequest) -> str:
    """Deterministic persistent-cache key for *request*.

    Every request field that changes the merged output is part of the key,
    so genre mixes and playlist continuations with different exclusions
    never share an entry.
    """
    context = request.context
    seeds = ",".join(str(song_id) for song_id in request.seed_song_ids or [])
    genres = ",".join(request.seed_genres or [])
    artists = ",".join(str(artist_id) for artist_id in request.seed_artist_ids or [])
    excluded = ""
    if request.exclude_song_ids:
        joined = ",".join(str(song_id) for song_id in sorted(request.exclude_song_ids))
        excluded = hashlib.sha1(joined.encode()).hexdigest()[:16]
    parts = [
        str(request.limit),
        context.time_of_day.value if context else "",
        context.activity.value if context and context.activity else "",
        context.mood.value if context and context.mood else "",
        seeds,
        str(request.diversity_factor),
        str(request.popularity_bias),
        genres,
        artists,
        excluded,
    ]
    return user_key_prefix(request.user_id) + ":".join(parts)


def default_strategies(repository: IRecommendationRepository) -> list[IRecommendationStrategy]:
    return [
        CollaborativeFilteringStrategy(repository),
        ContentBasedStrategy(repository),
        PopularityBasedStrategy(repository),
        ContextAwareStrategy(repository),
        DiscoveryStrategy(repository),
    ]


class HybridRecommendationEngine:
    """Runs the strategies, merges their scores and builds Daily Mixes.

    Parameters
    ----------
    repository:
        Data access used for the trending boost and Daily Mixes.
    realtime_cache:
        Source of per-user score adjustments and the freshness ledger.
    cache_provider:
        Persistent store for merged results.
    strategies:
        Strategies to run; ``None`` selects the five built-in strategies
        and an empty list runs none.  Names must be unique.
    strategy_weights:
        Merge weight per strategy name.  Defaults to
        :data:`DEFAULT_STRATEGY_WEIGHTS`.
    default_weight:
        Weight for strategies missing from *strategy_weights*.
    result_ttl_seconds:
        TTL of persisted results.
    freshness_window:
        Maximum age at which a persisted result may be served.
    max_concurrency:
        Upper bound on strategies running at once.
    min_mix_size:
        Daily Mixes with fewer songs are discarded.
    clock:
        Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        repository: IRecommendationRepository,
        realtime_cache: RealTimeRecommendationCache,
        cache_provider: ICacheProvider,
        strategies: list[IRecommendationStrategy] | None = None,
        strategy_weights: Mapping[str, float] | None = None,
        default_weight: float = 0.1,
        result_ttl_seconds: int = 300,
        freshness_window: datetime.timedelta = datetime.timedelta(minutes=5),
        max_concurrency: int = 5,
        min_mix_size: int = 20,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._realtime_cache = realtime_cache
        self._cache = cache_provider
        self._strategies = (
            strategies if strategies is not None else default_strategies(repository)
        )
        self._weights = dict(
            DEFAULT_STRATEGY_WEIGHTS if strategy_weights is None else strategy_weights
        )
        self._default_weight = default_weight
        self._result_ttl = result_ttl_seconds
        self._freshness_window = freshness_window
        self._semaphore = asyncio.Semaphore(max(max_concurrency, 1))
        self._min_mix_size = min_mix_size
        self._clock = clock or datetime.datetime.now
        self._logger = get_logger(__name__)

        names = [strategy.get_strategy_name() for strategy in self._strategies]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(
                message=f"Duplicate strategy names: {', '.join(duplicates)}",
                component="engine",
            )

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.get_strategy_name() for strategy in self._strategies]

    def weight_for(self, strategy_name: str) -> float:
        return self._weights.get(strategy_name, self._default_weight)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_recommendations(self, request: RecommendationRequest) -> RecommendationResult:
        """Return the merged, ranked recommendations for *request*.

        Parameters
        ----------
        request:
            The caller's request.

        Returns
        -------
        RecommendationResult
            At most ``request.limit`` unique songs, none of them excluded.
            ``strategies`` lists only strategies that contributed.

        Raises
        ------
        RepositoryError
            If the trending chart needed for the mainstream boost cannot
            be read.  Strategy and cache failures never raise.
        """
        started = time.perf_counter()
        with request_context(request.user_id, "get_recommendations"):
            cache_key = build_cache_key(request)
            cached = await self._read_cached(cache_key)
            if cached is not None:
                self._logger.debug("recommendations_cache_hit", cache_key=cache_key)
                return cached.model_copy(
                    update={"cache_hit": True, "execution_time_ms": _elapsed_ms(started)}
                )

            contributions = await self._run_strategies(request)
            recommendations = await self._merge(contributions, request)
            result = RecommendationResult(
                recommendations=recommendations,
                execution_time_ms=_elapsed_ms(started),
                cache_hit=False,
                strategies=[name for name, recs in contributions.items() if recs],
            )
            await self._write_cached(cache_key, result)

            self._logger.info(
                "recommendations_generated",
                count=len(result.recommendations),
                strategies=result.strategies,
                execution_time_ms=result.execution_time_ms,
            )
            return result

    async def get_contextual_recommendations(
        self,
        user_id: int,
        context: RecommendationContext,
        limit: int = 20,
    ) -> RecommendationResult:
        return await self.get_recommendations(
            RecommendationRequest(
                user_id=user_id,
                limit=limit,
                context=context,
                diversity_factor=0.3,
            )
        )

    async def get_playlist_continuation(
        self,
        user_id: int,
        playlist_song_ids: list[int],
        limit: int = 10,
    ) -> RecommendationResult:
        """Songs to append to a playlist, seeded by its last five tracks."""
        return await self.get_recommendations(
            RecommendationRequest(
                user_id=user_id,
                limit=limit,
                seed_song_ids=playlist_song_ids[-5:],
                exclude_song_ids=frozenset(playlist_song_ids),
                diversity_factor=0.2,
            )
        )

    async def get_song_radio(
        self,
        user_id: int,
        song_id: int,
        limit: int = 50,
    ) -> RecommendationResult:
        return await self.get_recommendations(
            RecommendationRequest(
                user_id=user_id,
                limit=limit,
                seed_song_ids=[song_id],
                diversity_factor=0.4,
            )
        )

    async def generate_daily_mixes(self, user_id: int) -> list[DailyMix]:
        """Build, store and return the user's Daily Mixes.

        Returns an empty list when the user has no taste profile.  Mixes
        shorter than ``min_mix_size`` are dropped rather than padded.
        Repository failures propagate.
        """
        with request_context(user_id, "generate_daily_mixes"):
            profile = await self._repository.get_user_taste_profile(user_id)
            if profile is None:
                self._logger.info("daily_mixes_skipped", reason="no_taste_profile")
                return []

            now = self._clock()
            top_hits = await self._top_hits_mix(user_id, now)
            genre_mixes = await self._genre_mixes(user_id, profile, now)
            discovery = await self._discovery_mix(user_id, now)
            time_machine = await self._time_machine_mix(user_id, now)

            mixes = [
                mix for mix in (top_hits, *genre_mixes, discovery, time_machine) if mix is not None
            ]
            for mix in mixes:
                await self._repository.store_daily_mix(mix)

            self._logger.info("daily_mixes_generated", count=len(mixes))
            return mixes

    async def refresh_daily_mixes(
        self,
        user_id: int,
        force_refresh: bool = False,
    ) -> DailyMixRefresh:
        """Serve stored mixes while all are current, otherwise regenerate.

        Expired mixes are never returned.
        """
        now = self._clock()
        if not force_refresh:
            stored = await self._repository.get_daily_mixes(user_id)
            active = [mix for mix in stored if not mix.is_expired(now)]
            if stored and len(active) == len(stored):
                return DailyMixRefresh(mixes=active, generated=0, cached=len(active))

        generated = await self.generate_daily_mixes(user_id)
        active = [mix for mix in generated if not mix.is_expired(now)]
        return DailyMixRefresh(mixes=active, generated=len(active), cached=0)

    # ------------------------------------------------------------------
    # Fan-out / merge
    # ------------------------------------------------------------------

    async def _run_strategies(
        self,
        request: RecommendationRequest,
    ) -> dict[str, list[Recommendation]]:
        settled = await gather_settled(
            {s.get_strategy_name(): self._run_strategy(s, request) for s in self._strategies},
            semaphore=self._semaphore,
            logger=self._logger,
            error_msg="strategy_failed",
        )
        return {
            name: [] if isinstance(outcome, Exception) else outcome
            for name, outcome in settled.items()
        }

    @staticmethod
    async def _run_strategy(
        strategy: IRecommendationStrategy,
        request: RecommendationRequest,
    ) -> list[Recommendation]:
        """Await one strategy, reporting any failure as a StrategyError naming it."""
        try:
            return await strategy.recommend(request)
        except StrategyError:
            raise
        except Exception as exc:
            raise StrategyError(
                message=f"{type(exc).__name__}: {exc}",
                component=strategy.get_strategy_name(),
            ) from exc

    async def _merge(
        self,
        contributions: dict[str, list[Recommendation]],
        request: RecommendationRequest,
    ) -> list[Recommendation]:
        scores: dict[int, float] = {}
        reasons: dict[int, tuple[float, RecommendationReason]] = {}
        metadata: dict[int, dict] = {}
        contributors: dict[int, list[str]] = {}

        for name, recommendations in contributions.items():
            weight = self.weight_for(name)
            for rec in recommendations:
                song_id = rec.song_id
                scores[song_id] = scores.get(song_id, 0.0) + rec.score * weight
                best = reasons.get(song_id)
                if best is None or weight > best[0]:
                    reasons[song_id] = (weight, rec.reason)
                metadata.setdefault(song_id, {}).update(rec.metadata)
                names = contributors.setdefault(song_id, [])
                if name not in names:
                    names.append(name)

        if not scores:
            return []

        if request.popularity_bias > 0.5:
            trending = await self._repository.get_trending_songs(limit=_TRENDING_BOOST_POOL)
            trending_ids = {song_id for song_id, _ in trending}
            boost = 1 + (request.popularity_bias - 0.5)
            for song_id in scores:
                if song_id in trending_ids:
                    scores[song_id] *= boost

        adjustments = await self._realtime_cache.get_all_score_adjustments(request.user_id)
        for song_id, score in scores.items():
            scores[song_id] = max(0.0, score + adjustments.get(song_id, 0.0))

        merged = [
            Recommendation(
                song_id=song_id,
                score=score,
                reason=reasons[song_id][1],
                context=request.context,
                metadata={**metadata[song_id], "strategies": contributors[song_id]},
            )
            for song_id, score in scores.items()
            if song_id not in request.exclude_song_ids
        ]
        merged.sort(key=lambda rec: rec.score, reverse=True)
        return merged[: request.limit]

    # ------------------------------------------------------------------
    # Persistent cache gate
    # ------------------------------------------------------------------

    async def _read_cached(self, cache_key: str) -> RecommendationResult | None:
        fresh = await self._realtime_cache.are_cached_recommendations_fresh(
            cache_key, self._freshness_window
        )
        if not fresh:
            return None
        try:
            payload = await self._cache.get(cache_key)
            if payload is None:
                return None
            return RecommendationResult.model_validate(payload)
        except (CacheError, ValueError, TypeError) as exc:
            self._logger.warning(
                "cache_read_failed",
                cache_key=cache_key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    async def _write_cached(self, cache_key: str, result: RecommendationResult) -> None:
        try:
            await self._cache.set(cache_key, result.model_dump(mode="json"), ttl=self._result_ttl)
        except (CacheError, ValueError, TypeError) as exc:
            self._logger.warning(
                "cache_write_failed",
                cache_key=cache_key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return
        await self._realtime_cache.mark_cached_recommendations(cache_key)

    # ------------------------------------------------------------------
    # Daily Mixes
    # ------------------------------------------------------------------

    def _mix(
        self,
        user_id: int,
        suffix: str,
        name: str,
        description: str,
        song_ids: list[int],
        now: datetime.datetime,
        lifetime: datetime.timedelta,
        genre: str | None = None,
    ) -> DailyMix | None:
        if len(song_ids) < self._min_mix_size:
            self._logger.debug("daily_mix_discarded", mix=suffix, size=len(song_ids))
            return None
        return DailyMix(
            id=f"daily-mix-{user_id}-{suffix}",
            user_id=user_id,
            name=name,
            description=description,
            song_ids=list(dict.fromkeys(song_ids)),
            genre=genre,
            created_at=now,
            expires_at=now + lifetime,
        )

    async def _top_hits_mix(self, user_id: int, now: datetime.datetime) -> DailyMix | None:
        result = await self.get_recommendations(
            RecommendationRequest(
                user_id=user_id,
                limit=_MIX_LIMIT,
                popularity_bias=0.8,
                diversity_factor=0.2,
            )
        )
        return self._mix(
            user_id, "top-hits", "Your Top Hits", "Songs you love right now",
            result.song_ids, now, _DAILY,
        )

    async def _genre_mixes(
        self,
        user_id: int,
        profile: UserTasteProfile,
        now: datetime.datetime,
    ) -> list[DailyMix]:
        genres = [genre for genre, _ in profile.ranked_genres(_GENRE_MIX_COUNT)]
        mixes = await asyncio.gather(
            *(
                self._genre_mix(user_id, genre, index, now)
                for index, genre in enumerate(genres, start=1)
            )
        )
        return [mix for mix in mixes if mix is not None]

    async def _genre_mix(
        self,
        user_id: int,
        genre: str,
        index: int,
        now: datetime.datetime,
    ) -> DailyMix | None:
        pool = await self._repository.get_popular_in_genre(genre, _GENRE_POOL_FETCH)
        if len(pool) < self._min_mix_size:
            self._logger.debug("genre_pool_too_small", genre=genre, size=len(pool))
            return None

        result = await self.get_recommendations(
            RecommendationRequest(
                user_id=user_id,
                limit=_MIX_LIMIT,
                seed_genres=[genre],
                diversity_factor=0.3,
            )
        )
        return self._mix(
            user_id, f"genre-{index}", f"{genre} Mix", f"The best of {genre} for you",
            result.song_ids, now, _DAILY, genre=genre,
        )

    async def _discovery_mix(self, user_id: int, now: datetime.datetime) -> DailyMix | None:
        strategy = next(
            (s for s in self._strategies if s.get_strategy_name() == _DISCOVERY_STRATEGY),
            None,
        )
        if strategy is None:
            return None

        recommendations = await strategy.recommend(
            RecommendationRequest(
                user_id=user_id,
                limit=_MIX_LIMIT,
                diversity_factor=0.7,
                popularity_bias=0.3,
            )
        )
        return self._mix(
            user_id, "discovery", "Discovery Mix", "New music picked for you",
            [rec.song_id for rec in recommendations], now, _WEEKLY,
        )

    async def _time_machine_mix(self, user_id: int, now: datetime.datetime) -> DailyMix | None:
        patterns = await self._repository.get_user_listening_patterns(user_id)
        plays = Counter(song_id for songs in patterns.values() for song_id in songs)
        song_ids = [song_id for song_id, _ in plays.most_common(_MIX_LIMIT)]
        return self._mix(
            user_id, "time-machine", "Time Machine", "Songs from your past",
            song_ids, now, _TIME_MACHINE_TTL,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
