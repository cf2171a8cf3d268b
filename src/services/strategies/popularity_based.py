"""Popularity strategy: trending songs, new releases and genre charts.

Pools are fetched concurrently and merged by keeping each song's best
score.  ``popularity_bias`` then reshapes the normalised scores: below 0.5
every score is compressed towards zero (``score * bias * 2``), at or above
0.5 scores are boosted by ``1 + (bias - 0.5)``.  Songs whose raw trending
score is at least 0.9 count as viral and never drop below 0.8, whatever the
bias.
"""

from __future__ import annotations

import asyncio

from src.models.recommendation import (
    Recommendation,
    RecommendationReason,
    RecommendationRequest,
    UserTasteProfile,
)
from src.services.strategies.base import BaseRecommendationStrategy

_DAY_HOURS = 24
_WEEK_HOURS = 24 * 7
_WEEKLY_DISCOUNT = 0.8
_NEW_RELEASE_DAYS = 14
_NEW_RELEASE_BASE = 0.7
_GENRE_BASE = 0.6
_GENRE_AFFINITY_WEIGHT = 0.3
_POSITION_DECAY = 0.01
_TOP_GENRES = 3

_VIRAL_THRESHOLD = 0.9
_VIRAL_FLOOR = 0.8


class PopularityBasedStrategy(BaseRecommendationStrategy):
    """Trending, weekly-trending, new-release and per-genre pools."""

    async def recommend(self, request: RecommendationRequest) -> list[Recommendation]:
        half = request.limit // 2
        daily, weekly, new_releases, profile = await asyncio.gather(
            self._repository.get_trending_songs(limit=request.limit, time_window_hours=_DAY_HOURS),
            self._repository.get_trending_songs(limit=half, time_window_hours=_WEEK_HOURS),
            self._repository.get_new_releases(limit=half, days_back=_NEW_RELEASE_DAYS),
            self._repository.get_user_taste_profile(request.user_id),
        )

        candidates: list[Recommendation] = []
        candidates.extend(self._trending(daily, 1.0, "24h"))
        candidates.extend(self._trending(weekly, _WEEKLY_DISCOUNT, "7d"))
        candidates.extend(
            Recommendation(
                song_id=song_id,
                score=max(_NEW_RELEASE_BASE - index * _POSITION_DECAY, 0.0),
                reason=RecommendationReason.NEW_RELEASE,
                metadata={"release_type": "new", "strategy": "popularity"},
            )
            for index, song_id in enumerate(new_releases)
        )
        candidates.extend(await self._genre_charts(request, profile))

        if not candidates:
            return []

        viral = {song_id for song_id, score in [*daily, *weekly] if score >= _VIRAL_THRESHOLD}

        unique = self.keep_highest_score(candidates)
        filtered = self.filter_excluded_songs(unique, request.exclude_song_ids)
        normalized = self.normalize_scores(filtered)
        diversified = self.apply_diversity_factor(normalized, request.diversity_factor)
        adjusted = [self._apply_bias(rec, request.popularity_bias, viral) for rec in diversified]
        return self.rank(adjusted, request.limit)

    def get_strategy_name(self) -> str:
        return "PopularityBased"

    # ------------------------------------------------------------------

    @staticmethod
    def _trending(
        pairs: list[tuple[int, float]],
        factor: float,
        window: str,
    ) -> list[Recommendation]:
        return [
            Recommendation(
                song_id=song_id,
                score=score * factor,
                reason=RecommendationReason.TRENDING_NOW,
                metadata={
                    "trending_score": score,
                    "time_window": window,
                    "strategy": "popularity",
                },
            )
            for song_id, score in pairs
        ]

    async def _genre_charts(
        self,
        request: RecommendationRequest,
        profile: UserTasteProfile | None,
    ) -> list[Recommendation]:
        if request.seed_genres:
            affinities = profile.top_genres if profile is not None else {}
            genres = [(genre, affinities.get(genre, 1.0)) for genre in request.seed_genres]
            per_genre = request.limit
        elif profile is not None:
            genres = profile.ranked_genres(_TOP_GENRES)
            per_genre = request.limit // 3
        else:
            return []

        if not genres or per_genre <= 0:
            return []

        pools = await asyncio.gather(
            *(self._repository.get_popular_in_genre(genre, per_genre) for genre, _ in genres)
        )
        return [
            Recommendation(
                song_id=song_id,
                score=max(
                    _GENRE_BASE + affinity * _GENRE_AFFINITY_WEIGHT - index * _POSITION_DECAY,
                    0.0,
                ),
                reason=RecommendationReason.POPULAR_IN_GENRE,
                metadata={
                    "genre": genre,
                    "genre_affinity": affinity,
                    "strategy": "popularity",
                },
            )
            for (genre, affinity), pool in zip(genres, pools)
            for index, song_id in enumerate(pool)
        ]

    @staticmethod
    def _apply_bias(
        rec: Recommendation,
        popularity_bias: float,
        viral: set[int],
    ) -> Recommendation:
        if popularity_bias < 0.5:
            score = rec.score * popularity_bias * 2
        else:
            score = rec.score * (1 + (popularity_bias - 0.5))
        if rec.song_id in viral:
            score = max(score, _VIRAL_FLOOR)
        return rec.model_copy(update={"score": score})
