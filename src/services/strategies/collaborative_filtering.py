"""Collaborative filtering: recommend what similar listeners liked."""

from __future__ import annotations

from collections import Counter

from src.models.recommendation import (
    Recommendation,
    RecommendationReason,
    RecommendationRequest,
)
from src.services.strategies.base import BaseRecommendationStrategy

# How many neighbours the repository is asked for.
_SIMILAR_USER_LIMIT = 100

# Liked-song candidates fetched per requested slot.
_CANDIDATE_MULTIPLIER = 3


class CollaborativeFilteringStrategy(BaseRecommendationStrategy):
    """Scores songs by how many similar users liked them.

    The raw score is the co-occurrence count across the similar users'
    likes, divided by the highest count, so the most widely shared song
    scores 1.0.
    """

    async def recommend(self, request: RecommendationRequest) -> list[Recommendation]:
        similar_users = await self._repository.get_users_with_similar_taste(
            request.user_id, limit=_SIMILAR_USER_LIMIT
        )
        if not similar_users:
            self._logger.debug("no_similar_users", user_id=request.user_id)
            return []

        liked = await self._repository.get_songs_liked_by_similar_users(
            request.user_id,
            [user_id for user_id, _ in similar_users],
            limit=request.limit * _CANDIDATE_MULTIPLIER,
        )
        if not liked:
            self._logger.debug("no_songs_from_similar_users", user_id=request.user_id)
            return []

        counts = Counter(liked)
        max_count = max(counts.values())
        recommendations = [
            Recommendation(
                song_id=song_id,
                score=count / max_count,
                reason=RecommendationReason.COLLABORATIVE_FILTERING,
                metadata={
                    "similar_users_count": count,
                    "strategy": "collaborative_filtering",
                },
            )
            for song_id, count in counts.items()
        ]

        filtered = self.filter_excluded_songs(recommendations, request.exclude_song_ids)
        diversified = self.apply_diversity_factor(filtered, request.diversity_factor)
        return self.rank(diversified, request.limit)

    def get_strategy_name(self) -> str:
        return "CollaborativeFiltering"
