"""Context-aware strategy: what fits the current time, activity and mood.

Candidates come from three context dimensions:

  time      -- the user's own plays in the current time-of-day window
  activity  -- songs curated for the request's activity
  mood      -- a small trending supplement, only when the mood is FOCUSED

A song found by several dimensions is averaged and keeps the most specific
reason (TIME_BASED over ACTIVITY_BASED over TRENDING_NOW).  Without a
request context the strategy has nothing to work with and returns nothing.
"""

from __future__ import annotations

import asyncio

from src.models.recommendation import (
    Mood,
    Recommendation,
    RecommendationContext,
    RecommendationReason,
    RecommendationRequest,
)
from src.services.strategies.base import BaseRecommendationStrategy

_TIME_BASE = 0.9
_ACTIVITY_BASE = 0.85
_MOOD_SCORE = 0.8
_POSITION_DECAY = 0.02
_HISTORY_MATCH_BOOST = 1.2
_TRENDING_WINDOW_HOURS = 24

_REASON_PRIORITY = (
    RecommendationReason.TIME_BASED,
    RecommendationReason.ACTIVITY_BASED,
    RecommendationReason.TRENDING_NOW,
)


class ContextAwareStrategy(BaseRecommendationStrategy):
    """Scores songs against the request's listening context."""

    async def recommend(self, request: RecommendationRequest) -> list[Recommendation]:
        context = request.context
        if context is None:
            return []

        trending_limit = request.limit // 4
        patterns, activity_songs, trending = await asyncio.gather(
            self._repository.get_user_listening_patterns(request.user_id),
            self._activity_songs(context, request.limit),
            self._focus_trending(context, trending_limit),
        )

        # Plays are listed once per play; keep first-seen order.
        history = list(dict.fromkeys(patterns.get(context.time_of_day, [])))
        history_set = set(history)

        tagged: list[tuple[str, Recommendation]] = []
        for index, song_id in enumerate(history[: request.limit]):
            tagged.append(
                (
                    "time",
                    Recommendation(
                        song_id=song_id,
                        score=max(_TIME_BASE - index * _POSITION_DECAY, 0.0),
                        reason=RecommendationReason.TIME_BASED,
                        metadata={"time_of_day": context.time_of_day.value},
                    ),
                )
            )
        for index, song_id in enumerate(activity_songs):
            score = max(_ACTIVITY_BASE - index * _POSITION_DECAY, 0.0)
            if song_id in history_set:
                score *= _HISTORY_MATCH_BOOST
            tagged.append(
                (
                    "activity",
                    Recommendation(
                        song_id=song_id,
                        score=score,
                        reason=RecommendationReason.ACTIVITY_BASED,
                        metadata={"activity": context.activity.value if context.activity else None},
                    ),
                )
            )
        for song_id, _ in trending:
            score = _MOOD_SCORE * (_HISTORY_MATCH_BOOST if song_id in history_set else 1.0)
            tagged.append(
                (
                    "mood",
                    Recommendation(
                        song_id=song_id,
                        score=score,
                        reason=RecommendationReason.TRENDING_NOW,
                        metadata={"mood": context.mood.value if context.mood else None},
                    ),
                )
            )

        if not tagged:
            return []

        combined = self._combine(tagged, context)
        filtered = self.filter_excluded_songs(combined, request.exclude_song_ids)
        normalized = self.normalize_scores(filtered)
        return self.rank(normalized, request.limit)

    def get_strategy_name(self) -> str:
        return "ContextAware"

    # ------------------------------------------------------------------

    async def _activity_songs(self, context: RecommendationContext, limit: int) -> list[int]:
        if context.activity is None or limit <= 0:
            return []
        return await self._repository.get_songs_for_activity(context.activity, limit)

    async def _focus_trending(
        self,
        context: RecommendationContext,
        limit: int,
    ) -> list[tuple[int, float]]:
        if context.mood is not Mood.FOCUSED or limit <= 0:
            return []
        return await self._repository.get_trending_songs(
            limit=limit, time_window_hours=_TRENDING_WINDOW_HOURS
        )

    @staticmethod
    def _combine(
        tagged: list[tuple[str, Recommendation]],
        context: RecommendationContext,
    ) -> list[Recommendation]:
        grouped: dict[int, list[tuple[str, Recommendation]]] = {}
        for dimension, rec in tagged:
            grouped.setdefault(rec.song_id, []).append((dimension, rec))

        combined: list[Recommendation] = []
        for song_id, entries in grouped.items():
            reasons = {rec.reason for _, rec in entries}
            reason = next(r for r in _REASON_PRIORITY if r in reasons)
            metadata: dict = {}
            for _, rec in entries:
                metadata.update(rec.metadata)
            metadata.update(
                {
                    "context_dimensions": list(dict.fromkeys(d for d, _ in entries)),
                    "context_time": context.time_of_day.value,
                    "context_activity": context.activity.value if context.activity else "none",
                    "context_mood": context.mood.value if context.mood else "none",
                    "strategy": "context_aware",
                }
            )
            combined.append(
                Recommendation(
                    song_id=song_id,
                    score=sum(rec.score for _, rec in entries) / len(entries),
                    reason=reason,
                    context=context,
                    metadata=metadata,
                )
            )
        return combined
