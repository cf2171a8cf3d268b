"""Shared plumbing for the concrete recommendation strategies.

Every strategy ends the same way: drop excluded songs, optionally rescale
scores, mix in some lower-ranked candidates, then sort and truncate.  These
steps live here so each strategy module only has to describe where its
candidates come from and how they are scored.
"""

from __future__ import annotations

import random
from typing import Iterable

from src.interfaces.recommendation_repository import IRecommendationRepository
from src.interfaces.recommendation_strategy import IRecommendationStrategy
from src.models.recommendation import Recommendation
from src.utils.logging import get_logger

# Candidate lists this short are returned untouched by the diversity pass.
_DIVERSITY_MIN_CANDIDATES = 10

# Share of the demoted tail that is sampled back in, scaled by the factor.
_DIVERSITY_SAMPLE_RATIO = 0.3


class BaseRecommendationStrategy(IRecommendationStrategy):
    """Base class holding the repository, a random source and list helpers.

    Parameters
    ----------
    repository:
        Read-only data access shared by all strategies.
    rng:
        Random source for diversity sampling.  Tests pass a seeded
        ``random.Random`` to make sampling deterministic.
    """

    def __init__(
        self,
        repository: IRecommendationRepository,
        rng: random.Random | None = None,
    ) -> None:
        self._repository = repository
        self._rng = rng or random.Random()
        self._logger = get_logger(type(self).__module__)

    # ------------------------------------------------------------------
    # Helpers shared by all strategies
    # ------------------------------------------------------------------

    @staticmethod
    def filter_excluded_songs(
        recommendations: Iterable[Recommendation],
        excluded_ids: Iterable[int],
    ) -> list[Recommendation]:
        excluded = set(excluded_ids)
        return [rec for rec in recommendations if rec.song_id not in excluded]

    @staticmethod
    def normalize_scores(recommendations: list[Recommendation]) -> list[Recommendation]:
        """Rescale scores linearly onto [0, 1].

        If every score is equal the list is returned unchanged, so a
        single candidate keeps its raw score.
        """
        if not recommendations:
            return recommendations

        scores = [rec.score for rec in recommendations]
        low, high = min(scores), max(scores)
        spread = high - low
        if spread == 0:
            return recommendations

        return [
            rec.model_copy(update={"score": (rec.score - low) / spread})
            for rec in recommendations
        ]

    def apply_diversity_factor(
        self,
        recommendations: list[Recommendation],
        diversity_factor: float,
    ) -> list[Recommendation]:
        """Keep the top ``(1 - f)`` share and sample back part of the rest.

        With ``n`` candidates the first ``floor((1 - f) * n)`` (by score)
        are kept, then ``floor(f * n * 0.3)`` candidates are drawn at
        random from the remainder.  The combined list is re-sorted by
        score, so sampled songs never outrank the kept head.
        """
        count = len(recommendations)
        if diversity_factor <= 0 or count <= _DIVERSITY_MIN_CANDIDATES:
            return recommendations

        ranked = self.rank(recommendations)
        split = int((1 - diversity_factor) * count)
        head, tail = ranked[:split], ranked[split:]
        sample_size = min(int(diversity_factor * count * _DIVERSITY_SAMPLE_RATIO), len(tail))
        sampled = self._rng.sample(tail, sample_size)
        return self.rank(head + sampled)

    @staticmethod
    def rank(
        recommendations: Iterable[Recommendation],
        limit: int | None = None,
    ) -> list[Recommendation]:
        """Stable sort by descending score, truncated to *limit*."""
        ordered = sorted(recommendations, key=lambda rec: rec.score, reverse=True)
        return ordered if limit is None else ordered[:limit]

    @staticmethod
    def keep_highest_score(recommendations: Iterable[Recommendation]) -> list[Recommendation]:
        """Collapse duplicate song IDs, keeping the best-scoring entry.

        First-seen order is preserved so later ranking ties stay stable.
        """
        best: dict[int, Recommendation] = {}
        for rec in recommendations:
            current = best.get(rec.song_id)
            if current is None or rec.score > current.score:
                best[rec.song_id] = rec
        return list(best.values())
