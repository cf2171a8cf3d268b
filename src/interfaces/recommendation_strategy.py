"""Abstract base class for recommendation strategies.

A strategy turns a :class:`RecommendationRequest` into scored candidates
from one signal (similar users, audio features, popularity, context,
discovery).  The hybrid engine runs every registered strategy concurrently
and weights each one's scores by the name returned from
:meth:`get_strategy_name`, so adding a strategy needs no engine change.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.recommendation import Recommendation, RecommendationRequest


class IRecommendationStrategy(ABC):
    """Contract for a single scoring strategy.

    Strategies hold no mutable state beyond read-only repository access,
    so one instance may serve many concurrent requests.
    """

    @abstractmethod
    async def recommend(self, request: RecommendationRequest) -> list[Recommendation]:
        """Score candidate songs for *request*.

        Parameters
        ----------
        request:
            The caller's request.  ``exclude_song_ids`` must be honoured.

        Returns
        -------
        list[Recommendation]
            At most ``request.limit`` recommendations, highest score first.
            Missing data (no similar users, no profile, no context) yields
            an empty list rather than an exception.
        """

    @abstractmethod
    def get_strategy_name(self) -> str:
        """Return the stable name used for weighting and attribution."""
