"""Discovery strategy: music just outside the user's comfort zone.

Three sources, fetched concurrently:

  adjacent genres  -- each of the user's top genres maps to a fixed set of
                      neighbouring genres the user does not already rank
  new artists      -- artists similar to the user's favourites that are
                      not themselves among the favourites
  new releases     -- anything released in the last 30 days

After normalising, the list is diversified harder than other strategies
(at least 0.6) and every score is scaled by the profile's
``discovery_score``, so users who rarely explore get a quieter
contribution.
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

ADJACENT_GENRES: dict[str, tuple[str, ...]] = {
    "Pop": ("Indie Pop", "Synth-pop", "Dance"),
    "Rock": ("Alternative", "Indie Rock", "Post-rock"),
    "Hip-Hop": ("R&B", "Trap", "Neo-soul"),
    "Electronic": ("House", "Techno", "Ambient"),
    "R&B": ("Soul", "Neo-soul", "Funk"),
    "Country": ("Folk", "Americana", "Bluegrass"),
    "Jazz": ("Blues", "Fusion", "Bebop"),
    "Classical": ("Contemporary Classical", "Minimalism", "Baroque"),
    "Metal": ("Progressive Rock", "Post-metal", "Doom"),
    "Folk": ("Indie Folk", "World", "Singer-songwriter"),
}

_MIN_DIVERSITY = 0.6
_MAX_ADJACENT_GENRES = 3
_ADJACENT_BASE = 0.7
_NEW_ARTIST_WEIGHT = 0.75
_NEW_RELEASE_BASE = 0.65
_POSITION_DECAY = 0.01
_NEW_RELEASE_DAYS = 30

_SEED_ARTISTS = 5
_SIMILAR_PER_ARTIST = 10
_NEW_ARTISTS = 5
_SONGS_PER_NEW_ARTIST = 3


def adjacent_genres(user_genres: list[str]) -> list[str]:
    """Neighbouring genres of *user_genres*, excluding ones already liked."""
    liked = set(user_genres)
    neighbours = (g for genre in user_genres for g in ADJACENT_GENRES.get(genre, ()))
    return [g for g in dict.fromkeys(neighbours) if g not in liked]


class DiscoveryStrategy(BaseRecommendationStrategy):
    """Adjacent genres, unfamiliar similar artists and fresh releases."""

    async def recommend(self, request: RecommendationRequest) -> list[Recommendation]:
        profile = await self._repository.get_user_taste_profile(request.user_id)
        if profile is None:
            self._logger.debug("no_taste_profile", user_id=request.user_id)
            return []

        share = max(request.limit // 3, 1)
        adjacent, artists, releases = await asyncio.gather(
            self._adjacent_genre_songs(profile, share),
            self._new_artist_songs(profile),
            self._repository.get_new_releases(limit=share, days_back=_NEW_RELEASE_DAYS),
        )

        candidates = [
            *adjacent,
            *artists,
            *(
                Recommendation(
                    song_id=song_id,
                    score=max(_NEW_RELEASE_BASE - index * _POSITION_DECAY, 0.0),
                    reason=RecommendationReason.NEW_RELEASE,
                    metadata={"discovery_type": "new_release", "strategy": "discovery"},
                )
                for index, song_id in enumerate(releases)
            ),
        ]
        if not candidates:
            return []

        unique = self.keep_highest_score(candidates)
        filtered = self.filter_excluded_songs(unique, request.exclude_song_ids)
        normalized = self.normalize_scores(filtered)
        diversified = self.apply_diversity_factor(
            normalized, max(request.diversity_factor, _MIN_DIVERSITY)
        )
        scaled = [
            rec.model_copy(
                update={
                    "score": rec.score * profile.discovery_score,
                    "metadata": {**rec.metadata, "discovery_score": profile.discovery_score},
                }
            )
            for rec in diversified
        ]
        return self.rank(scaled, request.limit)

    def get_strategy_name(self) -> str:
        return "Discovery"

    # ------------------------------------------------------------------

    async def _adjacent_genre_songs(
        self,
        profile: UserTasteProfile,
        per_genre: int,
    ) -> list[Recommendation]:
        genres = adjacent_genres([genre for genre, _ in profile.ranked_genres()])
        genres = genres[:_MAX_ADJACENT_GENRES]
        if not genres:
            return []

        pools = await asyncio.gather(
            *(self._repository.get_popular_in_genre(genre, per_genre) for genre in genres)
        )
        return [
            Recommendation(
                song_id=song_id,
                score=max(_ADJACENT_BASE - index * _POSITION_DECAY, 0.0),
                reason=RecommendationReason.DISCOVERY,
                metadata={
                    "discovery_type": "adjacent_genre",
                    "genre": genre,
                    "strategy": "discovery",
                },
            )
            for genre, pool in zip(genres, pools)
            for index, song_id in enumerate(pool)
        ]

    async def _new_artist_songs(self, profile: UserTasteProfile) -> list[Recommendation]:
        seeds = profile.ranked_artists(_SEED_ARTISTS)
        if not seeds:
            return []

        similar_lists = await asyncio.gather(
            *(
                self._repository.get_similar_artists(artist_id, _SIMILAR_PER_ARTIST)
                for artist_id, _ in seeds
            )
        )
        collected: dict[int, list[float]] = {}
        for pairs in similar_lists:
            for artist_id, similarity in pairs:
                if artist_id in profile.top_artists:
                    continue
                collected.setdefault(artist_id, []).append(similarity)
        if not collected:
            return []

        averaged = sorted(
            ((artist_id, sum(vals) / len(vals)) for artist_id, vals in collected.items()),
            key=lambda pair: pair[1],
            reverse=True,
        )[:_NEW_ARTISTS]

        song_lists = await asyncio.gather(
            *(
                self._repository.get_songs_by_artist(artist_id, _SONGS_PER_NEW_ARTIST)
                for artist_id, _ in averaged
            )
        )
        return [
            Recommendation(
                song_id=song_id,
                score=_NEW_ARTIST_WEIGHT * similarity,
                reason=RecommendationReason.ARTIST_SIMILARITY,
                metadata={
                    "discovery_type": "new_artist",
                    "similar_artist": artist_id,
                    "artist_similarity": similarity,
                    "strategy": "discovery",
                },
            )
            for (artist_id, similarity), songs in zip(averaged, song_lists)
            for song_id in songs
        ]
