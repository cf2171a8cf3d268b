"""Content-based strategy: recommend songs that sound like what the user likes.

Two candidate sources, tried in order:

  SEEDS    -- the request's seed songs are averaged into one target audio
              vector; nearest neighbours of that vector plus the
              repository's precomputed song similarities are scored
              against it.
  PROFILE  -- when seeds are absent or do not fill the request, the user's
              taste profile supplies a target vector (the midpoints of the
              preferred audio ranges), genre picks (the profile's top
              genres, or the request's ``seed_genres``) and songs by
              artists similar to the user's favourites, or to the
              request's ``seed_artist_ids`` when given.

A request context shifts the target vector before scoring: focus
activities lower energy and raise instrumentalness, workouts raise energy
and tempo, and so on.
"""

from __future__ import annotations

import asyncio

from src.models.recommendation import (
    AudioFeatures,
    Mood,
    Recommendation,
    RecommendationContext,
    RecommendationReason,
    RecommendationRequest,
    UserActivityContext,
    UserTasteProfile,
)
from src.services.strategies.base import BaseRecommendationStrategy
from src.utils.audio_similarity import average_features, feature_similarity
from src.utils.concurrency import throttled_gather

_FEATURE_WEIGHT = 0.7
_SEED_SIMILARITY_WEIGHT = 0.3
_GENRE_WEIGHT = 0.8
_ARTIST_WEIGHT = 0.7

_SIMILAR_SONGS_PER_SEED = 10
_TOP_GENRES = 3
_TOP_ARTISTS = 5
_SIMILAR_ARTISTS_PER_ARTIST = 3
_SONGS_PER_SIMILAR_ARTIST = 5
# Bound on concurrent per-song feature lookups.
_FEATURE_LOOKUP_CONCURRENCY = 10

# Additive shifts applied to the target vector, per feature.
_ACTIVITY_SHIFTS: dict[UserActivityContext, dict[str, float]] = {
    UserActivityContext.WORKING: {"energy": -0.2, "instrumentalness": 0.3},
    UserActivityContext.STUDYING: {"energy": -0.2, "instrumentalness": 0.3},
    UserActivityContext.READING: {"energy": -0.2, "instrumentalness": 0.2},
    UserActivityContext.EXERCISING: {"energy": 0.25, "tempo": 20.0},
    UserActivityContext.RUNNING: {"energy": 0.25, "tempo": 30.0},
    UserActivityContext.RELAXING: {"energy": -0.2, "acousticness": 0.2},
    UserActivityContext.SLEEPING: {"energy": -0.3, "acousticness": 0.3, "tempo": -20.0},
    UserActivityContext.PARTYING: {"energy": 0.2, "valence": 0.15},
}

_MOOD_SHIFTS: dict[Mood, dict[str, float]] = {
    Mood.HAPPY: {"valence": 0.2},
    Mood.SAD: {"valence": -0.2, "energy": -0.1},
    Mood.ENERGETIC: {"energy": 0.2},
    Mood.CALM: {"energy": -0.2, "acousticness": 0.1},
    Mood.FOCUSED: {"instrumentalness": 0.2},
    Mood.ANGRY: {"energy": 0.2, "valence": -0.2},
}

_UNIT_FEATURES = frozenset({"energy", "valence", "acousticness", "instrumentalness"})


def shift_for_context(
    target: AudioFeatures,
    context: RecommendationContext | None,
) -> AudioFeatures:
    """Return *target* nudged towards what suits the activity and mood."""
    if context is None:
        return target

    shifts: dict[str, float] = {}
    for table, key in ((_ACTIVITY_SHIFTS, context.activity), (_MOOD_SHIFTS, context.mood)):
        if key is None:
            continue
        for feature, delta in table.get(key, {}).items():
            shifts[feature] = shifts.get(feature, 0.0) + delta

    if not shifts:
        return target

    update: dict[str, float] = {}
    for feature, delta in shifts.items():
        value = getattr(target, feature) + delta
        if feature in _UNIT_FEATURES:
            value = min(1.0, max(0.0, value))
        else:
            value = max(0.0, value)
        update[feature] = value
    return target.model_copy(update=update)


class ContentBasedStrategy(BaseRecommendationStrategy):
    """Audio-feature and metadata similarity to seeds or the taste profile."""

    async def recommend(self, request: RecommendationRequest) -> list[Recommendation]:
        pool_size = request.limit * 2
        candidates: list[Recommendation] = []

        if request.seed_song_ids:
            candidates.extend(
                await self._similar_to_seeds(request.seed_song_ids, pool_size, request.context)
            )

        if len(candidates) < request.limit:
            profile = await self._repository.get_user_taste_profile(request.user_id)
            if profile is not None or request.seed_genres or request.seed_artist_ids:
                candidates.extend(
                    await self._from_taste_profile(
                        profile, request, pool_size - len(candidates)
                    )
                )

        if not candidates:
            return []

        if request.context is not None:
            candidates = [
                rec.model_copy(update={"context": request.context}) for rec in candidates
            ]

        excluded = set(request.exclude_song_ids) | set(request.seed_song_ids or [])
        unique = self.keep_highest_score(candidates)
        filtered = self.filter_excluded_songs(unique, excluded)
        normalized = self.normalize_scores(filtered)
        diversified = self.apply_diversity_factor(normalized, request.diversity_factor)
        return self.rank(diversified, request.limit)

    def get_strategy_name(self) -> str:
        return "ContentBased"

    async def _features_for(self, song_ids: list[int]) -> list[AudioFeatures | None]:
        semaphore = asyncio.Semaphore(_FEATURE_LOOKUP_CONCURRENCY)
        return await throttled_gather(
            [self._repository.get_song_audio_features(song_id) for song_id in song_ids],
            semaphore=semaphore,
            return_exceptions=False,
        )

    # ------------------------------------------------------------------
    # Seed songs
    # ------------------------------------------------------------------

    async def _similar_to_seeds(
        self,
        seed_song_ids: list[int],
        limit: int,
        context: RecommendationContext | None,
    ) -> list[Recommendation]:
        seed_features = await asyncio.gather(
            *(self._repository.get_song_audio_features(song_id) for song_id in seed_song_ids)
        )
        known = [features for features in seed_features if features is not None]
        if not known:
            self._logger.debug("no_seed_audio_features", seed_song_ids=seed_song_ids)
            return []

        target = shift_for_context(average_features(known), context)

        nearest_ids, similar_lists = await asyncio.gather(
            self._repository.get_songs_with_similar_audio_features(target, limit),
            asyncio.gather(
                *(
                    self._repository.get_similar_songs(song_id, _SIMILAR_SONGS_PER_SEED)
                    for song_id in seed_song_ids
                )
            ),
        )

        # Average similarity when several seeds point at the same song.
        collected: dict[int, list[float]] = {}
        for pairs in similar_lists:
            for song_id, similarity in pairs:
                collected.setdefault(song_id, []).append(similarity)
        seed_similarity = {sid: sum(vals) / len(vals) for sid, vals in collected.items()}

        candidate_ids = list(dict.fromkeys([*nearest_ids, *seed_similarity]))
        candidate_features = await self._features_for(candidate_ids)

        recommendations: list[Recommendation] = []
        for song_id, features in zip(candidate_ids, candidate_features):
            if features is None:
                continue
            feature_score = feature_similarity(target, features)
            similar_score = seed_similarity.get(song_id, 0.0)
            reason = (
                RecommendationReason.SIMILAR_TO_LIKED
                if similar_score > 0
                else RecommendationReason.AUDIO_FEATURES
            )
            recommendations.append(
                Recommendation(
                    song_id=song_id,
                    score=feature_score * _FEATURE_WEIGHT + similar_score * _SEED_SIMILARITY_WEIGHT,
                    reason=reason,
                    metadata={
                        "feature_similarity": feature_score,
                        "seed_similarity": similar_score,
                        "energy": features.energy,
                        "valence": features.valence,
                        "tempo": features.tempo,
                        "strategy": "content_based",
                    },
                )
            )
        return recommendations

    # ------------------------------------------------------------------
    # Taste profile
    # ------------------------------------------------------------------

    async def _from_taste_profile(
        self,
        profile: UserTasteProfile | None,
        request: RecommendationRequest,
        limit: int,
    ) -> list[Recommendation]:
        if limit <= 0:
            return []

        seed_artists = _seed_artists(profile, request.seed_artist_ids)

        if request.seed_genres:
            # Genre-focused requests stay inside the requested genres.
            affinities = profile.top_genres if profile is not None else {}
            genres = [(genre, affinities.get(genre, 1.0)) for genre in request.seed_genres]
            genre, artist = await asyncio.gather(
                self._genre_picks(genres, per_genre=limit),
                self._artist_picks(seed_artists),
            )
            return [*genre, *artist]

        if profile is None:
            return await self._artist_picks(seed_artists)

        per_genre = max(limit // _TOP_GENRES, 1)
        audio, genre, artist = await asyncio.gather(
            self._audio_profile_picks(profile, request.context, limit),
            self._genre_picks(profile.ranked_genres(_TOP_GENRES), per_genre=per_genre),
            self._artist_picks(seed_artists or profile.ranked_artists(_TOP_ARTISTS)),
        )
        return [*audio, *genre, *artist]

    async def _audio_profile_picks(
        self,
        profile: UserTasteProfile,
        context: RecommendationContext | None,
        limit: int,
    ) -> list[Recommendation]:
        target = shift_for_context(
            profile.audio_feature_preferences.to_target_features(), context
        )
        nearest_ids = await self._repository.get_songs_with_similar_audio_features(target, limit)
        if not nearest_ids:
            return []

        features_list = await self._features_for(nearest_ids)
        recommendations: list[Recommendation] = []
        for song_id, features in zip(nearest_ids, features_list):
            if features is None:
                continue
            similarity = feature_similarity(target, features)
            recommendations.append(
                Recommendation(
                    song_id=song_id,
                    score=similarity * _FEATURE_WEIGHT,
                    reason=RecommendationReason.AUDIO_FEATURES,
                    metadata={
                        "feature_similarity": similarity,
                        "source": "audio_preferences",
                        "strategy": "content_based",
                    },
                )
            )
        return recommendations

    async def _genre_picks(
        self,
        genres: list[tuple[str, float]],
        per_genre: int,
    ) -> list[Recommendation]:
        if not genres:
            return []

        pools = await asyncio.gather(
            *(self._repository.get_popular_in_genre(genre, per_genre) for genre, _ in genres)
        )
        return [
            Recommendation(
                song_id=song_id,
                score=affinity * _GENRE_WEIGHT,
                reason=RecommendationReason.POPULAR_IN_GENRE,
                metadata={
                    "genre": genre,
                    "genre_affinity": affinity,
                    "strategy": "content_based",
                },
            )
            for (genre, affinity), pool in zip(genres, pools)
            for song_id in pool
        ]

    async def _artist_picks(self, top_artists: list[tuple[int, float]]) -> list[Recommendation]:
        if not top_artists:
            return []

        similar_lists = await asyncio.gather(
            *(
                self._repository.get_similar_artists(artist_id, _SIMILAR_ARTISTS_PER_ARTIST)
                for artist_id, _ in top_artists
            )
        )
        pairs = [
            (artist_id, affinity, similar_id, similarity)
            for (artist_id, affinity), similar in zip(top_artists, similar_lists)
            for similar_id, similarity in similar
        ]
        if not pairs:
            return []

        song_lists = await asyncio.gather(
            *(
                self._repository.get_songs_by_artist(similar_id, _SONGS_PER_SIMILAR_ARTIST)
                for _, _, similar_id, _ in pairs
            )
        )
        return [
            Recommendation(
                song_id=song_id,
                score=affinity * similarity * _ARTIST_WEIGHT,
                reason=RecommendationReason.ARTIST_SIMILARITY,
                metadata={
                    "original_artist": artist_id,
                    "similar_artist": similar_id,
                    "similarity": similarity,
                    "strategy": "content_based",
                },
            )
            for (artist_id, affinity, similar_id, similarity), songs in zip(pairs, song_lists)
            for song_id in songs
        ]


def _seed_artists(
    profile: UserTasteProfile | None,
    seed_artist_ids: list[int] | None,
) -> list[tuple[int, float]]:
    """``(artist_id, affinity)`` for requested seed artists; unknown artists count as 1.0."""
    affinities = profile.top_artists if profile is not None else {}
    return [
        (artist_id, affinities.get(artist_id, 1.0))
        for artist_id in dict.fromkeys(seed_artist_ids or [])
    ]
