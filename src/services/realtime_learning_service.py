"""Turns listener interactions into immediate recommendation adjustments.

Every interaction fans out into independent learning tasks:

  profile       -- nudge the taste profile's genre, artist and audio-range
                   preferences; cache it and persist it
  scores        -- adjust the real-time score of the song itself (double
                   strength) and of similar songs (scaled by similarity and
                   by how long ago the interaction happened)
  collaborative -- on positive feedback, boost the song for similar users
  patterns      -- skip fatigue, genre fatigue, mood shift, and time and
                   activity preferences
  invalidate    -- forget the user's fresh cached results; runs before the
                   other tasks

Learning is supplementary: a failing task is logged and the rest still
run.  :meth:`RealTimeLearningService.process_interaction` never raises for
a task failure.
"""

from __future__ import annotations

import asyncio
import datetime
import math
from collections import Counter
from typing import Callable

from src.interfaces.recommendation_repository import IRecommendationRepository
from src.models.interaction import InteractionType, MusicInteraction
from src.models.recommendation import (
    AudioPreferences,
    DayOfWeek,
    FeatureRange,
    RecommendationContext,
    SongProfile,
    TimeOfDay,
    UserTasteProfile,
)
from src.services.realtime_cache import RealTimeRecommendationCache
from src.utils.concurrency import gather_settled
from src.utils.errors import RepositoryError
from src.utils.logging import get_logger

_SIMILAR_SONG_LIMIT = 50
_SIMILAR_USER_LIMIT = 20
_DIRECT_MULTIPLIER = 2.0
_COLLABORATIVE_MULTIPLIER = 0.5
_DECAY_MINUTES = 60.0

_RECENT_WINDOW_MINUTES = 30
_SKIP_WINDOW = 5
_SKIP_THRESHOLD = 3
_SKIP_REDUCTION = 0.5
_SKIP_REDUCTION_MINUTES = 120
_FATIGUE_WINDOW = 10
_FATIGUE_MIN_PLAYS = 6
_FATIGUE_THRESHOLD = 5
_FATIGUE_BOOST = 0.3
_FATIGUE_BOOST_MINUTES = 60
_MOOD_WINDOW = 5
_MOOD_MIN_PLAYS = 3

_MAINSTREAM_POPULARITY = 0.7
_SCORE_REWARD = 0.05
_SCORE_PENALTY = 0.01
_ADAPTATION_RATE = 0.1

_ALTERNATIVE_GENRES: dict[str, tuple[str, ...]] = {
    "rock": ("Alternative", "Indie", "Blues"),
    "pop": ("R&B", "Electronic", "Indie Pop"),
    "hip-hop": ("R&B", "Electronic", "Jazz"),
    "electronic": ("Ambient", "Indie", "Pop"),
    "classical": ("Ambient", "Instrumental", "New Age"),
}
_DEFAULT_ALTERNATIVES = ("Pop", "Rock", "Electronic")

_PLAY_TYPES = frozenset({
    InteractionType.PLAYED_FULL,
    InteractionType.PLAYED_PARTIAL,
    InteractionType.REPEATED,
    InteractionType.PLAYED_IN_PLAYLIST,
    InteractionType.PLAYED_FROM_RADIO,
    InteractionType.PLAYED_FROM_SEARCH,
    InteractionType.PLAYED_FROM_ALBUM,
})


def alternative_genres(genre: str) -> tuple[str, ...]:
    return _ALTERNATIVE_GENRES.get(genre.lower(), _DEFAULT_ALTERNATIVES)


def adapt_range(
    current: FeatureRange,
    value: float,
    rate: float,
    lower: float,
    upper: float,
) -> FeatureRange:
    """Drift a preferred range towards *value*.

    The centre moves ``rate`` of the way to *value* and the range stretches
    towards it, never narrowing and never leaving ``[lower, upper]``.
    """
    half_width = (current.high - current.low) / 2
    centre = current.midpoint + (value - current.midpoint) * rate
    low = max(lower, min(current.low, centre - half_width))
    high = min(upper, max(current.high, centre + half_width))
    return FeatureRange(low=low, high=high)


class RealTimeLearningService:
    """Applies each interaction to the real-time cache and the taste profile.

    Parameters
    ----------
    repository:
        Catalog, similarity and profile storage.
    realtime_cache:
        The shared per-user adjustment cache the engine reads from.
    clock:
        Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        repository: IRecommendationRepository,
        realtime_cache: RealTimeRecommendationCache,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._cache = realtime_cache
        self._clock = clock or datetime.datetime.now
        self._logger = get_logger(__name__)

    async def process_interaction(self, interaction: MusicInteraction) -> None:
        """Learn from one interaction.  Task failures are logged, not raised."""
        self._logger.debug(
            "processing_interaction",
            user_id=interaction.user_id,
            song_id=interaction.song_id,
            interaction_type=interaction.type.value,
        )

        # Recorded first so pattern detection sees this interaction.
        await self._cache.add_interaction_history(interaction)

        # Before the score tasks, so this interaction's own nudges are not decayed.
        await gather_settled(
            {"invalidate": self._cache.invalidate_recommendations(interaction.user_id)},
            logger=self._logger,
            error_msg="learning_task_failed",
        )

        try:
            song = await self._lookup_song(interaction.song_id)
        except RepositoryError as exc:
            self._logger.warning(
                "song_lookup_failed", song_id=interaction.song_id, error=str(exc)
            )
            song = None

        tasks = {
            "scores": self._adjust_scores(interaction),
            "collaborative": self._update_collaborative_signals(interaction),
            "patterns": self._detect_patterns(interaction),
        }
        if song is not None:
            tasks["profile"] = self._update_taste_profile(interaction, song)
            tasks["context"] = self._learn_context(interaction, song)

        await gather_settled(tasks, logger=self._logger, error_msg="learning_task_failed")

    # ------------------------------------------------------------------
    # Taste profile
    # ------------------------------------------------------------------

    async def _update_taste_profile(self, interaction: MusicInteraction, song: SongProfile) -> None:
        profile = await self._cache.get_user_profile(interaction.user_id)
        if profile is None:
            profile = await self._repository.get_user_taste_profile(interaction.user_id)
        if profile is None:
            profile = UserTasteProfile(user_id=interaction.user_id)

        adjustment = self._signed_strength(interaction)

        genres = dict(profile.top_genres)
        if song.genre:
            genres[song.genre] = _clamp_unit(genres.get(song.genre, 0.0) + adjustment)

        artists = dict(profile.top_artists)
        artists[song.artist_id] = _clamp_unit(artists.get(song.artist_id, 0.0) + adjustment)

        preferences = profile.audio_feature_preferences
        if song.audio_features is not None:
            preferences = self._adapt_preferences(preferences, song, abs(adjustment))

        positive = interaction.type.is_positive
        mainstream = song.popularity > _MAINSTREAM_POPULARITY
        updated = profile.model_copy(
            update={
                "top_genres": genres,
                "top_artists": artists,
                "audio_feature_preferences": preferences,
                "discovery_score": _clamp_unit(
                    profile.discovery_score
                    + (_SCORE_REWARD if positive and not mainstream else -_SCORE_PENALTY)
                ),
                "mainstream_score": _clamp_unit(
                    profile.mainstream_score
                    + (_SCORE_REWARD if positive and mainstream else -_SCORE_PENALTY)
                ),
                "last_updated": self._clock(),
            }
        )

        await self._cache.update_user_profile(interaction.user_id, updated)
        await self._repository.update_user_taste_profile(updated)
        self._logger.debug(
            "taste_profile_updated",
            user_id=interaction.user_id,
            genre=song.genre,
            genre_affinity=genres.get(song.genre) if song.genre else None,
        )

    @staticmethod
    def _adapt_preferences(
        current: AudioPreferences,
        song: SongProfile,
        strength: float,
    ) -> AudioPreferences:
        features = song.audio_features
        if features is None:
            return current
        rate = _ADAPTATION_RATE * strength
        return current.model_copy(
            update={
                "energy": adapt_range(current.energy, features.energy, rate, 0.0, 1.0),
                "valence": adapt_range(current.valence, features.valence, rate, 0.0, 1.0),
                "danceability": adapt_range(
                    current.danceability, features.danceability, rate, 0.0, 1.0
                ),
                "acousticness": adapt_range(
                    current.acousticness, features.acousticness, rate, 0.0, 1.0
                ),
                "tempo": adapt_range(current.tempo, features.tempo, rate, 60.0, 200.0),
            }
        )

    # ------------------------------------------------------------------
    # Real-time scores
    # ------------------------------------------------------------------

    async def _adjust_scores(self, interaction: MusicInteraction) -> None:
        signed = self._signed_strength(interaction)
        decay = self._time_decay(interaction.timestamp)

        similar = await self._repository.get_similar_songs(
            interaction.song_id, limit=_SIMILAR_SONG_LIMIT
        )
        for song_id, similarity in similar:
            await self._cache.adjust_song_score(
                interaction.user_id, song_id, signed * similarity * decay
            )

        await self._cache.adjust_song_score(
            interaction.user_id, interaction.song_id, signed * _DIRECT_MULTIPLIER
        )

    async def _update_collaborative_signals(self, interaction: MusicInteraction) -> None:
        if not interaction.type.is_positive:
            return

        similar_users = await self._repository.get_users_with_similar_taste(
            interaction.user_id, limit=_SIMILAR_USER_LIMIT
        )
        strength = interaction.type.feedback_strength
        for user_id, similarity in similar_users:
            await self._cache.adjust_song_score(
                user_id, interaction.song_id, strength * similarity * _COLLABORATIVE_MULTIPLIER
            )

    # ------------------------------------------------------------------
    # Pattern detection
    # ------------------------------------------------------------------

    async def _detect_patterns(self, interaction: MusicInteraction) -> None:
        recent = await self._cache.get_recent_interactions(
            interaction.user_id, minutes=_RECENT_WINDOW_MINUTES
        )
        await self._detect_skip_fatigue(interaction.user_id, recent)
        await self._detect_genre_fatigue(interaction.user_id, recent)
        await self._detect_mood_shift(interaction.user_id, recent)

    async def _detect_skip_fatigue(self, user_id: int, recent: list[MusicInteraction]) -> None:
        skips = [item for item in recent if item.type.is_skip][-_SKIP_WINDOW:]
        if len(skips) < _SKIP_THRESHOLD:
            return

        genre, count = await self._dominant_genre(skips)
        if genre is not None and count >= _SKIP_THRESHOLD:
            await self._cache.temporarily_reduce_genre(
                user_id, genre, _SKIP_REDUCTION, _SKIP_REDUCTION_MINUTES
            )
            self._logger.info("skip_fatigue_detected", user_id=user_id, genre=genre)

    async def _detect_genre_fatigue(self, user_id: int, recent: list[MusicInteraction]) -> None:
        plays = [item for item in recent if item.type is InteractionType.PLAYED_FULL]
        plays = plays[-_FATIGUE_WINDOW:]
        if len(plays) < _FATIGUE_MIN_PLAYS:
            return

        genre, count = await self._dominant_genre(plays)
        if genre is None or count < _FATIGUE_THRESHOLD:
            return

        for alternative in alternative_genres(genre):
            await self._cache.temporarily_boost_genre(
                user_id, alternative, _FATIGUE_BOOST, _FATIGUE_BOOST_MINUTES
            )
        self._logger.info("genre_fatigue_detected", user_id=user_id, genre=genre)

    async def _detect_mood_shift(self, user_id: int, recent: list[MusicInteraction]) -> None:
        plays = [item for item in recent if item.type is InteractionType.PLAYED_FULL]
        songs = await self._lookup_songs(item.song_id for item in plays[-_MOOD_WINDOW:])
        features = [song.audio_features for song in songs if song.audio_features is not None]
        if len(features) < _MOOD_MIN_PLAYS:
            return

        await self._cache.update_current_mood(
            user_id,
            energy=sum(f.energy for f in features) / len(features),
            valence=sum(f.valence for f in features) / len(features),
            timestamp=self._clock(),
        )

    async def _learn_context(self, interaction: MusicInteraction, song: SongProfile) -> None:
        if not interaction.type.is_positive:
            return

        context = interaction.context
        time_of_day = (
            context.time_of_day
            if context is not None and context.time_of_day is not None
            else TimeOfDay.from_time(interaction.timestamp.time())
        )
        activity = context.activity if context is not None else None

        if song.genre:
            await self._cache.update_time_based_preference(
                interaction.user_id,
                time_of_day,
                song.genre,
                interaction.type.feedback_strength,
            )

        if activity is not None and song.audio_features is not None:
            await self._cache.update_activity_based_preference(
                interaction.user_id,
                activity,
                {
                    "energy": song.audio_features.energy,
                    "valence": song.audio_features.valence,
                    "tempo": song.audio_features.tempo,
                },
            )

        if interaction.type in _PLAY_TYPES:
            await self._repository.store_listening_context(
                interaction.user_id,
                interaction.song_id,
                RecommendationContext(
                    time_of_day=time_of_day,
                    day_of_week=DayOfWeek.from_date(interaction.timestamp.date()),
                    activity=activity,
                    mood=context.mood if context is not None else None,
                ),
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _lookup_song(self, song_id: int) -> SongProfile | None:
        song = await self._repository.get_song(song_id)
        if song is None:
            self._logger.debug("song_not_found", song_id=song_id)
        return song

    async def _lookup_songs(self, song_ids) -> list[SongProfile]:
        songs = await asyncio.gather(*(self._repository.get_song(sid) for sid in song_ids))
        return [song for song in songs if song is not None]

    async def _dominant_genre(
        self,
        interactions: list[MusicInteraction],
    ) -> tuple[str | None, int]:
        songs = await self._lookup_songs(item.song_id for item in interactions)
        counts = Counter(song.genre for song in songs if song.genre)
        if not counts:
            return None, 0
        return counts.most_common(1)[0]

    @staticmethod
    def _signed_strength(interaction: MusicInteraction) -> float:
        strength = interaction.type.feedback_strength
        return strength if interaction.type.is_positive else -strength

    def _time_decay(self, timestamp: datetime.datetime) -> float:
        minutes_ago = max((self._clock() - timestamp).total_seconds() / 60.0, 0.0)
        return math.exp(-minutes_ago / _DECAY_MINUTES)


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))
