"""In-memory, per-user feedback accumulator for real-time adjustments.

The learning service writes here as interactions arrive; the engine reads
score adjustments during its merge and asks the freshness ledger whether a
persisted result is still reusable.

State is held in plain dicts keyed by small composite tuples
(``SongKey``, ``GenreKey``, ``TimeKey``, ``ActivityKey``).  Read-modify-write
updates take one lock from a fixed stripe chosen by the key's hash, so
updates to the same key serialise while unrelated keys never contend.

Every reader re-checks its own expiry or age window, so results stay
correct even if :meth:`RealTimeRecommendationCache.cleanup` never runs;
cleanup only bounds memory.
"""

from __future__ import annotations

import asyncio
import datetime
from typing import Callable, Hashable, NamedTuple

from src.models.interaction import MusicInteraction
from src.models.recommendation import (
    CacheStats,
    MoodState,
    TimeOfDay,
    UserActivityContext,
    UserTasteProfile,
)
from src.utils.logging import get_logger

CACHE_KEY_PREFIX = "recommendations"

_LOCK_STRIPES = 64

_MAX_ADJUSTMENT = 1.0
_MAX_INTERACTIONS = 100
_INTERACTION_WINDOW = datetime.timedelta(hours=2)
_MOOD_MAX_AGE = datetime.timedelta(hours=2)
_TIME_PREFERENCE_RATE = 0.1
_DECAY_FACTOR = 0.9
_MIN_ADJUSTMENT = 0.01

# cleanup() retention
_INTERACTION_RETENTION = datetime.timedelta(hours=24)
_MOOD_RETENTION = datetime.timedelta(hours=4)
_FRESHNESS_RETENTION = datetime.timedelta(hours=1)


class SongKey(NamedTuple):
    user_id: int
    song_id: int


class GenreKey(NamedTuple):
    user_id: int
    genre: str


class TimeKey(NamedTuple):
    user_id: int
    time_of_day: TimeOfDay


class ActivityKey(NamedTuple):
    user_id: int
    activity: UserActivityContext


class TemporaryAdjustment(NamedTuple):
    value: float
    expires_at: datetime.datetime


def user_key_prefix(user_id: int) -> str:
    """Prefix shared by every result cache key of *user_id*."""
    return f"{CACHE_KEY_PREFIX}:{user_id}:"


class RealTimeRecommendationCache:
    """Per-user score nudges, genre boosts, mood and context learning.

    Parameters
    ----------
    clock:
        Returns the current time.  Tests inject a controllable clock to
        exercise expiry without sleeping.
    """

    def __init__(self, clock: Callable[[], datetime.datetime] | None = None) -> None:
        self._clock = clock or datetime.datetime.now
        self._locks = [asyncio.Lock() for _ in range(_LOCK_STRIPES)]
        self._logger = get_logger(__name__)

        self._profiles: dict[int, UserTasteProfile] = {}
        self._score_adjustments: dict[int, dict[int, float]] = {}
        self._interactions: dict[int, list[MusicInteraction]] = {}
        self._genre_adjustments: dict[GenreKey, TemporaryAdjustment] = {}
        self._moods: dict[int, MoodState] = {}
        self._time_preferences: dict[TimeKey, dict[str, float]] = {}
        self._activity_preferences: dict[ActivityKey, dict[str, float]] = {}
        self._fresh_results: dict[str, datetime.datetime] = {}

    def _lock_for(self, key: Hashable) -> asyncio.Lock:
        return self._locks[hash(key) % _LOCK_STRIPES]

    # ------------------------------------------------------------------
    # Taste profiles
    # ------------------------------------------------------------------

    async def update_user_profile(self, user_id: int, profile: UserTasteProfile) -> None:
        self._profiles[user_id] = profile
        self._logger.debug("cached_profile_updated", user_id=user_id)

    async def get_user_profile(self, user_id: int) -> UserTasteProfile | None:
        return self._profiles.get(user_id)

    # ------------------------------------------------------------------
    # Song score adjustments
    # ------------------------------------------------------------------

    async def adjust_song_score(self, user_id: int, song_id: int, adjustment: float) -> float:
        """Accumulate *adjustment* for the song, clamped to [-1, 1].

        Returns the new total adjustment.
        """
        async with self._lock_for(SongKey(user_id, song_id)):
            per_user = self._score_adjustments.setdefault(user_id, {})
            total = per_user.get(song_id, 0.0) + adjustment
            total = min(_MAX_ADJUSTMENT, max(-_MAX_ADJUSTMENT, total))
            per_user[song_id] = total
        self._logger.debug(
            "song_score_adjusted",
            user_id=user_id,
            song_id=song_id,
            adjustment=adjustment,
            total=total,
        )
        return total

    async def get_song_score_adjustment(self, user_id: int, song_id: int) -> float:
        return self._score_adjustments.get(user_id, {}).get(song_id, 0.0)

    async def get_all_score_adjustments(self, user_id: int) -> dict[int, float]:
        return dict(self._score_adjustments.get(user_id, {}))

    # ------------------------------------------------------------------
    # Interaction history
    # ------------------------------------------------------------------

    async def add_interaction_history(self, interaction: MusicInteraction) -> None:
        """Append to the user's history, keeping at most 100 entries from the last 2 hours."""
        cutoff = self._clock() - _INTERACTION_WINDOW
        async with self._lock_for(interaction.user_id):
            history = self._interactions.setdefault(interaction.user_id, [])
            history.append(interaction)
            kept = [item for item in history if item.timestamp >= cutoff]
            self._interactions[interaction.user_id] = kept[-_MAX_INTERACTIONS:]

    async def get_recent_interactions(
        self,
        user_id: int,
        minutes: int = 30,
    ) -> list[MusicInteraction]:
        """Interactions newer than *minutes*, oldest first."""
        cutoff = self._clock() - datetime.timedelta(minutes=minutes)
        return [item for item in self._interactions.get(user_id, []) if item.timestamp > cutoff]

    # ------------------------------------------------------------------
    # Temporary genre adjustments
    # ------------------------------------------------------------------

    async def temporarily_boost_genre(
        self,
        user_id: int,
        genre: str,
        boost: float,
        duration_minutes: int,
    ) -> None:
        await self._set_genre_adjustment(user_id, genre, boost, duration_minutes)
        self._logger.info(
            "genre_boosted",
            user_id=user_id,
            genre=genre,
            amount=boost,
            duration_minutes=duration_minutes,
        )

    async def temporarily_reduce_genre(
        self,
        user_id: int,
        genre: str,
        reduction: float,
        duration_minutes: int,
    ) -> None:
        await self._set_genre_adjustment(user_id, genre, -reduction, duration_minutes)
        self._logger.info(
            "genre_reduced",
            user_id=user_id,
            genre=genre,
            amount=reduction,
            duration_minutes=duration_minutes,
        )

    async def _set_genre_adjustment(
        self,
        user_id: int,
        genre: str,
        value: float,
        duration_minutes: int,
    ) -> None:
        key = GenreKey(user_id, genre)
        expires_at = self._clock() + datetime.timedelta(minutes=duration_minutes)
        async with self._lock_for(key):
            self._genre_adjustments[key] = TemporaryAdjustment(value, expires_at)

    async def get_genre_adjustment(self, user_id: int, genre: str) -> float:
        """Active adjustment for the genre, or 0.0 when absent or expired."""
        key = GenreKey(user_id, genre)
        adjustment = self._genre_adjustments.get(key)
        if adjustment is None:
            return 0.0
        if adjustment.expires_at <= self._clock():
            self._genre_adjustments.pop(key, None)
            return 0.0
        return adjustment.value

    # ------------------------------------------------------------------
    # Mood
    # ------------------------------------------------------------------

    async def update_current_mood(
        self,
        user_id: int,
        energy: float,
        valence: float,
        timestamp: datetime.datetime,
    ) -> None:
        self._moods[user_id] = MoodState(energy=energy, valence=valence, timestamp=timestamp)
        self._logger.debug("mood_updated", user_id=user_id, energy=energy, valence=valence)

    async def get_current_mood(self, user_id: int) -> MoodState | None:
        """Latest mood, or ``None`` once it is two hours old."""
        mood = self._moods.get(user_id)
        if mood is None:
            return None
        if self._clock() - mood.timestamp >= _MOOD_MAX_AGE:
            self._moods.pop(user_id, None)
            return None
        return mood

    # ------------------------------------------------------------------
    # Time and activity preferences
    # ------------------------------------------------------------------

    async def update_time_based_preference(
        self,
        user_id: int,
        time_of_day: TimeOfDay,
        genre: str,
        strength: float,
    ) -> None:
        key = TimeKey(user_id, time_of_day)
        async with self._lock_for(key):
            preferences = self._time_preferences.setdefault(key, {})
            value = preferences.get(genre, 0.0) + strength * _TIME_PREFERENCE_RATE
            preferences[genre] = min(1.0, max(0.0, value))

    async def get_time_based_preference(
        self,
        user_id: int,
        time_of_day: TimeOfDay,
        genre: str,
    ) -> float:
        return self._time_preferences.get(TimeKey(user_id, time_of_day), {}).get(genre, 0.0)

    async def update_activity_based_preference(
        self,
        user_id: int,
        activity: UserActivityContext,
        audio_features: dict[str, float],
    ) -> None:
        """Fold *audio_features* into the activity's running average."""
        key = ActivityKey(user_id, activity)
        async with self._lock_for(key):
            preferences = self._activity_preferences.setdefault(key, {})
            for feature, value in audio_features.items():
                current = preferences.get(feature)
                preferences[feature] = value if current is None else (current + value) / 2.0

    async def get_activity_based_preferences(
        self,
        user_id: int,
        activity: UserActivityContext,
    ) -> dict[str, float]:
        return dict(self._activity_preferences.get(ActivityKey(user_id, activity), {}))

    # ------------------------------------------------------------------
    # Result freshness ledger
    # ------------------------------------------------------------------

    async def mark_cached_recommendations(self, cache_key: str) -> None:
        self._fresh_results[cache_key] = self._clock()

    async def are_cached_recommendations_fresh(
        self,
        cache_key: str,
        max_age: datetime.timedelta = datetime.timedelta(minutes=5),
    ) -> bool:
        marked_at = self._fresh_results.get(cache_key)
        if marked_at is None:
            return False
        return self._clock() - marked_at < max_age

    async def invalidate_recommendations(self, user_id: int) -> None:
        """Forget the user's fresh results and decay their score adjustments."""
        prefix = user_key_prefix(user_id)
        for key in [k for k in self._fresh_results if k.startswith(prefix)]:
            del self._fresh_results[key]

        adjustments = self._score_adjustments.get(user_id)
        if adjustments:
            decayed = {
                song_id: value * _DECAY_FACTOR
                for song_id, value in adjustments.items()
                if abs(value * _DECAY_FACTOR) >= _MIN_ADJUSTMENT
            }
            self._score_adjustments[user_id] = decayed
        self._logger.debug("recommendations_invalidated", user_id=user_id)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def cleanup(self) -> None:
        now = self._clock()

        interaction_cutoff = now - _INTERACTION_RETENTION
        for user_id, history in list(self._interactions.items()):
            kept = [item for item in history if item.timestamp >= interaction_cutoff]
            if kept:
                self._interactions[user_id] = kept
            else:
                del self._interactions[user_id]

        self._genre_adjustments = {
            key: adj for key, adj in self._genre_adjustments.items() if adj.expires_at > now
        }
        self._moods = {
            user_id: mood
            for user_id, mood in self._moods.items()
            if now - mood.timestamp <= _MOOD_RETENTION
        }
        self._fresh_results = {
            key: marked_at
            for key, marked_at in self._fresh_results.items()
            if now - marked_at <= _FRESHNESS_RETENTION
        }
        self._logger.debug("realtime_cache_cleaned")

    async def get_cache_stats(self) -> CacheStats:
        return CacheStats(
            user_profiles=len(self._profiles),
            score_adjustments=sum(len(v) for v in self._score_adjustments.values()),
            recent_interactions=sum(len(v) for v in self._interactions.values()),
            genre_adjustments=len(self._genre_adjustments),
            cached_recommendations=len(self._fresh_results),
        )
