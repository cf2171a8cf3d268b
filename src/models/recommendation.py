"""Recommendation models for the hybrid song recommendation engine.

Defines Pydantic v2 models for requests, scored recommendations, listening
context, user taste profiles, audio features, and Daily Mixes.  All models
use frozen config so a value handed to one strategy can never be mutated
under another strategy running concurrently on the same request.

The engine works in three layers:
    1. Strategies -- each turns a RecommendationRequest into a list of
       scored Recommendation objects (src/services/strategies/).
    2. Merge -- HybridRecommendationEngine weights and combines them into
       one RecommendationResult (src/services/recommendation_engine.py).
    3. Mixes -- the engine is called with presets to build DailyMix
       playlists that the repository persists.
"""

from __future__ import annotations

import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RecommendationReason(str, Enum):  # noqa: UP042
    """Why a song was recommended.  Surfaced to clients as a display hint."""

    SIMILAR_TO_LIKED = "SIMILAR_TO_LIKED"
    POPULAR_IN_GENRE = "POPULAR_IN_GENRE"
    TRENDING_NOW = "TRENDING_NOW"
    COLLABORATIVE_FILTERING = "COLLABORATIVE_FILTERING"
    AUDIO_FEATURES = "AUDIO_FEATURES"
    ARTIST_SIMILARITY = "ARTIST_SIMILARITY"
    PLAYLIST_CONTINUATION = "PLAYLIST_CONTINUATION"
    TIME_BASED = "TIME_BASED"
    ACTIVITY_BASED = "ACTIVITY_BASED"
    NEW_RELEASE = "NEW_RELEASE"
    DISCOVERY = "DISCOVERY"
    PERSONAL_MIX = "PERSONAL_MIX"


class TimeOfDay(str, Enum):  # noqa: UP042
    """Coarse listening windows used for time-based preferences."""

    EARLY_MORNING = "EARLY_MORNING"  # 05:00-07:59
    MORNING = "MORNING"              # 08:00-10:59
    MIDDAY = "MIDDAY"                # 11:00-13:59
    AFTERNOON = "AFTERNOON"          # 14:00-16:59
    EVENING = "EVENING"              # 17:00-19:59
    NIGHT = "NIGHT"                  # 20:00-22:59
    LATE_NIGHT = "LATE_NIGHT"        # 23:00-04:59

    @classmethod
    def from_time(cls, value: datetime.time) -> TimeOfDay:
        """Map a wall-clock time onto its listening window."""
        hour = value.hour
        if 5 <= hour <= 7:
            return cls.EARLY_MORNING
        if 8 <= hour <= 10:
            return cls.MORNING
        if 11 <= hour <= 13:
            return cls.MIDDAY
        if 14 <= hour <= 16:
            return cls.AFTERNOON
        if 17 <= hour <= 19:
            return cls.EVENING
        if 20 <= hour <= 22:
            return cls.NIGHT
        return cls.LATE_NIGHT


class DayOfWeek(str, Enum):  # noqa: UP042
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def from_date(cls, value: datetime.date) -> DayOfWeek:
        return list(cls)[value.weekday()]


class UserActivityContext(str, Enum):  # noqa: UP042
    """What the listener is doing while the music plays."""

    WORKING = "WORKING"
    STUDYING = "STUDYING"
    EXERCISING = "EXERCISING"
    RUNNING = "RUNNING"
    DRIVING = "DRIVING"
    RELAXING = "RELAXING"
    PARTYING = "PARTYING"
    SLEEPING = "SLEEPING"
    COOKING = "COOKING"
    READING = "READING"
    COMMUTING = "COMMUTING"
    GAMING = "GAMING"


class Mood(str, Enum):  # noqa: UP042
    HAPPY = "HAPPY"
    SAD = "SAD"
    ENERGETIC = "ENERGETIC"
    CALM = "CALM"
    FOCUSED = "FOCUSED"
    ROMANTIC = "ROMANTIC"
    ANGRY = "ANGRY"
    NOSTALGIC = "NOSTALGIC"
    ADVENTUROUS = "ADVENTUROUS"


# ---------------------------------------------------------------------------
# Context and audio features
# ---------------------------------------------------------------------------

class RecommendationContext(BaseModel):
    """Situational context attached to a request.

    Only ContextAwareStrategy requires it; ContentBasedStrategy uses the
    activity and mood to shift its target audio profile.
    """

    model_config = ConfigDict(frozen=True)

    time_of_day: TimeOfDay
    day_of_week: DayOfWeek
    activity: UserActivityContext | None = None
    mood: Mood | None = None

    @classmethod
    def now(
        cls,
        activity: UserActivityContext | None = None,
        mood: Mood | None = None,
        at: datetime.datetime | None = None,
    ) -> RecommendationContext:
        """Build a context for the current (or given) moment."""
        moment = at or datetime.datetime.now()
        return cls(
            time_of_day=TimeOfDay.from_time(moment.time()),
            day_of_week=DayOfWeek.from_date(moment.date()),
            activity=activity,
            mood=mood,
        )


class AudioFeatures(BaseModel):
    """Precomputed audio descriptors for one song.

    ``song_id`` is ``-1`` for synthetic target vectors (e.g. the average of
    several seed songs) that do not correspond to a catalog entry.
    """

    model_config = ConfigDict(frozen=True)

    song_id: int = -1
    energy: float = Field(default=0.5, ge=0.0, le=1.0)
    valence: float = Field(default=0.5, ge=0.0, le=1.0)
    danceability: float = Field(default=0.5, ge=0.0, le=1.0)
    acousticness: float = Field(default=0.5, ge=0.0, le=1.0)
    instrumentalness: float = Field(default=0.0, ge=0.0, le=1.0)
    speechiness: float = Field(default=0.0, ge=0.0, le=1.0)
    liveness: float = Field(default=0.0, ge=0.0, le=1.0)
    # Decibels, typically -60..0.
    loudness: float = -10.0
    # Beats per minute.
    tempo: float = 120.0
    # Pitch class 0-11.
    key: int = Field(default=0, ge=0, le=11)
    # 0 = minor, 1 = major.
    mode: int = Field(default=1, ge=0, le=1)
    time_signature: int = Field(default=4, ge=1, le=7)


class FeatureRange(BaseModel):
    """Inclusive preferred range for a single audio feature."""

    model_config = ConfigDict(frozen=True)

    low: float
    high: float

    @model_validator(mode="after")
    def _check_order(self) -> FeatureRange:
        if self.low > self.high:
            msg = f"Range low ({self.low}) must not exceed high ({self.high})"
            raise ValueError(msg)
        return self

    @property
    def midpoint(self) -> float:
        return (self.low + self.high) / 2.0


class AudioPreferences(BaseModel):
    """Preferred audio-feature ranges derived from listening history."""

    model_config = ConfigDict(frozen=True)

    energy: FeatureRange = FeatureRange(low=0.3, high=0.7)
    valence: FeatureRange = FeatureRange(low=0.3, high=0.7)
    danceability: FeatureRange = FeatureRange(low=0.3, high=0.7)
    acousticness: FeatureRange = FeatureRange(low=0.2, high=0.8)
    instrumentalness: FeatureRange = FeatureRange(low=0.0, high=0.5)
    tempo: FeatureRange = FeatureRange(low=80.0, high=140.0)
    loudness: FeatureRange = FeatureRange(low=-15.0, high=0.0)

    def to_target_features(self) -> AudioFeatures:
        """Collapse the ranges to a single target vector of midpoints."""
        return AudioFeatures(
            energy=self.energy.midpoint,
            valence=self.valence.midpoint,
            danceability=self.danceability.midpoint,
            acousticness=self.acousticness.midpoint,
            instrumentalness=self.instrumentalness.midpoint,
            tempo=self.tempo.midpoint,
            loudness=self.loudness.midpoint,
        )


class MusicPreference(BaseModel):
    """What a user tends to play in a given time window or activity."""

    model_config = ConfigDict(frozen=True)

    preferred_genres: list[str] = Field(default_factory=list)
    preferred_energy: float = 0.5
    preferred_valence: float = 0.5
    preferred_tempo: int = 120


# ---------------------------------------------------------------------------
# UserTasteProfile -- persisted, recomputed outside this engine.
# ---------------------------------------------------------------------------
class UserTasteProfile(BaseModel):
    """Summary of a user's genre, artist, and audio-feature affinities.

    ``top_genres`` and ``top_artists`` map to affinities in [0, 1].  Dict
    insertion order is not trusted for ranking; use :meth:`ranked_genres`.
    """

    model_config = ConfigDict(frozen=True)

    user_id: int
    top_genres: dict[str, float] = Field(default_factory=dict)
    top_artists: dict[int, float] = Field(default_factory=dict)
    audio_feature_preferences: AudioPreferences = Field(default_factory=AudioPreferences)
    time_preferences: dict[TimeOfDay, MusicPreference] = Field(default_factory=dict)
    activity_preferences: dict[UserActivityContext, MusicPreference] = Field(
        default_factory=dict,
    )
    # How much the user enjoys unfamiliar music (0-1).
    discovery_score: float = Field(default=0.5, ge=0.0, le=1.0)
    # Preference for popular over niche music (0-1).
    mainstream_score: float = Field(default=0.5, ge=0.0, le=1.0)
    last_updated: datetime.datetime = Field(default_factory=datetime.datetime.now)

    def ranked_genres(self, limit: int | None = None) -> list[tuple[str, float]]:
        """Return ``(genre, affinity)`` pairs, highest affinity first."""
        ranked = sorted(self.top_genres.items(), key=lambda kv: kv[1], reverse=True)
        return ranked[:limit] if limit is not None else ranked

    def ranked_artists(self, limit: int | None = None) -> list[tuple[int, float]]:
        """Return ``(artist_id, affinity)`` pairs, highest affinity first."""
        ranked = sorted(self.top_artists.items(), key=lambda kv: kv[1], reverse=True)
        return ranked[:limit] if limit is not None else ranked


class SongProfile(BaseModel):
    """Catalog facts about one song needed for real-time learning."""

    model_config = ConfigDict(frozen=True)

    song_id: int
    title: str = ""
    artist_id: int
    genre: str | None = None
    # Normalised popularity (0-1); above 0.7 counts as mainstream.
    popularity: float = Field(default=0.0, ge=0.0, le=1.0)
    audio_features: AudioFeatures | None = None


# ---------------------------------------------------------------------------
# Request / result
# ---------------------------------------------------------------------------
class RecommendationRequest(BaseModel):
    """Input to the engine and to every strategy."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    limit: int = Field(default=20, ge=0)
    context: RecommendationContext | None = None
    exclude_song_ids: frozenset[int] = Field(default_factory=frozenset)
    seed_song_ids: list[int] | None = None
    seed_artist_ids: list[int] | None = None
    seed_genres: list[str] | None = None
    # 0-1, higher = more lower-ranked songs mixed in.
    diversity_factor: float = Field(default=0.3, ge=0.0, le=1.0)
    # 0-1, higher = more mainstream songs.
    popularity_bias: float = Field(default=0.5, ge=0.0, le=1.0)


class Recommendation(BaseModel):
    """A single scored song produced by a strategy or by the merge."""

    model_config = ConfigDict(frozen=True)

    song_id: int
    score: float
    reason: RecommendationReason
    context: RecommendationContext | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RecommendationResult(BaseModel):
    """The merged, ranked output of one engine call.

    ``strategies`` names only the strategies that contributed at least one
    recommendation; a strategy that failed or returned nothing is absent.
    """

    model_config = ConfigDict(frozen=True)

    recommendations: list[Recommendation] = Field(default_factory=list)
    execution_time_ms: int = 0
    cache_hit: bool = False
    strategies: list[str] = Field(default_factory=list)

    @property
    def song_ids(self) -> list[int]:
        return [rec.song_id for rec in self.recommendations]


# ---------------------------------------------------------------------------
# Daily Mixes
# ---------------------------------------------------------------------------
class DailyMix(BaseModel):
    """A named, time-boxed personal playlist.

    ``id`` is derived from the user and mix type so that regenerating a mix
    overwrites the stored copy rather than adding a new one.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: int
    name: str
    description: str
    song_ids: list[int] = Field(default_factory=list)
    genre: str | None = None
    mood: Mood | None = None
    created_at: datetime.datetime
    expires_at: datetime.datetime
    seed_song_ids: list[int] = Field(default_factory=list)
    seed_artist_ids: list[int] = Field(default_factory=list)

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        return self.expires_at <= (now or datetime.datetime.now())


class DailyMixRefresh(BaseModel):
    """Outcome of a refresh: the active mixes and how they were obtained."""

    model_config = ConfigDict(frozen=True)

    mixes: list[DailyMix] = Field(default_factory=list)
    generated: int = 0
    cached: int = 0


class MoodState(BaseModel):
    """Listener mood inferred from recent full plays."""

    model_config = ConfigDict(frozen=True)

    energy: float = Field(ge=0.0, le=1.0)
    valence: float = Field(ge=0.0, le=1.0)
    timestamp: datetime.datetime


class CacheStats(BaseModel):
    """Entry counts held by the real-time cache, for monitoring."""

    model_config = ConfigDict(frozen=True)

    user_profiles: int = 0
    score_adjustments: int = 0
    recent_interactions: int = 0
    genre_adjustments: int = 0
    cached_recommendations: int = 0
