"""Shared pytest fixtures for the recommendation engine test suite."""

from __future__ import annotations

import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.interfaces.recommendation_repository import IRecommendationRepository
from src.models.recommendation import (
    AudioFeatures,
    AudioPreferences,
    DayOfWeek,
    FeatureRange,
    Recommendation,
    RecommendationContext,
    RecommendationReason,
    TimeOfDay,
    UserTasteProfile,
)

# A Tuesday evening.
FIXED_NOW = datetime.datetime(2026, 3, 10, 20, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime.datetime = FIXED_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += datetime.timedelta(**kwargs)


def make_recs(
    scores: dict[int, float],
    reason: RecommendationReason = RecommendationReason.TRENDING_NOW,
) -> list[Recommendation]:
    """Build recommendations from ``{song_id: score}`` in the given order."""
    return [
        Recommendation(song_id=song_id, score=score, reason=reason)
        for song_id, score in scores.items()
    ]


# ---------------------------------------------------------------------------
# Clock and repository fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_repository() -> MagicMock:
    """Repository mock whose every query returns an empty result by default."""
    repo = MagicMock(spec=IRecommendationRepository)
    repo.get_user_taste_profile = AsyncMock(return_value=None)
    repo.update_user_taste_profile = AsyncMock(return_value=None)
    repo.get_similar_songs = AsyncMock(return_value=[])
    repo.get_similar_artists = AsyncMock(return_value=[])
    repo.get_users_with_similar_taste = AsyncMock(return_value=[])
    repo.get_songs_liked_by_similar_users = AsyncMock(return_value=[])
    repo.get_user_listening_patterns = AsyncMock(return_value={})
    repo.store_listening_context = AsyncMock(return_value=None)
    repo.get_daily_mixes = AsyncMock(return_value=[])
    repo.store_daily_mix = AsyncMock(return_value=None)
    repo.get_trending_songs = AsyncMock(return_value=[])
    repo.get_popular_in_genre = AsyncMock(return_value=[])
    repo.get_new_releases = AsyncMock(return_value=[])
    repo.get_song_audio_features = AsyncMock(return_value=None)
    repo.get_songs_with_similar_audio_features = AsyncMock(return_value=[])
    repo.get_songs_for_activity = AsyncMock(return_value=[])
    repo.get_songs_by_artist = AsyncMock(return_value=[])
    repo.get_song = AsyncMock(return_value=None)
    return repo


# ---------------------------------------------------------------------------
# Domain samples
# ---------------------------------------------------------------------------


@pytest.fixture
def taste_profile() -> UserTasteProfile:
    return UserTasteProfile(
        user_id=1,
        top_genres={"Rock": 0.9, "Jazz": 0.6, "Electronic": 0.4},
        top_artists={10: 0.8, 20: 0.5},
        audio_feature_preferences=AudioPreferences(
            energy=FeatureRange(low=0.5, high=0.9),
            tempo=FeatureRange(low=100.0, high=140.0),
        ),
        discovery_score=0.6,
        mainstream_score=0.5,
        last_updated=FIXED_NOW,
    )


@pytest.fixture
def evening_context() -> RecommendationContext:
    return RecommendationContext(
        time_of_day=TimeOfDay.EVENING,
        day_of_week=DayOfWeek.TUESDAY,
    )


@pytest.fixture
def sample_features() -> AudioFeatures:
    return AudioFeatures(
        song_id=100,
        energy=0.8,
        valence=0.6,
        danceability=0.7,
        acousticness=0.1,
        instrumentalness=0.0,
        tempo=128.0,
        loudness=-6.0,
    )
