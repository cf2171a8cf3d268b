"""Domain models for the hybrid recommendation engine -- re-exports.

Other parts of the codebase may import directly from ``src.models``
(e.g. ``from src.models import RecommendationRequest``) instead of the
individual submodules:
    - recommendation.py -- requests, results, context, taste profiles,
                           audio features, Daily Mixes
    - interaction.py    -- listener interaction events for real-time learning

If you add a new model class, add it to ``__all__`` too.
"""

from __future__ import annotations

from src.models.interaction import (
    FeedbackStrength,
    InteractionContext,
    InteractionType,
    MusicInteraction,
)
from src.models.recommendation import (
    AudioFeatures,
    AudioPreferences,
    CacheStats,
    DailyMix,
    DailyMixRefresh,
    DayOfWeek,
    FeatureRange,
    Mood,
    MoodState,
    MusicPreference,
    Recommendation,
    RecommendationContext,
    RecommendationReason,
    RecommendationRequest,
    RecommendationResult,
    SongProfile,
    TimeOfDay,
    UserActivityContext,
    UserTasteProfile,
)

__all__ = [
    # recommendation
    "AudioFeatures",
    "AudioPreferences",
    "CacheStats",
    "DailyMix",
    "DailyMixRefresh",
    "DayOfWeek",
    "FeatureRange",
    "Mood",
    "MoodState",
    "MusicPreference",
    "Recommendation",
    "RecommendationContext",
    "RecommendationReason",
    "RecommendationRequest",
    "RecommendationResult",
    "SongProfile",
    "TimeOfDay",
    "UserActivityContext",
    "UserTasteProfile",
    # interaction
    "FeedbackStrength",
    "InteractionContext",
    "InteractionType",
    "MusicInteraction",
]
