"""Recommendation data-access implementations."""

from src.providers.repository.sqlite_recommendation_repository import (
    SQLiteRecommendationRepository,
)

__all__ = ["SQLiteRecommendationRepository"]
