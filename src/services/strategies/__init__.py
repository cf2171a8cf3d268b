"""Concrete recommendation strategies run by the hybrid engine."""

from src.services.strategies.base import BaseRecommendationStrategy
from src.services.strategies.collaborative_filtering import CollaborativeFilteringStrategy
from src.services.strategies.content_based import ContentBasedStrategy
from src.services.strategies.context_aware import ContextAwareStrategy
from src.services.strategies.discovery import DiscoveryStrategy
from src.services.strategies.popularity_based import PopularityBasedStrategy

__all__ = [
    "BaseRecommendationStrategy",
    "CollaborativeFilteringStrategy",
    "ContentBasedStrategy",
    "ContextAwareStrategy",
    "DiscoveryStrategy",
    "PopularityBasedStrategy",
]
