"""Public interface definitions for the engine's collaborators.

The engine, strategies and learning service reach storage only through the
abstract base classes in this package.  Concrete adapters live in
``src/providers/`` and are wired together in ``src/main.py``; unit tests
inject ``MagicMock(spec=...)`` doubles instead.

CONCRETE PROVIDER MAP:
    Interface                   ->  Concrete implementations
    -------------------------------------------------------------
    IRecommendationRepository   ->  SQLiteRecommendationRepository
    ICacheProvider              ->  MemoryCacheProvider, RedisCacheProvider
    IRecommendationStrategy     ->  the five strategies in
                                    src/services/strategies/
"""

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.recommendation_repository import IRecommendationRepository
from src.interfaces.recommendation_strategy import IRecommendationStrategy

__all__ = [
    "ICacheProvider",
    "IRecommendationRepository",
    "IRecommendationStrategy",
]
