"""Composition root for the recommendation engine.

Wires the repository, the result cache store, the real-time cache, the
strategies, the engine and the learning service from a resolved config
dict (see :func:`src.config.loader.load_config`).  Nothing here runs at
import time; callers decide when to configure logging and build.

Typical use::

    config = load_config()
    configure_logging(config["logging"]["level"], config["app"]["env"] == "production")
    services = build_all(config)
    await services["repository"].initialize()
"""

from __future__ import annotations

import datetime
from typing import Any

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.recommendation_repository import IRecommendationRepository
from src.interfaces.recommendation_strategy import IRecommendationStrategy
from src.providers.cache.memory_cache import MemoryCacheProvider
from src.providers.cache.redis_cache import RedisCacheProvider
from src.providers.repository.sqlite_recommendation_repository import (
    SQLiteRecommendationRepository,
)
from src.services.realtime_cache import RealTimeRecommendationCache
from src.services.realtime_learning_service import RealTimeLearningService
from src.services.recommendation_engine import HybridRecommendationEngine, default_strategies
from src.utils.logging import get_logger

_logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


def build_repository(config: dict[str, Any]) -> SQLiteRecommendationRepository:
    """Return the SQLite repository; call ``initialize()`` before first use."""
    db_path = config.get("storage", {}).get("db_path", "data/recommendations.db")
    return SQLiteRecommendationRepository(db_path=db_path)


def build_cache_provider(config: dict[str, Any]) -> ICacheProvider:
    """Select Redis when ``storage.redis_url`` is set, else the in-memory cache."""
    cache_cfg = config.get("cache", {})
    ttl = int(cache_cfg.get("ttl_seconds", 300))
    redis_url = config.get("storage", {}).get("redis_url", "")
    if redis_url:
        _logger.info("cache_provider_selected", provider="redis")
        return RedisCacheProvider(url=redis_url, ttl=ttl)
    _logger.info("cache_provider_selected", provider="memory")
    return MemoryCacheProvider(max_size=int(cache_cfg.get("max_size", 1000)), ttl=ttl)


def build_strategies(repository: IRecommendationRepository) -> list[IRecommendationStrategy]:
    return default_strategies(repository)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def build_engine(
    config: dict[str, Any],
    repository: IRecommendationRepository,
    realtime_cache: RealTimeRecommendationCache,
    cache_provider: ICacheProvider,
    strategies: list[IRecommendationStrategy] | None = None,
) -> HybridRecommendationEngine:
    """Build the engine with weights and limits taken from *config*."""
    engine_cfg = config.get("engine", {})
    cache_cfg = config.get("cache", {})
    return HybridRecommendationEngine(
        repository=repository,
        realtime_cache=realtime_cache,
        cache_provider=cache_provider,
        strategies=strategies if strategies is not None else build_strategies(repository),
        strategy_weights=engine_cfg.get("strategy_weights") or None,
        default_weight=float(engine_cfg.get("default_weight", 0.1)),
        result_ttl_seconds=int(cache_cfg.get("ttl_seconds", 300)),
        freshness_window=datetime.timedelta(
            minutes=float(cache_cfg.get("freshness_window_minutes", 5))
        ),
        max_concurrency=int(engine_cfg.get("max_concurrency", 5)),
        min_mix_size=int(engine_cfg.get("min_mix_size", 20)),
    )


def build_learning_service(
    repository: IRecommendationRepository,
    realtime_cache: RealTimeRecommendationCache,
) -> RealTimeLearningService:
    return RealTimeLearningService(repository=repository, realtime_cache=realtime_cache)


def build_all(config: dict[str, Any]) -> dict[str, Any]:
    """Construct every component; the engine and learning service share one real-time cache.

    Returns a flat dict of named components.
    """
    repository = build_repository(config)
    cache_provider = build_cache_provider(config)
    realtime_cache = RealTimeRecommendationCache()
    engine = build_engine(config, repository, realtime_cache, cache_provider)
    learning_service = build_learning_service(repository, realtime_cache)

    _logger.info(
        "engine_assembled",
        strategies=engine.strategy_names,
        cache_provider=type(cache_provider).__name__,
    )
    return {
        "repository": repository,
        "cache_provider": cache_provider,
        "realtime_cache": realtime_cache,
        "engine": engine,
        "learning_service": learning_service,
    }
