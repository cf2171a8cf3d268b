"""Utility modules for the recommendation engine.

- **errors** -- Exception hierarchy rooted at RecommendationError; each
  collaborator raises its own subclass so the engine can downgrade
  strategy and cache failures without broad ``except Exception`` blocks.
- **concurrency** -- Semaphore-throttled fan-out plus ``gather_settled``,
  which waits for every task and reports per-name results or exceptions.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **audio_similarity** (not re-exported here) -- numpy feature vectors and
  the weighted distance behind nearest-neighbour song lookups.
"""

# -- Domain exception hierarchy --------------------------------------------
from src.utils.errors import (
    CacheError,
    ConfigurationError,
    RecommendationError,
    RepositoryError,
    StrategyError,
)

# -- Async concurrency helpers ---------------------------------------------
from src.utils.concurrency import gather_settled, throttled_gather

# -- Structured logging setup ----------------------------------------------
from src.utils.logging import configure_logging, get_logger, request_context

__all__ = [
    "CacheError",
    "ConfigurationError",
    "RecommendationError",
    "RepositoryError",
    "StrategyError",
    "configure_logging",
    "gather_settled",
    "get_logger",
    "request_context",
    "throttled_gather",
]
