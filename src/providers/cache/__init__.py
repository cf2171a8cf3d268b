"""Cache providers for merged recommendation results.

MemoryCacheProvider is a TLRU cache living in the process: fast, but not
shared across workers.  RedisCacheProvider stores JSON in Redis so several
engine processes see the same entries.  Both implement ICacheProvider;
``src/main.py`` picks one from ``settings.redis_url``.
"""

from src.providers.cache.memory_cache import MemoryCacheProvider
from src.providers.cache.redis_cache import RedisCacheProvider

__all__ = ["MemoryCacheProvider", "RedisCacheProvider"]
