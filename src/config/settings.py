"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Values come from TWO sources (in priority order):
#
#   1. **Environment variables**, e.g. REDIS_URL=redis://cache:6379/0
#   2. **.env file** in the working directory (local development)
#
# Field ``cache_ttl_seconds`` maps to env var ``CACHE_TTL_SECONDS``.
# Defaults below apply when neither source sets a field.
#
# Strategy weights are NOT settings: they live in config/config.yaml
# under ``engine.strategy_weights`` and are validated by load_config().
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Recommendation engine settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Storage ===
    db_path: str = "data/recommendations.db"
    # Empty string means no Redis; main.py falls back to the in-memory cache.
    redis_url: str = ""

    # === Result cache ===
    cache_ttl_seconds: int = Field(default=300, ge=0)
    freshness_window_minutes: int = Field(default=5, ge=0)
    cache_max_size: int = Field(default=1000, ge=1)

    # === Engine ===
    max_concurrency: int = Field(default=5, ge=1)
    min_mix_size: int = Field(default=20, ge=1)

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"
