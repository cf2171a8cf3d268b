"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ───────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. Settings defaults   -- src/config/settings.py
#   2. config/config.yaml  -- static defaults checked into the repo
#   3. .env file           -- local developer overrides (not committed)
#   4. Environment vars    -- set at deploy time
#
# Only Settings fields that were actually supplied (.env, environment or
# constructor) take part in layers 3-4, so an unset variable never masks
# a YAML value.
#
#   yaml      = {"engine": {"strategy_weights": {...}, "max_concurrency": 5}}
#   env       = MAX_CONCURRENCY=8
#   result    = {"engine": {"strategy_weights": {...}, "max_concurrency": 8}}
# ──────────────────────────────────────────────────────────────────────
"""

from numbers import Real
from pathlib import Path
from typing import Any

import yaml

from src.config.settings import Settings
from src.utils.errors import ConfigurationError

# Settings field -> (config section, key)
_SETTINGS_KEYS: dict[str, tuple[str, str]] = {
    "app_env": ("app", "env"),
    "db_path": ("storage", "db_path"),
    "redis_url": ("storage", "redis_url"),
    "cache_ttl_seconds": ("cache", "ttl_seconds"),
    "freshness_window_minutes": ("cache", "freshness_window_minutes"),
    "cache_max_size": ("cache", "max_size"),
    "max_concurrency": ("engine", "max_concurrency"),
    "min_mix_size": ("engine", "min_mix_size"),
    "log_level": ("logging", "level"),
}


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built settings; a fresh ``Settings()`` is read when omitted.

    Returns:
        Fully resolved configuration dictionary.

    Raises:
        ConfigurationError: If the YAML is malformed or a strategy weight
            is not a non-negative number.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            try:
                yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    message=f"Malformed YAML in {config_path}: {exc}", component="config"
                ) from exc
    else:
        yaml_config = {}

    if not isinstance(yaml_config, dict):
        raise ConfigurationError(
            message=f"{config_path} must contain a mapping at the top level",
            component="config",
        )

    settings = settings or Settings()
    config = _settings_section(settings, set(_SETTINGS_KEYS))
    _deep_merge(config, yaml_config)
    _deep_merge(config, _settings_section(settings, settings.model_fields_set))

    engine = config.setdefault("engine", {})
    engine["strategy_weights"] = _validate_strategy_weights(engine.get("strategy_weights") or {})
    return config


def _settings_section(settings: Settings, fields: set[str]) -> dict[str, dict[str, Any]]:
    """Nested config dict holding the given Settings *fields*."""
    section: dict[str, dict[str, Any]] = {}
    for field, (group, key) in _SETTINGS_KEYS.items():
        if field in fields:
            section.setdefault(group, {})[key] = getattr(settings, field)
    return section


def _validate_strategy_weights(raw: Any) -> dict[str, float]:
    if not isinstance(raw, dict):
        raise ConfigurationError(
            message="engine.strategy_weights must be a mapping of strategy name to weight",
            component="config",
        )
    weights: dict[str, float] = {}
    for name, value in raw.items():
        # bool is a Real subclass; reject it explicitly.
        if isinstance(value, bool) or not isinstance(value, Real) or value < 0:
            raise ConfigurationError(
                message=(
                    f"Weight for strategy {name!r} must be a non-negative number, "
                    f"got {value!r}"
                ),
                component="config",
            )
        weights[str(name)] = float(value)
    return weights


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
