"""
Engine configuration.

Tunables live in ``settings.COMBO_ENGINE``; ``EngineConfig.from_settings()``
turns that dict into a typed object.  Tests build ``EngineConfig(...)``
directly.
"""

import math
from dataclasses import dataclass, field, fields

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

DEFAULT_PRIORITY_WEIGHTS = {
    "tier": 0.35,
    "popularity": 0.25,
    "length": 0.15,
    "trend": 0.15,
    "recency": 0.10,
}

DEFAULT_LOCALES = ("us", "gb", "ca", "au", "de", "fr", "es", "it", "jp", "kr")
DEFAULT_PLATFORMS = ("ios", "android")


@dataclass(frozen=True)
class EngineConfig:
    cache_ttl_hours: float = 24
    chunk_size: int = 25
    max_workers: int = 4
    top_n: int = 500
    max_combos_per_batch: int = 500
    max_combo_length: int = 100
    search_result_limit: int = 200
    request_timeout: float = 55.0

    rate_limit_max_calls: int = 20
    rate_limit_window_seconds: float = 60.0
    rate_limit_acquire_timeout: float = 30.0

    breaker_failure_threshold: int = 3
    breaker_failure_window_seconds: float = 60.0
    breaker_cooldown_seconds: float = 60.0

    priority_weights: dict = field(default_factory=lambda: dict(DEFAULT_PRIORITY_WEIGHTS))
    recency_half_life_days: float = 7.0
    ranking_retention_days: int = 90

    supported_locales: tuple = DEFAULT_LOCALES
    supported_platforms: tuple = DEFAULT_PLATFORMS

    def __post_init__(self):
        missing = set(DEFAULT_PRIORITY_WEIGHTS) - set(self.priority_weights)
        if missing:
            raise ImproperlyConfigured(
                f"PRIORITY_WEIGHTS is missing: {', '.join(sorted(missing))}"
            )
        total = sum(self.priority_weights.values())
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ImproperlyConfigured(
                f"PRIORITY_WEIGHTS must sum to 1.0 (got {total:.4f})"
            )
        if self.chunk_size < 1 or self.max_workers < 1:
            raise ImproperlyConfigured("CHUNK_SIZE and MAX_WORKERS must be positive")

    @classmethod
    def from_settings(cls) -> "EngineConfig":
        """Build a config from ``settings.COMBO_ENGINE`` (upper-case keys)."""
        raw = getattr(settings, "COMBO_ENGINE", {}) or {}
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in raw.items():
            name = key.lower()
            if name not in known:
                raise ImproperlyConfigured(f"Unknown COMBO_ENGINE setting: {key}")
            if name in ("supported_locales", "supported_platforms"):
                value = tuple(value)
            kwargs[name] = value
        return cls(**kwargs)
