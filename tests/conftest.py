"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timezone as dt_timezone

import pytest

from combos.cache import MemoryRankingStore, RankingCache
from combos.config import EngineConfig
from combos.engine import get_pipeline
from combos.pipeline import RankingFetchPipeline
from combos.resilience import CircuitBreaker, SlidingWindowRateLimiter
from combos.services import SearchMatch, SearchSignal

FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=dt_timezone.utc)


class FakeClock:
    """Monotonic clock the tests move by hand; ``sleep`` advances it."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    def sleep(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return EngineConfig(
        max_workers=1,
        chunk_size=25,
        rate_limit_max_calls=1000,
        rate_limit_window_seconds=60,
        breaker_failure_threshold=3,
    )


@pytest.fixture
def make_pipeline(config):
    """Build a pipeline around a fake search callable; shut down after the test."""
    built = []

    def factory(search, store=None, cfg=None, **kwargs):
        cfg = cfg or config
        pipeline = RankingFetchPipeline(
            search=search,
            cache=kwargs.pop("cache", None) or RankingCache(
                store if store is not None else MemoryRankingStore()
            ),
            rate_limiter=kwargs.pop("rate_limiter", None) or SlidingWindowRateLimiter(
                cfg.rate_limit_max_calls, cfg.rate_limit_window_seconds
            ),
            breaker=kwargs.pop("breaker", None) or CircuitBreaker(
                failure_threshold=cfg.breaker_failure_threshold,
                failure_window_seconds=cfg.breaker_failure_window_seconds,
                cooldown_seconds=cfg.breaker_cooldown_seconds,
            ),
            config=cfg,
            **kwargs,
        )
        built.append(pipeline)
        return pipeline

    yield factory
    for pipeline in built:
        pipeline.shutdown(wait=True)


@pytest.fixture
def signal_for():
    """SearchSignal with ``count`` results where ``track_ids`` are the top matches."""

    def factory(count, *track_ids):
        return SearchSignal(
            result_count=count,
            top_matches=tuple(SearchMatch(track_id=t) for t in track_ids),
        )

    return factory


@pytest.fixture(autouse=True)
def _reset_pipeline():
    get_pipeline.cache_clear()
    yield
    get_pipeline.cache_clear()
