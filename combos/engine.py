"""
Engine facade and process-wide composition root.

``ComboEngine.analyze`` runs the whole flow for one app:

    metadata -> generate -> classify -> popularity -> score -> top N
             -> fetch rankings -> enriched combos

``get_pipeline()`` builds the one rate limiter, circuit breaker, in-flight
registry and thread pool the process shares.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from .cache import DjangoRankingStore, RankingCache
from .classifier import Tier
from .config import EngineConfig
from .generator import Combo, ComboSet, MetadataFields, generate
from .models import App, ComboRanking
from .pipeline import AppContext, RankingFetchPipeline
from .popularity import load_popularity
from .records import RankingRecord
from .resilience import CircuitBreaker, InFlightRegistry, SlidingWindowRateLimiter
from .scoring import PriorityScore, PriorityScorer, rank_combos, select_top
from .services import ITunesSearchService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrichedCombo:
    combo: Combo
    tier: Tier
    priority: PriorityScore
    popularity_score: int
    ranking: Optional[RankingRecord] = None

    @property
    def text(self) -> str:
        return self.combo.text


@dataclass
class ComboAnalysis:
    app_id: int
    locale: str
    platform: str
    combos: list
    total_generated: int
    truncated: bool
    partial: bool = False

    def to_rows(self) -> list[dict]:
        rows = []
        for item in self.combos:
            ranking = item.ranking
            rows.append({
                "combo": item.text,
                "sources": sorted(s.value for s in item.combo.sources),
                "wordCount": item.combo.word_count,
                "tier": int(item.tier),
                "tierLabel": item.tier.label,
                "priority": item.priority.value,
                "popularityScore": item.popularity_score,
                "totalResults": ranking.total_results if ranking else None,
                "position": ranking.position if ranking else None,
                "trend": ranking.trend if ranking else None,
                "stale": ranking.stale if ranking else False,
                "error": ranking.error if ranking else None,
            })
        return rows


def metadata_fields(app: App) -> MetadataFields:
    return MetadataFields(
        title=app.metadata_title,
        subtitle=app.subtitle,
        custom=tuple(app.custom_keywords()),
    )


class ComboEngine:
    def __init__(
        self,
        pipeline: Optional[RankingFetchPipeline] = None,
        scorer: Optional[PriorityScorer] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.config = config or (pipeline.config if pipeline else EngineConfig.from_settings())
        self.pipeline = pipeline
        self.scorer = scorer or PriorityScorer(
            weights=self.config.priority_weights,
            recency_half_life_days=self.config.recency_half_life_days,
        )

    def build_combo_set(self, app: App, locale: str = "us", platform: str = "ios") -> ComboSet:
        return generate(metadata_fields(app), locale, platform)

    def analyze(
        self,
        app: App,
        locale: str = "us",
        platform: str = "ios",
        fetch: bool = True,
        timeout: Optional[float] = None,
        force_refresh: bool = False,
    ) -> ComboAnalysis:
        """
        Generate, score and enrich the combo set of a registered app.

        With ``fetch=False`` (or no store id on the app) the last stored
        rankings are attached instead of fetching fresh ones.
        """
        combos = self.build_combo_set(app, locale, platform)
        popularity = load_popularity(combos.tokens() + combos.texts(), locale, platform)
        previous = {
            row.combo: row.to_record()
            for row in ComboRanking.objects.select_related("app").filter(
                app=app, locale=locale, platform=platform
            )
        }
        scored = rank_combos(combos, popularity, previous, self.scorer)
        selection = select_top(scored, self.config.top_n)

        rankings = previous
        partial = False
        if fetch and app.track_id and selection.combos:
            if self.pipeline is None:
                self.pipeline = get_pipeline()
            batch = self.pipeline.fetch_rankings(
                AppContext(app.track_id, app.organization_id or None),
                [s.text for s in selection.combos],
                locale,
                platform,
                timeout=timeout,
                force_refresh=force_refresh,
            )
            rankings = batch.results
            partial = batch.partial
        elif fetch and not app.track_id:
            logger.warning(f"App '{app.name}' has no store id, skipping ranking fetch")

        enriched = [
            EnrichedCombo(
                combo=s.combo,
                tier=s.tier,
                priority=s.priority,
                popularity_score=s.popularity_score,
                ranking=rankings.get(s.text),
            )
            for s in selection.combos
        ]
        return ComboAnalysis(
            app_id=app.pk,
            locale=locale,
            platform=platform,
            combos=enriched,
            total_generated=selection.total,
            truncated=selection.truncated,
            partial=partial,
        )


def build_pipeline(config: Optional[EngineConfig] = None, search=None, store=None) -> RankingFetchPipeline:
    config = config or EngineConfig.from_settings()
    if search is None:
        search = ITunesSearchService(limit=config.search_result_limit).search
    return RankingFetchPipeline(
        search=search,
        cache=RankingCache(
            store if store is not None else DjangoRankingStore(),
            ttl=timedelta(hours=config.cache_ttl_hours),
        ),
        rate_limiter=SlidingWindowRateLimiter(
            config.rate_limit_max_calls, config.rate_limit_window_seconds
        ),
        breaker=CircuitBreaker(
            failure_threshold=config.breaker_failure_threshold,
            failure_window_seconds=config.breaker_failure_window_seconds,
            cooldown_seconds=config.breaker_cooldown_seconds,
        ),
        registry=InFlightRegistry(),
        config=config,
    )


@lru_cache(maxsize=None)
def get_pipeline() -> RankingFetchPipeline:
    """The process-wide pipeline.  Tests call ``get_pipeline.cache_clear()``."""
    return build_pipeline()
