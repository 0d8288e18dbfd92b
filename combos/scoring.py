"""
Priority scoring and top-N selection.

The priority score is a transparent weighted sum of five normalized
components.  It is computed on demand and never persisted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional

from django.utils import timezone

from .classifier import Tier, classify, tier_weight
from .config import DEFAULT_PRIORITY_WEIGHTS
from .generator import Combo, ComboSet
from .records import PopularityRecord, RankingRecord

logger = logging.getLogger(__name__)

NEUTRAL_SIGNAL = 0.5


@dataclass(frozen=True)
class PriorityComponents:
    tier_weight: float
    popularity: float
    length_prior: float
    trend: float
    recency: float


@dataclass(frozen=True)
class PriorityScore:
    value: float
    components: PriorityComponents


@dataclass(frozen=True)
class ScoredCombo:
    combo: Combo
    tier: Tier
    priority: PriorityScore
    popularity_score: int

    @property
    def text(self) -> str:
        return self.combo.text

    def sort_key(self):
        return (-self.priority.value, int(self.tier), -self.popularity_score, self.combo.text)


@dataclass(frozen=True)
class Selection:
    combos: list
    total: int
    truncated: bool


def length_prior(word_count: int) -> float:
    """Shorter phrases are searched more often."""
    return 1.0 / max(word_count, 1)


def recency(last_seen: Optional[datetime], now: datetime, half_life_days: float = 7.0) -> float:
    if last_seen is None:
        return NEUTRAL_SIGNAL
    age_days = max((now - last_seen).total_seconds() / 86400.0, 0.0)
    return 0.5 ** (age_days / half_life_days)


def trend_signal(trend: Optional[str], position_change: Optional[int] = None) -> float:
    """
    Map a ranking trend to [0, 1].

    Improvements of 1-4 places score 0.8, 5-9 score 0.9 and 10+ score 1.0;
    drops mirror that downwards.  Unknown and stable are neutral.
    """
    magnitude = abs(position_change or 0)
    if trend == "up":
        if magnitude >= 10:
            return 1.0
        return 0.9 if magnitude >= 5 else 0.8
    if trend == "down":
        if magnitude >= 10:
            return 0.2
        return 0.3 if magnitude >= 5 else 0.4
    if trend == "new":
        return 0.6
    if trend == "lost":
        return 0.2
    return NEUTRAL_SIGNAL


def combo_popularity(combo: Combo, records: Mapping[str, PopularityRecord]) -> int:
    """Exact record for the phrase if one exists, else the mean of its tokens."""
    exact = records.get(combo.text)
    if exact is not None:
        return exact.popularity_score
    token_scores = [records[w].popularity_score for w in combo.words if w in records]
    if not token_scores:
        return 0
    return round(sum(token_scores) / len(token_scores))


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class PriorityScorer:
    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        recency_half_life_days: float = 7.0,
        now: Callable[[], datetime] = timezone.now,
    ):
        self.weights = dict(weights or DEFAULT_PRIORITY_WEIGHTS)
        self.recency_half_life_days = recency_half_life_days
        self._now = now

    def score(
        self,
        combo: Combo,
        tier: Tier,
        popularity,
        trend: float = NEUTRAL_SIGNAL,
        last_seen: Optional[datetime] = None,
    ) -> PriorityScore:
        """
        Args:
            popularity: A PopularityRecord, a 0-100 score, or None.
            trend: Ranking trend already mapped to [0, 1].
            last_seen: When the combo's ranking was last observed.
        """
        if isinstance(popularity, PopularityRecord):
            popularity = popularity.popularity_score
        components = PriorityComponents(
            tier_weight=tier_weight(tier),
            popularity=_clamp((popularity or 0) / 100.0),
            length_prior=length_prior(combo.word_count),
            trend=_clamp(trend),
            recency=recency(last_seen, self._now(), self.recency_half_life_days),
        )
        total = (
            self.weights["tier"] * components.tier_weight
            + self.weights["popularity"] * components.popularity
            + self.weights["length"] * components.length_prior
            + self.weights["trend"] * components.trend
            + self.weights["recency"] * components.recency
        )
        value = round(_clamp(100.0 * total, 0.0, 100.0), 2)
        return PriorityScore(value=value, components=components)


def rank_combos(
    combos: ComboSet,
    popularity: Mapping[str, PopularityRecord],
    rankings: Optional[Mapping[str, RankingRecord]] = None,
    scorer: Optional[PriorityScorer] = None,
) -> list[ScoredCombo]:
    """Classify and score every combo in the set, best first."""
    scorer = scorer or PriorityScorer()
    rankings = rankings or {}
    scored = []
    for combo in combos:
        tier = classify(combo)
        pop = combo_popularity(combo, popularity)
        ranking = rankings.get(combo.text)
        if ranking is not None:
            trend = trend_signal(ranking.trend, ranking.position_change)
            last_seen = ranking.checked_at
        else:
            trend, last_seen = NEUTRAL_SIGNAL, None
        priority = scorer.score(combo, tier, pop, trend, last_seen)
        scored.append(ScoredCombo(combo=combo, tier=tier, priority=priority, popularity_score=pop))
    scored.sort(key=ScoredCombo.sort_key)
    return scored


def select_top(scored: Iterable[ScoredCombo], limit: int = 500) -> Selection:
    ordered = sorted(scored, key=ScoredCombo.sort_key)
    total = len(ordered)
    truncated = total > limit
    if truncated:
        logger.warning(f"Combo set truncated: keeping top {limit} of {total}")
    return Selection(combos=ordered[:limit], total=total, truncated=truncated)
