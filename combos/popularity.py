"""
Keyword popularity estimation.

There is no ground-truth search volume for App Store keywords, so the
score is a relative, reproducible estimate built from three signals.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from django.utils import timezone

from .classifier import classify, tier_weight
from .exceptions import UpstreamError
from .generator import ComboSet, MetadataFields, generate, normalize_phrase
from .models import App, ComboRanking, KeywordPopularity
from .records import PopularityRecord
from .scoring import length_prior

logger = logging.getLogger(__name__)

AUTOCOMPLETE_WEIGHT = 0.6
INTENT_WEIGHT = 0.3
LENGTH_WEIGHT = 0.1

# Apple returns at most ten search hints.
MAX_AUTOCOMPLETE_RANK = 10


def autocomplete_score(signal) -> float:
    """Rank 1 scores 1.0, rank 10 scores 0.1; present without a rank is 1.0."""
    if signal is None or not signal.present:
        return 0.0
    if signal.rank is None:
        return 1.0
    score = (MAX_AUTOCOMPLETE_RANK + 1 - signal.rank) / MAX_AUTOCOMPLETE_RANK
    return max(0.0, min(1.0, score))


class IntentIndex:
    """
    How strongly each token shows up across the generated combos.

    Every combo a token appears in adds that combo's tier weight, so a
    token that is part of many title pairs outweighs one that only shows
    up in custom phrases.  Scores are normalized by the heaviest token.
    """

    def __init__(self, combo_sets: Iterable[ComboSet] = ()):
        self.weights = defaultdict(float)
        self.counts = Counter()
        for combos in combo_sets:
            self.add(combos)

    def add(self, combos: ComboSet):
        for combo in combos:
            weight = tier_weight(classify(combo))
            for word in set(combo.words):
                self.weights[word] += weight
                self.counts[word] += 1

    @property
    def max_weight(self) -> float:
        return max(self.weights.values(), default=0.0)

    def score(self, keyword: str) -> float:
        words = normalize_phrase(keyword).split()
        top = self.max_weight
        if not words or top <= 0:
            return 0.0
        return sum(self.weights.get(w, 0.0) for w in words) / len(words) / top

    def participation(self, keyword: str) -> int:
        words = normalize_phrase(keyword).split()
        if not words:
            return 0
        return min(self.counts.get(w, 0) for w in words)


class PopularityEstimator:
    """
    Estimates keyword popularity on a 0-100 scale.

    Signals:
      1. Autocomplete (60%): the keyword appears among the store's search
         suggestions; higher in the list is better.
      2. Intent (30%): how central the keyword's tokens are to the app's
         own combo set, weighted by tier.
      3. Length prior (10%): 1 / word count; short queries get searched more.
    """

    def __init__(
        self,
        autocomplete: Optional[Callable] = None,
        rate_limiter=None,
        now: Callable[[], datetime] = timezone.now,
    ):
        self.autocomplete = autocomplete
        self.rate_limiter = rate_limiter
        self._now = now

    def _autocomplete_signal(self, keyword: str, locale: str):
        if self.autocomplete is None:
            return None
        try:
            if self.rate_limiter is not None:
                self.rate_limiter.acquire()
            return self.autocomplete(keyword, locale)
        except UpstreamError as e:
            logger.warning(f"Autocomplete unavailable for '{keyword}' ({locale}): {e}")
            return None

    def estimate(
        self,
        keyword: str,
        locale: str = "us",
        platform: str = "ios",
        intent: Optional[IntentIndex] = None,
    ) -> PopularityRecord:
        keyword = normalize_phrase(keyword)
        word_count = max(len(keyword.split()), 1)
        signal = self._autocomplete_signal(keyword, locale)
        ac = autocomplete_score(signal)
        it = intent.score(keyword) if intent is not None else 0.0
        lp = length_prior(word_count)
        raw = AUTOCOMPLETE_WEIGHT * ac + INTENT_WEIGHT * it + LENGTH_WEIGHT * lp
        return PopularityRecord(
            keyword=keyword,
            locale=locale,
            platform=platform,
            popularity_score=max(0, min(100, round(100 * raw))),
            autocomplete_score=ac,
            intent_score=it,
            length_prior=lp,
            last_checked_at=self._now(),
            autocomplete_rank=signal.rank if signal is not None and signal.present else None,
            participation_count=intent.participation(keyword) if intent is not None else 0,
            word_count=word_count,
        )

    def refresh(
        self,
        keywords: Optional[Iterable[str]] = None,
        locale: str = "us",
        platform: str = "ios",
        combo_sets: Optional[Iterable[ComboSet]] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> list[PopularityRecord]:
        """
        Re-estimate and upsert popularity for a keyword universe.

        Args:
            keywords: Defaults to the tokens of recently stored rankings.
            combo_sets: Combo sets feeding the intent signal.  Defaults to
                the regenerated combos of every app ranked in this market.

        Returns:
            The stored PopularityRecords, in keyword order.
        """
        if combo_sets is None:
            combo_sets = app_combo_sets(locale, platform)
        intent = IntentIndex(combo_sets)
        if keywords is None:
            keywords = stored_keyword_universe(locale, platform)

        universe = sorted({normalize_phrase(k) for k in keywords if normalize_phrase(k)})
        logger.info(f"Refreshing popularity for {len(universe)} keywords ({locale}/{platform})")

        records = []
        for i, keyword in enumerate(universe, start=1):
            record = self.estimate(keyword, locale, platform, intent=intent)
            KeywordPopularity.upsert(record)
            records.append(record)
            if on_progress is not None:
                on_progress(i, len(universe))
        return records


def load_popularity(
    keywords: Iterable[str], locale: str = "us", platform: str = "ios"
) -> dict[str, PopularityRecord]:
    keywords = {normalize_phrase(k) for k in keywords}
    rows = KeywordPopularity.objects.filter(
        keyword__in=keywords, locale=locale, platform=platform
    )
    return {row.keyword: row.to_record() for row in rows}


def stored_keyword_universe(
    locale: str, platform: str, retention_days: int = 90, now: Optional[datetime] = None
) -> list[str]:
    """Distinct tokens of combos ranked in this market within the retention window."""
    since = (now or timezone.now()) - timedelta(days=retention_days)
    combos = (
        ComboRanking.objects.filter(locale=locale, platform=platform, checked_at__gte=since)
        .values_list("combo", flat=True)
        .distinct()
    )
    tokens = set()
    for combo in combos:
        tokens.update(w for w in normalize_phrase(combo).split() if len(w) >= 2)
    return sorted(tokens)


def app_combo_sets(locale: str, platform: str) -> list[ComboSet]:
    apps = (
        App.objects.filter(combo_rankings__locale=locale, combo_rankings__platform=platform)
        .distinct()
        .prefetch_related("keywords")
    )
    return [
        generate(
            MetadataFields(
                title=app.metadata_title,
                subtitle=app.subtitle,
                custom=tuple(k.keyword for k in app.keywords.all()),
            ),
            locale,
            platform,
        )
        for app in apps
    ]
