"""
Plain value objects shared by the pipeline, the cache tiers and the views.

These are deliberately decoupled from the Django models so the fetch
pipeline can run (and be tested) without a database.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import NamedTuple, Optional


class RankingKey(NamedTuple):
    """Identity of a ranking: the cache and the in-flight registry share it."""

    app_id: int
    combo: str
    locale: str
    platform: str


@dataclass(frozen=True)
class RankingRecord:
    """
    Competitive signal for one combo.

    ``total_results is None`` means "unknown" (fetch failed, timed out,
    breaker open).  ``0`` means the search endpoint really returned no
    competitors.  The two must never be conflated.
    """

    combo: str
    app_id: int
    locale: str
    platform: str
    total_results: Optional[int]
    position: Optional[int]
    checked_at: datetime
    trend: Optional[str] = None
    position_change: Optional[int] = None
    cached: bool = False
    stale: bool = False
    ephemeral: bool = False
    error: Optional[str] = None

    @property
    def key(self) -> RankingKey:
        return RankingKey(self.app_id, self.combo, self.locale, self.platform)

    @property
    def is_unknown(self) -> bool:
        return self.total_results is None

    def with_flags(self, **changes) -> "RankingRecord":
        return replace(self, **changes)

    @classmethod
    def unknown(cls, key: RankingKey, checked_at: datetime, error: str) -> "RankingRecord":
        """Null record for a combo whose signal could not be obtained."""
        return cls(
            combo=key.combo,
            app_id=key.app_id,
            locale=key.locale,
            platform=key.platform,
            total_results=None,
            position=None,
            checked_at=checked_at,
            error=error,
        )


@dataclass(frozen=True)
class PopularityRecord:
    keyword: str
    locale: str
    platform: str
    popularity_score: int
    autocomplete_score: float
    intent_score: float
    length_prior: float
    last_checked_at: datetime
    autocomplete_rank: Optional[int] = None
    participation_count: int = 0
    word_count: int = 1
