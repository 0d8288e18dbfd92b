"""
Tests for priority scoring and top-N selection.
"""
import logging
import random
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from combos.classifier import Tier
from combos.generator import Combo, MetadataFields, Source, generate
from combos.records import PopularityRecord, RankingRecord
from combos.scoring import (
    PriorityComponents,
    PriorityScore,
    PriorityScorer,
    ScoredCombo,
    combo_popularity,
    length_prior,
    rank_combos,
    recency,
    select_top,
    trend_signal,
)

FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=dt_timezone.utc)


def _popularity(keyword, score):
    return PopularityRecord(
        keyword=keyword,
        locale="us",
        platform="ios",
        popularity_score=score,
        autocomplete_score=0.0,
        intent_score=0.0,
        length_prior=1.0,
        last_checked_at=FIXED_NOW,
    )


def _scored(text, value, tier=Tier.TITLE_PAIR, popularity=0):
    components = PriorityComponents(1.0, 0.0, 0.5, 0.5, 0.5)
    return ScoredCombo(
        combo=Combo(text, frozenset({Source.TITLE})),
        tier=tier,
        priority=PriorityScore(value=value, components=components),
        popularity_score=popularity,
    )


class TestComponents:
    """Tests for the individual signals."""

    def test_length_prior(self):
        assert length_prior(2) == 0.5
        assert length_prior(4) == 0.25

    def test_recency_half_life(self):
        assert recency(FIXED_NOW - timedelta(days=7), FIXED_NOW) == pytest.approx(0.5)
        assert recency(FIXED_NOW, FIXED_NOW) == pytest.approx(1.0)

    def test_recency_unknown_is_neutral(self):
        assert recency(None, FIXED_NOW) == 0.5

    @pytest.mark.parametrize("trend,change,expected", [
        ("up", 2, 0.8),
        ("up", 6, 0.9),
        ("up", 15, 1.0),
        ("down", -2, 0.4),
        ("down", -7, 0.3),
        ("down", -20, 0.2),
        ("new", None, 0.6),
        ("stable", 0, 0.5),
        ("lost", None, 0.2),
        (None, None, 0.5),
    ])
    def test_trend_signal(self, trend, change, expected):
        assert trend_signal(trend, change) == expected


class TestComboPopularity:
    """Tests for combo-level popularity lookup."""

    def setup_method(self):
        self.combo = Combo("habit tracker", frozenset({Source.TITLE}))

    def test_exact_record_wins(self):
        records = {"habit tracker": _popularity("habit tracker", 77), "habit": _popularity("habit", 10)}
        assert combo_popularity(self.combo, records) == 77

    def test_average_of_tokens(self):
        records = {"habit": _popularity("habit", 60), "tracker": _popularity("tracker", 40)}
        assert combo_popularity(self.combo, records) == 50

    def test_unknown_is_zero(self):
        assert combo_popularity(self.combo, {}) == 0


class TestPriorityScorer:
    """Tests for PriorityScorer.score()."""

    def setup_method(self):
        self.scorer = PriorityScorer(now=lambda: FIXED_NOW)

    def test_weighted_sum(self):
        combo = Combo("daily habit", frozenset({Source.TITLE}))
        score = self.scorer.score(combo, Tier.TITLE_PAIR, 50, trend=0.5)
        # 0.35*1.0 + 0.25*0.5 + 0.15*0.5 + 0.15*0.5 + 0.10*0.5
        assert score.value == 67.5
        assert score.components.tier_weight == 1.0
        assert score.components.popularity == 0.5
        assert score.components.recency == 0.5

    def test_accepts_popularity_record(self):
        combo = Combo("daily habit", frozenset({Source.TITLE}))
        from_record = self.scorer.score(combo, Tier.TITLE_PAIR, _popularity("daily habit", 50))
        from_int = self.scorer.score(combo, Tier.TITLE_PAIR, 50)
        assert from_record == from_int

    def test_value_is_bounded(self):
        combo = Combo("daily habit", frozenset({Source.TITLE}))
        top = self.scorer.score(combo, Tier.TITLE_PAIR, 100, trend=1.0, last_seen=FIXED_NOW)
        bottom = self.scorer.score(
            Combo("a b c d e f", frozenset({Source.CUSTOM})), Tier.THREE_WAY_CROSS, None, trend=0.0,
            last_seen=FIXED_NOW - timedelta(days=365),
        )
        assert 0.0 <= bottom.value < top.value <= 100.0

    def test_stronger_tier_scores_higher_all_else_equal(self):
        combo = Combo("daily habit", frozenset({Source.TITLE}))
        strong = self.scorer.score(combo, Tier.TITLE_PAIR, 30)
        weak = self.scorer.score(combo, Tier.CUSTOM_PAIR, 30)
        assert strong.value > weak.value


class TestSelection:
    """Tests for ordering and top-N selection."""

    def test_tie_breaks(self):
        items = [
            _scored("zeta app", 50.0, Tier.TITLE_PAIR, popularity=10),
            _scored("alpha app", 50.0, Tier.TITLE_PAIR, popularity=10),
            _scored("beta app", 50.0, Tier.TITLE_PAIR, popularity=40),
            _scored("gamma app", 50.0, Tier.SUBTITLE_PAIR, popularity=90),
            _scored("delta app", 60.0, Tier.CUSTOM_PAIR, popularity=0),
        ]
        ordered = [s.text for s in select_top(items, 10).combos]
        assert ordered == ["delta app", "beta app", "alpha app", "zeta app", "gamma app"]

    def test_selection_is_deterministic(self):
        combos = generate(MetadataFields(
            title="Daily Habit Tracker Planner",
            subtitle="Mindfulness Journal Goals",
            custom=("self care", "routine", "streaks"),
        ))
        scored = rank_combos(combos, {}, scorer=PriorityScorer(now=lambda: FIXED_NOW))
        expected = [s.text for s in select_top(scored, 20).combos]
        for seed in range(5):
            shuffled = list(scored)
            random.Random(seed).shuffle(shuffled)
            assert [s.text for s in select_top(shuffled, 20).combos] == expected

    def test_truncation_is_flagged_and_logged(self, caplog):
        items = [_scored(f"combo {i:03d}", float(i)) for i in range(12)]
        with caplog.at_level(logging.WARNING, logger="combos.scoring"):
            selection = select_top(items, 5)
        assert selection.truncated
        assert selection.total == 12
        assert len(selection.combos) == 5
        assert "truncated" in caplog.text

    def test_no_truncation_under_limit(self):
        selection = select_top([_scored("only one", 10.0)], 500)
        assert not selection.truncated
        assert selection.total == 1


class TestRankCombos:
    """Tests for rank_combos() wiring of rankings into trend and recency."""

    def test_ranking_history_feeds_trend(self):
        combos = generate(MetadataFields(title="Habit Tracker", subtitle="Daily Goals"))
        rising = RankingRecord(
            combo="habit tracker", app_id=1, locale="us", platform="ios",
            total_results=120, position=3, checked_at=FIXED_NOW,
            trend="up", position_change=12,
        )
        scorer = PriorityScorer(now=lambda: FIXED_NOW)
        with_history = {s.text: s for s in rank_combos(combos, {}, {"habit tracker": rising}, scorer)}
        without = {s.text: s for s in rank_combos(combos, {}, {}, scorer)}
        assert with_history["habit tracker"].priority.components.trend == 1.0
        assert with_history["habit tracker"].priority.value > without["habit tracker"].priority.value
