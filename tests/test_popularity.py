"""
Tests for keyword popularity estimation and refresh.
"""
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import MagicMock

import pytest

from combos.exceptions import UpstreamTransientError
from combos.generator import MetadataFields, generate
from combos.models import App, ComboRanking, KeywordPopularity
from combos.popularity import (
    IntentIndex,
    PopularityEstimator,
    app_combo_sets,
    autocomplete_score,
    load_popularity,
    stored_keyword_universe,
)
from combos.services import AutocompleteSignal

FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=dt_timezone.utc)


class TestAutocompleteScore:
    """Tests for autocomplete_score()."""

    def test_rank_scale(self):
        assert autocomplete_score(AutocompleteSignal(True, 1)) == 1.0
        assert autocomplete_score(AutocompleteSignal(True, 10)) == pytest.approx(0.1)

    def test_absent_or_missing(self):
        assert autocomplete_score(AutocompleteSignal(False)) == 0.0
        assert autocomplete_score(None) == 0.0

    def test_present_without_rank(self):
        assert autocomplete_score(AutocompleteSignal(True)) == 1.0


class TestIntentIndex:
    """Tests for the tier-weighted intent signal."""

    def setup_method(self):
        combos = generate(MetadataFields(
            title="Habit Tracker",
            subtitle="Daily Goals",
            custom=("journal",),
        ))
        self.index = IntentIndex([combos])

    def test_title_tokens_outweigh_custom_tokens(self):
        assert self.index.score("habit") > self.index.score("journal")

    def test_scores_are_normalized(self):
        top = max(self.index.score(w) for w in ("habit", "tracker", "daily", "goals", "journal"))
        assert top == pytest.approx(1.0)

    def test_unknown_keyword(self):
        assert self.index.score("weather") == 0.0
        assert self.index.participation("weather") == 0

    def test_participation_counts_combos(self):
        assert self.index.participation("habit") >= 2


class TestEstimate:
    """Tests for PopularityEstimator.estimate()."""

    def test_top_autocomplete_single_word(self):
        autocomplete = MagicMock(return_value=AutocompleteSignal(True, 1))
        estimator = PopularityEstimator(autocomplete=autocomplete, now=lambda: FIXED_NOW)
        record = estimator.estimate("Habit", "us", "ios")
        # 0.6 * 1.0 + 0.3 * 0.0 + 0.1 * 1.0
        assert record.popularity_score == 70
        assert record.keyword == "habit"
        assert record.autocomplete_rank == 1
        assert record.last_checked_at == FIXED_NOW
        autocomplete.assert_called_once_with("habit", "us")

    def test_upstream_failure_degrades_to_zero_autocomplete(self, caplog):
        autocomplete = MagicMock(side_effect=UpstreamTransientError("HTTP 503", status_code=503))
        estimator = PopularityEstimator(autocomplete=autocomplete)
        record = estimator.estimate("habit")
        assert record.autocomplete_score == 0.0
        assert record.popularity_score == 10
        assert "Autocomplete unavailable" in caplog.text

    def test_longer_keywords_get_lower_length_prior(self):
        estimator = PopularityEstimator()
        assert estimator.estimate("habit").popularity_score > estimator.estimate("daily habit tracker").popularity_score

    def test_score_is_bounded(self):
        intent = IntentIndex([generate(MetadataFields(title="Habit Tracker"))])
        estimator = PopularityEstimator(autocomplete=lambda term, locale: AutocompleteSignal(True, 1))
        record = estimator.estimate("habit", intent=intent)
        assert 0 <= record.popularity_score <= 100


@pytest.mark.django_db
class TestRefresh:
    """Tests for PopularityEstimator.refresh() and the stored universe."""

    @pytest.fixture(autouse=True)
    def _app(self, db):
        self.app = App.objects.create(
            name="Habitly", title="Daily Habit Tracker", subtitle="Mindfulness App", track_id=42,
        )

    def _ranking(self, combo, age_days=0):
        row = ComboRanking.objects.create(app=self.app, combo=combo, total_results=100)
        ComboRanking.objects.filter(pk=row.pk).update(
            checked_at=row.checked_at - timedelta(days=age_days)
        )

    def test_refresh_is_idempotent(self):
        estimator = PopularityEstimator()
        estimator.refresh(["Habit", "tracker", "habit"], "us", "ios")
        first = {p.keyword: p.popularity_score for p in KeywordPopularity.objects.all()}
        estimator.refresh(["habit", "tracker"], "us", "ios")
        second = {p.keyword: p.popularity_score for p in KeywordPopularity.objects.all()}
        assert sorted(first) == ["habit", "tracker"]
        assert first == second
        assert KeywordPopularity.objects.count() == 2

    def test_refresh_reports_progress(self):
        progress = []
        PopularityEstimator().refresh(
            ["habit", "tracker"], "us", "ios", combo_sets=[],
            on_progress=lambda done, total: progress.append((done, total)),
        )
        assert progress == [(1, 2), (2, 2)]

    def test_stored_universe_respects_retention(self):
        self._ranking("habit tracker")
        self._ranking("mindfulness app", age_days=120)
        assert stored_keyword_universe("us", "ios", retention_days=90) == ["habit", "tracker"]

    def test_refresh_defaults_to_stored_universe(self):
        self._ranking("daily habit")
        records = PopularityEstimator().refresh(locale="us", platform="ios")
        assert [r.keyword for r in records] == ["daily", "habit"]
        # Intent comes from the regenerated combos of ranked apps.
        assert all(r.intent_score > 0 for r in records)

    def test_app_combo_sets_only_includes_ranked_apps(self):
        App.objects.create(name="Unranked", title="Weather Radar", track_id=43)
        self._ranking("habit tracker")
        sets = app_combo_sets("us", "ios")
        assert len(sets) == 1
        assert "daily habit tracker" in sets[0]

    def test_load_popularity(self):
        PopularityEstimator().refresh(["habit"], "us", "ios", combo_sets=[])
        loaded = load_popularity(["Habit", "unknown"], "us", "ios")
        assert list(loaded) == ["habit"]
        assert loaded["habit"].popularity_score == 10
        assert load_popularity(["habit"], "gb", "ios") == {}
