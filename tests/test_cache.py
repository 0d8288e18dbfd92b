"""
Tests for the memory and Django-backed ranking cache tiers.
"""
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.db import IntegrityError
from django.utils import timezone

from combos.cache import (
    CacheLookup,
    DjangoRankingStore,
    MemoryRankingStore,
    RankingCache,
)
from combos.exceptions import PersistenceError, PersistenceReferentialError
from combos.models import App, ComboRanking
from combos.records import RankingKey, RankingRecord

TRACK_ID = 1445512345


def _record(combo="habit tracker", total=158, position=3, age=timedelta(0), app_id=TRACK_ID):
    return RankingRecord(
        combo=combo,
        app_id=app_id,
        locale="us",
        platform="ios",
        total_results=total,
        position=position,
        checked_at=timezone.now() - age,
        trend="new",
    )


@pytest.mark.django_db
class TestDjangoRankingStore:
    """Tests for the durable tier."""

    def setup_method(self):
        self.store = DjangoRankingStore()

    def test_round_trip_preserves_signal(self):
        App.objects.create(name="Habitly", track_id=TRACK_ID)
        record = _record()
        self.store.upsert(record)
        loaded = self.store.get(record.key)
        assert loaded.total_results == 158
        assert loaded.position == 3
        assert loaded.trend == "new"
        assert loaded.app_id == TRACK_ID

    def test_upsert_replaces_whole_row(self):
        App.objects.create(name="Habitly", track_id=TRACK_ID)
        self.store.upsert(_record(total=158, position=3))
        self.store.upsert(_record(total=160, position=None))
        assert ComboRanking.objects.count() == 1
        row = ComboRanking.objects.get()
        assert row.total_results == 160
        assert row.position is None

    def test_unknown_total_is_stored_as_null_not_zero(self):
        App.objects.create(name="Habitly", track_id=TRACK_ID)
        self.store.upsert(_record(total=None, position=None))
        assert ComboRanking.objects.get().total_results is None

    def test_missing_app_is_referential_error(self):
        with pytest.raises(PersistenceReferentialError):
            self.store.upsert(_record(app_id=999))
        assert ComboRanking.objects.count() == 0

    def test_foreign_key_violation_is_referential_error(self):
        App.objects.create(name="Habitly", track_id=TRACK_ID)
        error = IntegrityError("FOREIGN KEY constraint failed")
        with patch("combos.cache.ComboRanking.upsert", side_effect=error):
            with pytest.raises(PersistenceReferentialError):
                self.store.upsert(_record())

    def test_other_integrity_error_is_plain_persistence_error(self):
        App.objects.create(name="Habitly", track_id=TRACK_ID)
        error = IntegrityError("NOT NULL constraint failed: combos_comboranking.combo")
        with patch("combos.cache.ComboRanking.upsert", side_effect=error):
            with pytest.raises(PersistenceError) as exc:
                self.store.upsert(_record())
        assert not isinstance(exc.value, PersistenceReferentialError)

    def test_get_missing_returns_none(self):
        assert self.store.get(RankingKey(TRACK_ID, "nothing here", "us", "ios")) is None


@pytest.mark.django_db
class TestRankingCache:
    """Tests for the two-tier cache."""

    def test_round_trip_through_fresh_cache(self):
        App.objects.create(name="Habitly", track_id=TRACK_ID)
        RankingCache(DjangoRankingStore()).put(_record())
        # A new cache has an empty memory tier and must read the database.
        lookup = RankingCache(DjangoRankingStore()).lookup(RankingKey(TRACK_ID, "habit tracker", "us", "ios"))
        assert lookup.fresh
        assert lookup.record.total_results == 158
        assert lookup.record.position == 3

    def test_expired_record_is_stale(self):
        App.objects.create(name="Habitly", track_id=TRACK_ID)
        store = DjangoRankingStore()
        store.upsert(_record(age=timedelta(hours=25)))
        lookup = RankingCache(store, ttl=timedelta(hours=24)).lookup(_record().key)
        assert lookup.hit
        assert lookup.stale
        assert not lookup.fresh

    def test_miss(self):
        lookup = RankingCache(DjangoRankingStore()).lookup(_record().key)
        assert lookup == CacheLookup(record=None)
        assert not lookup.hit


class TestMemoryTier:
    """Memory tier behaviour that does not need the database."""

    def test_fresh_memory_hit_skips_durable_store(self):
        store = MagicMock()
        cache = RankingCache(store)
        cache.memory.upsert(_record())
        lookup = cache.lookup(_record().key)
        assert lookup.fresh
        store.get.assert_not_called()

    def test_durable_read_failure_falls_back_to_memory(self, caplog):
        store = MagicMock()
        store.get.side_effect = PersistenceError("database is locked")
        cache = RankingCache(store, memory=MemoryRankingStore())
        stale = _record(age=timedelta(hours=30))
        cache.memory.upsert(stale)
        with caplog.at_level("WARNING", logger="combos.cache"):
            lookup = cache.lookup(stale.key)
        assert lookup.stale
        assert lookup.record.total_results == 158
        assert "Durable cache read failed" in caplog.text

    def test_put_writes_both_tiers_without_flags(self):
        store = MemoryRankingStore()
        cache = RankingCache(store)
        cache.put(_record().with_flags(cached=True, stale=True))
        stored = store.get(_record().key)
        assert not stored.cached and not stored.stale
        assert len(cache.memory) == 1

    def test_durable_read_failure_with_empty_memory_is_a_miss(self):
        store = MagicMock()
        store.get.side_effect = PersistenceError("database is locked")
        assert not RankingCache(store).lookup(_record().key).hit

    def test_put_does_not_touch_memory_when_store_fails(self):
        store = MagicMock()
        store.upsert.side_effect = PersistenceReferentialError("app missing")
        cache = RankingCache(store)
        with pytest.raises(PersistenceReferentialError):
            cache.put(_record())
        assert len(cache.memory) == 0


class TestMemoryEviction:
    """The memory tier drops expired and least recently used keys."""

    def setup_method(self):
        self.now = timezone.now()
        self.store = MemoryRankingStore(max_age=timedelta(hours=24), now=lambda: self.now)

    def test_expired_key_is_evicted_on_read(self):
        self.store.upsert(_record())
        self.now += timedelta(hours=25)
        assert self.store.get(_record().key) is None
        assert len(self.store) == 0

    def test_expired_record_is_never_stored(self):
        self.store.upsert(_record(age=timedelta(hours=30)))
        assert len(self.store) == 0

    def test_write_sweeps_expired_keys(self):
        self.store.upsert(_record("habit tracker"))
        self.store.upsert(_record("daily habit"))
        self.now += timedelta(hours=25)
        self.store.upsert(_record("mindfulness app", age=-timedelta(hours=25)))
        assert len(self.store) == 1
        assert self.store.get(_record("mindfulness app").key) is not None

    def test_size_cap_drops_least_recently_used(self):
        store = MemoryRankingStore(max_entries=2)
        store.upsert(_record("habit tracker"))
        store.upsert(_record("daily habit"))
        store.get(_record("habit tracker").key)
        store.upsert(_record("mindfulness app"))
        assert len(store) == 2
        assert store.get(_record("daily habit").key) is None
        assert store.get(_record("habit tracker").key) is not None

    def test_cache_memory_tier_uses_ttl(self):
        cache = RankingCache(MemoryRankingStore(), ttl=timedelta(hours=24), now=lambda: self.now)
        cache.put(_record())
        self.now += timedelta(hours=25)
        lookup = cache.lookup(_record().key)
        # The durable tier still has the row; memory no longer does.
        assert lookup.stale
        assert len(cache.memory) == 0
