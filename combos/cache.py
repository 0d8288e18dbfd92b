"""
Two-tier ranking cache.

``RankingCache`` checks a process-local memory tier first and then the
durable store (the ``ComboRanking`` table).  A record younger than the
TTL is fresh; an older one is returned as stale so the pipeline can fall
back to it when a refetch fails.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from .exceptions import PersistenceError, PersistenceReferentialError
from .models import App, ComboRanking
from .records import RankingKey, RankingRecord

logger = logging.getLogger(__name__)

# Postgres SQLSTATE for foreign_key_violation.
FOREIGN_KEY_VIOLATION = "23503"


@dataclass(frozen=True)
class CacheLookup:
    record: Optional[RankingRecord]
    fresh: bool = False

    @property
    def hit(self) -> bool:
        return self.record is not None

    @property
    def stale(self) -> bool:
        return self.record is not None and not self.fresh


class MemoryRankingStore:
    """
    Thread-safe in-process tier keyed by ``RankingKey``.

    With ``max_age`` set, records older than that are dropped on access
    and never stored.  ``max_entries`` caps the tier; the least recently
    used keys go first, and every write sweeps expired keys off that end.
    """

    def __init__(self, max_age: Optional[timedelta] = None, max_entries: int = 10_000, now=timezone.now):
        self.max_age = max_age
        self.max_entries = max_entries
        self._now = now
        self._lock = threading.Lock()
        self._records: OrderedDict[RankingKey, RankingRecord] = OrderedDict()

    def _expired(self, record: RankingRecord) -> bool:
        return self.max_age is not None and self._now() - record.checked_at >= self.max_age

    def get(self, key: RankingKey) -> Optional[RankingRecord]:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            if self._expired(record):
                del self._records[key]
                return None
            self._records.move_to_end(key)
            return record

    def upsert(self, record: RankingRecord):
        with self._lock:
            if self._expired(record):
                self._records.pop(record.key, None)
                return
            self._records[record.key] = record
            self._records.move_to_end(record.key)
            # Least recently used first: drop expired or surplus keys from the front.
            while self._records:
                oldest_key, oldest = next(iter(self._records.items()))
                if len(self._records) <= self.max_entries and not self._expired(oldest):
                    break
                del self._records[oldest_key]

    def __len__(self):
        with self._lock:
            return len(self._records)


def _is_foreign_key_violation(error: Exception) -> bool:
    cause = error.__cause__
    if getattr(cause, "pgcode", None) == FOREIGN_KEY_VIOLATION:
        return True
    return "foreign key" in str(error).lower()


class DjangoRankingStore:
    """Durable tier backed by the ``ComboRanking`` table."""

    def get(self, key: RankingKey) -> Optional[RankingRecord]:
        try:
            row = (
                ComboRanking.objects.select_related("app")
                .filter(
                    app__track_id=key.app_id,
                    combo=key.combo,
                    locale=key.locale,
                    platform=key.platform,
                )
                .first()
            )
        except DatabaseError as e:
            raise PersistenceError(f"reading ranking for '{key.combo}' failed: {e}") from e
        return row.to_record() if row is not None else None

    def upsert(self, record: RankingRecord):
        """
        Raises:
            PersistenceReferentialError: the app is not registered.
            PersistenceError: any other database failure.
        """
        try:
            app = App.objects.get(track_id=record.app_id)
        except App.DoesNotExist:
            raise PersistenceReferentialError(
                f"app {record.app_id} is not registered"
            ) from None
        except DatabaseError as e:
            raise PersistenceError(f"loading app {record.app_id} failed: {e}") from e

        try:
            with transaction.atomic():
                ComboRanking.upsert(app, record)
        except IntegrityError as e:
            if _is_foreign_key_violation(e):
                raise PersistenceReferentialError(str(e)) from e
            raise PersistenceError(str(e)) from e
        except DatabaseError as e:
            raise PersistenceError(str(e)) from e


class RankingCache:
    def __init__(self, store, ttl: timedelta = timedelta(hours=24), memory=None, now=timezone.now):
        self.store = store
        self.ttl = ttl
        self.memory = memory if memory is not None else MemoryRankingStore(max_age=ttl, now=now)
        self._now = now

    def _is_fresh(self, record: RankingRecord) -> bool:
        return self._now() - record.checked_at < self.ttl

    def lookup(self, key: RankingKey) -> CacheLookup:
        record = self.memory.get(key)
        if record is not None and self._is_fresh(record):
            return CacheLookup(record=record, fresh=True)

        try:
            durable = self.store.get(key)
        except PersistenceError as e:
            logger.warning(f"Durable cache read failed, using memory tier: {e}")
            durable = None

        if durable is not None and (record is None or durable.checked_at > record.checked_at):
            self.memory.upsert(durable)
            record = durable

        if record is None:
            return CacheLookup(record=None)
        return CacheLookup(record=record, fresh=self._is_fresh(record))

    def put(self, record: RankingRecord):
        """Persist durably, then update the memory tier."""
        clean = record.with_flags(cached=False, stale=False, ephemeral=False, error=None)
        self.store.upsert(clean)
        self.memory.upsert(clean)
