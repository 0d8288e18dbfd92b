"""
Ranking fetch pipeline.

For every combo in a batch the pipeline answers "how crowded is this
search, and where does the app rank for it?", going through the cache,
the in-flight registry, the rate limiter and the circuit breaker in that
order.  A failure for one combo is recorded on that combo only; the
batch always completes.

Network calls run on a thread pool.  Cache reads, trend computation and
persistence stay on the calling thread so the Django ORM is only ever
touched from there.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Optional

from django.utils import timezone

from .config import EngineConfig
from .exceptions import (
    PersistenceError,
    PersistenceReferentialError,
    RateLimitTimeoutError,
    UpstreamCircuitOpenError,
    UpstreamError,
    ValidationError,
)
from .records import RankingKey, RankingRecord
from .resilience import InFlightRegistry

logger = logging.getLogger(__name__)

# Per-combo error markers carried on RankingRecord.error.
ERROR_UPSTREAM = "upstream_error"
ERROR_CIRCUIT_OPEN = "circuit_open"
ERROR_TIMEOUT = "timeout"
ERROR_PERSISTENCE = "persistence_failed"


@dataclass(frozen=True)
class AppContext:
    """The app a batch is fetched for, identified by its store id."""

    app_id: int
    organization_id: Optional[str] = None


@dataclass
class RankingBatch:
    results: dict = field(default_factory=dict)
    cached: int = 0
    fetched: int = 0
    failed: int = 0
    ephemeral: int = 0
    stale: int = 0
    deduplicated: int = 0

    @property
    def partial(self) -> bool:
        """True when at least one combo has no fresh signal."""
        return any(r.is_unknown or r.stale for r in self.results.values())

    def __getitem__(self, combo: str) -> RankingRecord:
        return self.results[combo]

    def __contains__(self, combo) -> bool:
        return combo in self.results

    def __len__(self) -> int:
        return len(self.results)

    def records(self) -> list[RankingRecord]:
        return list(self.results.values())


@dataclass(frozen=True)
class FetchOutcome:
    """What a worker brings back: a signal or an error marker."""

    signal: object = None
    error: Optional[str] = None


def compute_trend(previous: Optional[RankingRecord], position: Optional[int]):
    """
    Compare a fresh position with the previously stored one.

    Returns:
        (trend, position_change) where position_change = previous - current,
        so positive numbers mean the app moved up.
    """
    prev_position = previous.position if previous is not None else None
    if previous is None or previous.is_unknown:
        return ("new" if position is not None else None), None
    if prev_position is None:
        return ("new" if position is not None else None), None
    if position is None:
        return "lost", None
    change = prev_position - position
    if change > 0:
        return "up", change
    if change < 0:
        return "down", change
    return "stable", 0


def normalize_combo(text: str) -> str:
    return " ".join(text.lower().split())


class RankingFetchPipeline:
    def __init__(
        self,
        search: Callable,
        cache,
        rate_limiter,
        breaker,
        registry: Optional[InFlightRegistry] = None,
        config: Optional[EngineConfig] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Callable[[], float] = time.monotonic,
        now=timezone.now,
    ):
        self.search = search
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.breaker = breaker
        self.registry = registry if registry is not None else InFlightRegistry()
        self.config = config or EngineConfig()
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="combo-fetch",
        )
        self._clock = clock
        self._now = now

    def shutdown(self, wait: bool = True):
        self.executor.shutdown(wait=wait)

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def validate(self, app: AppContext, combos, locale: str, platform: str) -> list[str]:
        """
        Check the request shape and return normalized, de-duplicated texts.

        Raises:
            ValidationError: before any cache or network access.
        """
        cfg = self.config
        if not isinstance(app.app_id, int) or isinstance(app.app_id, bool) or app.app_id <= 0:
            raise ValidationError("appId must be a positive integer", "INVALID_APP_ID")
        if locale not in cfg.supported_locales:
            raise ValidationError(f"Unsupported locale: {locale}", "UNSUPPORTED_LOCALE")
        if platform not in cfg.supported_platforms:
            raise ValidationError(f"Unsupported platform: {platform}", "UNSUPPORTED_PLATFORM")
        if isinstance(combos, str) or not isinstance(combos, (list, tuple)) or not combos:
            raise ValidationError("combos must be a non-empty list", "INVALID_REQUEST")
        if len(combos) > cfg.max_combos_per_batch:
            raise ValidationError(
                f"Too many combos: {len(combos)} (max {cfg.max_combos_per_batch})",
                "LIMIT_EXCEEDED",
            )

        texts = []
        seen = set()
        for combo in combos:
            if not isinstance(combo, str) or not combo.strip():
                raise ValidationError("Each combo must be a non-empty string", "INVALID_COMBO")
            if len(combo) > cfg.max_combo_length:
                raise ValidationError(
                    f"Combo too long (max {cfg.max_combo_length} characters)",
                    "COMBO_TOO_LONG",
                )
            text = normalize_combo(combo)
            if text not in seen:
                seen.add(text)
                texts.append(text)
        return texts

    # ------------------------------------------------------------------ #
    # Batch
    # ------------------------------------------------------------------ #

    def fetch_rankings(
        self,
        app: AppContext,
        combos: list[str],
        locale: str = "us",
        platform: str = "ios",
        timeout: Optional[float] = None,
        force_refresh: bool = False,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> RankingBatch:
        """
        Fetch competitive signals for a batch of combos.

        Args:
            app: Store id (and owning organization) of the app.
            combos: Combo texts.  Normalized and de-duplicated.
            timeout: Seconds for the whole batch.  Combos whose upstream
                call has not finished by then come back null with
                ``error="timeout"``.
            force_refresh: Ignore fresh cache entries.
            on_progress: Called as ``on_progress(done, total)`` per chunk.

        Returns:
            RankingBatch whose ``results`` maps every normalized combo text
            to a RankingRecord.

        Raises:
            ValidationError: malformed request; nothing was processed.
        """
        texts = self.validate(app, combos, locale, platform)
        deadline = None if timeout is None else self._clock() + timeout
        size = self.config.chunk_size
        chunks = [texts[i:i + size] for i in range(0, len(texts), size)]
        batch = RankingBatch()

        logger.info(
            f"Fetching rankings for {len(texts)} combos "
            f"(app {app.app_id}, {locale}/{platform}, {len(chunks)} chunks)"
        )
        done = 0
        for index, chunk in enumerate(chunks, start=1):
            self._run_chunk(app, chunk, locale, platform, deadline, force_refresh, batch)
            done += len(chunk)
            logger.info(f"Chunk {index}/{len(chunks)} done ({done}/{len(texts)} combos)")
            if on_progress is not None:
                on_progress(done, len(texts))

        logger.info(
            f"Ranking batch finished for app {app.app_id}: "
            f"{batch.cached} cached, {batch.fetched} fetched, {batch.failed} failed, "
            f"{batch.ephemeral} ephemeral, {batch.stale} stale"
        )
        return batch

    def _run_chunk(self, app, chunk, locale, platform, deadline, force_refresh, batch):
        pending = []
        for text in chunk:
            key = RankingKey(app.app_id, text, locale, platform)
            lookup = self.cache.lookup(key)
            if lookup.fresh and not force_refresh:
                batch.results[text] = lookup.record.with_flags(cached=True)
                batch.cached += 1
                continue

            shared, leader = self.registry.claim(key)
            if leader:
                self.executor.submit(self._fetch, key, deadline)
            else:
                batch.deduplicated += 1
            pending.append((text, key, lookup, shared, leader))

        for text, key, lookup, shared, leader in pending:
            outcome = self._await(shared, deadline)
            batch.results[text] = self._settle(key, lookup, outcome, leader, batch)

    # ------------------------------------------------------------------ #
    # Worker side
    # ------------------------------------------------------------------ #

    def _fetch(self, key: RankingKey, deadline: Optional[float]):
        outcome = FetchOutcome(error=ERROR_UPSTREAM)
        try:
            outcome = self._call_upstream(key, deadline)
        except Exception:
            logger.exception(f"Unexpected error fetching '{key.combo}'")
        finally:
            self.registry.resolve(key, outcome)

    def _call_upstream(self, key: RankingKey, deadline: Optional[float]) -> FetchOutcome:
        acquire_timeout = self.config.rate_limit_acquire_timeout
        if deadline is not None:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return FetchOutcome(error=ERROR_TIMEOUT)
            acquire_timeout = min(acquire_timeout, remaining)

        try:
            self.rate_limiter.acquire(timeout=acquire_timeout)
        except RateLimitTimeoutError as e:
            logger.warning(f"Rate limit timeout for '{key.combo}': {e}")
            return FetchOutcome(error=ERROR_TIMEOUT)

        try:
            signal = self.breaker.call(self.search, key.combo, key.locale)
        except UpstreamCircuitOpenError:
            return FetchOutcome(error=ERROR_CIRCUIT_OPEN)
        except UpstreamError as e:
            logger.warning(f"Search failed for '{key.combo}' ({key.locale}): {e}")
            return FetchOutcome(error=ERROR_UPSTREAM)
        return FetchOutcome(signal=signal)

    # ------------------------------------------------------------------ #
    # Calling-thread side
    # ------------------------------------------------------------------ #

    def _await(self, shared, deadline: Optional[float]) -> FetchOutcome:
        remaining = None if deadline is None else max(deadline - self._clock(), 0)
        try:
            return shared.result(timeout=remaining)
        except FuturesTimeoutError:
            return FetchOutcome(error=ERROR_TIMEOUT)

    def _settle(self, key, lookup, outcome: FetchOutcome, leader: bool, batch) -> RankingRecord:
        now = self._now()
        previous = lookup.record
        if outcome.signal is None:
            if previous is not None and lookup.fresh:
                # Forced refresh failed; the cached value is still within its TTL.
                batch.cached += 1
                return previous.with_flags(cached=True, error=outcome.error)
            if previous is not None:
                batch.stale += 1
                return previous.with_flags(cached=True, stale=True, error=outcome.error)
            batch.failed += 1
            return RankingRecord.unknown(key, now, outcome.error or ERROR_UPSTREAM)

        signal = outcome.signal
        position = signal.position_of(key.app_id)
        trend, change = compute_trend(previous, position)
        record = RankingRecord(
            combo=key.combo,
            app_id=key.app_id,
            locale=key.locale,
            platform=key.platform,
            total_results=signal.result_count,
            position=position,
            checked_at=now,
            trend=trend,
            position_change=change,
        )
        if not leader:
            batch.fetched += 1
            return record

        try:
            self.cache.put(record)
        except PersistenceReferentialError as e:
            logger.warning(
                f"App {key.app_id} not registered, returning '{key.combo}' without persisting: {e}"
            )
            batch.fetched += 1
            batch.ephemeral += 1
            return record.with_flags(ephemeral=True)
        except PersistenceError:
            logger.exception(f"Persisting ranking for '{key.combo}' failed")
            batch.failed += 1
            return RankingRecord.unknown(key, now, ERROR_PERSISTENCE)

        batch.fetched += 1
        return record
