"""
Background popularity refresh.

Runs a daemon thread that keeps ``KeywordPopularity`` current for every
market (locale + platform) that has stored combo rankings.  Progress is
tracked in-memory so ``/api/refresh-status/`` can report it.

Schedule:
  - Checks once per hour whether today's refresh has run.
  - Markets whose popularity was not refreshed today are refreshed in full.
  - Autocomplete calls share a rate limiter sized from COMBO_ENGINE.
  - Rankings older than RANKING_RETENTION_DAYS are deleted after each cycle.
"""

import logging
import threading
import time
from datetime import timedelta

from django.db.models import Max
from django.utils import timezone

logger = logging.getLogger(__name__)

# ── In-memory progress state ──────────────────────────────────────────────

_status_lock = threading.Lock()
_refresh_status = {
    "running": False,
    "total": 0,
    "completed": 0,
    "current_market": "",
    "started_at": None,
    "last_completed_at": None,
    "error": None,
}


def get_status():
    """Return a snapshot of the current refresh status."""
    with _status_lock:
        return dict(_refresh_status)


def _update_status(**kwargs):
    with _status_lock:
        _refresh_status.update(kwargs)


# ── Core refresh logic ────────────────────────────────────────────────────

def _get_markets_to_refresh():
    """Return (locale, platform) pairs whose popularity is older than today."""
    from .models import ComboRanking, KeywordPopularity

    today_start = timezone.now().replace(hour=0, minute=0, second=0, microsecond=0)
    markets = (
        ComboRanking.objects
        .values_list("locale", "platform")
        .distinct()
        .order_by("locale", "platform")
    )
    to_refresh = []
    for locale, platform in markets:
        latest = (
            KeywordPopularity.objects
            .filter(locale=locale, platform=platform)
            .aggregate(latest=Max("last_checked_at"))["latest"]
        )
        if latest is None or latest < today_start:
            to_refresh.append((locale, platform))
    return to_refresh


def _refresh_market(locale, platform, estimator, retention_days):
    from .popularity import stored_keyword_universe

    keywords = stored_keyword_universe(locale, platform, retention_days)
    return estimator.refresh(keywords, locale, platform)


def _build_estimator(config):
    from .popularity import PopularityEstimator
    from .resilience import SlidingWindowRateLimiter
    from .services import ITunesSearchService

    return PopularityEstimator(
        autocomplete=ITunesSearchService().autocomplete,
        rate_limiter=SlidingWindowRateLimiter(
            config.rate_limit_max_calls, config.rate_limit_window_seconds
        ),
    )


def _cleanup_old_rankings(retention_days):
    """Delete ComboRankings older than the retention window."""
    from .models import ComboRanking

    cutoff = timezone.now() - timedelta(days=retention_days)
    deleted_count, _ = ComboRanking.objects.filter(checked_at__lt=cutoff).delete()
    if deleted_count:
        logger.info(f"Cleaned up {deleted_count} rankings older than {retention_days} days.")
    return deleted_count


def _run_daily_refresh(estimator=None):
    """Refresh popularity for every market not refreshed today."""
    from .config import EngineConfig

    config = EngineConfig.from_settings()
    markets = _get_markets_to_refresh()
    if not markets:
        return

    estimator = estimator or _build_estimator(config)
    total = len(markets)
    _update_status(
        running=True,
        total=total,
        completed=0,
        current_market="",
        started_at=timezone.now().isoformat(),
        error=None,
    )

    logger.info(f"Popularity refresh starting: {total} markets.")

    for i, (locale, platform) in enumerate(markets):
        _update_status(current_market=f"{locale.upper()}/{platform}", completed=i)
        try:
            records = _refresh_market(locale, platform, estimator, config.ranking_retention_days)
            logger.info(f"Refreshed {len(records)} keywords for {locale}/{platform}.")
        except Exception as e:
            logger.warning(f"Popularity refresh failed for {locale}/{platform}: {e}")

    _update_status(
        running=False,
        completed=total,
        current_market="",
        last_completed_at=timezone.now().isoformat(),
    )

    _cleanup_old_rankings(config.ranking_retention_days)

    logger.info(f"Popularity refresh complete: {total} markets.")


# ── Scheduler thread ─────────────────────────────────────────────────────

def _scheduler_loop():
    """Main scheduler loop. Checks hourly if a refresh is needed."""
    # Give the app time to finish starting up
    time.sleep(30)

    while True:
        try:
            _run_daily_refresh()
        except Exception as e:
            logger.error(f"Scheduler error: {e}")
            _update_status(running=False, error=str(e))

        time.sleep(3600)


_scheduler_started = False
_scheduler_lock = threading.Lock()


def start_scheduler():
    """Start the background scheduler thread (idempotent)."""
    global _scheduler_started
    with _scheduler_lock:
        if _scheduler_started:
            return
        _scheduler_started = True

    thread = threading.Thread(target=_scheduler_loop, daemon=True, name="combo-popularity-refresh")
    thread.start()
    logger.info("Popularity refresh scheduler started.")
