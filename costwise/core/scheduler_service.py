"""
Background maintenance for the cache and the rate limiter.

Uses APScheduler to run two interval jobs:
- Cache sweep: delete expired api_cache rows
- Rate-limit sweep: drop buckets whose window has elapsed

Sweeps are housekeeping only; reads already ignore expired entries and
windows, so a failed sweep is logged and retried on the next interval.
"""
import logging
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from costwise.core.api_errors import CacheError
from costwise.core.cache_store import CacheStore
from costwise.core.config import Settings, get_settings
from costwise.core.rate_limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

CACHE_SWEEP_JOB_ID = "cache_sweep"
RATE_LIMIT_SWEEP_JOB_ID = "rate_limit_sweep"


def sweep_cache(cache: CacheStore) -> int:
    """Run one cache sweep; returns rows removed, 0 on failure."""
    try:
        removed = cache.sweep()
    except CacheError as e:
        logger.error(f"Cache sweep failed: {e}")
        return 0
    if removed:
        logger.info(f"Cache sweep removed {removed} expired entries")
    return removed


def sweep_rate_limits(rate_limiter: FixedWindowRateLimiter) -> int:
    """Run one rate-limit bucket sweep; returns buckets removed."""
    removed = rate_limiter.sweep()
    if removed:
        logger.debug(f"Rate-limit sweep removed {removed} stale buckets")
    return removed


class MaintenanceScheduler:
    """
    Owns an AsyncIOScheduler with the two sweep jobs.

    Args:
        cache: Cache store to sweep
        rate_limiter: Limiter whose stale buckets are dropped
        settings: Source of sweep intervals
        scheduler: Optional pre-built scheduler
    """

    def __init__(
        self,
        cache: CacheStore,
        rate_limiter: FixedWindowRateLimiter,
        settings: Optional[Settings] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.settings = settings or get_settings()
        self.scheduler = scheduler or AsyncIOScheduler()

    def register_jobs(self) -> None:
        self.scheduler.add_job(
            sweep_cache,
            trigger=IntervalTrigger(seconds=self.settings.cache_sweep_interval_seconds),
            id=CACHE_SWEEP_JOB_ID,
            args=[self.cache],
            name="Cache Sweep",
            replace_existing=True,
        )
        self.scheduler.add_job(
            sweep_rate_limits,
            trigger=IntervalTrigger(seconds=self.settings.rate_limit_sweep_interval_seconds),
            id=RATE_LIMIT_SWEEP_JOB_ID,
            args=[self.rate_limiter],
            name="Rate Limit Sweep",
            replace_existing=True,
        )
        logger.info(
            f"Registered maintenance jobs (cache every {self.settings.cache_sweep_interval_seconds}s, "
            f"rate limits every {self.settings.rate_limit_sweep_interval_seconds}s)"
        )

    def start(self) -> None:
        """Register jobs and start the scheduler if not already running."""
        if self.scheduler.running:
            return
        self.register_jobs()
        self.scheduler.start()
        logger.info("Maintenance scheduler started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Maintenance scheduler stopped")

    def status(self) -> Dict[str, Any]:
        """Running flag and next run time per job."""
        jobs: List[Dict[str, Any]] = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
            })
        return {"running": self.scheduler.running, "jobs": jobs}
