"""APScheduler setup for periodic tasks."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.cache import Cache
from app.core.route_matcher import RouteMatcher

logger = logging.getLogger(__name__)


def create_scheduler(
    cache: Cache,
    matcher: RouteMatcher,
    sweep_interval_seconds: int = 60,
    shape_refresh_minutes: int = 60,
) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    scheduler = AsyncIOScheduler()

    # Drop expired cache entries nobody reads any more
    scheduler.add_job(
        cache.sweep,
        "interval",
        seconds=sweep_interval_seconds,
        id="cache_sweep",
        name="Sweep expired cache entries",
        max_instances=1,
    )

    # Pick up route shape edits made through route administration
    scheduler.add_job(
        matcher.refresh,
        "interval",
        minutes=shape_refresh_minutes,
        id="refresh_shapes",
        name="Reload route shapes from the database",
        max_instances=1,
    )

    return scheduler
