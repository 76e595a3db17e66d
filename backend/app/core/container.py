"""Explicitly constructed service graph owned by the application lifespan."""

import logging
from dataclasses import dataclass, field

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import Settings
from app.core.broadcaster import Broadcaster
from app.core.cache import Cache, create_cache
from app.core.credentials import create_resolver
from app.core.eta_calculator import EtaCalculator
from app.core.gps_ingest import GpsIngestService
from app.core.position_store import PositionStore
from app.core.route_matcher import RouteMatcher
from app.core.scheduler import create_scheduler
from app.core.training_log import TrainingLog
from app.core.transit_store import TransitStore
from app.core.travel_time import TravelTimeOracle, create_oracle
from app.db.session import create_session_factory
from app.models.base import Base
from app.models import tables  # noqa: F401

logger = logging.getLogger(__name__)


@dataclass
class Services:
    cache: Cache
    ingest: GpsIngestService
    matcher: RouteMatcher
    eta: EtaCalculator
    broadcaster: Broadcaster
    oracle: TravelTimeOracle | None = None
    engine: AsyncEngine | None = None
    scheduler: AsyncIOScheduler | None = field(default=None, repr=False)

    async def start(self) -> None:
        if self.engine is not None:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        await self.broadcaster.connect()
        await self.matcher.refresh()
        if self.scheduler is not None:
            self.scheduler.start()

    async def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
        await self.broadcaster.close()
        if self.oracle is not None:
            await self.oracle.close()
        await self.cache.close()
        if self.engine is not None:
            await self.engine.dispose()


def build_services(settings: Settings) -> Services:
    engine, session_factory = create_session_factory(settings.database_url)
    cache = create_cache(settings.cache_backend, settings.redis_url)

    ingest = GpsIngestService(
        store=PositionStore(session_factory),
        cache=cache,
        credentials=create_resolver(settings.credential_source, settings.api_key_secret, session_factory),
        dedup_window_ms=settings.gps_dedup_window_ms,
        position_ttl=settings.position_cache_ttl_seconds,
        last_seen_ttl=settings.last_seen_ttl_seconds,
    )
    matcher = RouteMatcher(TransitStore(session_factory), tolerance_m=settings.route_match_tolerance_m)
    oracle = create_oracle(
        settings.google_api_key,
        settings.directions_api_url,
        settings.oracle_timeout_seconds,
        settings.fallback_speed_kmh,
    )
    eta = EtaCalculator(
        ingest=ingest,
        matcher=matcher,
        oracle=oracle,
        cache=cache,
        training_log=TrainingLog(session_factory),
        cache_ttl=settings.eta_cache_ttl_seconds,
        stale_ttl=settings.eta_stale_ttl_seconds,
        safety_buffer_minutes=settings.eta_safety_buffer_minutes,
        oracle_timeout=settings.oracle_timeout_seconds,
        max_batch=settings.eta_batch_max_requests,
    )
    broadcaster = Broadcaster(settings.redis_url if settings.cache_backend == "redis" else None)

    return Services(
        cache=cache,
        ingest=ingest,
        matcher=matcher,
        eta=eta,
        broadcaster=broadcaster,
        oracle=oracle,
        engine=engine,
        scheduler=create_scheduler(
            cache, matcher, settings.cache_sweep_interval_seconds, settings.shape_refresh_minutes,
        ),
    )
