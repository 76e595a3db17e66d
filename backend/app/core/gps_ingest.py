"""GPS ingest pipeline: authenticate, validate, deduplicate, persist, cache."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import pydantic

from app.core.cache import Cache
from app.core.credentials import CredentialResolver
from app.core.errors import Conflict, Unauthorized, ValidationError
from app.core.noncritical import noncritical
from app.core.position_store import PositionStore
from app.schemas.position import PositionFix

logger = logging.getLogger(__name__)

LATEST_KEY = "gps:latest:{}"
LAST_SEEN_KEY = "gps:last:{}"


@dataclass(frozen=True)
class IngestOutcome:
    fix: PositionFix
    created: bool


def _violation(err: dict) -> str:
    field = ".".join(str(p) for p in err["loc"])
    return f"{field}: {err['msg']}" if field else err["msg"]


class GpsIngestService:
    """Accepts device fixes and serves the latest known position per vehicle."""

    def __init__(
        self,
        store: PositionStore,
        cache: Cache,
        credentials: CredentialResolver,
        dedup_window_ms: int = 1000,
        position_ttl: int = 300,
        last_seen_ttl: int = 60,
    ) -> None:
        self.store = store
        self.cache = cache
        self.credentials = credentials
        self.dedup_window_ms = dedup_window_ms
        self.position_ttl = position_ttl
        self.last_seen_ttl = last_seen_ttl

    @staticmethod
    def validate(payload: Any) -> PositionFix:
        """Parse a raw payload, collecting every violated constraint."""
        try:
            return PositionFix.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError([_violation(err) for err in e.errors()]) from None

    async def is_duplicate(self, vehicle_id: str, timestamp: int) -> bool:
        """True if the last fix seen for this vehicle is within the dedup window.

        Timestamps are compared in milliseconds; with second-resolution
        payloads and the default 1000 ms window only an identical second counts.
        """
        last = await noncritical(
            f"dedup lookup for {vehicle_id}", self.cache.get(LAST_SEEN_KEY.format(vehicle_id))
        )
        if not last:
            return False
        return abs(last["timestamp_ms"] - timestamp * 1000) < self.dedup_window_ms

    async def process(self, payload: Any, presented_key: str | None) -> IngestOutcome:
        """Accept one fix. ``created`` is False when storage already held the key."""
        if not presented_key or await self.credentials.resolve(presented_key) is None:
            raise Unauthorized("Invalid API key")

        fix = self.validate(payload)

        if await self.is_duplicate(fix.vehicle_id, fix.timestamp):
            raise Conflict("Duplicate GPS update")

        # Writes finish even if the caller goes away mid-request.
        stored = await asyncio.shield(self._commit(fix))

        logger.info(
            "GPS update processed for vehicle %s (%.5f, %.5f)",
            fix.vehicle_id, fix.latitude, fix.longitude,
        )
        return stored

    async def _commit(self, fix: PositionFix) -> IngestOutcome:
        if await self.store.insert(fix):
            await self._cache_position(fix)
            return IngestOutcome(fix, created=True)

        # Key already stored: keep the first row and leave the latest snapshot alone.
        logger.debug("Fix %s@%d already stored, absorbed", fix.vehicle_id, fix.timestamp)
        await self._cache_last_seen(fix)
        return IngestOutcome(await self.store.get(fix.vehicle_id, fix.timestamp) or fix, created=False)

    async def get_latest_position(self, vehicle_id: str) -> PositionFix | None:
        cached = await noncritical(
            f"latest position lookup for {vehicle_id}", self.cache.get(LATEST_KEY.format(vehicle_id))
        )
        if cached:
            return PositionFix.model_validate(cached)

        fix = await self.store.latest(vehicle_id)
        if fix is not None:
            await self._cache_position(fix)
        return fix

    async def _cache_position(self, fix: PositionFix) -> None:
        await noncritical(
            f"cache latest position for {fix.vehicle_id}",
            self.cache.set(LATEST_KEY.format(fix.vehicle_id), fix.model_dump(), self.position_ttl),
        )
        await self._cache_last_seen(fix)

    async def _cache_last_seen(self, fix: PositionFix) -> None:
        await noncritical(
            f"cache last-seen for {fix.vehicle_id}",
            self.cache.set(
                LAST_SEEN_KEY.format(fix.vehicle_id),
                {"timestamp_ms": fix.timestamp * 1000},
                self.last_seen_ttl,
            ),
        )
