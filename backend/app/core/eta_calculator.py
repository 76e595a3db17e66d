"""Arrival estimates for a vehicle at a stop, with caching and stale fallback.

Per request: fresh cache hit → return it; otherwise compute from the latest
fix, the stop and the travel-time oracle. If computing fails, a
last-known-good result (kept under a longer-lived stale key) is served
with ``confidence=low``; without one the failure propagates.
"""

import asyncio
import datetime
import logging
import math
import time
from collections.abc import Callable, Iterable

from app.core.cache import Cache
from app.core.errors import NotFound, UpstreamError, ValidationError
from app.core.gps_ingest import GpsIngestService
from app.core.noncritical import noncritical
from app.core.route_matcher import RouteMatcher, haversine_m
from app.core.training_log import TrainingLog
from app.core.travel_time import TravelTimeOracle
from app.schemas.eta import AdjustedETAResult, Confidence, ETAResult, EtaPair
from app.schemas.position import PositionFix
from app.schemas.route import StopInfo

logger = logging.getLogger(__name__)

ETA_KEY = "eta:{}:{}"
STALE_ETA_KEY = "eta:stale:{}:{}"
STOP_ETAS_KEY = "stop:etas:{}"

# Position age thresholds (minutes) for confidence grading
HIGH_CONFIDENCE_MAX_AGE_MIN = 5
MEDIUM_CONFIDENCE_MAX_AGE_MIN = 10


def confidence_for_age(age_minutes: float) -> Confidence:
    if age_minutes <= HIGH_CONFIDENCE_MAX_AGE_MIN:
        return Confidence.HIGH
    if age_minutes <= MEDIUM_CONFIDENCE_MAX_AGE_MIN:
        return Confidence.MEDIUM
    return Confidence.LOW


def round_minutes(minutes: float) -> int:
    """Nearest whole minute, halves rounded up."""
    return int(math.floor(minutes + 0.5))


# Each closed sample adds 0.1 weight to history, capped here
MAX_HISTORY_WEIGHT = 0.5

_CONFIDENCE_ORDER = [Confidence.LOW, Confidence.MEDIUM, Confidence.HIGH]


def time_of_day_factor(hour: int) -> float:
    """Rush hours (7-9, 17-19) run 15% longer, late night (23-5) 10% shorter."""
    if 7 <= hour < 9 or 17 <= hour < 19:
        return 1.15
    if hour >= 23 or hour < 5:
        return 0.9
    return 1.0


def history_confidence(samples: int) -> Confidence:
    if samples < 2:
        return Confidence.LOW
    if samples < 5:
        return Confidence.MEDIUM
    return Confidence.HIGH


def blend_with_history(base_minutes: int, actual_minutes: list[float], hour: int) -> int:
    """Weighted mix of the live estimate and observed arrivals, scaled for time of day.

    Without history the live estimate is returned unchanged. Never below one minute.
    """
    if not actual_minutes:
        return max(1, base_minutes)
    weight = min(len(actual_minutes) / 10, MAX_HISTORY_WEIGHT)
    historical = round_minutes(sum(actual_minutes) / len(actual_minutes))
    blended = round_minutes(base_minutes * (1 - weight) + historical * weight)
    return max(1, round_minutes(blended * time_of_day_factor(hour)))


class EtaCalculator:
    """Graded ETA computation on top of ingest, route matching and an oracle."""

    def __init__(
        self,
        ingest: GpsIngestService,
        matcher: RouteMatcher,
        oracle: TravelTimeOracle,
        cache: Cache,
        training_log: TrainingLog | None = None,
        cache_ttl: int = 30,
        stale_ttl: int = 3600,
        safety_buffer_minutes: float = 1.0,
        oracle_timeout: float = 5.0,
        max_batch: int = 50,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ingest = ingest
        self.matcher = matcher
        self.oracle = oracle
        self.cache = cache
        self.training_log = training_log
        self.cache_ttl = cache_ttl
        self.stale_ttl = stale_ttl
        self.safety_buffer_minutes = safety_buffer_minutes
        self.oracle_timeout = oracle_timeout
        self.max_batch = max_batch
        self.clock = clock

    async def calculate_eta(self, vehicle_id: str, stop_id: str) -> ETAResult:
        key = ETA_KEY.format(vehicle_id, stop_id)
        cached = await noncritical(f"ETA cache read {key}", self.cache.get(key))
        if cached:
            logger.debug("ETA cache hit for %s -> %s", vehicle_id, stop_id)
            return ETAResult.model_validate({**cached, "cached": True})

        try:
            result, position, stop = await self._compute(vehicle_id, stop_id)
        except Exception as e:
            logger.error("ETA calculation error for %s -> %s: %s", vehicle_id, stop_id, e)
            stale = await noncritical(
                f"stale ETA read {key}", self.cache.get(STALE_ETA_KEY.format(vehicle_id, stop_id))
            )
            if stale:
                logger.warning("Returning stale ETA for %s -> %s", vehicle_id, stop_id)
                return ETAResult.model_validate({**stale, "cached": True, "confidence": Confidence.LOW})
            raise

        await self._remember(result, position, stop)
        logger.info(
            "ETA calculated for %s -> %s: %d minutes (%s)",
            vehicle_id, stop_id, result.eta_minutes, result.confidence.value,
        )
        return result

    async def _compute(self, vehicle_id: str, stop_id: str) -> tuple[ETAResult, PositionFix, StopInfo]:
        position = await self.ingest.get_latest_position(vehicle_id)
        if position is None:
            raise NotFound(f"No position found for vehicle {vehicle_id}")

        stop = await self.matcher.get_stop(stop_id)
        if stop is None:
            raise NotFound(f"Stop {stop_id} not found")

        route = self.matcher.map_to_route(position.latitude, position.longitude)

        try:
            raw_minutes = await asyncio.wait_for(
                self.oracle.travel_minutes(
                    position.latitude, position.longitude, stop.stop_lat, stop.stop_lon,
                ),
                timeout=self.oracle_timeout,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamError("Travel-time service timed out") from e

        buffered = raw_minutes + self.safety_buffer_minutes
        now = self.clock()
        age_minutes = max(0.0, now - position.timestamp) / 60

        result = ETAResult(
            vehicle_id=vehicle_id,
            stop_id=stop_id,
            route_id=route.route_id if route else None,
            eta_minutes=round_minutes(buffered),
            eta_timestamp=datetime.datetime.fromtimestamp(now + buffered * 60, tz=datetime.timezone.utc),
            confidence=confidence_for_age(age_minutes),
            cached=False,
        )
        return result, position, stop

    async def _remember(self, result: ETAResult, position: PositionFix, stop: StopInfo) -> None:
        payload = result.model_dump(mode="json")
        await noncritical(
            "ETA cache write",
            self.cache.set(ETA_KEY.format(result.vehicle_id, result.stop_id), payload, self.cache_ttl),
        )
        await noncritical(
            "stale ETA write",
            self.cache.set(STALE_ETA_KEY.format(result.vehicle_id, result.stop_id), payload, self.stale_ttl),
        )
        await noncritical("stop ETA batch merge", self._merge_stop_batch(payload))

        if self.training_log is not None:
            distance_km = haversine_m(
                position.latitude, position.longitude, stop.stop_lat, stop.stop_lon,
            ) / 1000
            await noncritical(
                "ETA training record",
                self.training_log.record(
                    result.vehicle_id, result.stop_id, result.route_id, result.eta_minutes,
                    distance_km, datetime.datetime.fromtimestamp(self.clock(), tz=datetime.timezone.utc),
                ),
            )

    async def _merge_stop_batch(self, payload: dict) -> None:
        """Fold one result into the per-stop side-channel batch (last writer wins)."""
        key = STOP_ETAS_KEY.format(payload["stop_id"])
        now = datetime.datetime.fromtimestamp(self.clock(), tz=datetime.timezone.utc)
        batch = [
            e for e in (await self.cache.get(key) or [])
            if e["vehicle_id"] != payload["vehicle_id"]
            and datetime.datetime.fromisoformat(e["eta_timestamp"]) >= now
        ]
        batch.append(payload)
        batch.sort(key=lambda e: e["eta_minutes"])
        await self.cache.set(key, batch, self.cache_ttl)

    async def get_etas_for_stop(self, stop_id: str, route_id: str | None = None) -> list[ETAResult]:
        """Cached arrivals at a stop. Only results already computed elsewhere are returned."""
        batch = await noncritical(
            f"stop ETA batch read {stop_id}", self.cache.get(STOP_ETAS_KEY.format(stop_id)), default=[],
        )
        results = [ETAResult.model_validate({**e, "cached": True}) for e in batch or []]
        if route_id is not None:
            results = [r for r in results if r.route_id == route_id]
        return results

    async def calculate_etas_for_stops(self, vehicle_id: str, stop_ids: Iterable[str]) -> list[ETAResult]:
        """One vehicle against several stops; failed stops are left out."""
        outcomes = await asyncio.gather(
            *(self.calculate_eta(vehicle_id, s) for s in stop_ids), return_exceptions=True,
        )
        return [o for o in outcomes if isinstance(o, ETAResult)]

    async def calculate_batch(self, pairs: list[EtaPair]) -> list[ETAResult]:
        """Compute pairs concurrently; the first failure fails the batch."""
        if len(pairs) > self.max_batch:
            raise ValidationError([f"at most {self.max_batch} requests per batch"], subject="batch request")
        return list(await asyncio.gather(
            *(self.calculate_eta(p.vehicle_id, p.stop_id) for p in pairs)
        ))

    async def calculate_adjusted_eta(self, vehicle_id: str, stop_id: str) -> AdjustedETAResult:
        """Live ETA blended with recorded arrivals for the pair.

        Confidence is the lower of the live estimate's and the one implied by
        the number of history samples.
        """
        base = await self.calculate_eta(vehicle_id, stop_id)
        at = datetime.datetime.fromtimestamp(self.clock(), tz=datetime.timezone.utc)

        samples = []
        if self.training_log is not None:
            samples = await noncritical(
                f"arrival history {vehicle_id} -> {stop_id}",
                self.training_log.history(vehicle_id, stop_id, at),
                default=[],
            ) or []

        minutes = blend_with_history(base.eta_minutes, [s.actual_minutes for s in samples], at.hour)
        adjustment = minutes - base.eta_minutes
        logger.debug(
            "Adjusted ETA for %s -> %s: %d -> %d minutes from %d samples",
            vehicle_id, stop_id, base.eta_minutes, minutes, len(samples),
        )
        return AdjustedETAResult(
            **base.model_dump(exclude={"eta_minutes", "eta_timestamp", "confidence"}),
            eta_minutes=minutes,
            eta_timestamp=base.eta_timestamp + datetime.timedelta(minutes=adjustment),
            confidence=min(base.confidence, history_confidence(len(samples)), key=_CONFIDENCE_ORDER.index),
            base_eta_minutes=base.eta_minutes,
            adjustment_minutes=adjustment,
            samples=len(samples),
        )

    async def record_arrival(self, vehicle_id: str, stop_id: str, actual_minutes: float) -> None:
        """Attach an observed travel time to the newest open prediction for the pair."""
        if self.training_log is None or not await self.training_log.update_actual_arrival(
            vehicle_id, stop_id, actual_minutes,
        ):
            raise NotFound(f"No open prediction for {vehicle_id} -> {stop_id}")
