"""Travel-time oracles: coordinate pair in, driving minutes out."""

import abc
import logging

import httpx

from app.core.errors import NotFound, RateLimited, UpstreamError
from app.core.route_matcher import haversine_m

logger = logging.getLogger(__name__)

# Minimum speed to use for straight-line estimates (km/h)
MIN_SPEED_KMH = 5.0

_NOT_FOUND_STATUSES = {"ZERO_RESULTS", "NOT_FOUND"}
_RATE_LIMIT_STATUSES = {"OVER_QUERY_LIMIT", "OVER_DAILY_LIMIT"}


class TravelTimeOracle(abc.ABC):
    @abc.abstractmethod
    async def travel_minutes(
        self, origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float,
    ) -> float:
        """Estimated driving time in (fractional) minutes."""

    async def close(self) -> None:
        return None


class DirectionsApiOracle(TravelTimeOracle):
    """Google Directions API with live traffic, one attempt per call."""

    def __init__(self, api_key: str, base_url: str, timeout: float = 5.0,
                 client: httpx.AsyncClient | None = None) -> None:
        self._api_key = api_key
        self._url = base_url
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def travel_minutes(
        self, origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float,
    ) -> float:
        params = {
            "origin": f"{origin_lat},{origin_lon}",
            "destination": f"{dest_lat},{dest_lon}",
            "mode": "driving",
            "departure_time": "now",
            "traffic_model": "best_guess",
            "key": self._api_key,
        }
        try:
            resp = await self._client.get(self._url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            logger.error("Directions API timed out: %s", type(e).__name__)
            raise UpstreamError("Travel-time service timed out") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                logger.error("Directions API rate limit exceeded")
                raise RateLimited("API rate limit exceeded") from e
            logger.error("Directions API returned HTTP %d", e.response.status_code)
            raise UpstreamError("Failed to get ETA from travel-time service") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Directions API request failed: %s", e)
            raise UpstreamError("Failed to get ETA from travel-time service") from e

        return self._parse_minutes(data)

    @staticmethod
    def _parse_minutes(data) -> float:
        status = data.get("status") if isinstance(data, dict) else None
        if status in _RATE_LIMIT_STATUSES:
            logger.error("Directions API quota exhausted: %s", status)
            raise RateLimited("API rate limit exceeded")
        if status in _NOT_FOUND_STATUSES:
            raise NotFound("No route found")
        if status != "OK":
            logger.error("Directions API error status: %s", status)
            raise UpstreamError(f"Travel-time service error: {status}")

        routes = data.get("routes") or []
        if not isinstance(routes, list):
            raise UpstreamError("Malformed travel-time response")
        if not routes:
            raise NotFound("No route found")
        if not isinstance(routes[0], dict):
            raise UpstreamError("Malformed travel-time response")
        legs = routes[0].get("legs")
        if not legs:
            raise NotFound("No route found")
        if not isinstance(legs, list) or not isinstance(legs[0], dict):
            raise UpstreamError("Malformed travel-time response")
        leg = legs[0]
        try:
            seconds = (leg.get("duration_in_traffic") or leg["duration"])["value"]
            return float(seconds) / 60
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError("Malformed travel-time response") from e


class StraightLineOracle(TravelTimeOracle):
    """Great-circle distance at a fixed average speed. Used when no API key is set."""

    def __init__(self, speed_kmh: float = 20.0) -> None:
        self.speed_kmh = max(speed_kmh, MIN_SPEED_KMH)

    async def travel_minutes(
        self, origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float,
    ) -> float:
        meters = haversine_m(origin_lat, origin_lon, dest_lat, dest_lon)
        return meters / (self.speed_kmh / 3.6) / 60


def create_oracle(api_key: str, base_url: str, timeout: float, fallback_speed_kmh: float) -> TravelTimeOracle:
    if api_key:
        return DirectionsApiOracle(api_key, base_url, timeout=timeout)
    logger.warning("No directions API key configured - using straight-line travel times")
    return StraightLineOracle(fallback_speed_kmh)
