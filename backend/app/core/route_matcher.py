"""Map GPS positions to routes and look up stop metadata."""

import logging
import math
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from app.core.transit_store import TransitStore
from app.schemas.route import RouteInfo, RouteMatch, StopInfo

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000
# Meridian arc length of one degree of latitude
M_PER_DEG_LAT = EARTH_RADIUS_M * math.pi / 180

DEFAULT_TOLERANCE_M = 50.0
# Stops closer than this are treated as already reached
UPCOMING_STOP_MIN_DISTANCE_M = 100.0

DIRECTIONS = {"outbound": 0, "inbound": 1}


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.asin(min(1.0, math.sqrt(a)))


@dataclass
class RouteShape:
    route: RouteInfo
    points: list[tuple[float, float]]  # [(lat, lon), ...]
    min_lat: float
    max_lat: float


class RouteMatcher:
    """Nearest-route resolution over shape vertices plus stop lookups.

    Shape vertices are kept in memory and reloaded by ``refresh``; stops and
    routes are read from the store on every call.
    """

    def __init__(self, store: TransitStore, tolerance_m: float = DEFAULT_TOLERANCE_M) -> None:
        self.store = store
        self.tolerance_m = tolerance_m
        self._shapes: dict[str, RouteShape] = {}

    @property
    def route_count(self) -> int:
        return len(self._shapes)

    def load_route(self, route: RouteInfo, coords: list[tuple[float, float]]) -> None:
        """Load one route's shape. coords = [(lat, lon), ...]"""
        if not coords:
            return
        lats = [c[0] for c in coords]
        self._shapes[route.route_id] = RouteShape(
            route=route, points=list(coords), min_lat=min(lats), max_lat=max(lats),
        )

    async def refresh(self) -> None:
        """Reload every route shape from storage, swapping the index in one step."""
        try:
            routes = {r.route_id: r for r in await self.store.list_routes()}
            shapes = await self.store.load_shapes()
        except Exception:
            logger.exception("Failed to refresh route shapes - keeping %d loaded", len(self._shapes))
            return

        previous, self._shapes = self._shapes, {}
        for route_id, coords in shapes.items():
            route = routes.get(route_id)
            if route is None:
                logger.warning("Shape references unknown route %s, skipped", route_id)
                continue
            self.load_route(route, coords)
        logger.info(
            "Loaded shapes for %d routes (%d points), previously %d",
            len(self._shapes), sum(len(s.points) for s in self._shapes.values()), len(previous),
        )

    def map_to_route(self, lat: float, lon: float, tolerance_m: float | None = None) -> RouteMatch | None:
        """Closest route with a shape vertex within tolerance, or None.

        Equal distances resolve to the smallest route_id.
        """
        tol = self.tolerance_m if tolerance_m is None else tolerance_m
        margin_deg = tol / M_PER_DEG_LAT

        best: tuple[float, str] | None = None
        for route_id, shape in self._shapes.items():
            if lat < shape.min_lat - margin_deg or lat > shape.max_lat + margin_deg:
                continue
            nearest = min(haversine_m(lat, lon, p[0], p[1]) for p in shape.points)
            if nearest <= tol and (best is None or (nearest, route_id) < best):
                best = (nearest, route_id)

        if best is None:
            return None
        distance, route_id = best
        return RouteMatch(**self._shapes[route_id].route.model_dump(), distance_m=distance)

    async def get_route(self, route_id: str) -> RouteInfo | None:
        try:
            return await self.store.get_route(route_id)
        except SQLAlchemyError:
            logger.exception("Failed to get route %s", route_id)
            return None

    async def list_routes(self) -> list[RouteInfo]:
        try:
            return await self.store.list_routes()
        except SQLAlchemyError:
            logger.exception("Failed to get all routes")
            return []

    async def get_stop(self, stop_id: str) -> StopInfo | None:
        try:
            return await self.store.get_stop(stop_id)
        except SQLAlchemyError:
            logger.exception("Failed to get stop %s", stop_id)
            return None

    async def search_stops(self, query: str, limit: int = 20) -> list[StopInfo]:
        """Case-insensitive substring match on stop name or code, ordered by name."""
        if not query:
            return []
        try:
            return await self.store.search_stops(query, limit)
        except SQLAlchemyError:
            logger.exception("Failed to search stops for %r", query)
            return []

    async def get_route_stops(self, route_id: str, direction: str = "outbound") -> list[StopInfo]:
        """Stops of one route direction in sequence order."""
        try:
            return await self.store.route_stops(route_id, DIRECTIONS[direction])
        except SQLAlchemyError:
            logger.exception("Failed to get stops for route %s", route_id)
            return []

    async def get_upcoming_stops(
        self,
        route_id: str,
        lat: float,
        lon: float,
        direction: str = "outbound",
        limit: int = 5,
    ) -> list[StopInfo]:
        """Stops on the route not yet reached, nearest first."""
        stops = await self.get_route_stops(route_id, direction)
        ranked = sorted(
            (d, i, s) for i, s in enumerate(stops)
            if (d := haversine_m(lat, lon, s.stop_lat, s.stop_lon)) > UPCOMING_STOP_MIN_DISTANCE_M
        )
        return [s for _, _, s in ranked[:limit]]
