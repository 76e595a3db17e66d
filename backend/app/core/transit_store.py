"""Read-only queries over route and stop metadata."""

import logging

from sqlalchemy import func, or_, select
from sqlalchemy.exc import InterfaceError, OperationalError

from app.core.errors import StorageError
from app.models.tables import Route, RouteStop, ShapePoint, Stop
from app.schemas.route import RouteInfo, StopInfo

logger = logging.getLogger(__name__)


def _route_info(r: Route) -> RouteInfo:
    return RouteInfo(
        route_id=r.route_id,
        route_short_name=r.route_short_name,
        route_long_name=r.route_long_name,
        route_type=r.route_type,
        route_color=r.route_color,
        route_text_color=r.route_text_color,
    )


def _stop_info(s: Stop) -> StopInfo:
    return StopInfo(
        stop_id=s.stop_id,
        stop_name=s.stop_name,
        stop_lat=s.stop_lat,
        stop_lon=s.stop_lon,
        stop_code=s.stop_code,
        stop_desc=s.stop_desc,
    )


class TransitStore:
    """Route/stop lookups. Connection failures surface as StorageError."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def _scalars(self, stmt) -> list:
        try:
            async with self.session_factory() as session:
                return list((await session.execute(stmt)).scalars().all())
        except (OperationalError, InterfaceError, OSError) as e:
            raise StorageError("Transit database unavailable") from e

    async def list_routes(self) -> list[RouteInfo]:
        rows = await self._scalars(select(Route).order_by(Route.route_short_name))
        return [_route_info(r) for r in rows]

    async def get_route(self, route_id: str) -> RouteInfo | None:
        rows = await self._scalars(select(Route).where(Route.route_id == route_id))
        return _route_info(rows[0]) if rows else None

    async def load_shapes(self) -> dict[str, list[tuple[float, float]]]:
        """All shape vertices grouped by route, in sequence order."""
        rows = await self._scalars(
            select(ShapePoint).order_by(ShapePoint.route_id, ShapePoint.shape_pt_sequence)
        )
        shapes: dict[str, list[tuple[float, float]]] = {}
        for p in rows:
            shapes.setdefault(p.route_id, []).append((p.shape_pt_lat, p.shape_pt_lon))
        return shapes

    async def get_stop(self, stop_id: str) -> StopInfo | None:
        rows = await self._scalars(select(Stop).where(Stop.stop_id == stop_id))
        return _stop_info(rows[0]) if rows else None

    async def search_stops(self, query: str, limit: int) -> list[StopInfo]:
        term = query.lower()
        rows = await self._scalars(
            select(Stop)
            .where(or_(
                func.lower(Stop.stop_name).contains(term, autoescape=True),
                func.lower(Stop.stop_code).contains(term, autoescape=True),
            ))
            .order_by(Stop.stop_name)
            .limit(limit)
        )
        return [_stop_info(s) for s in rows]

    async def route_stops(self, route_id: str, direction_id: int) -> list[StopInfo]:
        rows = await self._scalars(
            select(Stop)
            .join(RouteStop, RouteStop.stop_id == Stop.stop_id)
            .where(RouteStop.route_id == route_id, RouteStop.direction_id == direction_id)
            .order_by(RouteStop.stop_sequence)
        )
        return [_stop_info(s) for s in rows]
