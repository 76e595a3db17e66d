"""Route REST endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends

from app.api.deps import get_services
from app.core.container import Services
from app.core.errors import NotFound
from app.schemas.envelope import ApiResponse
from app.schemas.route import RouteInfo, StopInfo

router = APIRouter(prefix="/api/routes", tags=["routes"])


@router.get("", response_model=ApiResponse[list[RouteInfo]])
async def list_routes(services: Services = Depends(get_services)):
    return ApiResponse(data=await services.matcher.list_routes())


@router.get("/{route_id}", response_model=ApiResponse[RouteInfo])
async def get_route(route_id: str, services: Services = Depends(get_services)):
    route = await services.matcher.get_route(route_id)
    if route is None:
        raise NotFound("Route not found")
    return ApiResponse(data=route)


@router.get("/{route_id}/stops", response_model=ApiResponse[list[StopInfo]])
async def get_route_stops(
    route_id: str,
    direction: Literal["outbound", "inbound"] = "outbound",
    services: Services = Depends(get_services),
):
    """Stops of a route in sequence order."""
    return ApiResponse(data=await services.matcher.get_route_stops(route_id, direction))
