"""Stop REST endpoints."""

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_services
from app.core.container import Services
from app.core.errors import NotFound, ValidationError
from app.schemas.envelope import ApiResponse
from app.schemas.eta import ETAResult
from app.schemas.route import StopInfo

router = APIRouter(prefix="/api/stops", tags=["stops"])


@router.get("", response_model=ApiResponse[list[StopInfo]])
async def search_stops(
    q: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    """Search stops by name or code."""
    if not q:
        raise ValidationError(["q: Search query required"], subject="search")
    return ApiResponse(data=await services.matcher.search_stops(q, limit))


@router.get("/{stop_id}", response_model=ApiResponse[StopInfo])
async def get_stop(stop_id: str, services: Services = Depends(get_services)):
    stop = await services.matcher.get_stop(stop_id)
    if stop is None:
        raise NotFound("Stop not found")
    return ApiResponse(data=stop)


@router.get("/{stop_id}/eta", response_model=ApiResponse[list[ETAResult]])
async def get_stop_etas(stop_id: str, routeId: str | None = None, services: Services = Depends(get_services)):
    """Cached arrivals at this stop."""
    return ApiResponse(data=await services.eta.get_etas_for_stop(stop_id, routeId))
