"""ETA REST endpoints."""

from fastapi import APIRouter, Depends, Header

from app.api.deps import get_services
from app.core.container import Services
from app.core.errors import Unauthorized
from app.core.noncritical import noncritical
from app.schemas.envelope import ApiResponse
from app.schemas.eta import AdjustedETAResult, ArrivalReport, ETAResult, EtaBatchRequest

router = APIRouter(prefix="/api/eta", tags=["eta"])


# Declared before /{vehicle_id}/{stop_id}, which would otherwise capture it
@router.get("/stop/{stop_id}", response_model=ApiResponse[list[ETAResult]])
async def get_stop_etas(stop_id: str, routeId: str | None = None, services: Services = Depends(get_services)):
    """Cached arrivals for all vehicles approaching a stop."""
    return ApiResponse(data=await services.eta.get_etas_for_stop(stop_id, routeId))


@router.post("/batch", response_model=ApiResponse[list[ETAResult]])
async def batch_etas(body: EtaBatchRequest, services: Services = Depends(get_services)):
    """ETAs for several vehicle/stop pairs, computed concurrently."""
    return ApiResponse(data=await services.eta.calculate_batch(body.requests))


@router.get("/{vehicle_id}/{stop_id}", response_model=ApiResponse[ETAResult])
async def get_eta(vehicle_id: str, stop_id: str, services: Services = Depends(get_services)):
    """ETA for one vehicle to one stop."""
    result = await services.eta.calculate_eta(vehicle_id, stop_id)
    if not result.cached:
        await noncritical(
            f"ETA broadcast for stop {stop_id}",
            services.broadcaster.broadcast("eta_update", result.model_dump(mode="json"), topic=f"stop:{stop_id}"),
        )
    return ApiResponse(data=result)


@router.get("/{vehicle_id}/{stop_id}/adjusted", response_model=ApiResponse[AdjustedETAResult])
async def get_adjusted_eta(vehicle_id: str, stop_id: str, services: Services = Depends(get_services)):
    """ETA blended with recorded arrival history for this vehicle and stop."""
    return ApiResponse(data=await services.eta.calculate_adjusted_eta(vehicle_id, stop_id))


@router.post("/arrivals", status_code=201, response_model=ApiResponse[ArrivalReport])
async def report_arrival(
    body: ArrivalReport,
    x_api_key: str | None = Header(default=None),
    services: Services = Depends(get_services),
):
    """Record how long a vehicle actually took to reach a stop."""
    if not x_api_key or await services.ingest.credentials.resolve(x_api_key) is None:
        raise Unauthorized("Invalid API key")
    await services.eta.record_arrival(body.vehicle_id, body.stop_id, body.actual_minutes)
    return ApiResponse(data=body, message="Arrival recorded")
