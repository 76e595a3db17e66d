"""GPS ingest REST endpoints."""

from typing import Any

from fastapi import APIRouter, Body, Depends, Header

from app.api.deps import get_services
from app.core.container import Services
from app.core.errors import NotFound
from app.core.noncritical import noncritical
from app.schemas.envelope import ApiResponse
from app.schemas.position import PositionAccepted, PositionFix, PositionUpdateEvent

router = APIRouter(prefix="/api/gps", tags=["gps"])


@router.post("", status_code=201, response_model=ApiResponse[PositionAccepted])
async def receive_fix(
    payload: Any = Body(default=None),
    x_api_key: str | None = Header(default=None),
    services: Services = Depends(get_services),
):
    """Receive a GPS update from a vehicle tracking device."""
    outcome = await services.ingest.process(payload, x_api_key)
    fix = outcome.fix

    # A fix storage already held is not news to subscribers
    if outcome.created:
        event = PositionUpdateEvent(
            vehicle_id=fix.vehicle_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            timestamp=fix.timestamp,
        )
        await noncritical(
            f"position broadcast for {fix.vehicle_id}",
            services.broadcaster.broadcast("position_update", event.model_dump(), topic=f"vehicle:{fix.vehicle_id}"),
        )

    return ApiResponse(data=PositionAccepted(vehicle_id=fix.vehicle_id), message="GPS update received")


@router.get("/{vehicle_id}", response_model=ApiResponse[PositionFix])
async def get_latest_position(vehicle_id: str, services: Services = Depends(get_services)):
    """Latest known position for a vehicle."""
    fix = await services.ingest.get_latest_position(vehicle_id)
    if fix is None:
        raise NotFound("Position not found for vehicle")
    return ApiResponse(data=fix)
