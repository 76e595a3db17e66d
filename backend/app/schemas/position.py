from pydantic import BaseModel, ConfigDict, Field


class PositionFix(BaseModel):
    """One GPS observation. Doubles as the strict ingest validator."""

    model_config = ConfigDict(strict=True, frozen=True, extra="ignore", allow_inf_nan=False)

    vehicle_id: str = Field(min_length=1)
    timestamp: int = Field(gt=0)  # Unix seconds, caller supplied
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    speed: float | None = Field(default=None, ge=0, le=200)  # km/h
    heading: float | None = Field(default=None, ge=0, lt=360)  # degrees
    accuracy: float | None = Field(default=None, ge=0)  # meters


class PositionAccepted(BaseModel):
    vehicle_id: str


class PositionUpdateEvent(BaseModel):
    vehicle_id: str
    latitude: float
    longitude: float
    timestamp: int
