import datetime
from enum import Enum

from pydantic import BaseModel, Field


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ETAResult(BaseModel):
    vehicle_id: str
    stop_id: str
    route_id: str | None = None
    eta_minutes: int
    eta_timestamp: datetime.datetime
    confidence: Confidence
    cached: bool = False


class EtaPair(BaseModel):
    vehicle_id: str = Field(min_length=1)
    stop_id: str = Field(min_length=1)


class EtaBatchRequest(BaseModel):
    requests: list[EtaPair]


class AdjustedETAResult(ETAResult):
    """ETA blended with observed arrivals for the same vehicle/stop pair."""

    base_eta_minutes: int
    adjustment_minutes: int
    samples: int


class ArrivalReport(BaseModel):
    vehicle_id: str = Field(min_length=1)
    stop_id: str = Field(min_length=1)
    actual_minutes: float = Field(ge=0)
