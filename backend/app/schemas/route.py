from pydantic import BaseModel


class RouteInfo(BaseModel):
    route_id: str
    route_short_name: str
    route_long_name: str = ""
    route_type: int = 3
    route_color: str | None = None
    route_text_color: str | None = None


class RouteMatch(RouteInfo):
    distance_m: float


class StopInfo(BaseModel):
    stop_id: str
    stop_name: str
    stop_lat: float
    stop_lon: float
    stop_code: str | None = None
    stop_desc: str | None = None
