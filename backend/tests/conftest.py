"""Shared fixtures: in-memory stand-ins for the database and the travel-time API."""

import httpx
import pytest

from app.core.broadcaster import Broadcaster
from app.core.cache import MemoryCache
from app.core.container import Services
from app.core.credentials import StaticCredentialResolver
from app.core.errors import StorageError
from app.core.eta_calculator import EtaCalculator
from app.core.gps_ingest import GpsIngestService
from app.core.route_matcher import RouteMatcher
from app.core.training_log import ArrivalSample, day_of_week
from app.core.travel_time import TravelTimeOracle
from app.main import create_app
from app.schemas.position import PositionFix
from app.schemas.route import RouteInfo, StopInfo

API_KEY = "test-device-key"
NOW = 1_700_000_000

ROUTE_1 = RouteInfo(route_id="R1", route_short_name="1", route_long_name="Downtown - Airport")
ROUTE_2 = RouteInfo(route_id="R2", route_short_name="2", route_long_name="Harbor Loop")

# R1 runs east along lat 40.0000; R2 runs east along lat 40.0100
SHAPES = {
    "R1": [(40.0, -74.0), (40.0, -73.995), (40.0, -73.99)],
    "R2": [(40.01, -74.0), (40.01, -73.995), (40.01, -73.99)],
}

STOPS = {
    "S1": StopInfo(stop_id="S1", stop_name="Main St & 1st Ave", stop_lat=40.0, stop_lon=-73.99, stop_code="101"),
    "S2": StopInfo(stop_id="S2", stop_name="Central Station", stop_lat=40.0, stop_lon=-73.995, stop_code="102"),
    "S3": StopInfo(stop_id="S3", stop_name="Harbor Pier", stop_lat=40.01, stop_lon=-73.99, stop_code="201"),
}

ROUTE_STOPS = {
    ("R1", 0): ["S2", "S1"],
    ("R1", 1): ["S1", "S2"],
    ("R2", 0): ["S3"],
}


class FakePositionStore:
    """Enforces the (vehicle_id, timestamp) uniqueness of the real table."""

    def __init__(self):
        self.rows: dict[tuple[str, int], PositionFix] = {}
        self.inserts = 0
        self.fail = False

    async def insert(self, fix):
        if self.fail:
            raise StorageError("Failed to store GPS position")
        self.inserts += 1
        key = (fix.vehicle_id, fix.timestamp)
        if key in self.rows:
            return False
        self.rows[key] = fix
        return True

    async def get(self, vehicle_id, timestamp):
        return self.rows.get((vehicle_id, timestamp))

    async def latest(self, vehicle_id):
        fixes = [f for (v, _), f in self.rows.items() if v == vehicle_id]
        return max(fixes, key=lambda f: f.timestamp) if fixes else None


class FakeTransitStore:
    def __init__(self):
        self.routes = {"R1": ROUTE_1, "R2": ROUTE_2}
        self.shapes = {k: list(v) for k, v in SHAPES.items()}
        self.stops = dict(STOPS)

    async def list_routes(self):
        return sorted(self.routes.values(), key=lambda r: r.route_short_name)

    async def get_route(self, route_id):
        return self.routes.get(route_id)

    async def load_shapes(self):
        return {k: list(v) for k, v in self.shapes.items()}

    async def get_stop(self, stop_id):
        return self.stops.get(stop_id)

    async def search_stops(self, query, limit):
        q = query.lower()
        hits = [
            s for s in self.stops.values()
            if q in s.stop_name.lower() or q in (s.stop_code or "").lower()
        ]
        return sorted(hits, key=lambda s: s.stop_name)[:limit]

    async def route_stops(self, route_id, direction_id):
        return [self.stops[s] for s in ROUTE_STOPS.get((route_id, direction_id), [])]


class FakeOracle(TravelTimeOracle):
    """Returns a fixed travel time, or raises ``error`` when set."""

    def __init__(self, minutes=4.2):
        self.minutes = minutes
        self.error = None
        self.calls = 0

    async def travel_minutes(self, origin_lat, origin_lon, dest_lat, dest_lon):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.minutes


class FakeTrainingLog:
    """Keeps records in insertion order; ``actuals`` maps record index to observed minutes."""

    def __init__(self):
        self.records = []
        self.actuals = {}

    async def record(self, vehicle_id, stop_id, route_id, predicted_minutes, distance_km, at):
        self.records.append((vehicle_id, stop_id, route_id, predicted_minutes, distance_km, at))

    async def update_actual_arrival(self, vehicle_id, stop_id, actual_minutes):
        for i in reversed(range(len(self.records))):
            v, s = self.records[i][:2]
            if (v, s) == (vehicle_id, stop_id) and i not in self.actuals:
                self.actuals[i] = actual_minutes
                return True
        return False

    async def history(self, vehicle_id, stop_id, at, limit=20):
        samples = [
            ArrivalSample(self.records[i][3], actual, self.records[i][5].hour, day_of_week(self.records[i][5]))
            for i, actual in sorted(self.actuals.items(), reverse=True)
            if self.records[i][:2] == (vehicle_id, stop_id)
        ]
        return samples[:limit]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def position_store():
    return FakePositionStore()


@pytest.fixture
def transit_store():
    return FakeTransitStore()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def training_log():
    return FakeTrainingLog()


@pytest.fixture
def ingest(position_store, cache):
    return GpsIngestService(
        store=position_store,
        cache=cache,
        credentials=StaticCredentialResolver({API_KEY: "test"}),
    )


@pytest.fixture
def matcher(transit_store):
    m = RouteMatcher(transit_store)
    for route_id, coords in SHAPES.items():
        m.load_route(transit_store.routes[route_id], coords)
    return m


@pytest.fixture
def eta(ingest, matcher, oracle, cache, training_log):
    return EtaCalculator(
        ingest=ingest,
        matcher=matcher,
        oracle=oracle,
        cache=cache,
        training_log=training_log,
        oracle_timeout=0.5,
        max_batch=3,
        clock=lambda: NOW,
    )


@pytest.fixture
def services(cache, ingest, matcher, eta):
    return Services(cache=cache, ingest=ingest, matcher=matcher, eta=eta, broadcaster=Broadcaster())


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def make_fix(vehicle_id="BUS001", timestamp=NOW, latitude=40.0, longitude=-73.995, **extra):
    return {"vehicle_id": vehicle_id, "timestamp": timestamp, "latitude": latitude, "longitude": longitude, **extra}
