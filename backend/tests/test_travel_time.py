"""Tests for the travel-time oracles."""

import httpx
import pytest

from app.core.errors import NotFound, RateLimited, UpstreamError
from app.core.travel_time import DirectionsApiOracle, StraightLineOracle, create_oracle

URL = "https://maps.example.com/directions/json"


def _oracle(handler) -> DirectionsApiOracle:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DirectionsApiOracle("test-key", URL, client=client)


def _ok(leg: dict) -> dict:
    return {"status": "OK", "routes": [{"legs": [leg]}]}


@pytest.mark.anyio
async def test_prefers_duration_in_traffic():
    seen = []

    def handler(request):
        seen.append(request.url.params)
        return httpx.Response(200, json=_ok({
            "duration": {"value": 480},
            "duration_in_traffic": {"value": 600},
        }))

    minutes = await _oracle(handler).travel_minutes(40.0, -73.995, 40.0, -73.99)

    assert minutes == 10.0
    assert seen[0]["origin"] == "40.0,-73.995"
    assert seen[0]["destination"] == "40.0,-73.99"
    assert seen[0]["departure_time"] == "now"
    assert seen[0]["key"] == "test-key"


@pytest.mark.anyio
async def test_plain_duration():
    oracle = _oracle(lambda request: httpx.Response(200, json=_ok({"duration": {"value": 90}})))
    assert await oracle.travel_minutes(0, 0, 0, 0) == 1.5


@pytest.mark.anyio
@pytest.mark.parametrize("body,error", [
    ({"status": "ZERO_RESULTS", "routes": []}, NotFound),
    ({"status": "OK", "routes": []}, NotFound),
    ({"status": "OVER_QUERY_LIMIT"}, RateLimited),
    ({"status": "REQUEST_DENIED"}, UpstreamError),
    (_ok({"distance": {"value": 1000}}), UpstreamError),
    ({"status": "OK", "routes": "bad"}, UpstreamError),
    ({"status": "OK", "routes": [None]}, UpstreamError),
    ({"status": "OK", "routes": [{"legs": ["x"]}]}, UpstreamError),
    ({"status": "OK", "routes": [{"legs": "x"}]}, UpstreamError),
    ({"status": "OK", "routes": [{"legs": []}]}, NotFound),
])
async def test_api_statuses(body, error):
    oracle = _oracle(lambda request: httpx.Response(200, json=body))
    with pytest.raises(error):
        await oracle.travel_minutes(0, 0, 0, 0)


@pytest.mark.anyio
@pytest.mark.parametrize("status,error", [(429, RateLimited), (500, UpstreamError), (403, UpstreamError)])
async def test_http_errors(status, error):
    oracle = _oracle(lambda request: httpx.Response(status))
    with pytest.raises(error):
        await oracle.travel_minutes(0, 0, 0, 0)


@pytest.mark.anyio
async def test_timeout_and_transport_errors():
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    def refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError, match="timed out"):
        await _oracle(timeout).travel_minutes(0, 0, 0, 0)
    with pytest.raises(UpstreamError):
        await _oracle(refused).travel_minutes(0, 0, 0, 0)


@pytest.mark.anyio
async def test_malformed_json():
    oracle = _oracle(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(UpstreamError):
        await oracle.travel_minutes(0, 0, 0, 0)


@pytest.mark.anyio
async def test_straight_line_speed():
    oracle = StraightLineOracle(speed_kmh=20)
    # One degree of latitude is ~111.2 km: ~333.6 minutes at 20 km/h
    minutes = await oracle.travel_minutes(40.0, -74.0, 41.0, -74.0)
    assert 333 < minutes < 334.5


def test_straight_line_speed_floor():
    assert StraightLineOracle(speed_kmh=0).speed_kmh == 5.0


def test_create_oracle_without_key():
    assert isinstance(create_oracle("", URL, 5.0, 20.0), StraightLineOracle)
