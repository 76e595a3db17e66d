"""WebSocket endpoint tests."""

from fastapi.testclient import TestClient

from conftest import API_KEY, make_fix


def test_live_updates(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connected"

            ws.send_json({"type": "subscribe", "topics": ["vehicle:BUS001"]})
            assert ws.receive_json() == {"type": "subscribed", "topics": ["vehicle:BUS001"]}

            resp = client.post("/api/gps", json=make_fix(), headers={"x-api-key": API_KEY})
            assert resp.status_code == 201

            event = ws.receive_json()
            assert event["type"] == "position_update"
            assert event["data"] == {
                "vehicle_id": "BUS001",
                "latitude": 40.0,
                "longitude": -73.995,
                "timestamp": 1_700_000_000,
            }


def test_bad_frames_get_error_replies(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()

            ws.send_text("{not json")
            error = ws.receive_json()
            assert error == {"type": "error", "message": "Invalid message format", "timestamp": error["timestamp"]}

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"


def test_eta_updates_reach_stop_subscribers(app, position_store):
    with TestClient(app) as client:
        client.post("/api/gps", json=make_fix(), headers={"x-api-key": API_KEY})

        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "topics": ["stop:S1"]})
            ws.receive_json()

            client.get("/api/eta/BUS001/S1")

            event = ws.receive_json()
            assert event["type"] == "eta_update"
            assert event["data"]["stop_id"] == "S1"
            assert event["data"]["eta_minutes"] == 5


def test_disconnect_releases_subscription(app, services):
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            assert services.broadcaster.subscriber_count == 1
        assert services.broadcaster.subscriber_count == 0
