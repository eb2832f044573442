"""
Tests for the HTTP datafeed and the WebSocket stream.

The app is built around an injected Application on a simulated clock, so
timers only move when a test advances them.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from synthmarket.api.server import create_app
from synthmarket.api.stream import ConnectionManager
from synthmarket.core.application import Application

from conftest import MINUTE_MS, START_MS

BASE = "/api/tradingview"


@pytest.fixture
def application(config, scheduler):
    return Application(config, scheduler=scheduler, use_store=False)


@pytest.fixture
def client(application):
    with TestClient(create_app(application)) as client:
        yield client


class TestDatafeed:
    """Charting-library discovery and history endpoints."""

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["engine_running"] is True
        assert body["store_connected"] is False

    def test_config(self, client):
        body = client.get(f"{BASE}/config").json()
        assert body["success"] is True
        assert body["data"]["supported_resolutions"] == ["1", "5", "15", "60", "1D"]

    def test_symbols(self, client):
        data = client.get(f"{BASE}/symbols").json()["data"]
        assert data["ticker"] == "ZPHUSD"
        assert data["pricescale"] == 100
        assert data["session"] == "24x7"

    def test_time(self, client):
        assert isinstance(client.get(f"{BASE}/time").json()["data"], int)

    def test_history_requires_range(self, client):
        response = client.get(f"{BASE}/history", params={"resolution": "1"})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_history_no_data(self, client):
        response = client.get(f"{BASE}/history", params={"resolution": "1", "from": 0, "to": 60})
        assert response.status_code == 200
        assert response.json() == {"s": "no_data", "t": [], "o": [], "h": [], "l": [], "c": [], "v": []}

    def test_history_after_candles(self, client, scheduler):
        scheduler.advance(3 * MINUTE_MS)
        response = client.get(f"{BASE}/history", params={
            "resolution": "1",
            "from": START_MS // 1000,
            "to": (START_MS + 3 * MINUTE_MS) // 1000,
        })
        body = response.json()
        assert body["s"] == "ok"
        assert body["t"] == [START_MS // 1000 + i * 60 for i in range(3)]
        assert len(body["o"]) == len(body["c"]) == len(body["v"]) == 3

    def test_history_countback(self, client, scheduler):
        scheduler.advance(5 * MINUTE_MS)
        body = client.get(f"{BASE}/history", params={
            "resolution": "1", "from": START_MS // 1000, "to": (START_MS + 5 * MINUTE_MS) // 1000, "countback": 2,
        }).json()
        assert body["t"] == [START_MS // 1000 + 180, START_MS // 1000 + 240]

    def test_history_bad_resolution(self, client):
        response = client.get(f"{BASE}/history", params={"resolution": "7", "from": 0, "to": 60})
        assert response.status_code == 400
        assert "Invalid resolution" in response.json()["error"]


class TestLiveState:
    """Price, status and mode endpoints."""

    def test_price(self, client):
        data = client.get(f"{BASE}/price").json()["data"]
        assert data["symbol"] == "ZPHUSD"
        assert data["price"] == 10.0

    def test_status(self, client, scheduler):
        scheduler.advance(2 * MINUTE_MS)
        data = client.get(f"{BASE}/status").json()["data"]
        assert data["isRunning"] is True
        assert data["totalCandles"] == 2
        assert data["mode"] == "auto"
        assert data["regime"] == "accumulation"

    def test_mode(self, client):
        assert client.get(f"{BASE}/mode").json()["data"]["mode"] == "auto"

    def test_generator(self, client):
        data = client.get(f"{BASE}/generator").json()["data"]
        assert data["base_price"] == 10.0
        assert "moving_average" in data

    def test_debug_candles_without_store(self, client, scheduler):
        scheduler.advance(1_000)
        data = client.get(f"{BASE}/debug-candles").json()["data"]
        assert data["stored"] is None
        assert data["resolution"] == "1"
        assert data["liveCandle"]["timestamp"] == START_MS
        assert data["liveCandle"]["open"] == 10.0
        assert data["currentTimeSeconds"] == data["currentTime"] // 1000

    def test_debug_candles_with_store(self, config, scheduler):
        app = Application(config, scheduler=scheduler)
        with TestClient(create_app(app)) as client:
            scheduler.advance(2 * MINUTE_MS)
            data = client.get(f"{BASE}/debug-candles").json()["data"]
        assert data["stored"] == {
            "first_timestamp": START_MS,
            "last_timestamp": START_MS + MINUTE_MS,
            "count": 2,
        }
        assert data["liveCandle"]["timestamp"] == START_MS + 2 * MINUTE_MS


class TestManualControlEndpoints:
    """Create, read and cancel manual controls."""

    def test_create_and_read(self, client):
        response = client.post(f"{BASE}/manual-control", json={
            "direction": "up", "speed": 0.02, "intensity": 1.5, "duration_seconds": 60,
        })
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["direction"] == "up"
        assert body["data"]["expires_at"] == START_MS + 60_000

        assert client.get(f"{BASE}/mode").json()["data"]["mode"] == "manual"
        assert client.get(f"{BASE}/manual-control").json()["data"]["id"] == body["data"]["id"]

    def test_invalid_direction(self, client):
        response = client.post(f"{BASE}/manual-control", json={"direction": "sideways"})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_out_of_range_speed(self, client):
        response = client.post(f"{BASE}/manual-control", json={"direction": "up", "speed": 3})
        assert response.status_code == 400

    def test_missing_direction_is_400(self, client):
        response = client.post(f"{BASE}/manual-control", json={"speed": 0.01})
        assert response.status_code == 400
        assert "direction" in response.json()["error"]

    def test_cancel(self, client):
        client.post(f"{BASE}/manual-control", json={"direction": "down", "duration_seconds": 60})
        body = client.delete(f"{BASE}/manual-control").json()
        assert body["message"] == "Manual control cancelled"
        assert client.get(f"{BASE}/manual-control").json().get("data") is None

    def test_cancel_without_control(self, client):
        assert client.delete(f"{BASE}/manual-control").json()["message"] == "No active manual control"

    def test_manual_candle_in_history(self, client, scheduler):
        client.post(f"{BASE}/manual-control", json={
            "direction": "up", "speed": 0.02, "intensity": 1.5, "duration_seconds": 60,
        })
        scheduler.advance(MINUTE_MS)
        body = client.get(f"{BASE}/history", params={
            "resolution": "1", "from": START_MS // 1000, "to": (START_MS + MINUTE_MS) // 1000,
        }).json()
        assert body["c"][0] >= body["o"][0] * 1.015


class TestParametersAndLifecycle:
    """Generator parameters and engine start/stop."""

    def test_update_parameters(self, client):
        body = client.put(f"{BASE}/parameters", json={"volatility": 0.004}).json()
        assert body["data"]["volatility"] == 0.004

    def test_invalid_parameters(self, client):
        response = client.put(f"{BASE}/parameters", json={"volatility": 2.0})
        assert response.status_code == 400

    def test_reset_trend(self, client):
        assert client.post(f"{BASE}/reset-trend").json()["success"] is True

    def test_stop_and_start(self, client, application):
        assert client.post(f"{BASE}/stop").json()["success"] is True
        assert application.engine.is_running is False
        assert client.post(f"{BASE}/start").json()["success"] is True
        assert application.engine.is_running is True


class TestAutoStartDisabled:
    def test_engine_idle_until_started(self, config, scheduler):
        config.engine.auto_start = False
        application = Application(config, scheduler=scheduler, use_store=False)
        with TestClient(create_app(application)) as client:
            assert client.get("/api/health").json()["engine_running"] is False
            client.post(f"{BASE}/start")
            assert client.get(f"{BASE}/status").json()["data"]["isRunning"] is True


class TestWebSocket:
    """Realtime stream."""

    def test_connect_and_ping(self, client):
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["event"] == "connected"
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["event"] == "pong"

    def test_subscribe(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe", "symbol": "ZPHUSD"})
            message = ws.receive_json()
            assert message == {"event": "subscribed", "data": {"symbol": "ZPHUSD"}}

    def test_unknown_message(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("not json")
            assert ws.receive_json()["event"] == "error"

    def test_live_tick_broadcast(self, client, scheduler):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            scheduler.advance(1_000)
            message = ws.receive_json()
            assert message["event"] == "live_ohlc"
            assert message["data"]["timestamp"] == START_MS
            assert message["data"]["timeRemaining"] == 59


class TestConnectionManager:
    """Broadcast scheduling outside a request."""

    def test_broadcast_task_tracked_until_sent(self):
        async def scenario():
            manager = ConnectionManager()
            manager.bind_loop(asyncio.get_running_loop())
            websocket = AsyncMock()
            manager.active_connections.append(websocket)

            manager.broadcast("price_update", {"price": 10.0})
            for _ in range(10):
                await asyncio.sleep(0)
            return manager, websocket

        manager, websocket = asyncio.run(scenario())
        websocket.send_text.assert_awaited_once_with(
            json.dumps({"event": "price_update", "data": {"price": 10.0}})
        )
        assert manager._pending == set()

    def test_broadcast_without_clients_is_noop(self):
        manager = ConnectionManager()
        manager.bind_loop(MagicMock())
        manager.broadcast("price_update", {})
        manager._loop.call_soon_threadsafe.assert_not_called()
