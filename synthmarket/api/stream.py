"""
WebSocket fan-out of engine output.

Protocol (JSON text frames):
- server -> client: {"event": name, "data": payload}
  events: connected, subscribed, unsubscribed, pong, live_ohlc,
  price_update, candle_update, system_status, mode_change,
  regime_change, manual_control, market_event
- client -> server: {"type": "subscribe" | "unsubscribe", "symbol": ...}
  and {"type": "ping"}

Engine callbacks are synchronous and may run on any thread, so broadcast()
only enqueues onto the server's event loop; sending happens there.
"""

import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..engine.types import Candle, EngineEvent, LiveOHLCSnapshot
from ..utils.logger import get_logger

router = APIRouter(tags=["stream"])


class ConnectionManager:
    """Tracks WebSocket clients and broadcasts engine output to them."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self.subscriptions: Dict[int, Set[str]] = {}
        self.logger = get_logger()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # The loop only holds weak references to tasks
        self._pending: Set[asyncio.Task] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the loop that owns the sockets."""
        self._loop = loop

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)
        self.subscriptions[id(websocket)] = set()
        await self.send_personal_message(
            {"event": "connected", "data": {"message": "Connected to synthetic market feed", "timestamp": _now_ms()}},
            websocket,
        )

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        self.subscriptions.pop(id(websocket), None)

    async def send_personal_message(self, message: dict, websocket: WebSocket) -> None:
        try:
            await websocket.send_text(json.dumps(message))
        except Exception as e:
            self.logger.error(f"Error sending WebSocket message: {e}")
            self.disconnect(websocket)

    async def _send_all(self, message: dict) -> None:
        tasks = [self.send_personal_message(message, ws) for ws in self.active_connections.copy()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def broadcast(self, event: str, data: Any) -> None:
        """Queue a message for every connected client. Thread-safe."""
        if self._loop is None or self._loop.is_closed() or not self.active_connections:
            return
        message = {"event": event, "data": data}
        self._loop.call_soon_threadsafe(self._schedule_send, message)

    def _schedule_send(self, message: dict) -> None:
        task = self._loop.create_task(self._send_all(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def handle_client_message(self, websocket: WebSocket, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            await self.send_personal_message({"event": "error", "data": {"error": "Invalid JSON"}}, websocket)
            return
        if not isinstance(message, dict):
            await self.send_personal_message({"event": "error", "data": {"error": "Expected an object"}}, websocket)
            return

        kind = message.get("type")
        symbol = message.get("symbol")
        subscribed = self.subscriptions.setdefault(id(websocket), set())

        if kind == "ping":
            await self.send_personal_message({"event": "pong", "data": {"timestamp": _now_ms()}}, websocket)
        elif kind == "subscribe" and symbol:
            subscribed.add(str(symbol).upper())
            await self.send_personal_message({"event": "subscribed", "data": {"symbol": symbol}}, websocket)
        elif kind == "unsubscribe" and symbol:
            subscribed.discard(str(symbol).upper())
            await self.send_personal_message({"event": "unsubscribed", "data": {"symbol": symbol}}, websocket)
        else:
            await self.send_personal_message(
                {"event": "error", "data": {"error": f"Unknown message type: {kind!r}"}}, websocket
            )

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)

    # ==================== Engine subscribers ====================

    def attach(self, engine) -> None:
        """Register this manager's callbacks on an engine."""
        engine.on_live_tick(self.on_live_tick)
        engine.on_price_update(self.on_price_update)
        engine.on_candle_close(self.on_candle_close)
        engine.on_regime_or_mode_change(self.on_engine_event)

    def on_live_tick(self, snapshot: LiveOHLCSnapshot) -> None:
        self.broadcast("live_ohlc", snapshot.to_dict())

    def on_price_update(self, update: dict) -> None:
        self.broadcast("price_update", update)

    def on_candle_close(self, candle: Candle) -> None:
        self.broadcast("candle_update", candle.to_wire())

    def on_engine_event(self, event: EngineEvent) -> None:
        self.broadcast(event.event_type.value, {**event.data, "timestamp": event.timestamp})


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Realtime stream of live candles, closed candles and engine events."""
    manager: ConnectionManager = websocket.app.state.stream
    await manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            await manager.handle_client_message(websocket, raw)
    except WebSocketDisconnect:
        manager.disconnect(websocket)
