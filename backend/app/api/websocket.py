"""WebSocket endpoint for real-time updates."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

import orjson
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from app.models import EventType, Position, Signal

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30.0
SEND_TIMEOUT = 5.0

# Returns the active signals to send a subscriber on join
SnapshotProvider = Callable[[], Awaitable[list[Signal]]]


def _orjson_dumps(obj: Any) -> str:
    """Serialize object to JSON string using orjson."""
    return orjson.dumps(obj, default=str).decode("utf-8")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebSocketMessage(BaseModel):
    """WebSocket message format."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: EventType
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_json(self) -> str:
        """Serialize to JSON string using orjson for performance."""
        return _orjson_dumps(self.model_dump(mode="json"))


def signal_payload(signal: Signal) -> dict:
    return signal.model_dump(mode="json")


def position_payload(position: Position) -> dict:
    data = position.model_dump(mode="json")
    data["pnl_percentage"] = float(position.pnl_percentage)
    return data


class ConnectionManager:
    """
    Manage WebSocket connections and broadcasts.

    Sends to each subscriber run concurrently, each with its own timeout.
    A subscriber whose send fails or times out is dropped. Messages are not
    buffered, so a reconnecting subscriber only sees what is sent after it
    joins.
    """

    def __init__(self, send_timeout: float = SEND_TIMEOUT):
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()
        self.send_timeout = send_timeout
        self._snapshot_provider: SnapshotProvider | None = None

    def set_snapshot_provider(self, provider: SnapshotProvider | None) -> None:
        self._snapshot_provider = provider

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a new WebSocket connection and greet it."""
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self._connections)}")

        signals: list[Signal] = []
        if self._snapshot_provider is not None:
            try:
                signals = await self._snapshot_provider()
            except Exception as e:
                logger.warning(f"Failed to build active signal snapshot: {e}")

        welcome = WebSocketMessage(
            type=EventType.WELCOME,
            data={
                "message": "Connected to signal stream",
                "active_signals": [signal_payload(s) for s in signals],
            },
        )
        await websocket.send_text(welcome.to_json())

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a disconnected WebSocket."""
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self._connections)}")

    async def _send(self, websocket: WebSocket, text: str) -> bool:
        try:
            await asyncio.wait_for(websocket.send_text(text), self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send timed out after {self.send_timeout}s, dropping subscriber")
        except Exception as e:
            logger.warning(f"Failed to send message: {e}")
        return False

    async def broadcast(self, message: WebSocketMessage) -> int:
        """
        Broadcast message to all connected clients.

        Returns:
            Number of subscribers the message reached
        """
        async with self._lock:
            connections = list(self._connections)
        if not connections:
            return 0

        text = message.to_json()
        results = await asyncio.gather(*(self._send(ws, text) for ws in connections))

        failed = [ws for ws, ok in zip(connections, results) if not ok]
        if failed:
            async with self._lock:
                for ws in failed:
                    if ws in self._connections:
                        self._connections.remove(ws)
        return len(connections) - len(failed)

    async def send_signal(self, signal: Signal) -> None:
        """Broadcast a new signal."""
        await self.broadcast(
            WebSocketMessage(type=EventType.NEW_SIGNAL, data=signal_payload(signal))
        )

    async def send_position_event(self, position: Position, event_type: EventType) -> None:
        """Broadcast a position closure (manual, take profit or stop loss)."""
        await self.broadcast(WebSocketMessage(type=event_type, data=position_payload(position)))

    @property
    def connection_count(self) -> int:
        """Get number of active connections."""
        return len(self._connections)


# Global connection manager
manager = ConnectionManager()


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Messages sent to clients:
    - welcome: Sent once on connect, with the current active signals
    - new_signal: Newly stored trading signal
    - position_closed / take_profit_hit / stop_loss_hit: Position closures
    - heartbeat: Sent after 30s without client traffic

    Message format:
    {
        "id": "9f1c...",
        "type": "new_signal",
        "data": {...},
        "timestamp": "2024-01-01T00:00:00Z"
    }
    """
    try:
        await manager.connect(websocket)

        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=HEARTBEAT_INTERVAL,
                )
            except asyncio.TimeoutError:
                await websocket.send_text(
                    WebSocketMessage(
                        type=EventType.HEARTBEAT,
                        data={"connections": manager.connection_count},
                    ).to_json()
                )
                continue

            try:
                message = orjson.loads(data)
            except orjson.JSONDecodeError:
                await websocket.send_text(
                    WebSocketMessage(
                        type=EventType.ERROR, data={"message": "Invalid JSON"}
                    ).to_json()
                )
                continue
            await handle_client_message(websocket, message)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await manager.disconnect(websocket)


async def handle_client_message(websocket: WebSocket, message: Any) -> None:
    """Handle incoming message from client."""
    msg_type = message.get("type", "") if isinstance(message, dict) else ""

    if msg_type == "ping":
        reply = WebSocketMessage(type=EventType.PONG)
    else:
        reply = WebSocketMessage(
            type=EventType.ERROR,
            data={"message": f"Unknown message type: {msg_type}"},
        )
    await websocket.send_text(reply.to_json())
