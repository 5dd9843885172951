"""API endpoints."""

from app.api.routes import router
from app.api.websocket import manager, websocket_endpoint, ConnectionManager

__all__ = [
    "router",
    "manager",
    "websocket_endpoint",
    "ConnectionManager",
]
