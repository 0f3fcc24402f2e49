"""Transports carrying protocol frames."""

from .base import Transport
from .websocket import WebSocketTransport, discover_websocket_url

__all__ = [
    "Transport",
    "WebSocketTransport",
    "discover_websocket_url",
]
