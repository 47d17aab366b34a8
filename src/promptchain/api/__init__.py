"""
HTTP and WebSocket surface of promptchain.
"""

from .routes import router, set_dependencies
from .websocket import ConnectionManager, websocket_endpoint

__all__ = ["router", "set_dependencies", "ConnectionManager", "websocket_endpoint"]
