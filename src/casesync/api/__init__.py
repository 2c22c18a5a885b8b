"""HTTP and WebSocket surface."""

from casesync.api.app import create_app

__all__ = ["create_app"]
