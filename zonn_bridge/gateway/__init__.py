"""HTTP and WebSocket surface for the playback orchestrator."""

from .app import create_app

__all__ = ["create_app"]
