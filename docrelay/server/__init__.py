"""HTTP and WebSocket front end for the relay.

Serves the client page and the synchronization socket using FastAPI.
"""

from .app import create_app

__all__ = ["create_app"]
