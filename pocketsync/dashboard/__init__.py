"""Web dashboard for pocketsync.

Serves a live view of one synchronized collection using FastAPI.
"""

from .app import create_app

__all__ = ["create_app"]
