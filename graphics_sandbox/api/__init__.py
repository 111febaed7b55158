"""API endpoints for the Graphics Sandbox API."""

from . import health, sessions, stream

__all__ = ["health", "sessions", "stream"]
