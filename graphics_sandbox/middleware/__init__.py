"""Middleware package for the Graphics Sandbox API."""

from .security import SecurityMiddleware, RequestLoggingMiddleware

__all__ = [
    "SecurityMiddleware",
    "RequestLoggingMiddleware",
]
