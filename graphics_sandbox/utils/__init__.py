"""Utility modules for the Graphics Sandbox API."""

from .logging import setup_logging, get_logger
from .commands import render_command, is_command_available
from .id_generator import generate_request_id, generate_session_id
from .nickname import generate_nickname

__all__ = [
    "setup_logging",
    "get_logger",
    "render_command",
    "is_command_available",
    "generate_request_id",
    "generate_session_id",
    "generate_nickname",
]
