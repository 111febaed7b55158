"""Identifier generation."""

import uuid


def generate_session_id() -> str:
    """Generate an opaque session id (uuid4, hyphenated)."""
    return str(uuid.uuid4())


def generate_request_id() -> str:
    """Generate a short request id for error tracking."""
    return uuid.uuid4().hex[:16]
