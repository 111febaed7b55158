"""Session lifecycle state and API request/response models.

Field names on the wire are camelCase to match the browser client; the
Python attribute names stay snake_case via aliases.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """Session lifecycle states."""

    CREATED = "created"
    ALLOCATING = "allocating"
    STARTING_DISPLAY = "starting_display"
    READY = "ready"
    EXECUTING = "executing"
    TERMINATING = "terminating"
    DESTROYED = "destroyed"
    FAILED = "failed"


# Allowed state transitions. TERMINATING is reachable from every state except
# DESTROYED; FAILED never leads back to READY.
SESSION_TRANSITIONS = {
    SessionState.CREATED: {SessionState.ALLOCATING, SessionState.TERMINATING},
    SessionState.ALLOCATING: {
        SessionState.STARTING_DISPLAY,
        SessionState.FAILED,
        SessionState.TERMINATING,
    },
    SessionState.STARTING_DISPLAY: {
        SessionState.READY,
        SessionState.FAILED,
        SessionState.TERMINATING,
    },
    SessionState.READY: {SessionState.EXECUTING, SessionState.TERMINATING},
    SessionState.EXECUTING: {
        SessionState.READY,
        SessionState.FAILED,
        SessionState.TERMINATING,
    },
    SessionState.FAILED: {SessionState.TERMINATING},
    SessionState.TERMINATING: {SessionState.DESTROYED},
    SessionState.DESTROYED: set(),
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InitResponse(_CamelModel):
    """Response for a newly created session."""

    success: bool = True
    session_id: str = Field(..., alias="sessionId")
    nickname: str
    display: int
    stream_ready: bool = Field(..., alias="streamReady")


class RunRequest(_CamelModel):
    """Code submission for an existing session."""

    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=64)
    code: str = Field(..., description="Program source to compile and run")


class RunResponse(_CamelModel):
    """Result of the compile-then-launch pipeline."""

    success: bool
    pid: Optional[int] = None
    output: Optional[str] = None
    expired: Optional[bool] = None


class SessionRequest(_CamelModel):
    """Request body carrying only a session id."""

    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=64)


class HeartbeatResponse(_CamelModel):
    """Liveness answer for a heartbeat."""

    alive: bool
    expired: Optional[bool] = None


class TeardownResponse(_CamelModel):
    """Acknowledgement of an explicit teardown."""

    success: bool = True
