"""Data models for the Graphics Sandbox API."""

from .session import (
    SessionState,
    SESSION_TRANSITIONS,
    InitResponse,
    RunRequest,
    RunResponse,
    SessionRequest,
    HeartbeatResponse,
    TeardownResponse,
)
from .errors import (
    ErrorType,
    ErrorDetail,
    ErrorResponse,
    SandboxException,
    ValidationError,
    ServiceUnavailableError,
    CapacityExceededError,
    StartupError,
    StartupTimeoutError,
    StartupCrashError,
    CompileError,
    ExecutionError,
    SessionNotFoundError,
    SessionStateError,
    ProxyTargetUnavailableError,
)
from .pool import Slot, PoolStats

__all__ = [
    # Session models
    "SessionState",
    "SESSION_TRANSITIONS",
    "InitResponse",
    "RunRequest",
    "RunResponse",
    "SessionRequest",
    "HeartbeatResponse",
    "TeardownResponse",
    # Error models
    "ErrorType",
    "ErrorDetail",
    "ErrorResponse",
    "SandboxException",
    "ValidationError",
    "ServiceUnavailableError",
    "CapacityExceededError",
    "StartupError",
    "StartupTimeoutError",
    "StartupCrashError",
    "CompileError",
    "ExecutionError",
    "SessionNotFoundError",
    "SessionStateError",
    "ProxyTargetUnavailableError",
    # Pool models
    "Slot",
    "PoolStats",
]
