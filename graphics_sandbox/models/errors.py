"""Error models and exception classes for the Graphics Sandbox API."""

import time
from typing import Any, Dict, Optional, List
from pydantic import BaseModel, Field
from enum import Enum


class ErrorType(str, Enum):
    """Error type enumeration."""

    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    RESOURCE_CONFLICT = "resource_conflict"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    COMPILATION_FAILED = "compilation_failed"
    EXECUTION_FAILED = "execution_failed"
    TIMEOUT = "timeout"
    INTERNAL_SERVER = "internal_server"
    SERVICE_UNAVAILABLE = "service_unavailable"
    EXTERNAL_SERVICE = "external_service"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Field name for validation errors")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standardized error response model.

    ``success`` is always false so browser clients can branch on the same
    key they read from successful responses.
    """

    success: bool = Field(False, description="Always false for errors")
    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    output: Optional[str] = Field(None, description="Message shown in the client console")
    expired: Optional[bool] = Field(
        None, description="Set when the referenced session no longer exists"
    )
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    request_id: Optional[str] = Field(
        None, description="Request identifier for tracking"
    )
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")

    class Config:
        use_enum_values = True


# Custom Exception Classes


class SandboxException(Exception):
    """Base exception for the Graphics Sandbox API."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_SERVER,
        status_code: int = 500,
        details: Optional[List[ErrorDetail]] = None,
        request_id: Optional[str] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.details = details or []
        self.request_id = request_id
        super().__init__(message)

    def response_extras(self) -> Dict[str, Any]:
        """Extra top-level fields merged into the error response."""
        return {}

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            details=self.details if self.details else None,
            request_id=self.request_id,
            **self.response_extras(),
        )


class ValidationError(SandboxException):
    """Request validation errors."""

    def __init__(self, message: str = "Validation failed", **kwargs):
        super().__init__(
            message=message, error_type=ErrorType.VALIDATION, status_code=400, **kwargs
        )


class ServiceUnavailableError(SandboxException):
    """Service unavailable errors."""

    def __init__(
        self,
        service: str,
        message: str = None,
        error_type: ErrorType = ErrorType.SERVICE_UNAVAILABLE,
        **kwargs,
    ):
        error_message = message or f"{service} service is currently unavailable"
        self.service = service
        super().__init__(
            message=error_message,
            error_type=error_type,
            status_code=503,
            **kwargs,
        )


class CapacityExceededError(ServiceUnavailableError):
    """Every display/port slot is held by a live session."""

    def __init__(self, capacity: int, **kwargs):
        self.capacity = capacity
        super().__init__(
            service="sandbox",
            message="Server at maximum capacity. Try again later.",
            error_type=ErrorType.RESOURCE_EXHAUSTED,
            **kwargs,
        )


class StartupError(ServiceUnavailableError):
    """A supervised process failed to become ready."""

    def __init__(self, process_name: str, message: str, output_tail: str = "", **kwargs):
        self.process_name = process_name
        self.output_tail = output_tail
        super().__init__(service=process_name, message=message, **kwargs)


class StartupTimeoutError(StartupError):
    """No readiness signal within the startup timeout."""

    def __init__(self, process_name: str, timeout: float, output_tail: str = "", **kwargs):
        self.timeout = timeout
        super().__init__(
            process_name=process_name,
            message=f"{process_name} startup timeout after {timeout:g}s",
            output_tail=output_tail,
            error_type=ErrorType.TIMEOUT,
            **kwargs,
        )


class StartupCrashError(StartupError):
    """The process exited before signalling readiness."""

    def __init__(
        self,
        process_name: str,
        exit_code: Optional[int],
        output_tail: str = "",
        **kwargs,
    ):
        self.exit_code = exit_code
        super().__init__(
            process_name=process_name,
            message=f"{process_name} crashed during startup (exit code {exit_code})",
            output_tail=output_tail,
            **kwargs,
        )


class CompileError(SandboxException):
    """Compiler exited non-zero; carries truncated diagnostics."""

    def __init__(self, diagnostics: str, exit_code: Optional[int] = None, **kwargs):
        self.diagnostics = diagnostics
        self.exit_code = exit_code
        super().__init__(
            message="Compilation failed",
            error_type=ErrorType.COMPILATION_FAILED,
            status_code=200,
            **kwargs,
        )

    def response_extras(self) -> Dict[str, Any]:
        return {"output": self.diagnostics}


class ExecutionError(SandboxException):
    """The pipeline could not launch the program."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_type=ErrorType.EXECUTION_FAILED,
            status_code=200,
            **kwargs,
        )

    def response_extras(self) -> Dict[str, Any]:
        return {"output": self.message}


class SessionNotFoundError(SandboxException):
    """Unknown or expired session id."""

    def __init__(self, session_id: str = "", **kwargs):
        self.session_id = session_id
        super().__init__(
            message="Session expired.",
            error_type=ErrorType.RESOURCE_NOT_FOUND,
            status_code=404,
            **kwargs,
        )

    def response_extras(self) -> Dict[str, Any]:
        return {"output": "Session expired.", "expired": True}


class SessionStateError(SandboxException):
    """Operation not allowed in the session's current state."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_type=ErrorType.RESOURCE_CONFLICT,
            status_code=409,
            **kwargs,
        )


class ProxyTargetUnavailableError(SandboxException):
    """Stream routing attempted before readiness or after teardown."""

    def __init__(self, session_id: str = "", message: str = "Stream not ready", **kwargs):
        self.session_id = session_id
        super().__init__(
            message=message,
            error_type=ErrorType.EXTERNAL_SERVICE,
            status_code=502,
            **kwargs,
        )
